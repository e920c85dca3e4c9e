"""Unit tests for IngestConfig.

Run with:
    pytest tests/unit/test_config.py
"""

from __future__ import annotations

import pytest

from quill.config import IngestConfig
from quill.ingest.reconciler import DEFAULT_EVENT_NAME


def test_defaults(clean_quill_env: pytest.MonkeyPatch) -> None:
    """An empty environment yields the documented defaults."""
    config = IngestConfig.from_env()

    assert config == IngestConfig()
    assert config.database_url is None
    assert config.default_event_name == DEFAULT_EVENT_NAME
    assert config.max_retries == 5
    assert config.log_level == "INFO"


def test_reads_all_variables(clean_quill_env: pytest.MonkeyPatch) -> None:
    """Every QUILL_* variable is honoured."""
    clean_quill_env.setenv("QUILL_DATABASE_URL", " sqlite+aiosqlite:///x.db ")
    clean_quill_env.setenv("QUILL_DEFAULT_EVENT_NAME", " note_touched ")
    clean_quill_env.setenv("QUILL_MAX_RETRIES", "3")
    clean_quill_env.setenv("QUILL_LOG_LEVEL", "DEBUG")

    config = IngestConfig.from_env()

    assert config.database_url == "sqlite+aiosqlite:///x.db"
    assert config.default_event_name == "note_touched"
    assert config.max_retries == 3
    assert config.log_level == "DEBUG"


def test_empty_default_event_name_disables_fallback(
    clean_quill_env: pytest.MonkeyPatch,
) -> None:
    """Setting the default name to blank rejects unnamed payloads."""
    clean_quill_env.setenv("QUILL_DEFAULT_EVENT_NAME", "  ")

    assert IngestConfig.from_env().default_event_name is None


def test_blank_max_retries_uses_default(clean_quill_env: pytest.MonkeyPatch) -> None:
    """A blank retry count falls back to the default."""
    clean_quill_env.setenv("QUILL_MAX_RETRIES", " ")

    assert IngestConfig.from_env().max_retries == 5


@pytest.mark.parametrize(
    ("raw", "fragment"),
    [("many", "must be an integer"), ("0", "must be positive"), ("-2", "positive")],
)
def test_invalid_max_retries_raise(
    clean_quill_env: pytest.MonkeyPatch, raw: str, fragment: str
) -> None:
    """Retry counts must be positive integers."""
    clean_quill_env.setenv("QUILL_MAX_RETRIES", raw)

    with pytest.raises(ValueError, match=fragment):
        IngestConfig.from_env()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), (" TRUE ", True), ("yes", True), ("0", False), ("", False)],
)
def test_allow_stub_broker_flag(
    clean_quill_env: pytest.MonkeyPatch, raw: str, expected: bool
) -> None:
    """Only explicit truthy values allow the in-memory broker."""
    clean_quill_env.setenv("QUILL_ALLOW_STUB_BROKER", raw)

    assert IngestConfig.from_env().allow_stub_broker is expected
