"""Configuration for the ingestion worker.

Usage
-----
Create a configuration with defaults:

>>> config = IngestConfig()
>>> config.default_event_name
'note_action'

Or load from environment variables:

>>> import os
>>> os.environ["QUILL_MAX_RETRIES"] = "3"
>>> IngestConfig.from_env().max_retries
3

"""

from __future__ import annotations

import dataclasses as dc
import os

from quill.ingest.reconciler import DEFAULT_EVENT_NAME


@dc.dataclass(frozen=True, slots=True)
class IngestConfig:
    """Settings the ingestion worker is parameterized by.

    Attributes
    ----------
    database_url
        SQLAlchemy async URL of the analytical store. Required by the worker;
        ``None`` when unset.
    default_event_name
        Label applied to payloads that name no event. ``None`` disables the
        fallback so such payloads fail validation.
    max_retries
        Redelivery attempts requested from the message system for sink
        transport failures. Default is 5.
    log_level
        Raw log level string, normalized by :mod:`quill.logging`.
    allow_stub_broker
        Let the worker fall back to an in-memory Dramatiq broker when no
        real broker is available.

    """

    database_url: str | None = None
    default_event_name: str | None = DEFAULT_EVENT_NAME
    max_retries: int = 5
    log_level: str = "INFO"
    allow_stub_broker: bool = False

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            msg = f"{env_var} must be an integer, got: {raw!r}"
            raise ValueError(msg) from exc
        if value < 1:
            msg = f"{env_var} must be positive, got: {value}"
            raise ValueError(msg)
        return value

    @staticmethod
    def _read_default_event_name() -> str | None:
        raw = os.environ.get("QUILL_DEFAULT_EVENT_NAME")
        if raw is None:
            return DEFAULT_EVENT_NAME
        return raw.strip() or None

    @staticmethod
    def _parse_flag(env_var: str) -> bool:
        """Read a boolean env var; unset or unrecognised values are False."""
        return os.environ.get(env_var, "").strip().lower() in {"1", "true", "yes"}

    @classmethod
    def from_env(cls) -> IngestConfig:
        """Create configuration from environment variables.

        Reads the following environment variables:

        - ``QUILL_DATABASE_URL``: Analytical store URL.
        - ``QUILL_DEFAULT_EVENT_NAME``: Fallback event label; set it to an
          empty string to reject unnamed payloads.
        - ``QUILL_MAX_RETRIES``: Redelivery attempts for transport failures.
          Must be a positive integer.
        - ``QUILL_LOG_LEVEL``: Log level name.
        - ``QUILL_ALLOW_STUB_BROKER``: ``1``, ``true`` or ``yes`` lets the
          worker use an in-memory broker.

        Raises
        ------
        ValueError
            If QUILL_MAX_RETRIES is not a positive integer.

        """
        database_url = os.environ.get("QUILL_DATABASE_URL", "").strip() or None
        return cls(
            database_url=database_url,
            default_event_name=cls._read_default_event_name(),
            max_retries=cls._parse_positive_int("QUILL_MAX_RETRIES", 5),
            log_level=os.environ.get("QUILL_LOG_LEVEL", "INFO"),
            allow_stub_broker=cls._parse_flag("QUILL_ALLOW_STUB_BROKER"),
        )
