"""Unit tests for the ingestion Dramatiq actor."""

from __future__ import annotations

import asyncio
import base64
import typing as typ

import dramatiq
import msgspec
import pytest
from dramatiq.brokers.stub import StubBroker
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from quill.ingest.errors import RetryableIngestionError
from quill.sink.storage import AnalyticsEvent
from quill.config import IngestConfig
from quill.worker import (
    WorkerConfigError,
    ingest_message_job,
    select_broker,
    should_retry,
)
from quill.worker import actor as actor_module
from tests.helpers.database import sqlite_url

if typ.TYPE_CHECKING:
    from pathlib import Path

DOCUMENT = {
    "event": "note_created",
    "timestamp": "2024-01-01T00:00:00Z",
    "event_data": {"note_id": "n1"},
}


def _data(document: object = DOCUMENT) -> str:
    return base64.b64encode(msgspec.json.encode(document)).decode("ascii")


def _stored_ids(url: str) -> list[str]:
    async def _load() -> list[str]:
        engine = create_async_engine(url, poolclass=NullPool)
        try:
            async with engine.connect() as conn:
                result = await conn.execute(select(AnalyticsEvent.event_id))
                return [row[0] for row in result]
        finally:
            await engine.dispose()

    return asyncio.run(_load())


class TestShouldRetry:
    """Tests for the retry predicate."""

    def test_transport_failures_are_retried(
        self, clean_quill_env: pytest.MonkeyPatch
    ) -> None:
        """Retryable errors are retried while attempts remain."""
        exc = RetryableIngestionError.sink_unavailable("timeout")

        assert should_retry(0, exc)
        assert should_retry(4, exc)
        assert not should_retry(5, exc), "default budget is five retries"

    def test_budget_comes_from_environment(
        self, clean_quill_env: pytest.MonkeyPatch
    ) -> None:
        """QUILL_MAX_RETRIES bounds redelivery."""
        clean_quill_env.setenv("QUILL_MAX_RETRIES", "1")
        exc = RetryableIngestionError.sink_unavailable("timeout")

        assert should_retry(0, exc)
        assert not should_retry(1, exc)

    @pytest.mark.parametrize(
        "exc", [ValueError("bad"), WorkerConfigError.missing_database_url()]
    )
    def test_other_errors_are_not_retried(
        self, clean_quill_env: pytest.MonkeyPatch, exc: Exception
    ) -> None:
        """Only transport failures are worth redelivering."""
        assert not should_retry(0, exc)


def test_actor_ingests_message(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """Calling the actor writes the event and reports acceptance."""
    url = sqlite_url(tmp_path)

    status = ingest_message_job(_data(), message_id="m-1", database_url=url)

    assert status == "accepted"
    assert len(_stored_ids(url)) == 1


def test_actor_redelivery_is_idempotent(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """Processing the same delivery twice keeps a single row."""
    url = sqlite_url(tmp_path)

    first = ingest_message_job(_data(), message_id="m-2", database_url=url)
    second = ingest_message_job(_data(), message_id="m-2", database_url=url)

    assert (first, second) == ("accepted", "accepted")
    assert len(_stored_ids(url)) == 1


def test_actor_reports_dropped_messages(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """Malformed payloads are dropped, not raised."""
    url = sqlite_url(tmp_path)

    status = ingest_message_job("???", database_url=url)

    assert status == "dropped"
    assert _stored_ids(url) == []


def test_actor_reads_database_url_from_env(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """QUILL_DATABASE_URL is used when no URL is passed."""
    url = sqlite_url(tmp_path)
    clean_quill_env.setenv("QUILL_DATABASE_URL", url)

    assert ingest_message_job(_data(), message_id="m-3") == "accepted"


def test_actor_requires_database_url(clean_quill_env: pytest.MonkeyPatch) -> None:
    """Without any URL the actor fails loudly."""
    with pytest.raises(WorkerConfigError):
        ingest_message_job(_data())


def test_actor_runs_under_stub_worker(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """Messages sent through the broker are processed by a worker."""
    broker = dramatiq.get_broker()
    if not isinstance(broker, StubBroker):
        pytest.skip("requires the stub broker configured for tests")
    url = sqlite_url(tmp_path)
    worker = dramatiq.Worker(broker, worker_timeout=100)
    worker.start()
    try:
        ingest_message_job.send(_data(), message_id="m-4", database_url=url)
        broker.join(ingest_message_job.queue_name, fail_fast=True)
        worker.join()
    finally:
        worker.stop()

    async def _count() -> int:
        engine = create_async_engine(url, poolclass=NullPool)
        try:
            async with engine.connect() as conn:
                total = await conn.scalar(
                    select(func.count()).select_from(AnalyticsEvent)
                )
                return int(total or 0)
        finally:
            await engine.dispose()

    assert asyncio.run(_count()) == 1


def test_unreachable_store_at_start_up_requests_redelivery(
    tmp_path: Path, clean_quill_env: pytest.MonkeyPatch
) -> None:
    """A store outage while the engine is first built is retried."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing_dir' / 'events.db'}"

    with pytest.raises(RetryableIngestionError) as excinfo:
        ingest_message_job(_data(), message_id="m-5", database_url=url)

    assert should_retry(0, excinfo.value)
    assert url not in actor_module._ENGINE_CACHE, "failed engines are not cached"


def _no_broker() -> dramatiq.Broker:
    raise LookupError("no broker configured")


class TestSelectBroker:
    """Tests for choosing the broker the actor is declared on."""

    def test_keeps_installed_broker(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A broker set up by the host process is used as is."""
        installed = StubBroker()
        monkeypatch.setattr(dramatiq, "get_broker", lambda: installed)

        assert select_broker(IngestConfig()) is installed

    def test_installs_stub_when_allowed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """QUILL_ALLOW_STUB_BROKER lets the worker run without RabbitMQ."""
        installed: list[dramatiq.Broker] = []
        monkeypatch.setattr(dramatiq, "get_broker", _no_broker)
        monkeypatch.setattr(dramatiq, "set_broker", installed.append)
        monkeypatch.setattr(actor_module, "_running_under_pytest", lambda: False)

        broker = select_broker(IngestConfig(allow_stub_broker=True))

        assert isinstance(broker, StubBroker)
        assert installed == [broker]

    def test_refuses_stub_outside_tests(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Production processes without a broker fail loudly."""
        monkeypatch.setattr(dramatiq, "get_broker", _no_broker)
        monkeypatch.setattr(actor_module, "_running_under_pytest", lambda: False)

        with pytest.raises(WorkerConfigError, match="QUILL_ALLOW_STUB_BROKER"):
            select_broker(IngestConfig())
