"""Dramatiq actor that feeds inbound messages through the ingestion pipeline.

Usage
-----
Queue one message for ingestion:

>>> ingest_message_job.send(
...     "eyJldmVudCI6ICJub3RlX2NyZWF0ZWQifQ==",
...     message_id="1234567890",
...     database_url="postgresql+asyncpg://...",
... )

Terminal outcomes (``accepted``, ``partial``, ``dropped``) are returned as the
actor's result. Sink transport failures raise
:class:`~quill.ingest.errors.RetryableIngestionError`, which is the only
exception the actor asks Dramatiq to retry.
"""

from __future__ import annotations

import asyncio
import os
import sys
import threading
import typing as typ

import dramatiq
from dramatiq.brokers.stub import StubBroker
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from quill.config import IngestConfig
from quill.ingest.decoder import InboundMessage
from quill.ingest.errors import RetryableIngestionError
from quill.ingest.pipeline import IngestionPipeline
from quill.logging import configure_logging, get_logger, log_info, log_warning
from quill.sink.sql import TRANSPORT_ERRORS, SqlEventSink
from quill.sink.storage import init_event_storage
from quill.sink.writer import SinkWriter

logger = get_logger(__name__)

# Process-wide resources reused across actor invocations, keyed by URL.
_ENGINE_CACHE: dict[str, AsyncEngine] = {}
_PIPELINE_CACHE: dict[tuple[str, str | None], IngestionPipeline] = {}
_CACHE_LOCK = threading.Lock()
_logging_configured = False


class WorkerConfigError(RuntimeError):
    """Raised when the worker lacks the settings needed to build a pipeline."""

    @classmethod
    def missing_database_url(cls) -> WorkerConfigError:
        """Return an error when no analytical store URL is configured."""
        return cls("QUILL_DATABASE_URL is required for the ingestion worker")

    @classmethod
    def missing_broker(cls) -> WorkerConfigError:
        """Return an error when no Dramatiq broker can be used."""
        return cls(
            "No Dramatiq broker is available for the ingestion worker; "
            "configure one or set QUILL_ALLOW_STUB_BROKER=1"
        )


def _running_under_pytest() -> bool:
    return "pytest" in sys.modules or "PYTEST_CURRENT_TEST" in os.environ


def select_broker(config: IngestConfig) -> dramatiq.Broker:
    """Return the broker ``ingest_message_job`` is declared on.

    A broker already installed by the host process is kept. When none can be
    loaded, an in-memory :class:`StubBroker` is installed if
    ``config.allow_stub_broker`` is set or pytest drives the process.

    Raises
    ------
    WorkerConfigError
        If no broker is available and a stub broker is not allowed.

    """
    with _CACHE_LOCK:
        try:
            return dramatiq.get_broker()
        except (ImportError, LookupError) as exc:
            # ImportError: the default RabbitMQ client is not installed.
            if not (config.allow_stub_broker or _running_under_pytest()):
                raise WorkerConfigError.missing_broker() from exc
        broker = StubBroker()
        dramatiq.set_broker(broker)
        log_info(logger, "Using in-memory stub broker for ingestion")
        return broker


def _configure_logging_once(config: IngestConfig) -> None:
    """Apply ``QUILL_LOG_LEVEL`` on first use.

    Precondition: the caller **must** hold ``_CACHE_LOCK``.
    """
    global _logging_configured

    if _logging_configured:
        return
    normalized_level, invalid_level = configure_logging(config.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid QUILL_LOG_LEVEL %r, falling back to %s",
            config.log_level,
            normalized_level,
        )
    _logging_configured = True


def _ensure_engine(database_url: str) -> AsyncEngine:
    """Return the cached engine for *database_url*, creating it if absent.

    Precondition: the caller **must** hold ``_CACHE_LOCK``. Engines use
    ``NullPool`` because every invocation runs in a fresh event loop.

    Raises
    ------
    RetryableIngestionError
        If the store cannot be reached while its tables are created. Nothing
        is cached, so the redelivered message tries again.

    """
    if database_url not in _ENGINE_CACHE:
        engine = create_async_engine(database_url, poolclass=NullPool)
        try:
            asyncio.run(init_event_storage(engine))
        except TRANSPORT_ERRORS as exc:
            log_warning(logger, "Analytical store unavailable at start-up: %s", exc)
            raise RetryableIngestionError.sink_unavailable(str(exc)) from exc
        _ENGINE_CACHE[database_url] = engine
        log_info(logger, "Initialised analytical store engine")
    return _ENGINE_CACHE[database_url]


def build_pipeline(engine: AsyncEngine, config: IngestConfig) -> IngestionPipeline:
    """Wire a pipeline to a SQL sink bound to ``engine``."""
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    writer = SinkWriter(SqlEventSink(session_factory))
    return IngestionPipeline(writer, default_event_name=config.default_event_name)


def _get_or_create_pipeline(
    database_url: str, config: IngestConfig
) -> IngestionPipeline:
    """Get or create the pipeline for a database URL and naming policy.

    Thread-safe: uses a lock to prevent race conditions in Dramatiq workers.
    """
    key = (database_url, config.default_event_name)
    with _CACHE_LOCK:
        _configure_logging_once(config)
        if key not in _PIPELINE_CACHE:
            engine = _ensure_engine(database_url)
            _PIPELINE_CACHE[key] = build_pipeline(engine, config)
        return _PIPELINE_CACHE[key]


def should_retry(retries_so_far: int, exception: Exception) -> bool:
    """Retry only transport failures, up to ``QUILL_MAX_RETRIES`` times."""
    if not isinstance(exception, RetryableIngestionError):
        return False
    return retries_so_far < IngestConfig.from_env().max_retries


@dramatiq.actor(
    broker=select_broker(IngestConfig.from_env()), retry_when=should_retry
)
def ingest_message_job(
    data: str | None,
    *,
    message_id: str | None = None,
    publish_time: str | None = None,
    attributes: dict[str, str] | None = None,
    database_url: str | None = None,
) -> str:
    """Dramatiq actor that ingests one message.

    Parameters
    ----------
    data
        Message body, raw JSON or base64-encoded JSON.
    message_id
        Delivery identifier that stays stable across redeliveries; used to
        derive the event id when the producer supplied none.
    publish_time
        Publish time reported by the message system.
    attributes
        Message attributes.
    database_url
        Analytical store URL; defaults to ``QUILL_DATABASE_URL``.

    Returns
    -------
    str
        The terminal ingestion status.

    Raises
    ------
    RetryableIngestionError
        If the sink could not be reached, including while the store is first
        initialised.
    WorkerConfigError
        If no database URL is available.

    """
    config = IngestConfig.from_env()
    url = database_url or config.database_url
    if url is None:
        raise WorkerConfigError.missing_database_url()

    pipeline = _get_or_create_pipeline(url, config)
    message = InboundMessage(
        data=data,
        message_id=message_id,
        publish_time=publish_time,
        attributes=dict(attributes or {}),
    )
    result = asyncio.run(pipeline.process(message))
    return result.status.value


__all__: typ.Final = [
    "WorkerConfigError",
    "build_pipeline",
    "ingest_message_job",
    "select_broker",
    "should_retry",
]
