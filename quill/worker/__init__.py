"""Background worker that runs the ingestion pipeline under Dramatiq."""

from __future__ import annotations

from quill.worker.actor import (
    WorkerConfigError,
    build_pipeline,
    ingest_message_job,
    select_broker,
    should_retry,
)

__all__ = [
    "WorkerConfigError",
    "build_pipeline",
    "ingest_message_job",
    "select_broker",
    "should_retry",
]
