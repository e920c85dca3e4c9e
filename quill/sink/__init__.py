"""Analytical-store sink: protocol, writer and SQL adapter."""

from __future__ import annotations

from .errors import SinkContractError, SinkError, SinkTransportError
from .protocol import EventSink, InsertResult, RowRejection
from .sql import SqlEventSink
from .storage import AnalyticsEvent, init_event_storage
from .writer import (
    Accepted,
    PartialFailure,
    SinkWriter,
    TransportFailure,
    WriteOutcome,
)

__all__ = [
    "Accepted",
    "AnalyticsEvent",
    "EventSink",
    "InsertResult",
    "PartialFailure",
    "RowRejection",
    "SinkContractError",
    "SinkError",
    "SinkTransportError",
    "SinkWriter",
    "SqlEventSink",
    "TransportFailure",
    "WriteOutcome",
    "init_event_storage",
]
