"""Event normalization pipeline: decode, reconcile, infer, normalize."""

from __future__ import annotations

from .decoder import InboundMessage, decode_payload
from .errors import (
    DecodeError,
    IngestionError,
    IngestionErrorReason,
    RetryableIngestionError,
    ValidationError,
)
from .ids import EventIdFactory, derive_event_id, generate_event_id
from .models import Event, EventRow, Param, ParamKind, UserContext
from .normalizer import normalize
from .pipeline import (
    IngestionPipeline,
    IngestionResult,
    IngestionStatus,
    normalize_message,
)
from .reconciler import (
    DEFAULT_EVENT_NAME,
    IntermediateEvent,
    ShapeKind,
    detect_shape,
    reconcile,
)
from .values import infer, infer_params

__all__ = [
    "DEFAULT_EVENT_NAME",
    "DecodeError",
    "Event",
    "EventIdFactory",
    "EventRow",
    "InboundMessage",
    "IngestionError",
    "IngestionErrorReason",
    "IngestionPipeline",
    "IngestionResult",
    "IngestionStatus",
    "IntermediateEvent",
    "Param",
    "ParamKind",
    "RetryableIngestionError",
    "ShapeKind",
    "UserContext",
    "ValidationError",
    "decode_payload",
    "derive_event_id",
    "detect_shape",
    "generate_event_id",
    "infer",
    "infer_params",
    "normalize",
    "normalize_message",
    "reconcile",
]
