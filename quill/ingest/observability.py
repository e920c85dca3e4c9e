"""Structured log events and error categories for message ingestion.

Every message produces one ``received`` line and exactly one terminal line
(``accepted``, ``partial``, ``dropped`` or ``retry``), all formatted as
``[event] key=value`` so log aggregators can parse them.
"""

from __future__ import annotations

import dataclasses
import enum
import typing as typ

from quill.ingest.errors import DecodeError, RetryableIngestionError, ValidationError
from quill.logging import get_logger, log_error, log_info, log_warning
from quill.sink.errors import SinkContractError, SinkTransportError

if typ.TYPE_CHECKING:
    import datetime as dt

    from quill.ingest.models import Event
    from quill.sink.writer import PartialFailure

logger = get_logger(__name__)


class IngestionEventType(enum.StrEnum):
    """Structured log event types for message ingestion."""

    MESSAGE_RECEIVED = "ingest.message.received"
    MESSAGE_ACCEPTED = "ingest.message.accepted"
    MESSAGE_PARTIAL = "ingest.message.partial"
    MESSAGE_DROPPED = "ingest.message.dropped"
    MESSAGE_RETRY = "ingest.message.retry"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    DECODE = "decode"
    VALIDATION = "validation"
    TRANSIENT = "transient"
    DATA_INTEGRITY = "data_integrity"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (DecodeError, ErrorCategory.DECODE),
    (ValidationError, ErrorCategory.VALIDATION),
    (RetryableIngestionError, ErrorCategory.TRANSIENT),
    (SinkTransportError, ErrorCategory.TRANSIENT),
    (SinkContractError, ErrorCategory.DATA_INTEGRITY),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alert routing."""
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.UNKNOWN


@dataclasses.dataclass(frozen=True, slots=True)
class MessageContext:
    """Identifying context shared by the log lines of one delivery."""

    message_id: str | None
    received_at: dt.datetime


class IngestionEventLogger:
    """Emit structured ingestion events via femtologging.

    Success is logged at INFO, row rejections and redelivery requests at
    WARNING, dropped messages at ERROR.
    """

    def log_message_received(self, context: MessageContext) -> None:
        """Log that a delivery entered the pipeline."""
        log_info(
            logger,
            "[%s] message_id=%s received_at=%s",
            IngestionEventType.MESSAGE_RECEIVED,
            context.message_id,
            context.received_at.isoformat(),
        )

    def log_message_accepted(self, context: MessageContext, event: Event) -> None:
        """Log that the event was written."""
        log_info(
            logger,
            "[%s] message_id=%s event_id=%s event_name=%s param_count=%d",
            IngestionEventType.MESSAGE_ACCEPTED,
            context.message_id,
            event.event_id,
            event.event_name,
            len(event.params),
        )

    def log_message_partial(
        self,
        context: MessageContext,
        event: Event,
        outcome: PartialFailure,
    ) -> None:
        """Log store-side row rejections, one line per rejected row."""
        for rejection in outcome.row_errors:
            log_warning(
                logger,
                "[%s] message_id=%s event_id=%s row_index=%d reason=%s",
                IngestionEventType.MESSAGE_PARTIAL,
                context.message_id,
                event.event_id,
                rejection.row_index,
                rejection.reason,
            )

    def log_message_dropped(
        self, context: MessageContext, error: BaseException
    ) -> None:
        """Log a terminal transformation failure."""
        excerpt = getattr(error, "raw_excerpt", None)
        log_error(
            logger,
            "[%s] message_id=%s error_type=%s error_category=%s reason=%s "
            "error_message=%s raw_excerpt=%r",
            IngestionEventType.MESSAGE_DROPPED,
            context.message_id,
            type(error).__name__,
            categorize_error(error),
            getattr(error, "reason", None),
            str(error),
            excerpt,
        )

    def log_message_retry(self, context: MessageContext, reason: str) -> None:
        """Log that the message will be redelivered."""
        log_warning(
            logger,
            "[%s] message_id=%s error_category=%s reason=%s",
            IngestionEventType.MESSAGE_RETRY,
            context.message_id,
            ErrorCategory.TRANSIENT,
            reason,
        )
