"""End-to-end processing of one inbound message.

``IngestionPipeline`` runs decode, reconcile, normalize and sink write for a
single delivery and maps the result onto the message system's retry
contract:

- decode and validation failures are terminal; the message is reported as
  ``dropped`` and must not be redelivered;
- store-side row rejections are terminal for those rows and reported as
  ``partial``;
- sink transport failures raise :class:`RetryableIngestionError` so the
  message system redelivers the whole message.

The pipeline keeps no state between messages, so one instance can serve
concurrent deliveries.

Usage
-----
>>> pipeline = IngestionPipeline(SinkWriter(SqlEventSink(session_factory)))
>>> result = await pipeline.process(InboundMessage(data=body, message_id="42"))
>>> result.status
<IngestionStatus.ACCEPTED: 'accepted'>

"""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

from quill.common.time import utcnow
from quill.ingest.decoder import InboundMessage, decode_payload
from quill.ingest.errors import DecodeError, RetryableIngestionError, ValidationError
from quill.ingest.ids import EventIdFactory
from quill.ingest.normalizer import normalize
from quill.ingest.observability import IngestionEventLogger, MessageContext
from quill.ingest.reconciler import DEFAULT_EVENT_NAME, reconcile
from quill.sink.writer import Accepted, PartialFailure, TransportFailure

if typ.TYPE_CHECKING:
    from quill.ingest.errors import IngestionError
    from quill.ingest.models import Event
    from quill.sink.writer import SinkWriter, WriteOutcome


class IngestionStatus(enum.StrEnum):
    """Terminal status of one processed message."""

    ACCEPTED = "accepted"
    PARTIAL = "partial"
    DROPPED = "dropped"


@dc.dataclass(frozen=True, slots=True)
class IngestionResult:
    """What happened to one message that does not need redelivery."""

    status: IngestionStatus
    event: Event | None = None
    outcome: WriteOutcome | None = None
    error: IngestionError | None = None


def normalize_message(
    message: InboundMessage,
    *,
    default_event_name: str | None = DEFAULT_EVENT_NAME,
) -> Event:
    """Run the pure stages (decode, reconcile, normalize) for ``message``.

    The worker and the command-line tool both build events through this
    function. The fallback event id is derived from ``message.message_id``
    when the delivery carries one.

    Raises
    ------
    DecodeError
        If the body cannot be decoded.
    ValidationError
        If the payload is malformed or lacks a name or timestamp.

    """
    payload = decode_payload(message.data)
    intermediate = reconcile(payload, default_event_name=default_event_name)
    return normalize(intermediate, id_factory=EventIdFactory(message.message_id))


class IngestionPipeline:
    """Decode, normalize and store inbound event messages.

    Parameters
    ----------
    writer
        Sink writer constructed once at process start.
    default_event_name
        Event label used when a payload names none; ``None`` makes a
        missing name a validation failure.
    event_logger
        Structured log emitter; defaults to :class:`IngestionEventLogger`.

    """

    def __init__(
        self,
        writer: SinkWriter,
        *,
        default_event_name: str | None = DEFAULT_EVENT_NAME,
        event_logger: IngestionEventLogger | None = None,
    ) -> None:
        """Bind the pipeline to its sink writer and naming policy."""
        self._writer = writer
        self._default_event_name = default_event_name
        self._events = event_logger or IngestionEventLogger()

    def normalize_message(self, message: InboundMessage) -> Event:
        """Build the event for ``message`` with this pipeline's naming policy."""
        return normalize_message(message, default_event_name=self._default_event_name)

    async def process(self, message: InboundMessage) -> IngestionResult:
        """Process one delivery to completion.

        Raises
        ------
        RetryableIngestionError
            If the sink could not be reached; the message should be
            redelivered.

        """
        context = MessageContext(message_id=message.message_id, received_at=utcnow())
        self._events.log_message_received(context)

        try:
            event = self.normalize_message(message)
        except (DecodeError, ValidationError) as exc:
            self._events.log_message_dropped(context, exc)
            return IngestionResult(status=IngestionStatus.DROPPED, error=exc)

        outcome = await self._writer.write([event])
        match outcome:
            case TransportFailure(reason=reason):
                self._events.log_message_retry(context, reason)
                raise RetryableIngestionError.sink_unavailable(reason)
            case PartialFailure():
                self._events.log_message_partial(context, event, outcome)
                return IngestionResult(
                    status=IngestionStatus.PARTIAL, event=event, outcome=outcome
                )
            case Accepted():
                self._events.log_message_accepted(context, event)
                return IngestionResult(
                    status=IngestionStatus.ACCEPTED, event=event, outcome=outcome
                )
