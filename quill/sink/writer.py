"""Deliver normalized Events to an EventSink and classify the outcome.

The writer is the unit of retry. It never retries on its own: a
:class:`TransportFailure` tells the caller to have the whole message
redelivered, while a :class:`PartialFailure` is final for the rejected rows
because resubmitting a schema mismatch cannot succeed.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from quill.logging import get_logger, log_warning
from quill.sink.errors import SinkContractError, SinkTransportError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from quill.ingest.models import Event
    from quill.sink.protocol import EventSink, RowRejection

logger = get_logger(__name__)


@dc.dataclass(frozen=True, slots=True)
class Accepted:
    """Every row was durably written."""

    row_count: int

    retryable: typ.ClassVar[bool] = False


@dc.dataclass(frozen=True, slots=True)
class PartialFailure:
    """The store rejected specific rows; the others were written.

    Acceptance is tracked per row, so callers can inspect any row's status
    independently of the rows around it.
    """

    row_count: int
    row_errors: tuple[RowRejection, ...]

    retryable: typ.ClassVar[bool] = False

    @property
    def rejected_indices(self) -> frozenset[int]:
        """Return the batch positions the store refused."""
        return frozenset(error.row_index for error in self.row_errors)

    @property
    def accepted_indices(self) -> tuple[int, ...]:
        """Return the batch positions that were written, in order."""
        rejected = self.rejected_indices
        return tuple(i for i in range(self.row_count) if i not in rejected)

    @property
    def accepted_count(self) -> int:
        """Return how many rows were written."""
        return self.row_count - len(self.rejected_indices)

    def is_accepted(self, row_index: int) -> bool:
        """Return True when the row at ``row_index`` was written."""
        return 0 <= row_index < self.row_count and (
            row_index not in self.rejected_indices
        )


@dc.dataclass(frozen=True, slots=True)
class TransportFailure:
    """The store was unreachable; the whole message should be redelivered."""

    reason: str

    retryable: typ.ClassVar[bool] = True


WriteOutcome: typ.TypeAlias = Accepted | PartialFailure | TransportFailure


class SinkWriter:
    """Write Events through an injected :class:`EventSink`.

    Parameters
    ----------
    sink
        A ready-to-use sink constructed once at process start.

    """

    def __init__(self, sink: EventSink) -> None:
        """Store the sink used for every write."""
        self._sink = sink

    async def write(self, events: cabc.Sequence[Event]) -> WriteOutcome:
        """Submit ``events`` as one batch and classify the result.

        Writes are not transactional across events: after a
        :class:`PartialFailure` or even a :class:`TransportFailure` some rows
        may already be stored. Redelivery is safe because the store is keyed
        by ``event_id``.

        Raises
        ------
        SinkContractError
            If the sink reports a rejection for a row it was never given.

        """
        if not events:
            return Accepted(row_count=0)

        rows = [event.to_row() for event in events]
        try:
            result = await self._sink.insert_rows(rows)
        except SinkTransportError as exc:
            log_warning(
                logger,
                "Sink transport failure for %d row(s): %s",
                len(rows),
                exc,
                exc_info=exc,
            )
            return TransportFailure(reason=str(exc))

        if not result.rejected:
            return Accepted(row_count=len(rows))

        for rejection in result.rejected:
            if not 0 <= rejection.row_index < len(rows):
                raise SinkContractError.row_index_out_of_range(
                    rejection.row_index, len(rows)
                )
        return PartialFailure(
            row_count=len(rows),
            row_errors=tuple(sorted(result.rejected, key=lambda r: r.row_index)),
        )
