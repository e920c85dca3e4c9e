"""EventSink protocol: the only interface the pipeline needs from the store.

Adapters accept a batch of outbound rows and report how many were accepted
and which were rejected by the store's own validation. Transport problems
are raised as :class:`~quill.sink.errors.SinkTransportError` rather than
reported per row, because they say nothing about the rows themselves.

Usage
-----
Type-check a concrete adapter:

>>> from quill.sink.protocol import EventSink
>>> from quill.sink.sql import SqlEventSink
>>> isinstance(SqlEventSink(session_factory), EventSink)
True

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from quill.ingest.models import EventRow


@dc.dataclass(frozen=True, slots=True)
class RowRejection:
    """One row the store refused.

    Attributes
    ----------
    row_index
        Position of the row in the submitted batch.
    reason
        Store-supplied explanation, for operational logs only.

    """

    row_index: int
    reason: str


@dc.dataclass(frozen=True, slots=True)
class InsertResult:
    """Outcome of one ``insert_rows`` call."""

    accepted_count: int
    rejected: tuple[RowRejection, ...] = ()


@typ.runtime_checkable
class EventSink(typ.Protocol):
    """Protocol for analytical stores that receive normalized event rows."""

    async def insert_rows(self, rows: cabc.Sequence[EventRow]) -> InsertResult:
        """Insert ``rows`` and report accepted and rejected rows.

        Raises
        ------
        SinkTransportError
            If the store cannot be reached or asks for a retry.

        """
        ...
