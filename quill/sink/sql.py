"""SQLAlchemy adapter for the EventSink protocol.

Rows are checked against the table's column constraints before insertion
and each accepted row is written inside its own savepoint, so one bad row
never takes its neighbours down with it. Rows whose ``event_id`` is already
stored are counted as accepted: redelivered messages are idempotent at the
store.
"""

from __future__ import annotations

import math
import typing as typ

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)

from quill.common.time import parse_instant
from quill.ingest.models import VALUE_FIELDS
from quill.sink.errors import SinkTransportError
from quill.sink.protocol import InsertResult, RowRejection
from quill.sink.storage import (
    EVENT_ID_MAX_LENGTH,
    EVENT_NAME_MAX_LENGTH,
    PARAM_KEY_MAX_LENGTH,
    SUBJECT_ID_MAX_LENGTH,
    AnalyticsEvent,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from quill.ingest.models import EventRow

# Failures that mean the store could not be reached, as opposed to a bad row.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    TimeoutError,
    OSError,
)


def _text_violation(row: EventRow, field: str, limit: int) -> str | None:
    value = row.get(field)
    if value is None or not isinstance(value, str):
        return None
    if len(value) > limit:
        return f"{field} exceeds {limit} characters"
    return None


def _param_violation(index: int, param: object) -> str | None:
    if not isinstance(param, dict):
        return f"params[{index}] is not an object"
    key = param.get("key")
    if not isinstance(key, str) or not key:
        return f"params[{index}] has no key"
    if len(key) > PARAM_KEY_MAX_LENGTH:
        return f"params[{index}].key exceeds {PARAM_KEY_MAX_LENGTH} characters"
    populated = [name for name in VALUE_FIELDS if param.get(name) is not None]
    if len(populated) != 1:
        return f"params[{index}] must set exactly one value field"
    float_value = param.get("float_value")
    if isinstance(float_value, float) and not math.isfinite(float_value):
        return f"params[{index}].float_value is not a finite number"
    return None


def schema_violation(row: EventRow) -> str | None:
    """Return why ``row`` does not fit the events table, or None if it does."""
    for field in ("event_id", "event_name"):
        value = row.get(field)
        if not isinstance(value, str) or not value:
            return f"{field} is required"
    if parse_instant(row.get("timestamp")) is None:
        return "timestamp is not a valid ISO-8601 instant"
    for field, limit in (
        ("event_id", EVENT_ID_MAX_LENGTH),
        ("event_name", EVENT_NAME_MAX_LENGTH),
        ("subject_id", SUBJECT_ID_MAX_LENGTH),
    ):
        problem = _text_violation(row, field, limit)
        if problem is not None:
            return problem
    for index, param in enumerate(row.get("params") or ()):
        problem = _param_violation(index, param)
        if problem is not None:
            return problem
    return None


def _to_record(row: EventRow) -> AnalyticsEvent:
    return AnalyticsEvent(
        event_id=row["event_id"],
        event_name=row["event_name"],
        timestamp=parse_instant(row["timestamp"]),
        subject_id=row.get("subject_id"),
        params=list(row.get("params") or ()),
        user_context=row.get("user_context"),
    )


class SqlEventSink:
    """Insert event rows through an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Store the session factory used for inserts."""
        self._session_factory = session_factory

    async def insert_rows(self, rows: cabc.Sequence[EventRow]) -> InsertResult:
        """Insert rows, reporting schema and integrity rejections per row.

        Raises
        ------
        SinkTransportError
            If the database is unreachable or the commit fails operationally.

        """
        accepted = 0
        rejected: list[RowRejection] = []
        try:
            async with self._session_factory() as session:
                for index, row in enumerate(rows):
                    problem = schema_violation(row) or await self._insert_row(
                        session, row
                    )
                    if problem is None:
                        accepted += 1
                    else:
                        rejected.append(RowRejection(row_index=index, reason=problem))
                await session.commit()
        except TRANSPORT_ERRORS as exc:
            raise SinkTransportError.unavailable(str(exc)) from exc
        return InsertResult(accepted_count=accepted, rejected=tuple(rejected))

    @staticmethod
    async def _insert_row(session: AsyncSession, row: EventRow) -> str | None:
        """Insert one row in a savepoint; return a rejection reason on failure."""
        event_id = row["event_id"]
        if await session.get(AnalyticsEvent, event_id) is not None:
            return None

        try:
            async with session.begin_nested():
                session.add(_to_record(row))
        except IntegrityError as exc:
            if await session.get(AnalyticsEvent, event_id) is not None:
                return None
            return f"integrity error: {exc.orig}"
        except TRANSPORT_ERRORS:
            raise
        except DBAPIError as exc:
            return f"database rejected row: {exc.orig}"
        return None
