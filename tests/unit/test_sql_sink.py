"""Unit tests for the SQLAlchemy EventSink adapter.

Run with:
    pytest tests/unit/test_sql_sink.py
"""

from __future__ import annotations

import datetime as dt
import typing as typ

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import DataError, OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from quill.sink import (
    AnalyticsEvent,
    EventSink,
    SinkTransportError,
    SqlEventSink,
    sql,
)
from quill.sink.sql import schema_violation
from quill.sink.storage import EVENT_NAME_MAX_LENGTH

if typ.TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession

    from quill.ingest.models import EventRow


def _row(event_id: str, **overrides: object) -> EventRow:
    row: EventRow = {
        "event_id": event_id,
        "event_name": "note_created",
        "timestamp": "2024-01-01T12:00:00+00:00",
        "subject_id": "u1",
        "params": [{"key": "note_id", "string_value": "n1"}],
        "user_context": None,
    }
    row.update(overrides)
    return row


async def _count(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        total = await session.scalar(select(func.count()).select_from(AnalyticsEvent))
        return int(total or 0)


def test_sql_sink_satisfies_protocol(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """The adapter structurally implements EventSink."""
    assert isinstance(SqlEventSink(session_factory), EventSink)


@pytest.mark.asyncio
async def test_rows_are_stored_with_utc_timestamps(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Accepted rows persist with their params and aware timestamps."""
    sink = SqlEventSink(session_factory)
    context = {
        "device_category": "mobile",
        "operating_system": "Android",
        "browser": "Chrome",
        "country": None,
        "ip_address": None,
    }

    result = await sink.insert_rows([_row("evt_1", user_context=context)])

    assert result.accepted_count == 1
    assert result.rejected == ()
    async with session_factory() as session:
        stored = await session.get(AnalyticsEvent, "evt_1")
        assert stored is not None, "row should be persisted"
        assert stored.timestamp == dt.datetime(2024, 1, 1, 12, tzinfo=dt.UTC)
        assert stored.params == [{"key": "note_id", "string_value": "n1"}]
        assert stored.user_context == context
        assert stored.ingested_at.tzinfo is not None, "ingested_at must be aware"


@pytest.mark.asyncio
async def test_duplicate_event_ids_are_idempotent(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Re-inserting a stored event id is accepted without a second row."""
    sink = SqlEventSink(session_factory)

    first = await sink.insert_rows([_row("evt_1")])
    second = await sink.insert_rows([_row("evt_1"), _row("evt_1")])

    assert first.accepted_count == 1
    assert second.accepted_count == 2
    assert second.rejected == ()
    assert await _count(session_factory) == 1


@pytest.mark.asyncio
async def test_schema_violations_reject_only_the_offending_row(
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    """Invalid rows are rejected per row while valid rows commit."""
    sink = SqlEventSink(session_factory)
    rows = [
        _row("evt_1"),
        _row("evt_2", event_name="x" * (EVENT_NAME_MAX_LENGTH + 1)),
        _row("evt_3", timestamp="soon"),
        _row("evt_4"),
    ]

    result = await sink.insert_rows(rows)

    assert result.accepted_count == 2
    assert [rejection.row_index for rejection in result.rejected] == [1, 2]
    assert await _count(session_factory) == 2


@pytest.mark.parametrize(
    ("event_id", "overrides", "expected"),
    [
        ("", {}, "event_id is required"),
        ("evt_1", {"event_name": None}, "event_name is required"),
        ("evt_1", {"timestamp": None}, "timestamp is not a valid ISO-8601 instant"),
        ("evt_1", {"subject_id": "s" * 300}, "subject_id exceeds 255 characters"),
        (
            "evt_1",
            {"params": [{"key": "a"}]},
            "params[0] must set exactly one value field",
        ),
        ("evt_1", {"params": [{"string_value": "a"}]}, "params[0] has no key"),
        ("evt_1", {"params": ["a"]}, "params[0] is not an object"),
        (
            "evt_1",
            {"params": [{"key": "ratio", "float_value": float("inf")}]},
            "params[0].float_value is not a finite number",
        ),
        (
            "evt_1",
            {"params": [{"key": "ratio", "float_value": float("nan")}]},
            "params[0].float_value is not a finite number",
        ),
    ],
)
def test_schema_violation_reasons(
    event_id: str, overrides: dict[str, object], expected: str
) -> None:
    """Each column constraint has a readable rejection reason."""
    assert schema_violation(_row(event_id, **overrides)) == expected


def test_valid_row_has_no_violation() -> None:
    """A canonical row passes the pre-insert checks."""
    assert schema_violation(_row("evt_1")) is None


@pytest.mark.asyncio
async def test_unreachable_database_raises_transport_error(tmp_path: Path) -> None:
    """Connection failures surface as SinkTransportError."""
    missing = tmp_path / "absent" / "nested" / "events.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{missing}")
    sink = SqlEventSink(async_sessionmaker(engine, expire_on_commit=False))

    try:
        with pytest.raises(SinkTransportError):
            await sink.insert_rows([_row("evt_1")])
    finally:
        await engine.dispose()


def _raise_on_record(error: Exception) -> typ.Callable[[EventRow], AnalyticsEvent]:
    def _fail(row: EventRow) -> AnalyticsEvent:
        del row
        raise error

    return _fail


@pytest.mark.asyncio
async def test_database_data_errors_reject_the_row(
    session_factory: async_sessionmaker[AsyncSession],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Values the database refuses become row rejections, not crashes."""
    refused = DataError(
        "INSERT INTO analytics_events", {}, ValueError("invalid input for json")
    )
    monkeypatch.setattr(sql, "_to_record", _raise_on_record(refused))

    result = await SqlEventSink(session_factory).insert_rows([_row("evt_1")])

    assert result.accepted_count == 0
    assert len(result.rejected) == 1
    assert result.rejected[0].row_index == 0
    assert "invalid input for json" in result.rejected[0].reason


@pytest.mark.asyncio
async def test_operational_errors_inside_a_row_stay_transport_errors(
    session_factory: async_sessionmaker[AsyncSession],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Connectivity failures during a row insert still request redelivery."""
    lost = OperationalError(
        "INSERT INTO analytics_events", {}, ConnectionError("server closed")
    )
    monkeypatch.setattr(sql, "_to_record", _raise_on_record(lost))

    with pytest.raises(SinkTransportError):
        await SqlEventSink(session_factory).insert_rows([_row("evt_1")])
