"""Persistence model for the SQL analytical event store."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from quill.common.time import utcnow

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine

EVENT_ID_MAX_LENGTH = 128
EVENT_NAME_MAX_LENGTH = 128
SUBJECT_ID_MAX_LENGTH = 255
PARAM_KEY_MAX_LENGTH = 255


class Base(DeclarativeBase):
    """Base declarative class for analytical store models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class AnalyticsEvent(Base):
    """Append-only row holding one normalized event, keyed by event id."""

    __tablename__ = "analytics_events"
    __table_args__ = (
        Index("ix_analytics_events_name_time", "event_name", "timestamp"),
        Index("ix_analytics_events_subject", "subject_id"),
    )

    event_id: Mapped[str] = mapped_column(
        String(EVENT_ID_MAX_LENGTH), primary_key=True
    )
    event_name: Mapped[str] = mapped_column(String(EVENT_NAME_MAX_LENGTH))
    timestamp: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    subject_id: Mapped[str | None] = mapped_column(
        String(SUBJECT_ID_MAX_LENGTH), default=None
    )
    params: Mapped[list[dict[str, typ.Any]]] = mapped_column(JSON, default=list)
    user_context: Mapped[dict[str, str | None] | None] = mapped_column(
        JSON(none_as_null=True), default=None
    )
    ingested_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)


async def init_event_storage(engine: AsyncEngine) -> None:
    """Create the analytical tables if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
