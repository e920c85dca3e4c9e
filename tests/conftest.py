"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from quill.sink import init_event_storage
from tests.helpers.database import sqlite_url

if typ.TYPE_CHECKING:
    from pathlib import Path


async def _setup_sqlite(tmp_path: Path) -> AsyncEngine:
    """Create a SQLite engine and initialise the events table."""
    # NullPool keeps connections out of the pool so sync tests that drive
    # the engine with asyncio.run never reuse a connection across loops.
    engine = create_async_engine(sqlite_url(tmp_path), poolclass=NullPool)
    try:
        await init_event_storage(engine)
    except Exception:
        await engine.dispose()
        raise
    return engine


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
) -> typ.AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Yield a fresh async session factory backed by sqlite."""
    engine = await _setup_sqlite(tmp_path)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def clean_quill_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove QUILL_* variables so configuration tests start from defaults."""
    for name in (
        "QUILL_DATABASE_URL",
        "QUILL_DEFAULT_EVENT_NAME",
        "QUILL_MAX_RETRIES",
        "QUILL_LOG_LEVEL",
        "QUILL_ALLOW_STUB_BROKER",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
