# tests/test_db_session.py
from __future__ import annotations

import pytest

from asyncstand.core.config import settings
from asyncstand.db import session as db_session


def test_sqlite_engine_keeps_default_pool():
    assert db_session.engine_options("sqlite+aiosqlite://") == {"echo": settings.DB_ECHO}


def test_server_engine_gets_pool_settings(monkeypatch):
    monkeypatch.setattr(settings, "DB_POOL_SIZE", 12)
    monkeypatch.setattr(settings, "DB_POOL_RECYCLE_SECONDS", 120)

    options = db_session.engine_options("postgresql+asyncpg://app:secret@db:5432/asyncstand")

    assert options["pool_pre_ping"] is True
    assert options["pool_size"] == 12
    assert options["pool_recycle"] == 120
    assert options["max_overflow"] == settings.DB_MAX_OVERFLOW


@pytest.mark.asyncio
async def test_get_db_rolls_back_on_error(monkeypatch):
    calls = []

    class RecordingSession:
        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            calls.append("closed")

        async def rollback(self):
            calls.append("rollback")

    monkeypatch.setattr(db_session, "AsyncSessionLocal", RecordingSession)

    gen = db_session.get_db()
    session = await gen.__anext__()
    assert isinstance(session, RecordingSession)
    with pytest.raises(RuntimeError):
        await gen.athrow(RuntimeError("request failed"))

    assert calls == ["rollback", "closed"]
