import importlib
from typing import AsyncGenerator, List

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.schema_check import ensure_tables
from app.db.session import Base

drop_legacy_slot_lock = importlib.import_module("app.db.migrations.001_drop_legacy_slot_lock")


@pytest.fixture()
async def bare_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Empty database, no tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


async def _columns(engine: AsyncEngine, table: str) -> List[str]:
    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: [c["name"] for c in inspect(sync_conn).get_columns(table)])


@pytest.mark.asyncio
async def test_ensure_tables_creates_missing_then_is_idempotent(bare_engine: AsyncEngine, capsys) -> None:
    created = await ensure_tables(bare_engine)
    assert set(created) == set(Base.metadata.tables)
    assert "Created missing tables" in capsys.readouterr().out

    assert await ensure_tables(bare_engine) == []
    assert "already exist" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_ensure_tables_drops_legacy_slot_lock(bare_engine: AsyncEngine) -> None:
    async with bare_engine.begin() as conn:
        await conn.execute(text(
            "CREATE TABLE ledger_slots ("
            "id CHAR(32) PRIMARY KEY, ledger_id CHAR(32), slot_id VARCHAR(20), label VARCHAR(50), "
            "duration_minutes INTEGER, checked BOOLEAN, checked_at DATETIME, locked BOOLEAN)"
        ))

    created = await ensure_tables(bare_engine)

    assert "ledger_slots" not in created
    assert "locked" not in await _columns(bare_engine, "ledger_slots")


@pytest.mark.asyncio
async def test_migration_is_safe_to_rerun(bare_engine: AsyncEngine) -> None:
    # Nothing to do before the table exists
    assert await drop_legacy_slot_lock.run_migration(bare_engine) is False

    async with bare_engine.begin() as conn:
        await conn.execute(text("CREATE TABLE ledger_slots (id CHAR(32) PRIMARY KEY, locked BOOLEAN)"))

    assert await drop_legacy_slot_lock.run_migration(bare_engine) is True
    assert await drop_legacy_slot_lock.run_migration(bare_engine) is False
    assert await _columns(bare_engine, "ledger_slots") == ["id"]
