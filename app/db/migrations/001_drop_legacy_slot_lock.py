"""
Migration: drop the legacy `locked` flag from ledger_slots.

Older ledgers persisted a per-slot lock that nothing reads any more; a slot's state is
fully described by `checked` plus its approval history. Safe to run repeatedly.

Run once (or use schema_check which runs this logic automatically):
  python -m app.db.migrations.001_drop_legacy_slot_lock
"""
import asyncio

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

from app.db.session import engine


LEGACY_COLUMN = "locked"
TABLE = "ledger_slots"


def _has_legacy_column(sync_conn) -> bool:
    inspector = inspect(sync_conn)
    if not inspector.has_table(TABLE):
        return False
    return any(col["name"] == LEGACY_COLUMN for col in inspector.get_columns(TABLE))


async def run_migration(db_engine: AsyncEngine) -> bool:
    """Returns True when the column was dropped."""
    async with db_engine.begin() as conn:
        if not await conn.run_sync(_has_legacy_column):
            return False
        await conn.execute(text(f"ALTER TABLE {TABLE} DROP COLUMN {LEGACY_COLUMN}"))
    return True


async def main() -> None:
    dropped = await run_migration(engine)
    if dropped:
        print("Migration 001_drop_legacy_slot_lock done.")
    else:
        print("Migration 001_drop_legacy_slot_lock: nothing to do.")


if __name__ == "__main__":
    asyncio.run(main())
