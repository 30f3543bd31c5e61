import asyncio
import importlib
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

import app.core.models  # noqa: F401  registers every table on Base.metadata
from app.db.session import Base, engine

# Module name starts with a digit, so it cannot be imported with a plain import statement
drop_legacy_slot_lock = importlib.import_module("app.db.migrations.001_drop_legacy_slot_lock")


def _existing_tables(sync_conn) -> List[str]:
    return inspect(sync_conn).get_table_names()


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Ensure every table, constraint and index of the models exists, then run the
    one-shot migrations. Returns the tables that had to be created.
    """
    async with db_engine.begin() as conn:
        before = set(await conn.run_sync(_existing_tables))
        await conn.run_sync(Base.metadata.create_all)
    missing = [t.name for t in Base.metadata.sorted_tables if t.name not in before]

    await drop_legacy_slot_lock.run_migration(db_engine)

    if missing:
        print("Created missing tables: " + ", ".join(missing))
    else:
        print("All required tables already exist in the database.")
    return missing


async def main() -> None:
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
