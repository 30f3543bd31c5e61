"""
Idempotent insert at the storage boundary.

Lazy creation (ledger-for-today, missing catalog slots) must tolerate a concurrent
creator: the row is inserted with ON CONFLICT DO NOTHING on its unique key and the
caller re-fetches. PostgreSQL and SQLite both support the clause.
"""

from typing import Any, Dict, List, Sequence

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def _dialect_insert(db: AsyncSession, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Idempotent insert not supported for dialect {dialect}")


async def insert_ignore(
    db: AsyncSession,
    model,
    rows: List[Dict[str, Any]],
    conflict_columns: Sequence[str],
) -> None:
    """Insert rows, silently skipping those whose unique key already exists. Caller must commit."""
    if not rows:
        return
    stmt = _dialect_insert(db, model).values(rows).on_conflict_do_nothing(index_elements=list(conflict_columns))
    await db.execute(stmt)
