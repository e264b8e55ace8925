"""
Conflict-tolerant inserts.

The attendee set, the ledger audit trail and settlement records are all
written from two independent paths (client success and webhook). Each of
them relies on a unique constraint plus ON CONFLICT DO NOTHING so that the
second writer becomes a no-op instead of an error.
"""

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


async def insert_ignore(db: AsyncSession, table: Table, values: dict, conflict_columns: list[str]) -> bool:
    """Insert a row unless it collides on conflict_columns. Returns True if inserted."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise NotImplementedError(f"insert_ignore is not supported on {dialect}")

    stmt = stmt.on_conflict_do_nothing(index_elements=conflict_columns)
    result = await db.execute(stmt)
    return result.rowcount == 1
