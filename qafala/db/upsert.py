"""
Dialect-native INSERT ... ON CONFLICT for the upserts the services need.

PostgreSQL and SQLite share the on_conflict_do_update() API; pick the
construct matching the session's bind.
"""

from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession


def upsert_insert(session: AsyncSession, table: Any) -> Any:
    """Return an INSERT construct for table that supports on_conflict_*()."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(table)
    if dialect == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Upsert not supported for dialect: {dialect}")
