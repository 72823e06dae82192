"""Dialect-aware INSERT construction for upserts"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.dialects import postgresql, sqlite


def insert_for(session: AsyncSession, table):
    """
    Return the dialect-specific insert() for the session's bind, so callers can
    use on_conflict_do_update / on_conflict_do_nothing on Postgres and SQLite.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")
