"""
DDL for the migration_history table.

The partial unique index on ``migration_type`` for STARTED rows is the
authoritative guard for "at most one running migration per domain": two
concurrent starts race on the insert and the loser gets an integrity error.

Example:
    >>> import aiosqlite
    >>> async with aiosqlite.connect(":memory:") as db:
    ...     await create_sqlite_schema(db)
"""

from __future__ import annotations

from typing import Any, Literal

POSTGRESQL_SCHEMA = """
CREATE TABLE IF NOT EXISTS migration_history (
    id VARCHAR(64) PRIMARY KEY,
    migration_type VARCHAR(255) NOT NULL,
    filter JSONB NOT NULL DEFAULT '{}',
    status VARCHAR(32) NOT NULL,
    estimated_count INTEGER NOT NULL DEFAULT 0,
    migrated_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    started_at TIMESTAMP WITH TIME ZONE NOT NULL,
    ended_at TIMESTAMP WITH TIME ZONE
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_migration_history_started
    ON migration_history (migration_type)
    WHERE status = 'STARTED';

CREATE INDEX IF NOT EXISTS ix_migration_history_type_started_at
    ON migration_history (migration_type, started_at);
"""

SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS migration_history (
    id TEXT PRIMARY KEY,
    migration_type TEXT NOT NULL,
    filter TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL,
    estimated_count INTEGER NOT NULL DEFAULT 0,
    migrated_count INTEGER NOT NULL DEFAULT 0,
    failed_count INTEGER NOT NULL DEFAULT 0,
    started_at TEXT NOT NULL,
    ended_at TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_migration_history_started
    ON migration_history (migration_type)
    WHERE status = 'STARTED';

CREATE INDEX IF NOT EXISTS ix_migration_history_type_started_at
    ON migration_history (migration_type, started_at);
"""


def get_schema(dialect: Literal["postgresql", "sqlite"] = "postgresql") -> str:
    """
    Return the migration_history DDL for a dialect.

    Raises:
        ValueError: If the dialect is not supported
    """
    if dialect == "postgresql":
        return POSTGRESQL_SCHEMA
    if dialect == "sqlite":
        return SQLITE_SCHEMA
    raise ValueError(f"Unsupported dialect: {dialect}. Use 'postgresql' or 'sqlite'.")


async def create_sqlite_schema(connection: Any) -> None:
    """Create the migration_history table on an aiosqlite connection."""
    await connection.executescript(SQLITE_SCHEMA)
    await connection.commit()


__all__ = [
    "POSTGRESQL_SCHEMA",
    "SQLITE_SCHEMA",
    "get_schema",
    "create_sqlite_schema",
]
