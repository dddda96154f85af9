"""Persistence for migration run history."""

from dualsync.repositories.runs import (
    InMemoryMigrationRunRepository,
    MigrationRunRepository,
    PostgreSQLMigrationRunRepository,
    SQLiteMigrationRunRepository,
)
from dualsync.repositories.schema import (
    POSTGRESQL_SCHEMA,
    SQLITE_SCHEMA,
    create_sqlite_schema,
    get_schema,
)

__all__ = [
    "MigrationRunRepository",
    "InMemoryMigrationRunRepository",
    "PostgreSQLMigrationRunRepository",
    "SQLiteMigrationRunRepository",
    "POSTGRESQL_SCHEMA",
    "SQLITE_SCHEMA",
    "create_sqlite_schema",
    "get_schema",
]
