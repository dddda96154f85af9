"""
MigrationRunRepository - Data access for migration run history.

Runs are persisted independently of the broker so operators can query
progress and history after workers detach.

Responsibilities:
    - Create runs, enforcing one STARTED run per migration type
    - Validate status transitions against the run state machine
    - Track in-flight progress counters
    - Query history by type, status and start time

Implementations:
    - InMemoryMigrationRunRepository: For testing and single-process runs
    - PostgreSQLMigrationRunRepository: SQLAlchemy async with text() SQL
    - SQLiteMigrationRunRepository: aiosqlite

Usage:
    >>> repo = PostgreSQLMigrationRunRepository(engine)
    >>> await repo.create(run)
    >>> await repo.update_status(run.id, MigrationStatus.COMPLETED)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import aiosqlite
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from dualsync.exceptions import (
    InvalidStatusTransitionError,
    MigrationAlreadyInProgressError,
    MigrationRunNotFoundError,
)
from dualsync.migration.models import MigrationRun, MigrationStatus
from dualsync.observability import Tracer, create_tracer
from dualsync.observability.attributes import ATTR_MIGRATION_TYPE, ATTR_RUN_ID, ATTR_RUN_STATUS
from dualsync.repositories._connection import execute_with_connection

ATTR_DB_SYSTEM = "db.system"

_ACTIVE_STATUSES = (MigrationStatus.STARTED, MigrationStatus.CANCELLED_REQUESTED)

_COLUMNS = (
    "id, migration_type, filter, status, estimated_count, "
    "migrated_count, failed_count, started_at, ended_at"
)


@runtime_checkable
class MigrationRunRepository(Protocol):
    """
    Protocol for migration run persistence.

    Implementations must reject a second STARTED run of the same migration
    type and validate status transitions.
    """

    async def create(self, run: MigrationRun) -> str:
        """
        Persist a new run.

        Args:
            run: Run in STARTED status

        Returns:
            The run id

        Raises:
            MigrationAlreadyInProgressError: If an active run of the same type exists
        """
        ...

    async def get(self, run_id: str) -> MigrationRun | None:
        """Get a run by id, or None if unknown."""
        ...

    async def get_active(self, migration_type: str) -> MigrationRun | None:
        """Get the STARTED or CANCELLED_REQUESTED run of a type, if any."""
        ...

    async def list_runs(
        self,
        migration_type: str | None = None,
        statuses: Sequence[MigrationStatus] | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[MigrationRun]:
        """
        List runs, newest first.

        Args:
            migration_type: Restrict to one domain
            statuses: Restrict to these statuses
            started_after: Only runs started at or after this time
            started_before: Only runs started at or before this time
            limit: Maximum number of runs returned
        """
        ...

    async def update_status(
        self,
        run_id: str,
        status: MigrationStatus,
        migrated_count: int | None = None,
        failed_count: int | None = None,
    ) -> MigrationRun:
        """
        Transition a run to a new status, optionally setting final counts.

        ``ended_at`` is set when the new status is terminal.

        Returns:
            The updated run

        Raises:
            MigrationRunNotFoundError: If the run does not exist
            InvalidStatusTransitionError: If the transition is not allowed
        """
        ...

    async def increment_migrated(self, run_id: str, amount: int = 1) -> None:
        """
        Add to the in-flight migrated counter.

        Counters of a COMPLETED or CANCELLED run are frozen; incrementing
        one is a no-op.

        Raises:
            MigrationRunNotFoundError: If the run does not exist
        """
        ...

    async def increment_failed(self, run_id: str, amount: int = 1) -> None:
        """Add to the in-flight failed counter. No-op once the run is terminal."""
        ...

    async def update_counts(self, run_id: str, migrated_count: int, failed_count: int) -> None:
        """Overwrite both counters with authoritative values."""
        ...


def _check_transition(run: MigrationRun, status: MigrationStatus) -> None:
    if not run.status.can_transition_to(status):
        raise InvalidStatusTransitionError(run.id, run.status, status)


class InMemoryMigrationRunRepository:
    """
    In-memory implementation of MigrationRunRepository.

    All data is lost when the process terminates.

    Example:
        >>> repo = InMemoryMigrationRunRepository()
        >>> await repo.create(MigrationRun(id=generate_run_id(), migration_type="alerts"))
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._runs: dict[str, MigrationRun] = {}
        self._lock = asyncio.Lock()

    async def create(self, run: MigrationRun) -> str:
        with self._tracer.span(
            "dualsync.run_repo.create",
            {ATTR_RUN_ID: run.id, ATTR_MIGRATION_TYPE: run.migration_type, ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                for existing in self._runs.values():
                    if existing.migration_type == run.migration_type and existing.status.is_active:
                        raise MigrationAlreadyInProgressError(run.migration_type, existing.id)
                self._runs[run.id] = replace(
                    run,
                    started_at=run.started_at or datetime.now(UTC),
                    filter=dict(run.filter),
                )
            return run.id

    async def get(self, run_id: str) -> MigrationRun | None:
        async with self._lock:
            run = self._runs.get(run_id)
            return replace(run) if run else None

    async def get_active(self, migration_type: str) -> MigrationRun | None:
        async with self._lock:
            for run in self._runs.values():
                if run.migration_type == migration_type and run.status.is_active:
                    return replace(run)
            return None

    async def list_runs(
        self,
        migration_type: str | None = None,
        statuses: Sequence[MigrationStatus] | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[MigrationRun]:
        async with self._lock:
            runs = [
                replace(run)
                for run in self._runs.values()
                if (migration_type is None or run.migration_type == migration_type)
                and (statuses is None or run.status in statuses)
                and (started_after is None or (run.started_at and run.started_at >= started_after))
                and (
                    started_before is None or (run.started_at and run.started_at <= started_before)
                )
            ]
        runs.sort(key=lambda r: r.id, reverse=True)
        return runs[:limit]

    async def update_status(
        self,
        run_id: str,
        status: MigrationStatus,
        migrated_count: int | None = None,
        failed_count: int | None = None,
    ) -> MigrationRun:
        with self._tracer.span(
            "dualsync.run_repo.update_status",
            {ATTR_RUN_ID: run_id, ATTR_RUN_STATUS: status.value, ATTR_DB_SYSTEM: "memory"},
        ):
            async with self._lock:
                run = self._require(run_id)
                _check_transition(run, status)
                run.status = status
                if status.is_terminal:
                    run.ended_at = datetime.now(UTC)
                if migrated_count is not None:
                    run.migrated_count = migrated_count
                if failed_count is not None:
                    run.failed_count = failed_count
                return replace(run)

    async def increment_migrated(self, run_id: str, amount: int = 1) -> None:
        async with self._lock:
            run = self._require(run_id)
            if run.status.is_active:
                run.migrated_count += amount

    async def increment_failed(self, run_id: str, amount: int = 1) -> None:
        async with self._lock:
            run = self._require(run_id)
            if run.status.is_active:
                run.failed_count += amount

    async def update_counts(self, run_id: str, migrated_count: int, failed_count: int) -> None:
        async with self._lock:
            run = self._require(run_id)
            run.migrated_count = migrated_count
            run.failed_count = failed_count

    def _require(self, run_id: str) -> MigrationRun:
        run = self._runs.get(run_id)
        if run is None:
            raise MigrationRunNotFoundError(run_id)
        return run

    def clear(self) -> None:
        """Remove all runs."""
        self._runs.clear()


class PostgreSQLMigrationRunRepository:
    """
    PostgreSQL implementation of MigrationRunRepository.

    Persists runs to the ``migration_history`` table (see
    dualsync.repositories.schema). The partial unique index on STARTED rows
    turns a concurrent second start into MigrationAlreadyInProgressError.

    Example:
        >>> async with engine.begin() as conn:
        ...     repo = PostgreSQLMigrationRunRepository(conn)
        ...     await repo.create(run)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn

    async def create(self, run: MigrationRun) -> str:
        with self._tracer.span(
            "dualsync.run_repo.create",
            {
                ATTR_RUN_ID: run.id,
                ATTR_MIGRATION_TYPE: run.migration_type,
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            existing = await self.get_active(run.migration_type)
            if existing is not None:
                raise MigrationAlreadyInProgressError(run.migration_type, existing.id)

            query = text(f"""
                INSERT INTO migration_history ({_COLUMNS})
                VALUES (
                    :id, :migration_type, CAST(:filter AS JSONB), :status, :estimated_count,
                    :migrated_count, :failed_count, :started_at, :ended_at
                )
            """)
            params = {
                "id": run.id,
                "migration_type": run.migration_type,
                "filter": json.dumps(run.filter, default=str),
                "status": run.status.value,
                "estimated_count": run.estimated_count,
                "migrated_count": run.migrated_count,
                "failed_count": run.failed_count,
                "started_at": run.started_at or datetime.now(UTC),
                "ended_at": run.ended_at,
            }
            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(query, params)
            except IntegrityError as e:
                raise MigrationAlreadyInProgressError(run.migration_type) from e
            return run.id

    async def get(self, run_id: str) -> MigrationRun | None:
        with self._tracer.span(
            "dualsync.run_repo.get",
            {ATTR_RUN_ID: run_id, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text(f"SELECT {_COLUMNS} FROM migration_history WHERE id = :id")
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"id": run_id})
                row = result.fetchone()
            return _row_to_run(row) if row else None

    async def get_active(self, migration_type: str) -> MigrationRun | None:
        query = text(f"""
            SELECT {_COLUMNS} FROM migration_history
            WHERE migration_type = :migration_type
              AND status IN ('STARTED', 'CANCELLED_REQUESTED')
            ORDER BY id DESC
            LIMIT 1
        """)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"migration_type": migration_type})
            row = result.fetchone()
        return _row_to_run(row) if row else None

    async def list_runs(
        self,
        migration_type: str | None = None,
        statuses: Sequence[MigrationStatus] | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[MigrationRun]:
        with self._tracer.span(
            "dualsync.run_repo.list_runs",
            {ATTR_MIGRATION_TYPE: migration_type or "", ATTR_DB_SYSTEM: "postgresql"},
        ):
            conditions: list[str] = []
            params: dict[str, Any] = {"limit": limit}
            if migration_type is not None:
                conditions.append("migration_type = :migration_type")
                params["migration_type"] = migration_type
            if statuses:
                names = []
                for i, status in enumerate(statuses):
                    params[f"status_{i}"] = status.value
                    names.append(f":status_{i}")
                conditions.append(f"status IN ({', '.join(names)})")
            if started_after is not None:
                conditions.append("started_at >= :started_after")
                params["started_after"] = started_after
            if started_before is not None:
                conditions.append("started_at <= :started_before")
                params["started_before"] = started_before

            where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            query = text(f"""
                SELECT {_COLUMNS} FROM migration_history
                {where}
                ORDER BY id DESC
                LIMIT :limit
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, params)
                rows = result.fetchall()
            return [_row_to_run(row) for row in rows]

    async def update_status(
        self,
        run_id: str,
        status: MigrationStatus,
        migrated_count: int | None = None,
        failed_count: int | None = None,
    ) -> MigrationRun:
        with self._tracer.span(
            "dualsync.run_repo.update_status",
            {ATTR_RUN_ID: run_id, ATTR_RUN_STATUS: status.value, ATTR_DB_SYSTEM: "postgresql"},
        ):
            run = await self.get(run_id)
            if run is None:
                raise MigrationRunNotFoundError(run_id)
            _check_transition(run, status)

            ended_at = datetime.now(UTC) if status.is_terminal else None
            query = text("""
                UPDATE migration_history
                SET status = :status,
                    ended_at = COALESCE(:ended_at, ended_at),
                    migrated_count = COALESCE(:migrated_count, migrated_count),
                    failed_count = COALESCE(:failed_count, failed_count)
                WHERE id = :id AND status = :current_status
            """)
            params = {
                "id": run_id,
                "status": status.value,
                "current_status": run.status.value,
                "ended_at": ended_at,
                "migrated_count": migrated_count,
                "failed_count": failed_count,
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                result = await conn.execute(query, params)
            if result.rowcount == 0:
                # Status changed between the read and the update
                current = await self.get(run_id)
                raise InvalidStatusTransitionError(
                    run_id, current.status if current else run.status, status
                )

            updated = await self.get(run_id)
            assert updated is not None
            return updated

    async def increment_migrated(self, run_id: str, amount: int = 1) -> None:
        await self._increment(run_id, "migrated_count", amount)

    async def increment_failed(self, run_id: str, amount: int = 1) -> None:
        await self._increment(run_id, "failed_count", amount)

    async def update_counts(self, run_id: str, migrated_count: int, failed_count: int) -> None:
        query = text("""
            UPDATE migration_history
            SET migrated_count = :migrated_count, failed_count = :failed_count
            WHERE id = :id
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            result = await conn.execute(
                query,
                {"id": run_id, "migrated_count": migrated_count, "failed_count": failed_count},
            )
        if result.rowcount == 0:
            raise MigrationRunNotFoundError(run_id)

    async def _increment(self, run_id: str, column: str, amount: int) -> None:
        query = text(f"""
            UPDATE migration_history SET {column} = {column} + :amount
            WHERE id = :id AND status IN ('STARTED', 'CANCELLED_REQUESTED')
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            result = await conn.execute(query, {"id": run_id, "amount": amount})
        # No row updated: either unknown, or terminal with frozen counters
        if result.rowcount == 0 and await self.get(run_id) is None:
            raise MigrationRunNotFoundError(run_id)


class SQLiteMigrationRunRepository:
    """
    SQLite implementation of MigrationRunRepository.

    SQLite-specific notes:
    - Timestamps stored as TEXT in ISO 8601 format
    - Filter stored as JSON TEXT
    - Uses ? positional parameters

    Example:
        >>> import aiosqlite
        >>> async with aiosqlite.connect("runs.db") as db:
        ...     await create_sqlite_schema(db)
        ...     repo = SQLiteMigrationRunRepository(db)
        ...     await repo.create(run)
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the repository.

        Args:
            connection: aiosqlite database connection
            tracer: Optional tracer (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection

    async def create(self, run: MigrationRun) -> str:
        with self._tracer.span(
            "dualsync.run_repo.create",
            {ATTR_RUN_ID: run.id, ATTR_MIGRATION_TYPE: run.migration_type, ATTR_DB_SYSTEM: "sqlite"},
        ):
            existing = await self.get_active(run.migration_type)
            if existing is not None:
                raise MigrationAlreadyInProgressError(run.migration_type, existing.id)

            started_at = run.started_at or datetime.now(UTC)
            try:
                await self._connection.execute(
                    f"INSERT INTO migration_history ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        run.id,
                        run.migration_type,
                        json.dumps(run.filter, default=str),
                        run.status.value,
                        run.estimated_count,
                        run.migrated_count,
                        run.failed_count,
                        started_at.isoformat(),
                        run.ended_at.isoformat() if run.ended_at else None,
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                await self._connection.rollback()
                raise MigrationAlreadyInProgressError(run.migration_type) from e
            return run.id

    async def get(self, run_id: str) -> MigrationRun | None:
        cursor = await self._connection.execute(
            f"SELECT {_COLUMNS} FROM migration_history WHERE id = ?",
            (run_id,),
        )
        row = await cursor.fetchone()
        return _row_to_run(row) if row else None

    async def get_active(self, migration_type: str) -> MigrationRun | None:
        cursor = await self._connection.execute(
            f"""
            SELECT {_COLUMNS} FROM migration_history
            WHERE migration_type = ? AND status IN ('STARTED', 'CANCELLED_REQUESTED')
            ORDER BY id DESC
            LIMIT 1
            """,
            (migration_type,),
        )
        row = await cursor.fetchone()
        return _row_to_run(row) if row else None

    async def list_runs(
        self,
        migration_type: str | None = None,
        statuses: Sequence[MigrationStatus] | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[MigrationRun]:
        conditions: list[str] = []
        params: list[Any] = []
        if migration_type is not None:
            conditions.append("migration_type = ?")
            params.append(migration_type)
        if statuses:
            conditions.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(status.value for status in statuses)
        if started_after is not None:
            conditions.append("started_at >= ?")
            params.append(started_after.isoformat())
        if started_before is not None:
            conditions.append("started_at <= ?")
            params.append(started_before.isoformat())
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(limit)

        cursor = await self._connection.execute(
            f"SELECT {_COLUMNS} FROM migration_history {where} ORDER BY id DESC LIMIT ?",
            tuple(params),
        )
        rows = await cursor.fetchall()
        return [_row_to_run(row) for row in rows]

    async def update_status(
        self,
        run_id: str,
        status: MigrationStatus,
        migrated_count: int | None = None,
        failed_count: int | None = None,
    ) -> MigrationRun:
        with self._tracer.span(
            "dualsync.run_repo.update_status",
            {ATTR_RUN_ID: run_id, ATTR_RUN_STATUS: status.value, ATTR_DB_SYSTEM: "sqlite"},
        ):
            run = await self.get(run_id)
            if run is None:
                raise MigrationRunNotFoundError(run_id)
            _check_transition(run, status)

            ended_at = datetime.now(UTC).isoformat() if status.is_terminal else None
            cursor = await self._connection.execute(
                """
                UPDATE migration_history
                SET status = ?,
                    ended_at = COALESCE(?, ended_at),
                    migrated_count = COALESCE(?, migrated_count),
                    failed_count = COALESCE(?, failed_count)
                WHERE id = ? AND status = ?
                """,
                (status.value, ended_at, migrated_count, failed_count, run_id, run.status.value),
            )
            await self._connection.commit()
            if cursor.rowcount == 0:
                current = await self.get(run_id)
                raise InvalidStatusTransitionError(
                    run_id, current.status if current else run.status, status
                )

            updated = await self.get(run_id)
            assert updated is not None
            return updated

    async def increment_migrated(self, run_id: str, amount: int = 1) -> None:
        await self._increment(run_id, "migrated_count", amount)

    async def increment_failed(self, run_id: str, amount: int = 1) -> None:
        await self._increment(run_id, "failed_count", amount)

    async def update_counts(self, run_id: str, migrated_count: int, failed_count: int) -> None:
        cursor = await self._connection.execute(
            "UPDATE migration_history SET migrated_count = ?, failed_count = ? WHERE id = ?",
            (migrated_count, failed_count, run_id),
        )
        await self._connection.commit()
        if cursor.rowcount == 0:
            raise MigrationRunNotFoundError(run_id)

    async def _increment(self, run_id: str, column: str, amount: int) -> None:
        cursor = await self._connection.execute(
            f"UPDATE migration_history SET {column} = {column} + ? "
            "WHERE id = ? AND status IN ('STARTED', 'CANCELLED_REQUESTED')",
            (amount, run_id),
        )
        await self._connection.commit()
        if cursor.rowcount == 0 and await self.get(run_id) is None:
            raise MigrationRunNotFoundError(run_id)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _row_to_run(row: Sequence[Any]) -> MigrationRun:
    """Convert a migration_history row (in _COLUMNS order) to a MigrationRun."""
    filter_data = row[2] if isinstance(row[2], dict) else json.loads(row[2] or "{}")
    return MigrationRun(
        id=row[0],
        migration_type=row[1],
        filter=filter_data,
        status=MigrationStatus(row[3]),
        estimated_count=row[4] or 0,
        migrated_count=row[5] or 0,
        failed_count=row[6] or 0,
        started_at=_parse_datetime(row[7]),
        ended_at=_parse_datetime(row[8]),
    )


__all__ = [
    "MigrationRunRepository",
    "InMemoryMigrationRunRepository",
    "PostgreSQLMigrationRunRepository",
    "SQLiteMigrationRunRepository",
]
