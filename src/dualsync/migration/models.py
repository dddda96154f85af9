"""
Data models for migration runs.

Models in this module:

Enums:
    - MigrationStatus: Run lifecycle states

Core Models:
    - MigrationRun: One batch migration of a domain, persisted in
      the migration_history table

Helpers:
    - generate_run_id: Time-derived, sortable run identifier
    - run_duration_minutes: Elapsed minutes derived from a run id
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class MigrationStatus(Enum):
    """
    Migration run lifecycle states.

    State machine transitions:
        STARTED -> COMPLETED
        STARTED -> CANCELLED_REQUESTED -> CANCELLED

    Attributes:
        STARTED: Run is enumerating and migrating records.
        COMPLETED: Completion detected (or forced by an operator).
        CANCELLED_REQUESTED: Operator asked to stop; queues are draining.
        CANCELLED: Queues drained after a cancel request.
    """

    STARTED = "STARTED"
    """Run is enumerating and migrating records."""

    COMPLETED = "COMPLETED"
    """Completion detected (or forced by an operator)."""

    CANCELLED_REQUESTED = "CANCELLED_REQUESTED"
    """Operator asked to stop; queues are draining."""

    CANCELLED = "CANCELLED"
    """Queues drained after a cancel request."""

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal status.

        Returns:
            True for COMPLETED and CANCELLED.
        """
        return self in (MigrationStatus.COMPLETED, MigrationStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """
        Check if a run in this status blocks a new run of the same type.

        Returns:
            True for STARTED and CANCELLED_REQUESTED.
        """
        return not self.is_terminal

    @property
    def is_cancelling(self) -> bool:
        """True once cancellation has been requested."""
        return self in (MigrationStatus.CANCELLED_REQUESTED, MigrationStatus.CANCELLED)

    def can_transition_to(self, target: MigrationStatus) -> bool:
        """
        Check if transition to target status is valid.

        Args:
            target: The target status to transition to.

        Returns:
            True if the transition is valid.
        """
        return target in VALID_TRANSITIONS.get(self, ())


VALID_TRANSITIONS: dict[MigrationStatus, tuple[MigrationStatus, ...]] = {
    MigrationStatus.STARTED: (
        MigrationStatus.COMPLETED,
        MigrationStatus.CANCELLED_REQUESTED,
    ),
    MigrationStatus.CANCELLED_REQUESTED: (MigrationStatus.CANCELLED,),
    MigrationStatus.COMPLETED: (),
    MigrationStatus.CANCELLED: (),
}


def generate_run_id(now: datetime | None = None) -> str:
    """
    Generate a time-derived run id.

    The id is an ISO-8601 UTC timestamp with millisecond precision, so ids
    sort lexically in start order.

    Args:
        now: Override the current time (tests)

    Returns:
        Run id such as "2026-10-19T11:30:00.123"
    """
    moment = (now or datetime.now(UTC)).astimezone(UTC)
    return moment.replace(tzinfo=None).isoformat(timespec="milliseconds")


def run_started_at(run_id: str) -> datetime:
    """Parse the start time encoded in a run id (UTC)."""
    return datetime.fromisoformat(run_id).replace(tzinfo=UTC)


def run_duration_minutes(run_id: str, now: datetime | None = None) -> int:
    """
    Whole minutes elapsed since the run started.

    Args:
        run_id: A run id produced by generate_run_id
        now: Override the current time (tests)

    Returns:
        Elapsed minutes, never negative
    """
    elapsed = (now or datetime.now(UTC)) - run_started_at(run_id)
    return max(0, int(elapsed.total_seconds() // 60))


@dataclass
class MigrationRun:
    """
    One batch migration of a domain.

    Attributes:
        id: Time-derived run id (see generate_run_id)
        migration_type: Domain name being migrated
        filter: Opaque, JSON-serialisable selection criteria
        status: Current lifecycle status
        estimated_count: Legacy's estimate of records in scope
        migrated_count: Records with a mapping labelled with this run
        failed_count: Records that could not be migrated
        started_at: When the run was created
        ended_at: When the run reached COMPLETED or CANCELLED
    """

    id: str
    migration_type: str
    filter: dict[str, Any] = field(default_factory=dict)
    status: MigrationStatus = MigrationStatus.STARTED
    estimated_count: int = 0
    migrated_count: int = 0
    failed_count: int = 0
    started_at: datetime | None = None
    ended_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the run can no longer change status."""
        return self.status.is_terminal

    @property
    def is_cancelling(self) -> bool:
        """Check if cancellation has been requested."""
        return self.status.is_cancelling

    @property
    def progress_percent(self) -> float:
        """Progress as a percentage of the estimate (0-100)."""
        if self.estimated_count == 0:
            return 0.0
        return min(100.0, (self.migrated_count / self.estimated_count) * 100)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary for operator views."""
        data = asdict(self)
        data["status"] = self.status.value
        data["started_at"] = self.started_at.isoformat() if self.started_at else None
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        return data


__all__ = [
    "MigrationStatus",
    "VALID_TRANSITIONS",
    "MigrationRun",
    "generate_run_id",
    "run_started_at",
    "run_duration_minutes",
]
