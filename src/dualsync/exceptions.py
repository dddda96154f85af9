"""
Library exceptions for the dualsync package.

Exception Hierarchy:
    DualSyncError (base)
    +-- OperatorError (carries an HTTP-style status_code)
    |   +-- MigrationRunNotFoundError (404)
    |   +-- MigrationAlreadyInProgressError (409)
    |   +-- InvalidRunStateError (400)
    +-- InvalidStatusTransitionError
    +-- LegacyEntityNotFoundError
    +-- MappingStoreError
    +-- BrokerError
    +-- UnknownMessageTypeError

A duplicate mapping is deliberately not an exception: the Mapping Store
client reports it through CreateMappingResult.is_duplicate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dualsync.migration.models import MigrationStatus


class DualSyncError(Exception):
    """Base exception for dualsync library."""

    pass


class OperatorError(DualSyncError):
    """
    Base for errors surfaced to an operator through a controller layer.

    Attributes:
        status_code: HTTP status a controller should answer with.
    """

    status_code: int = 400


class MigrationRunNotFoundError(OperatorError):
    """Raised when a migration run id does not exist."""

    status_code = 404

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Migration run not found: {run_id}")


class MigrationAlreadyInProgressError(OperatorError):
    """
    Raised when starting a migration while another run of the same type is active.

    Attributes:
        migration_type: The domain whose run is still active.
        existing_run_id: Id of the active run, when known.
    """

    status_code = 409

    def __init__(self, migration_type: str, existing_run_id: str | None = None) -> None:
        self.migration_type = migration_type
        self.existing_run_id = existing_run_id
        detail = f": {existing_run_id}" if existing_run_id else ""
        super().__init__(f"Migration already in progress for {migration_type}{detail}")


class InvalidRunStateError(OperatorError):
    """
    Raised when an operator action is not valid for the run's current status.

    Attributes:
        run_id: The run the action targeted.
        status: The run's current status.
        operation: The attempted action (e.g. "refresh", "cancel").
    """

    status_code = 400

    def __init__(self, run_id: str, status: MigrationStatus, operation: str) -> None:
        self.run_id = run_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} migration {run_id} with status {status.value}")


class InvalidStatusTransitionError(DualSyncError):
    """Raised when a run status change is not allowed by the state machine."""

    def __init__(
        self,
        run_id: str,
        current_status: MigrationStatus,
        target_status: MigrationStatus,
    ) -> None:
        self.run_id = run_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Invalid status transition for {run_id}: "
            f"{current_status.value} -> {target_status.value}"
        )


class LegacyEntityNotFoundError(DualSyncError):
    """
    Raised by a domain when Legacy no longer holds the requested record.

    This is a skip condition: the record disappeared between enumeration
    and fetch, so callers log it and move on.
    """

    def __init__(self, entity_id: Any, entity_type: str | None = None) -> None:
        self.entity_id = entity_id
        self.entity_type = entity_type
        type_info = f" {entity_type}" if entity_type else ""
        super().__init__(f"Legacy{type_info} not found: {entity_id}")


class MappingStoreError(DualSyncError):
    """
    Raised for any Mapping Store failure other than a logical duplicate.

    Attributes:
        status_code: HTTP status returned by the store, if any.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BrokerError(DualSyncError):
    """Raised when there's an error talking to the message broker."""

    pass


class UnknownMessageTypeError(DualSyncError):
    """Raised when a listener receives an envelope kind it has no handler for."""

    def __init__(self, kind: str, queue: str | None = None) -> None:
        self.kind = kind
        self.queue = queue
        where = f" on {queue}" if queue else ""
        super().__init__(f"Unknown message type{where}: {kind}")


__all__ = [
    "DualSyncError",
    "OperatorError",
    "MigrationRunNotFoundError",
    "MigrationAlreadyInProgressError",
    "InvalidRunStateError",
    "InvalidStatusTransitionError",
    "LegacyEntityNotFoundError",
    "MappingStoreError",
    "BrokerError",
    "UnknownMessageTypeError",
]
