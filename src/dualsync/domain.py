"""
Per-domain capability protocols.

The orchestration machinery is generic. Each migrated domain (alerts,
contacts, visits, ...) supplies a capability object implementing the
protocols below, and the orchestrator, synchroniser and reconciler are
parameterised by it instead of being subclassed.

Protocols:
    - MigrationDomain: Batch enumeration, fetch, transform and push
    - SyncDomain: Live-event handling for one domain
    - ReconciliationDomain: Person-level merge and booking-move handling
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from dualsync.mapping.models import LegacyKey
from dualsync.messages import ChangeEvent


@dataclass(frozen=True)
class Page:
    """
    One page of Legacy ids.

    Attributes:
        ids: Identifiers on this page
        page_number: Zero-based page index
        page_size: Requested page size
        last: True when no further pages exist
    """

    ids: list[Any]
    page_number: int
    page_size: int
    last: bool

    @classmethod
    def of(cls, ids: list[Any], page_number: int, page_size: int, total: int) -> Page:
        """Build a page, deriving ``last`` from the total number of ids."""
        return cls(
            ids=ids,
            page_number=page_number,
            page_size=page_size,
            last=(page_number + 1) * page_size >= total,
        )


class ChangeKind(Enum):
    """
    What a live event means for the synchroniser.

    Attributes:
        INSERT: A record was created in Legacy.
        UPDATE: A record was changed in Legacy.
        DELETE: A record was removed from Legacy.
        CHILD_CHANGED: A structural sub-record changed; resync the parent.
        MERGE: Two person identities were merged in Legacy.
        BOOKING_MOVED: A booking was moved between persons in Legacy.
    """

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    CHILD_CHANGED = "child_changed"
    MERGE = "merge"
    BOOKING_MOVED = "booking_moved"


@runtime_checkable
class MigrationDomain(Protocol):
    """
    Capabilities a domain supplies for batch migration.

    Example:
        >>> class AlertsMigration:
        ...     name = "alerts"
        ...     async def get_ids(self, filter, page_number, page_size): ...
        ...     async def get_estimated_count(self, filter): ...
        ...     async def fetch_entity(self, entity_id): ...
        ...     async def transform(self, entity): ...
        ...     async def push_to_target(self, entity_id, transformed): ...
        ...     def legacy_key(self, entity_id): ...
    """

    name: str

    async def get_ids(self, filter: dict[str, Any], page_number: int, page_size: int) -> Page:
        """Enumerate one page of Legacy ids matching the filter."""
        ...

    async def get_estimated_count(self, filter: dict[str, Any]) -> int:
        """Estimate how many records match the filter."""
        ...

    async def fetch_entity(self, entity_id: Any) -> Any:
        """
        Read one record from Legacy.

        Raises:
            LegacyEntityNotFoundError: The record no longer exists
        """
        ...

    async def transform(self, entity: Any) -> Any:
        """Convert a Legacy record into the Target representation."""
        ...

    async def push_to_target(self, entity_id: Any, transformed: Any) -> str:
        """Create the record in Target and return the Target-assigned id."""
        ...

    def legacy_key(self, entity_id: Any) -> LegacyKey:
        """Natural key fields identifying the record in the Mapping Store."""
        ...


@runtime_checkable
class SyncDomain(Protocol):
    """
    Capabilities a domain supplies for live synchronisation.

    ``event_kinds`` maps each live event type the domain listens to onto the
    action the synchroniser takes for it.
    """

    name: str
    event_kinds: dict[str, ChangeKind]

    def legacy_key_for(self, event: ChangeEvent) -> LegacyKey:
        """Natural key of the record the event refers to (the parent for child events)."""
        ...

    async def fetch_legacy(self, event: ChangeEvent) -> Any:
        """
        Read the current Legacy state of the record.

        Raises:
            LegacyEntityNotFoundError: The record was removed before the event was handled
        """
        ...

    async def create_on_target(self, event: ChangeEvent, legacy_entity: Any) -> str:
        """Create the record in Target and return the Target-assigned id."""
        ...

    async def update_on_target(self, target_key: str, legacy_entity: Any) -> None:
        """Overwrite the Target record with the Legacy state."""
        ...

    async def delete_on_target(self, target_key: str) -> None:
        """Remove the Target record."""
        ...


@dataclass(frozen=True)
class BookingView:
    """
    A person's latest booking, as needed to decide on booking-move resyncs.

    Attributes:
        booking_id: Legacy booking id
        start_datetime: When the booking started
    """

    booking_id: int
    start_datetime: datetime


@dataclass(frozen=True)
class PersonState:
    """
    Snapshot of person-level data as seen on one side.

    Attributes:
        person_id: Legacy person identifier
        latest_booking: Latest booking, None if the person has none
        last_modified: When the person-level data was last modified
        data: Domain-specific state
    """

    person_id: str
    latest_booking: BookingView | None = None
    last_modified: datetime | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def modified_since_booking_start(self) -> bool:
        """True if the data was modified strictly after the latest booking started."""
        if self.latest_booking is None or self.last_modified is None:
            return False
        return self.last_modified > self.latest_booking.start_datetime


@runtime_checkable
class ReconciliationDomain(Protocol):
    """Capabilities a domain supplies for merge and booking-move reconciliation."""

    name: str

    async def get_person_state(self, person_id: str) -> PersonState:
        """Read person-level state from Legacy."""
        ...

    async def push_person_state(self, state: PersonState) -> None:
        """Write person-level state to Target."""
        ...

    async def sync_back_to_legacy(self, person_id: str) -> None:
        """Push Target's view of the person back to Legacy."""
        ...

    async def merge_on_target(self, removed_person_id: str, retained_person_id: str) -> None:
        """Apply a Legacy identity merge in Target."""
        ...


__all__ = [
    "Page",
    "ChangeKind",
    "MigrationDomain",
    "SyncDomain",
    "BookingView",
    "PersonState",
    "ReconciliationDomain",
]
