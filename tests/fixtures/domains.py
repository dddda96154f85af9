"""
Fake domain capability objects for tests.

Each fake records the calls it receives so tests can assert on Legacy reads
and Target writes without any network.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from dualsync.domain import BookingView, ChangeKind, Page, PersonState
from dualsync.exceptions import LegacyEntityNotFoundError, MappingStoreError
from dualsync.mapping import CreateMappingResult, InMemoryMappingStore, MappingRecord
from dualsync.messages import ChangeEvent


class FakeMigrationDomain:
    """
    Migration domain over a fixed list of alert ids.

    Args:
        ids: Ids Legacy enumerates
        missing: Ids whose fetch raises LegacyEntityNotFoundError
        failing: Ids whose Target push raises
        estimated: Estimated count (default: len(ids))
    """

    name = "alerts"

    def __init__(
        self,
        ids: list[int],
        *,
        missing: set[int] | None = None,
        failing: set[int] | None = None,
        estimated: int | None = None,
    ) -> None:
        self.ids = list(ids)
        self.missing = missing or set()
        self.failing = failing or set()
        self.estimated = len(self.ids) if estimated is None else estimated
        self.fetched: list[int] = []
        self.pushed: list[tuple[int, dict[str, Any]]] = []
        self.page_requests: list[tuple[int, int]] = []

    async def get_ids(self, filter: dict[str, Any], page_number: int, page_size: int) -> Page:
        self.page_requests.append((page_number, page_size))
        start = page_number * page_size
        return Page.of(self.ids[start : start + page_size], page_number, page_size, len(self.ids))

    async def get_estimated_count(self, filter: dict[str, Any]) -> int:
        return self.estimated

    async def fetch_entity(self, entity_id: int) -> dict[str, Any]:
        self.fetched.append(entity_id)
        if entity_id in self.missing:
            raise LegacyEntityNotFoundError(entity_id, "alert")
        return {"alertId": entity_id, "code": "XA"}

    async def transform(self, entity: dict[str, Any]) -> dict[str, Any]:
        return {"alertCode": entity["code"], "legacyId": entity["alertId"]}

    async def push_to_target(self, entity_id: int, transformed: dict[str, Any]) -> str:
        if entity_id in self.failing:
            raise RuntimeError(f"Target rejected {entity_id}")
        self.pushed.append((entity_id, transformed))
        return f"target-{entity_id}"

    def legacy_key(self, entity_id: int) -> dict[str, Any]:
        return {"alertId": entity_id}


class FlakyMappingStore(InMemoryMappingStore):
    """InMemoryMappingStore whose first ``failures`` creates raise MappingStoreError."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures_remaining = failures
        self.create_attempts: list[MappingRecord] = []

    async def create_mapping(self, record: MappingRecord) -> CreateMappingResult:
        self.create_attempts.append(record)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise MappingStoreError("Mapping Store unavailable", status_code=503)
        return await super().create_mapping(record)


class StaleLookupMappingStore(InMemoryMappingStore):
    """
    InMemoryMappingStore whose lookups miss the given alert ids.

    Models a concurrent writer that created the mapping after the
    already-mapped check ran, so the later create reports a duplicate.
    """

    def __init__(self, hidden: set[int]) -> None:
        super().__init__()
        self.hidden = hidden

    async def find_by_legacy_key(self, legacy_key: dict[str, Any]) -> MappingRecord | None:
        if legacy_key.get("alertId") in self.hidden:
            return None
        return await super().find_by_legacy_key(legacy_key)


class FakeSyncDomain:
    """
    Sync domain keyed by ``alertId``.

    ``legacy`` holds the records Legacy currently has; events for ids not in
    it behave as if the record was deleted before the event was handled.
    """

    name = "alerts"

    def __init__(self, legacy: dict[int, dict[str, Any]] | None = None) -> None:
        self.legacy = legacy if legacy is not None else {}
        self.event_kinds: dict[str, ChangeKind] = {
            "ALERT-INSERTED": ChangeKind.INSERT,
            "ALERT-UPDATED": ChangeKind.UPDATE,
            "ALERT-DELETED": ChangeKind.DELETE,
            "ALERT-COMMENT-ADDED": ChangeKind.CHILD_CHANGED,
            "PRISONER-MERGED": ChangeKind.MERGE,
            "BOOKING-MOVED": ChangeKind.BOOKING_MOVED,
        }
        self.created: list[dict[str, Any]] = []
        self.updated: list[tuple[str, dict[str, Any]]] = []
        self.deleted: list[str] = []

    @property
    def target_calls(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)

    def legacy_key_for(self, event: ChangeEvent) -> dict[str, Any]:
        return {"alertId": event["alertId"]}

    async def fetch_legacy(self, event: ChangeEvent) -> dict[str, Any]:
        alert_id = event["alertId"]
        if alert_id not in self.legacy:
            raise LegacyEntityNotFoundError(alert_id, "alert")
        return self.legacy[alert_id]

    async def create_on_target(self, event: ChangeEvent, legacy_entity: dict[str, Any]) -> str:
        self.created.append(legacy_entity)
        return f"target-{event['alertId']}"

    async def update_on_target(self, target_key: str, legacy_entity: dict[str, Any]) -> None:
        self.updated.append((target_key, legacy_entity))

    async def delete_on_target(self, target_key: str) -> None:
        self.deleted.append(target_key)


class FakeReconciliationDomain:
    """
    Reconciliation domain over a dict of person states.

    Args:
        people: Person states by id
        fail_on: Call name ("push", "sync_back", "merge") that raises
    """

    name = "prisonperson"

    def __init__(
        self,
        people: dict[str, PersonState] | None = None,
        *,
        fail_on: str | None = None,
    ) -> None:
        self.people = people or {}
        self.fail_on = fail_on
        self.calls: list[tuple[str, ...]] = []

    def _maybe_fail(self, call: str) -> None:
        if self.fail_on == call:
            raise RuntimeError(f"{call} failed")

    async def get_person_state(self, person_id: str) -> PersonState:
        self.calls.append(("get", person_id))
        return self.people.get(person_id, PersonState(person_id=person_id))

    async def push_person_state(self, state: PersonState) -> None:
        self._maybe_fail("push")
        self.calls.append(("push", state.person_id))

    async def sync_back_to_legacy(self, person_id: str) -> None:
        self._maybe_fail("sync_back")
        self.calls.append(("sync_back", person_id))

    async def merge_on_target(self, removed_person_id: str, retained_person_id: str) -> None:
        self._maybe_fail("merge")
        self.calls.append(("merge", removed_person_id, retained_person_id))

    def pushed(self) -> list[str]:
        return [call[1] for call in self.calls if call[0] == "push"]


def person(person_id: str, booking_start: datetime | None, last_modified: datetime | None) -> PersonState:
    """Build a PersonState with a latest booking starting at ``booking_start``."""
    booking = BookingView(booking_id=1, start_datetime=booking_start) if booking_start else None
    return PersonState(person_id=person_id, latest_booking=booking, last_modified=last_modified)
