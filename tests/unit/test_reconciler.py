"""
Unit tests for IdentityReconciler.

Tests cover:
- Merge delegation and error reporting
- Booking-move ordering and the destination re-sync rule
"""

from __future__ import annotations

from datetime import datetime

import pytest

from dualsync.messages import ChangeEvent
from dualsync.observability import MockTelemetryClient
from dualsync.sync import IdentityReconciler
from tests.fixtures import FakeReconciliationDomain, person

BOOKING_START = datetime(2024, 3, 1, 9, 0)


def booking_moved() -> ChangeEvent:
    return ChangeEvent.model_validate(
        {
            "eventType": "BOOKING-MOVED",
            "bookingId": 555,
            "movedFromNomsNumber": "A1234AA",
            "movedToNomsNumber": "B5678BB",
        }
    )


def reconciler(
    domain: FakeReconciliationDomain, telemetry: MockTelemetryClient
) -> IdentityReconciler:
    return IdentityReconciler(domain, telemetry, enable_tracing=False)


# =============================================================================
# Merge
# =============================================================================


class TestMerge:
    """Tests for IdentityReconciler.merge."""

    @pytest.mark.asyncio
    async def test_merge(self, telemetry: MockTelemetryClient) -> None:
        domain = FakeReconciliationDomain()
        event = ChangeEvent.model_validate(
            {"eventType": "PRISONER-MERGED", "removedNomsNumber": "A1", "nomsNumber": "B2"}
        )

        await reconciler(domain, telemetry).merge(event)

        assert domain.calls == [("merge", "A1", "B2")]
        [merged] = telemetry.find("prisonperson-merge")
        assert merged.properties == {"removedPersonId": "A1", "retainedPersonId": "B2"}

    @pytest.mark.asyncio
    async def test_merge_failure_reported_and_raised(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain(fail_on="merge")
        event = ChangeEvent.model_validate(
            {"eventType": "PRISONER-MERGED", "removedNomsNumber": "A1", "nomsNumber": "B2"}
        )

        with pytest.raises(RuntimeError):
            await reconciler(domain, telemetry).merge(event)

        assert telemetry.names == ["prisonperson-merge-error"]

    @pytest.mark.asyncio
    async def test_missing_identity_field_reported_and_raised(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain()
        event = ChangeEvent.model_validate({"eventType": "PRISONER-MERGED", "nomsNumber": "B2"})

        with pytest.raises(KeyError):
            await reconciler(domain, telemetry).merge(event)

        assert domain.calls == []
        assert telemetry.names == ["prisonperson-merge-error"]
        [error] = telemetry.events
        assert error.properties["retainedPersonId"] == "B2"
        assert "removedPersonId" not in error.properties

    @pytest.mark.asyncio
    async def test_custom_field_names(self, telemetry: MockTelemetryClient) -> None:
        domain = FakeReconciliationDomain()
        event = ChangeEvent.model_validate(
            {"eventType": "MERGED", "oldId": "X", "newId": "Y"}
        )
        custom = IdentityReconciler(
            domain,
            telemetry,
            removed_field="oldId",
            retained_field="newId",
            enable_tracing=False,
        )

        await custom.merge(event)

        assert domain.calls == [("merge", "X", "Y")]


# =============================================================================
# Booking moved
# =============================================================================


class TestBookingMoved:
    """Tests for IdentityReconciler.booking_moved."""

    @pytest.mark.asyncio
    async def test_destination_modified_after_booking_start_resynced(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain(
            {"B5678BB": person("B5678BB", BOOKING_START, datetime(2024, 3, 2))}
        )

        await reconciler(domain, telemetry).booking_moved(booking_moved())

        assert domain.calls == [
            ("get", "A1234AA"),
            ("push", "A1234AA"),
            ("get", "B5678BB"),
            ("push", "B5678BB"),
            ("sync_back", "B5678BB"),
        ]
        [moved] = telemetry.find("prisonperson-booking-moved")
        assert moved.properties["syncedPersonIds"] == "A1234AA,B5678BB"
        assert moved.properties["syncedToLegacy"] == "B5678BB"
        assert moved.properties["bookingId"] == "555"

    @pytest.mark.asyncio
    async def test_destination_unchanged_since_booking_start_not_resynced(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain(
            {"B5678BB": person("B5678BB", BOOKING_START, datetime(2024, 2, 1))}
        )

        await reconciler(domain, telemetry).booking_moved(booking_moved())

        assert domain.pushed() == ["A1234AA"]
        assert ("sync_back", "B5678BB") in domain.calls
        [moved] = telemetry.find("prisonperson-booking-moved")
        assert moved.properties["syncedPersonIds"] == "A1234AA"

    @pytest.mark.asyncio
    async def test_modified_exactly_at_booking_start_not_resynced(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain(
            {"B5678BB": person("B5678BB", BOOKING_START, BOOKING_START)}
        )
        await reconciler(domain, telemetry).booking_moved(booking_moved())
        assert domain.pushed() == ["A1234AA"]

    @pytest.mark.asyncio
    async def test_destination_without_booking_not_resynced(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain({"B5678BB": person("B5678BB", None, datetime(2024, 3, 2))})
        await reconciler(domain, telemetry).booking_moved(booking_moved())
        assert domain.pushed() == ["A1234AA"]

    @pytest.mark.asyncio
    async def test_sync_back_failure_reported_and_raised(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain(fail_on="sync_back")

        with pytest.raises(RuntimeError):
            await reconciler(domain, telemetry).booking_moved(booking_moved())

        [error] = telemetry.find("prisonperson-booking-moved-error")
        assert error.properties["syncedPersonIds"] == "A1234AA"
        assert telemetry.find("prisonperson-booking-moved") == []

    @pytest.mark.asyncio
    async def test_missing_destination_field_reported_and_raised(
        self, telemetry: MockTelemetryClient
    ) -> None:
        domain = FakeReconciliationDomain()
        event = ChangeEvent.model_validate(
            {"eventType": "BOOKING-MOVED", "bookingId": 555, "movedFromNomsNumber": "A1234AA"}
        )

        with pytest.raises(KeyError):
            await reconciler(domain, telemetry).booking_moved(event)

        assert domain.calls == []
        [error] = telemetry.events
        assert error.name == "prisonperson-booking-moved-error"
        assert error.properties["movedFromPersonId"] == "A1234AA"
        assert error.properties["syncedPersonIds"] == ""
