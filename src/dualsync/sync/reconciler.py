"""
IdentityReconciler - person-level merges and booking moves.

These events cut across records, so they are not handled by the generic
mapping-based synchroniser. Failures are reported with ``-error`` telemetry
and re-raised so the broker redelivers the event.
"""

from __future__ import annotations

import logging
from typing import Any

from dualsync.domain import ReconciliationDomain
from dualsync.messages import ChangeEvent
from dualsync.observability import (
    ATTR_DOMAIN,
    ATTR_EVENT_TYPE,
    TelemetryClient,
    Tracer,
    create_telemetry_client,
    create_tracer,
)

logger = logging.getLogger(__name__)


class IdentityReconciler:
    """
    Applies Legacy merges and booking moves to Target.

    Event field names default to the Legacy event schema and can be
    overridden per domain.

    Args:
        domain: Capability object for person-level state
        telemetry: Business telemetry client
        moved_from_field: Booking-moved field naming the origin person
        moved_to_field: Booking-moved field naming the destination person
        booking_field: Booking-moved field naming the booking
        removed_field: Merge field naming the identity merged away
        retained_field: Merge field naming the identity kept
    """

    def __init__(
        self,
        domain: ReconciliationDomain,
        telemetry: TelemetryClient | None = None,
        *,
        moved_from_field: str = "movedFromNomsNumber",
        moved_to_field: str = "movedToNomsNumber",
        booking_field: str = "bookingId",
        removed_field: str = "removedNomsNumber",
        retained_field: str = "nomsNumber",
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._domain = domain
        self._telemetry = telemetry or create_telemetry_client()
        self._moved_from = moved_from_field
        self._moved_to = moved_to_field
        self._booking = booking_field
        self._removed = removed_field
        self._retained = retained_field
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def _event(self, suffix: str, properties: dict[str, Any]) -> None:
        self._telemetry.track_event(f"{self._domain.name}-{suffix}", properties)

    async def merge(self, event: ChangeEvent) -> None:
        """Merge the removed identity into the retained one in Target."""
        telemetry = {
            "removedPersonId": event.get(self._removed),
            "retainedPersonId": event.get(self._retained),
        }
        with self._tracer.span(
            "dualsync.reconcile.merge",
            {ATTR_DOMAIN: self._domain.name, ATTR_EVENT_TYPE: event.event_type},
        ):
            try:
                removed = str(event[self._removed])
                retained = str(event[self._retained])
                await self._domain.merge_on_target(removed, retained)
            except Exception as e:
                logger.error(
                    f"Failed to merge {telemetry['removedPersonId']} into "
                    f"{telemetry['retainedPersonId']}: {e}",
                    exc_info=True,
                    extra={"domain": self._domain.name, **telemetry},
                )
                self._event("merge-error", {**telemetry, "error": str(e)})
                raise
        logger.info(f"Merged {removed} into {retained}", extra={"domain": self._domain.name})
        self._event("merge", {"removedPersonId": removed, "retainedPersonId": retained})

    async def booking_moved(self, event: ChangeEvent) -> None:
        """
        Re-sync both persons after a booking moved between them.

        1. The origin person is always re-synced, since its latest booking changed.
        2. The destination person is re-synced only if its data was modified
           after the start of its latest booking.
        3. The destination person's Target state is pushed back to Legacy.
        """
        telemetry: dict[str, Any] = {
            "bookingId": event.get(self._booking),
            "movedFromPersonId": event.get(self._moved_from),
            "movedToPersonId": event.get(self._moved_to),
        }

        with self._tracer.span(
            "dualsync.reconcile.booking_moved",
            {ATTR_DOMAIN: self._domain.name, ATTR_EVENT_TYPE: event.event_type},
        ):
            synced: list[str] = []
            try:
                origin = str(event[self._moved_from])
                destination = str(event[self._moved_to])
                origin_state = await self._domain.get_person_state(origin)
                await self._domain.push_person_state(origin_state)
                synced.append(origin)

                destination_state = await self._domain.get_person_state(destination)
                if destination_state.modified_since_booking_start():
                    await self._domain.push_person_state(destination_state)
                    synced.append(destination)
                else:
                    logger.debug(
                        f"{destination} unchanged since its latest booking started, not re-syncing",
                        extra={"domain": self._domain.name, "person_id": destination},
                    )

                await self._domain.sync_back_to_legacy(destination)
            except Exception as e:
                logger.error(
                    f"Failed to reconcile booking move {telemetry['movedFromPersonId']} -> "
                    f"{telemetry['movedToPersonId']}: {e}",
                    exc_info=True,
                    extra={"domain": self._domain.name, "synced": synced},
                )
                self._event(
                    "booking-moved-error",
                    {**telemetry, "syncedPersonIds": ",".join(synced), "error": str(e)},
                )
                raise

        self._event(
            "booking-moved",
            {
                **telemetry,
                "syncedPersonIds": ",".join(synced),
                "syncedToLegacy": destination,
            },
        )


__all__ = ["IdentityReconciler"]
