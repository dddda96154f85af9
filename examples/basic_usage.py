"""
Basic Usage Example

This example wires a migration run and live synchronisation for a toy
"alerts" domain using only in-memory infrastructure:
- Implementing the MigrationDomain and SyncDomain capabilities
- Running a migration to completion
- Routing a Legacy change notification through the synchroniser

Run with: python examples/basic_usage.py
"""

import asyncio
import logging
from typing import Any

from dualsync import (
    ChangeEvent,
    ChangeKind,
    Envelope,
    InMemoryBroker,
    InMemoryMappingStore,
    LegacyEntityNotFoundError,
    MigrationConfig,
    MigrationMessageListener,
    MigrationOrchestrator,
    Page,
    QueueConfig,
    SynchronisationConfig,
    SynchronisationEventRouter,
    SynchronisationService,
)
from dualsync.repositories import InMemoryMigrationRunRepository

# =============================================================================
# Step 1: Pretend Legacy and Target systems
# =============================================================================

LEGACY_ALERTS: dict[int, dict[str, Any]] = {
    1: {"alertId": 1, "code": "XA", "active": True},
    2: {"alertId": 2, "code": "HA", "active": True},
    3: {"alertId": 3, "code": "XEL", "active": False},
}
TARGET_ALERTS: dict[str, dict[str, Any]] = {}


# =============================================================================
# Step 2: Domain capabilities
# =============================================================================
# The orchestration is generic; a domain only says how to enumerate, read,
# transform and write its own records.


class AlertsMigration:
    name = "alerts"

    async def get_ids(self, filter: dict[str, Any], page_number: int, page_size: int) -> Page:
        ids = sorted(LEGACY_ALERTS)
        start = page_number * page_size
        return Page.of(ids[start : start + page_size], page_number, page_size, len(ids))

    async def get_estimated_count(self, filter: dict[str, Any]) -> int:
        return len(LEGACY_ALERTS)

    async def fetch_entity(self, entity_id: int) -> dict[str, Any]:
        if entity_id not in LEGACY_ALERTS:
            raise LegacyEntityNotFoundError(entity_id, "alert")
        return LEGACY_ALERTS[entity_id]

    async def transform(self, entity: dict[str, Any]) -> dict[str, Any]:
        return {"alertCode": entity["code"], "isActive": entity["active"]}

    async def push_to_target(self, entity_id: int, transformed: dict[str, Any]) -> str:
        target_key = f"alert-{entity_id}"
        TARGET_ALERTS[target_key] = transformed
        return target_key

    def legacy_key(self, entity_id: int) -> dict[str, Any]:
        return {"alertId": entity_id}


class AlertsSync:
    name = "alerts"
    event_kinds = {
        "ALERT-INSERTED": ChangeKind.INSERT,
        "ALERT-UPDATED": ChangeKind.UPDATE,
        "ALERT-DELETED": ChangeKind.DELETE,
    }

    def legacy_key_for(self, event: ChangeEvent) -> dict[str, Any]:
        return {"alertId": event["alertId"]}

    async def fetch_legacy(self, event: ChangeEvent) -> dict[str, Any]:
        alert = LEGACY_ALERTS.get(event["alertId"])
        if alert is None:
            raise LegacyEntityNotFoundError(event["alertId"], "alert")
        return alert

    async def create_on_target(self, event: ChangeEvent, legacy_entity: dict[str, Any]) -> str:
        target_key = f"alert-{legacy_entity['alertId']}"
        TARGET_ALERTS[target_key] = {"alertCode": legacy_entity["code"]}
        return target_key

    async def update_on_target(self, target_key: str, legacy_entity: dict[str, Any]) -> None:
        TARGET_ALERTS[target_key] = {
            "alertCode": legacy_entity["code"],
            "isActive": legacy_entity["active"],
        }

    async def delete_on_target(self, target_key: str) -> None:
        TARGET_ALERTS.pop(target_key, None)


# =============================================================================
# Step 3: Run it
# =============================================================================


async def main():
    logging.basicConfig(level=logging.INFO)

    queues = QueueConfig.for_domain("alerts")
    broker = InMemoryBroker.from_queue_config(queues, enable_tracing=False)
    mappings = InMemoryMappingStore()

    orchestrator = MigrationOrchestrator(
        domain=AlertsMigration(),
        run_repository=InMemoryMigrationRunRepository(enable_tracing=False),
        mapping_store=mappings,
        broker=broker,
        queues=queues,
        config=MigrationConfig(
            page_size=2,
            complete_check_delay_seconds=0.1,
            complete_check_count=2,
            complete_check_retry_seconds=0.1,
        ),
        enable_tracing=False,
    )
    MigrationMessageListener(orchestrator, enable_tracing=False).subscribe(broker)

    sync_config = SynchronisationConfig(domain="alerts")
    service = SynchronisationService(
        AlertsSync(), mappings, broker, sync_config, enable_tracing=False
    )
    SynchronisationEventRouter(service, enable_tracing=False).subscribe(broker)

    await broker.start()

    print("=" * 60)
    print("Migration")
    print("=" * 60)
    run = await orchestrator.start_migration()
    await broker.join(timeout=10)
    run = await orchestrator.get_run(run.id)
    print(f"Run {run.id}: {run.status.value}, migrated {run.migrated_count}")
    print(f"Target now holds: {sorted(TARGET_ALERTS)}")

    print()
    print("=" * 60)
    print("Live synchronisation")
    print("=" * 60)
    LEGACY_ALERTS[2]["active"] = False
    await broker.send(
        sync_config.event_queue,
        Envelope.notification({"eventType": "ALERT-UPDATED", "alertId": 2}),
    )
    # Our own writes come back as events too; they are dropped.
    await broker.send(
        sync_config.event_queue,
        Envelope.notification(
            {
                "eventType": "ALERT-UPDATED",
                "alertId": 1,
                "auditModuleName": sync_config.writer_identity,
            }
        ),
    )
    await broker.join(timeout=5)
    print(f"alert-2 on Target: {TARGET_ALERTS['alert-2']}")

    await broker.stop()


if __name__ == "__main__":
    asyncio.run(main())
