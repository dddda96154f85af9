"""Unit tests for DeadLetterAdmin."""

from __future__ import annotations

import pytest
import pytest_asyncio

from dualsync.broker import DeadLetterAdmin, DeadLetterStats, InMemoryBroker
from dualsync.messages import Envelope, MessageContext, WorkItem

WORK = "migration.alerts"
RETRY = "migration.alerts.retry"


async def fail(envelope: Envelope) -> None:
    raise RuntimeError("always fails")


@pytest_asyncio.fixture
async def loaded_broker(broker: InMemoryBroker) -> InMemoryBroker:
    """Broker with one dead letter on the retry queue and one ready work message."""
    item = WorkItem(context=MessageContext(migration_type="alerts"), payload=1)
    broker.subscribe(RETRY, fail)
    await broker.start()
    await broker.send(RETRY, Envelope.internal("RETRY_MIGRATION_MAPPING", item))
    await broker.join(timeout=2)
    await broker.send(WORK, Envelope.internal("MIGRATE_ENTITY", item))
    return broker


class TestDeadLetterAdmin:
    """Tests for DeadLetterAdmin."""

    def test_queues_deduplicated(self, broker: InMemoryBroker) -> None:
        admin = DeadLetterAdmin(broker, [WORK, RETRY, WORK])
        assert admin.queues == [WORK, RETRY]

    @pytest.mark.asyncio
    async def test_stats(self, loaded_broker: InMemoryBroker) -> None:
        admin = DeadLetterAdmin(loaded_broker, [WORK, RETRY])
        assert await admin.stats() == [
            DeadLetterStats(queue=WORK, dead_letter_count=0, pending_count=1),
            DeadLetterStats(queue=RETRY, dead_letter_count=1, pending_count=0),
        ]

    @pytest.mark.asyncio
    async def test_list_and_purge(self, loaded_broker: InMemoryBroker) -> None:
        admin = DeadLetterAdmin(loaded_broker, [WORK, RETRY])
        [message] = await admin.list_messages(RETRY)
        assert message.kind == "RETRY_MIGRATION_MAPPING"
        assert await admin.purge(RETRY) == 1
        assert await admin.list_messages(RETRY) == []

    @pytest.mark.asyncio
    async def test_replay(self, loaded_broker: InMemoryBroker) -> None:
        received: list[Envelope] = []

        async def record(envelope: Envelope) -> None:
            received.append(envelope)

        loaded_broker.subscribe(RETRY, record)
        loaded_broker.subscribe(WORK, record)
        admin = DeadLetterAdmin(loaded_broker, [WORK, RETRY])

        assert await admin.replay(RETRY) == 1
        await loaded_broker.join(timeout=2)
        assert sorted(e.kind for e in received) == ["MIGRATE_ENTITY", "RETRY_MIGRATION_MAPPING"]

    @pytest.mark.asyncio
    async def test_unmanaged_queue_rejected(self, broker: InMemoryBroker) -> None:
        admin = DeadLetterAdmin(broker, [WORK])
        with pytest.raises(ValueError, match="Unknown queue"):
            await admin.purge("other")
