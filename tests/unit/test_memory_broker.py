"""
Unit tests for InMemoryBroker.

Tests cover:
- Delivery and JSON round trip
- Delayed delivery and pending counts
- Redelivery and dead-lettering after max receives
- Purge of ready and delayed messages
- Dead-letter inspection, purge and replay
- Bounded concurrency
"""

from __future__ import annotations

import asyncio

import pytest

from dualsync.broker import InMemoryBroker
from dualsync.config import QueueConfig
from dualsync.messages import Envelope, MessageContext, WorkItem
from dualsync.observability import MockTracer

QUEUE = "migration.alerts"


def envelope(payload: int = 1) -> Envelope:
    item = WorkItem(context=MessageContext(migration_type="alerts"), payload=payload)
    return Envelope.internal("MIGRATE_ENTITY", item)


class Recorder:
    """Handler that records envelopes and optionally fails."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.received: list[Envelope] = []

    async def __call__(self, envelope: Envelope) -> None:
        self.received.append(envelope)
        if self.fail:
            raise RuntimeError("handler failed")


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for InMemoryBroker arguments."""

    def test_rejects_zero_receive_count(self) -> None:
        with pytest.raises(ValueError, match="max_receive_count"):
            InMemoryBroker(max_receive_count=0)

    def test_rejects_zero_concurrency(self) -> None:
        with pytest.raises(ValueError, match="max_concurrent_messages"):
            InMemoryBroker(max_concurrent_messages=0)

    @pytest.mark.asyncio
    async def test_from_queue_config_uses_receive_limit(self) -> None:
        queues = QueueConfig.for_domain("alerts", max_receive_count=1)
        broker = InMemoryBroker.from_queue_config(queues, enable_tracing=False)
        handler = Recorder(fail=True)
        broker.subscribe(queues.work_queue, handler)
        await broker.start()

        await broker.send(queues.work_queue, envelope())
        await broker.join(timeout=2)
        await broker.stop()

        assert len(handler.received) == 1
        assert await broker.dead_letter_count(queues.work_queue) == 1


# =============================================================================
# Delivery
# =============================================================================


class TestDelivery:
    """Tests for send/subscribe/start."""

    @pytest.mark.asyncio
    async def test_delivers_parsed_envelope(self, broker: InMemoryBroker) -> None:
        recorder = Recorder()
        broker.subscribe(QUEUE, recorder)
        await broker.start()
        sent = envelope(5)

        await broker.send(QUEUE, sent)
        await broker.join(timeout=2)

        assert recorder.received == [sent]
        assert recorder.received[0] is not sent

    @pytest.mark.asyncio
    async def test_messages_sent_before_start_are_delivered(self, broker: InMemoryBroker) -> None:
        await broker.send(QUEUE, envelope())
        assert await broker.pending_count(QUEUE) == 1

        recorder = Recorder()
        broker.subscribe(QUEUE, recorder)
        await broker.start()
        await broker.join(timeout=2)

        assert len(recorder.received) == 1
        assert await broker.pending_count(QUEUE) == 0

    @pytest.mark.asyncio
    async def test_subscribe_while_running_starts_consumer(self, broker: InMemoryBroker) -> None:
        await broker.start()
        recorder = Recorder()
        broker.subscribe(QUEUE, recorder)
        await broker.send(QUEUE, envelope())
        await broker.join(timeout=2)
        assert len(recorder.received) == 1

    @pytest.mark.asyncio
    async def test_delayed_message_not_pending_until_due(self, broker: InMemoryBroker) -> None:
        await broker.send(QUEUE, envelope(), delay_seconds=0.05)
        assert await broker.pending_count(QUEUE) == 0
        await asyncio.sleep(0.1)
        assert await broker.pending_count(QUEUE) == 1

    @pytest.mark.asyncio
    async def test_join_waits_for_delayed_messages(self, broker: InMemoryBroker) -> None:
        recorder = Recorder()
        broker.subscribe(QUEUE, recorder)
        await broker.start()
        await broker.send(QUEUE, envelope(), delay_seconds=0.05)
        await broker.join(timeout=2)
        assert len(recorder.received) == 1

    @pytest.mark.asyncio
    async def test_send_records_producer_span(self, mock_tracer: MockTracer) -> None:
        broker = InMemoryBroker(tracer=mock_tracer)
        await broker.send(QUEUE, envelope())
        assert mock_tracer.span_names == ["dualsync.broker.send"]
        _, attributes = mock_tracer.spans[0]
        assert attributes is not None
        assert attributes["messaging.destination.name"] == QUEUE

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self) -> None:
        broker = InMemoryBroker(max_concurrent_messages=2, enable_tracing=False)
        active = 0
        peak = 0

        async def handler(envelope: Envelope) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1

        broker.subscribe(QUEUE, handler)
        for i in range(6):
            await broker.send(QUEUE, envelope(i))
        await broker.start()
        try:
            await broker.join(timeout=2)
        finally:
            await broker.stop()
        assert peak == 2


# =============================================================================
# Failure handling
# =============================================================================


class TestDeadLettering:
    """Tests for redelivery and dead-letter queues."""

    @pytest.mark.asyncio
    async def test_failed_message_redelivered_then_dead_lettered(
        self, broker: InMemoryBroker
    ) -> None:
        recorder = Recorder(fail=True)
        broker.subscribe(QUEUE, recorder)
        await broker.start()
        sent = envelope()

        await broker.send(QUEUE, sent)
        await broker.join(timeout=2)

        assert len(recorder.received) == 2
        assert await broker.dead_letter_count(QUEUE) == 1
        [dead] = await broker.dead_letter_messages(QUEUE)
        assert dead.message_id == sent.message_id
        assert dead.kind == "MIGRATE_ENTITY"
        assert dead.receive_count == 2
        assert dead.last_error == "RuntimeError: handler failed"
        assert dead.dead_lettered_at is not None

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, broker: InMemoryBroker) -> None:
        attempts: list[int] = []

        async def flaky(envelope: Envelope) -> None:
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first delivery fails")

        broker.subscribe(QUEUE, flaky)
        await broker.start()
        await broker.send(QUEUE, envelope())
        await broker.join(timeout=2)

        assert len(attempts) == 2
        assert await broker.dead_letter_count(QUEUE) == 0

    @pytest.mark.asyncio
    async def test_replay_moves_dead_letters_back(self, broker: InMemoryBroker) -> None:
        recorder = Recorder(fail=True)
        broker.subscribe(QUEUE, recorder)
        await broker.start()
        await broker.send(QUEUE, envelope(1))
        await broker.send(QUEUE, envelope(2))
        await broker.join(timeout=2)
        assert await broker.dead_letter_count(QUEUE) == 2

        recorder.fail = False
        recorder.received.clear()
        dead = await broker.dead_letter_messages(QUEUE)
        replayed = await broker.replay_dead_letters(QUEUE, [dead[0].message_id])
        await broker.join(timeout=2)

        assert replayed == 1
        assert [e.message_id for e in recorder.received] == [dead[0].message_id]
        assert await broker.dead_letter_count(QUEUE) == 1

    @pytest.mark.asyncio
    async def test_purge_dead_letters(self, broker: InMemoryBroker) -> None:
        broker.subscribe(QUEUE, Recorder(fail=True))
        await broker.start()
        await broker.send(QUEUE, envelope())
        await broker.join(timeout=2)

        assert await broker.purge_dead_letters(QUEUE) == 1
        assert await broker.dead_letter_count(QUEUE) == 0

    @pytest.mark.asyncio
    async def test_dead_letter_messages_respects_limit(self, broker: InMemoryBroker) -> None:
        broker.subscribe(QUEUE, Recorder(fail=True))
        await broker.start()
        for i in range(3):
            await broker.send(QUEUE, envelope(i))
        await broker.join(timeout=2)
        assert len(await broker.dead_letter_messages(QUEUE, limit=2)) == 2


# =============================================================================
# Purge
# =============================================================================


class TestPurge:
    """Tests for purge."""

    @pytest.mark.asyncio
    async def test_purge_removes_ready_and_delayed(self, broker: InMemoryBroker) -> None:
        await broker.send(QUEUE, envelope(1))
        await broker.send(QUEUE, envelope(2), delay_seconds=60)

        assert await broker.purge(QUEUE) == 2
        assert await broker.pending_count(QUEUE) == 0
        await broker.join(timeout=1)

    @pytest.mark.asyncio
    async def test_purge_only_touches_named_queue(self, broker: InMemoryBroker) -> None:
        await broker.send(QUEUE, envelope())
        await broker.send(f"{QUEUE}.retry", envelope())

        await broker.purge(QUEUE)

        assert await broker.pending_count(f"{QUEUE}.retry") == 1

    @pytest.mark.asyncio
    async def test_purge_empty_queue(self, broker: InMemoryBroker) -> None:
        assert await broker.purge("nothing") == 0
