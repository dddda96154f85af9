"""In-memory message broker implementation.

Suitable for development, testing and single-process deployments. Messages
are stored as JSON and re-parsed on every delivery, so handlers observe the
same serialisation round trip as with a real broker.

Semantics mirror a hosted queue:
- A failed delivery is made visible again after ``redelivery_delay_seconds``
- After ``max_receive_count`` failed deliveries the message is dead-lettered
- ``pending_count`` counts visible messages only
- ``purge`` removes visible and delayed messages, never in-flight ones
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from dualsync.broker.interface import DeadLetterMessage, MessageBroker, MessageHandler
from dualsync.config import QueueConfig
from dualsync.exceptions import BrokerError
from dualsync.messages import Envelope
from dualsync.observability import SpanKindEnum, Tracer, create_tracer
from dualsync.observability.attributes import (
    ATTR_MESSAGE_KIND,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoredMessage:
    message_id: str
    kind: str
    body: str
    receive_count: int = 0
    last_error: str | None = None


@dataclass
class _QueueState:
    name: str
    ready: asyncio.Queue[_StoredMessage] = field(default_factory=asyncio.Queue)
    delayed: dict[str, tuple[asyncio.TimerHandle, _StoredMessage]] = field(default_factory=dict)
    dead: list[DeadLetterMessage] = field(default_factory=list)
    handler: MessageHandler | None = None
    in_flight: int = 0
    consumer: asyncio.Task[None] | None = None


class InMemoryBroker(MessageBroker):
    """
    In-memory broker with receive-count dead-lettering and bounded concurrency.

    Example:
        >>> broker = InMemoryBroker(max_receive_count=3, max_concurrent_messages=5)
        >>> broker.subscribe("migration.alerts", listener.on_message)
        >>> await broker.start()
        >>> await broker.send("migration.alerts", envelope)
        >>> await broker.join()  # wait until every queue is drained
    """

    def __init__(
        self,
        *,
        max_receive_count: int = 5,
        max_concurrent_messages: int = 10,
        redelivery_delay_seconds: float = 0.0,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the broker.

        Args:
            max_receive_count: Deliveries before a failing message is dead-lettered
            max_concurrent_messages: Concurrent deliveries per queue
            redelivery_delay_seconds: Delay before a failed message is visible again
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to create a tracer when none is given
        """
        if max_receive_count < 1:
            raise ValueError(f"max_receive_count must be positive, got {max_receive_count}.")
        if max_concurrent_messages < 1:
            raise ValueError(
                f"max_concurrent_messages must be positive, got {max_concurrent_messages}."
            )
        self._max_receive_count = max_receive_count
        self._max_concurrent = max_concurrent_messages
        self._redelivery_delay = redelivery_delay_seconds
        self._queues: dict[str, _QueueState] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._running = False
        self._outstanding = 0
        self._idle: asyncio.Event | None = None

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @classmethod
    def from_queue_config(
        cls,
        queues: QueueConfig,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> InMemoryBroker:
        """Create a broker with the receive and concurrency limits of ``queues``."""
        return cls(
            max_receive_count=queues.max_receive_count,
            max_concurrent_messages=queues.max_concurrent_messages,
            tracer=tracer,
            enable_tracing=enable_tracing,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def _queue(self, name: str) -> _QueueState:
        state = self._queues.get(name)
        if state is None:
            state = _QueueState(name=name)
            self._queues[name] = state
        return state

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            if self._outstanding == 0:
                self._idle.set()
        return self._idle

    def _track(self, delta: int) -> None:
        self._outstanding += delta
        event = self._idle_event()
        if self._outstanding == 0:
            event.set()
        else:
            event.clear()

    async def send(self, queue: str, envelope: Envelope, delay_seconds: float = 0) -> None:
        with self._tracer.span_with_kind(
            "dualsync.broker.send",
            SpanKindEnum.PRODUCER,
            {
                ATTR_MESSAGING_SYSTEM: "memory",
                ATTR_MESSAGING_DESTINATION: queue,
                ATTR_MESSAGING_OPERATION: "publish",
                ATTR_MESSAGING_MESSAGE_ID: envelope.message_id,
                ATTR_MESSAGE_KIND: envelope.kind,
            },
        ):
            try:
                body = envelope.to_json()
            except ValueError as e:
                raise BrokerError(f"Could not serialise {envelope.kind} for {queue}: {e}") from e

            stored = _StoredMessage(message_id=envelope.message_id, kind=envelope.kind, body=body)
            state = self._queue(queue)
            self._track(1)
            if delay_seconds > 0:
                self._schedule(state, stored, delay_seconds)
            else:
                state.ready.put_nowait(stored)

            logger.debug(
                f"Sent {envelope.kind} to {queue}",
                extra={
                    "queue": queue,
                    "message_id": envelope.message_id,
                    "message_type": envelope.kind,
                    "delay_seconds": delay_seconds,
                },
            )

    def _schedule(self, state: _QueueState, stored: _StoredMessage, delay: float) -> None:
        token = str(uuid4())
        loop = asyncio.get_running_loop()
        handle = loop.call_later(delay, self._make_visible, state, token)
        state.delayed[token] = (handle, stored)

    def _make_visible(self, state: _QueueState, token: str) -> None:
        entry = state.delayed.pop(token, None)
        if entry is not None:
            state.ready.put_nowait(entry[1])

    def subscribe(self, queue: str, handler: MessageHandler) -> None:
        state = self._queue(queue)
        state.handler = handler
        if self._running and state.consumer is None:
            state.consumer = asyncio.create_task(self._consume(state), name=f"consumer-{queue}")

    async def start(self) -> None:
        if self._running:
            logger.warning("InMemoryBroker already running")
            return
        self._running = True
        self._idle_event()
        for state in self._queues.values():
            if state.handler is not None and state.consumer is None:
                state.consumer = asyncio.create_task(
                    self._consume(state), name=f"consumer-{state.name}"
                )
        logger.info(
            "InMemoryBroker started",
            extra={"queues": [q.name for q in self._queues.values() if q.handler]},
        )

    async def stop(self) -> None:
        self._running = False
        consumers = [state.consumer for state in self._queues.values() if state.consumer]
        for task in consumers:
            task.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)
        for state in self._queues.values():
            state.consumer = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        logger.info("InMemoryBroker stopped")

    async def join(self, timeout: float | None = None) -> None:
        """
        Wait until no message is ready, delayed or in flight on any queue.

        Args:
            timeout: Maximum seconds to wait

        Raises:
            TimeoutError: If the queues did not drain in time
        """
        await asyncio.wait_for(self._idle_event().wait(), timeout)

    async def _consume(self, state: _QueueState) -> None:
        semaphore = asyncio.Semaphore(self._max_concurrent)
        while True:
            await semaphore.acquire()
            try:
                stored = await state.ready.get()
            except asyncio.CancelledError:
                semaphore.release()
                raise
            task = asyncio.create_task(self._deliver(state, stored, semaphore))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(
        self,
        state: _QueueState,
        stored: _StoredMessage,
        semaphore: asyncio.Semaphore,
    ) -> None:
        stored.receive_count += 1
        state.in_flight += 1
        try:
            with self._tracer.span_with_kind(
                "dualsync.broker.consume",
                SpanKindEnum.CONSUMER,
                {
                    ATTR_MESSAGING_SYSTEM: "memory",
                    ATTR_MESSAGING_DESTINATION: state.name,
                    ATTR_MESSAGING_OPERATION: "receive",
                    ATTR_MESSAGING_MESSAGE_ID: stored.message_id,
                    ATTR_MESSAGE_KIND: stored.kind,
                },
            ):
                assert state.handler is not None
                await state.handler(Envelope.from_json(stored.body))
        except Exception as e:
            stored.last_error = f"{type(e).__name__}: {e}"
            self._on_failure(state, stored, e)
        else:
            self._track(-1)
        finally:
            state.in_flight -= 1
            semaphore.release()

    def _on_failure(self, state: _QueueState, stored: _StoredMessage, error: Exception) -> None:
        extra = {
            "queue": state.name,
            "message_id": stored.message_id,
            "message_type": stored.kind,
            "receive_count": stored.receive_count,
            "error": str(error),
            "error_type": type(error).__name__,
        }
        if stored.receive_count >= self._max_receive_count:
            state.dead.append(
                DeadLetterMessage(
                    message_id=stored.message_id,
                    queue=state.name,
                    body=stored.body,
                    kind=stored.kind,
                    receive_count=stored.receive_count,
                    last_error=stored.last_error,
                    dead_lettered_at=datetime.now(UTC),
                )
            )
            self._track(-1)
            logger.error(f"Dead-lettered {stored.kind} from {state.name}: {error}", extra=extra)
            return

        logger.warning(
            f"Delivery of {stored.kind} failed (receive {stored.receive_count}): {error}",
            extra=extra,
        )
        if self._redelivery_delay > 0 and self._running:
            self._schedule(state, stored, self._redelivery_delay)
        else:
            state.ready.put_nowait(stored)

    async def pending_count(self, queue: str) -> int:
        return self._queue(queue).ready.qsize()

    async def purge(self, queue: str) -> int:
        with self._tracer.span(
            "dualsync.broker.purge",
            {ATTR_MESSAGING_SYSTEM: "memory", ATTR_MESSAGING_DESTINATION: queue},
        ):
            state = self._queue(queue)
            purged = 0
            while True:
                try:
                    state.ready.get_nowait()
                except asyncio.QueueEmpty:
                    break
                purged += 1
            for handle, _ in state.delayed.values():
                handle.cancel()
            purged += len(state.delayed)
            state.delayed.clear()
            if purged:
                self._track(-purged)
            logger.info(
                f"Purged {purged} messages from {queue}",
                extra={"queue": queue, "purged_count": purged},
            )
            return purged

    async def dead_letter_count(self, queue: str) -> int:
        return len(self._queue(queue).dead)

    async def dead_letter_messages(self, queue: str, limit: int = 100) -> list[DeadLetterMessage]:
        return list(self._queue(queue).dead[:limit])

    async def purge_dead_letters(self, queue: str) -> int:
        state = self._queue(queue)
        count = len(state.dead)
        state.dead.clear()
        logger.info(
            f"Purged {count} dead letters from {queue}",
            extra={"queue": queue, "purged_count": count},
        )
        return count

    async def replay_dead_letters(
        self,
        queue: str,
        message_ids: Sequence[str] | None = None,
    ) -> int:
        state = self._queue(queue)
        wanted = set(message_ids) if message_ids is not None else None
        replay = [m for m in state.dead if wanted is None or m.message_id in wanted]
        state.dead = [m for m in state.dead if m not in replay]
        for message in replay:
            self._track(1)
            state.ready.put_nowait(
                _StoredMessage(
                    message_id=message.message_id,
                    kind=message.kind or "",
                    body=message.body,
                )
            )
        logger.info(
            f"Replayed {len(replay)} dead letters onto {queue}",
            extra={"queue": queue, "replayed_count": len(replay)},
        )
        return len(replay)


__all__ = ["InMemoryBroker"]
