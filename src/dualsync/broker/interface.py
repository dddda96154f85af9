"""
Message broker interface.

The broker carries Envelopes between the orchestration components. Delivery
is at-least-once: a handler that raises leaves the message on the queue for
redelivery, and after the configured maximum number of receives the message
moves to the queue's dead-letter queue where an operator can inspect, purge
or replay it.

Tracing Support:
    Implementations compose a ``Tracer`` from ``dualsync.observability``:

    - ``dualsync.broker.send`` (PRODUCER) - For publishing
    - ``dualsync.broker.consume`` (CONSUMER) - For each delivery
    - ``dualsync.broker.purge`` - For purges

    with ``ATTR_MESSAGING_SYSTEM`` and ``ATTR_MESSAGING_DESTINATION`` set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from dualsync.messages import Envelope

MessageHandler = Callable[[Envelope], Awaitable[None]]
"""Coroutine invoked once per delivery. Raising triggers redelivery."""


@dataclass(frozen=True)
class DeadLetterMessage:
    """
    A message parked on a dead-letter queue.

    Attributes:
        message_id: Envelope message id
        queue: Queue the message originally belonged to
        body: Raw envelope JSON
        kind: Envelope kind, when the body could be parsed
        receive_count: Deliveries before it was dead-lettered
        last_error: Error from the final failed delivery, if known
        dead_lettered_at: When the message was dead-lettered, if known
    """

    message_id: str
    queue: str
    body: str
    kind: str | None = None
    receive_count: int = 0
    last_error: str | None = None
    dead_lettered_at: datetime | None = None


class MessageBroker(ABC):
    """
    Abstract broker for queue-based, at-least-once messaging.

    Example:
        >>> broker = InMemoryBroker()
        >>> broker.subscribe("migration.alerts", listener.on_message)
        >>> await broker.start()
        >>> await broker.send("migration.alerts", envelope, delay_seconds=30)
    """

    @abstractmethod
    async def send(self, queue: str, envelope: Envelope, delay_seconds: float = 0) -> None:
        """
        Publish an envelope.

        Args:
            queue: Destination queue name
            envelope: Message to send
            delay_seconds: Seconds before the message becomes visible

        Raises:
            BrokerError: If the message could not be published
        """
        pass

    @abstractmethod
    def subscribe(self, queue: str, handler: MessageHandler) -> None:
        """
        Register the consumer for a queue.

        Each queue has a single handler; a second subscription replaces it.
        Consumption begins when ``start()`` is awaited.
        """
        pass

    @abstractmethod
    async def start(self) -> None:
        """Begin consuming every subscribed queue."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop consuming and wait for in-flight deliveries to finish."""
        pass

    @abstractmethod
    async def pending_count(self, queue: str) -> int:
        """
        Approximate number of messages ready for delivery.

        In-flight and delayed messages are not counted, so a zero result
        means only that nothing is currently waiting.
        """
        pass

    @abstractmethod
    async def purge(self, queue: str) -> int:
        """
        Remove every waiting message (ready and delayed) from a queue.

        Returns:
            Number of messages removed
        """
        pass

    @abstractmethod
    async def dead_letter_count(self, queue: str) -> int:
        """Number of messages on the queue's dead-letter queue."""
        pass

    @abstractmethod
    async def dead_letter_messages(self, queue: str, limit: int = 100) -> list[DeadLetterMessage]:
        """Inspect dead-lettered messages without removing them."""
        pass

    @abstractmethod
    async def purge_dead_letters(self, queue: str) -> int:
        """
        Discard every dead-lettered message for a queue.

        Returns:
            Number of messages discarded
        """
        pass

    @abstractmethod
    async def replay_dead_letters(
        self,
        queue: str,
        message_ids: Sequence[str] | None = None,
    ) -> int:
        """
        Move dead-lettered messages back onto the queue.

        Args:
            queue: Queue whose dead letters are replayed
            message_ids: Only replay these messages (default: all)

        Returns:
            Number of messages replayed
        """
        pass


__all__ = [
    "MessageHandler",
    "DeadLetterMessage",
    "MessageBroker",
]
