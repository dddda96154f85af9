"""
Dead-letter queue administration.

Operators inspect, purge and replay dead-lettered messages per queue. The
admin only knows queue names; the broker does the work.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from dualsync.broker.interface import DeadLetterMessage, MessageBroker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeadLetterStats:
    """Dead-letter depth for one queue."""

    queue: str
    dead_letter_count: int
    pending_count: int


class DeadLetterAdmin:
    """
    Operator facade over the dead-letter queues of a set of work queues.

    Example:
        >>> admin = DeadLetterAdmin(broker, ["migration.alerts", "migration.alerts.retry"])
        >>> stats = await admin.stats()
        >>> await admin.replay("migration.alerts.retry")
    """

    def __init__(self, broker: MessageBroker, queues: Sequence[str]) -> None:
        self._broker = broker
        self._queues = list(dict.fromkeys(queues))

    @property
    def queues(self) -> list[str]:
        return list(self._queues)

    def _check(self, queue: str) -> None:
        if queue not in self._queues:
            raise ValueError(f"Unknown queue {queue!r}; expected one of {self._queues}.")

    async def stats(self) -> list[DeadLetterStats]:
        """Dead-letter and ready-message counts for every managed queue."""
        return [
            DeadLetterStats(
                queue=queue,
                dead_letter_count=await self._broker.dead_letter_count(queue),
                pending_count=await self._broker.pending_count(queue),
            )
            for queue in self._queues
        ]

    async def list_messages(self, queue: str, limit: int = 100) -> list[DeadLetterMessage]:
        self._check(queue)
        return await self._broker.dead_letter_messages(queue, limit)

    async def purge(self, queue: str) -> int:
        """Discard every dead letter for ``queue``."""
        self._check(queue)
        purged = await self._broker.purge_dead_letters(queue)
        logger.warning(
            f"Operator purged {purged} dead letters from {queue}",
            extra={"queue": queue, "purged_count": purged},
        )
        return purged

    async def replay(self, queue: str, message_ids: Sequence[str] | None = None) -> int:
        """
        Move dead letters back onto ``queue`` for another round of attempts.

        Args:
            queue: Managed queue name
            message_ids: Only replay these messages (default: all)

        Returns:
            Number of messages replayed
        """
        self._check(queue)
        replayed = await self._broker.replay_dead_letters(queue, message_ids)
        logger.info(
            f"Operator replayed {replayed} dead letters onto {queue}",
            extra={"queue": queue, "replayed_count": replayed},
        )
        return replayed


__all__ = ["DeadLetterAdmin", "DeadLetterStats"]
