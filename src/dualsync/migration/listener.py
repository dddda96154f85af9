"""
MigrationMessageListener - routes broker envelopes to the orchestrator.

One listener consumes both queues of a domain: first-attempt work on the
work queue and mapping retries on the retry queue. A handler exception is
left to propagate so the broker redelivers the message and eventually
dead-letters it.
"""

from __future__ import annotations

import logging

from dualsync.broker.interface import MessageBroker
from dualsync.exceptions import UnknownMessageTypeError
from dualsync.messages import Envelope, MigrationMessageType, WorkItem
from dualsync.migration.orchestrator import MigrationOrchestrator
from dualsync.observability import (
    ATTR_MESSAGE_KIND,
    ATTR_MIGRATION_TYPE,
    ATTR_RETRY_ATTEMPT,
    ATTR_RUN_ID,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


class MigrationMessageListener:
    """
    Dispatches migration envelopes by kind.

    Example:
        >>> listener = MigrationMessageListener(orchestrator)
        >>> listener.subscribe(broker)
        >>> await broker.start()
    """

    def __init__(
        self,
        orchestrator: MigrationOrchestrator,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._orchestrator = orchestrator
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    def subscribe(self, broker: MessageBroker) -> None:
        """Register this listener on the domain's work and retry queues."""
        queues = self._orchestrator.queues
        broker.subscribe(queues.work_queue, self.on_message)
        broker.subscribe(queues.retry_queue, self.on_message)

    async def on_message(self, envelope: Envelope) -> None:
        """
        Handle one delivery.

        Raises:
            UnknownMessageTypeError: The envelope is not a migration message
        """
        try:
            kind = MigrationMessageType(envelope.kind)
        except ValueError:
            logger.error(
                f"Unknown migration message type {envelope.kind}",
                extra={
                    "message_type": envelope.kind,
                    "message_id": envelope.message_id,
                    "migration_type": self._orchestrator.migration_type,
                },
            )
            raise UnknownMessageTypeError(envelope.kind) from None

        if kind in self._orchestrator.retry_handlers:
            await self._orchestrator.retry_handlers.dispatch(envelope)
            return

        item = envelope.decode(WorkItem)
        with self._tracer.span_with_kind(
            f"dualsync.migration.{kind.value.lower()}",
            SpanKindEnum.CONSUMER,
            {
                ATTR_MESSAGE_KIND: kind.value,
                ATTR_MIGRATION_TYPE: item.context.migration_type,
                ATTR_RUN_ID: item.context.migration_id or "",
                ATTR_RETRY_ATTEMPT: item.context.attempt,
            },
        ):
            match kind:
                case MigrationMessageType.MIGRATE_ENTITIES:
                    await self._orchestrator.migrate_entities(item)
                case MigrationMessageType.MIGRATE_BY_PAGE:
                    await self._orchestrator.migrate_page(item)
                case MigrationMessageType.MIGRATE_ENTITY:
                    await self._orchestrator.migrate_entity(item)
                case MigrationMessageType.MIGRATE_STATUS_CHECK:
                    await self._orchestrator.status_check(item)
                case MigrationMessageType.CANCEL_MIGRATION:
                    await self._orchestrator.cancel_sweep(item)
                case _:
                    raise UnknownMessageTypeError(envelope.kind)


__all__ = ["MigrationMessageListener"]
