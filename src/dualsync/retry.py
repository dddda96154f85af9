"""
Retry dispatch for mapping creation.

Target writes are not idempotent, so once a record has been created in
Target the follow-up mapping creation must not re-run the whole pipeline.
The dispatcher runs the mapping action once and, if it fails, parks the
original payload on a dedicated retry queue. The retry consumer looks the
message type up in a RetryHandlerRegistry and calls the same handler the
first attempt used. Failures on the retry path propagate to the broker, whose
receive-count limit eventually moves the message to the dead-letter queue.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from dualsync.broker.interface import MessageBroker
from dualsync.exceptions import UnknownMessageTypeError
from dualsync.messages import Envelope, MessageContext, WorkItem
from dualsync.observability import (
    ATTR_ERROR_TYPE,
    ATTR_MESSAGE_KIND,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MIGRATION_TYPE,
    ATTR_RETRY_ATTEMPT,
    ATTR_RUN_ID,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

RetryHandler = Callable[[WorkItem], Awaitable[None]]
"""Coroutine re-running a failed action from its queued WorkItem."""


def _kind_name(message_type: Enum | str) -> str:
    return message_type.value if isinstance(message_type, Enum) else message_type


def snapshot_payload(payload: Any) -> Any:
    """
    Serialise a payload into detached JSON-compatible data.

    Pydantic models are dumped with their wire aliases. The result shares no
    references with ``payload``, so later mutation of the original cannot
    change what gets retried.
    """
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json", by_alias=True)
    else:
        data = to_jsonable_python(payload)
    return json.loads(json.dumps(data))


class RetryHandlerRegistry:
    """
    Maps retry message types to their handlers.

    Example:
        >>> registry = RetryHandlerRegistry()
        >>> registry.register(MigrationMessageType.RETRY_MIGRATION_MAPPING, orchestrator.retry_create_mapping)
        >>> await registry.dispatch(envelope)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, RetryHandler] = {}

    def register(self, message_type: Enum | str, handler: RetryHandler) -> None:
        kind = _kind_name(message_type)
        if kind in self._handlers:
            logger.warning(
                f"Replacing retry handler for {kind}",
                extra={"message_type": kind},
            )
        self._handlers[kind] = handler

    def get(self, message_type: Enum | str) -> RetryHandler | None:
        return self._handlers.get(_kind_name(message_type))

    def __contains__(self, message_type: object) -> bool:
        if not isinstance(message_type, Enum | str):
            return False
        return _kind_name(message_type) in self._handlers

    @property
    def kinds(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, envelope: Envelope) -> None:
        """
        Decode a retry envelope and run its handler.

        Raises:
            UnknownMessageTypeError: No handler is registered for the envelope kind
        """
        handler = self._handlers.get(envelope.kind)
        if handler is None:
            raise UnknownMessageTypeError(envelope.kind)
        item = envelope.decode(WorkItem)
        logger.debug(
            f"Retrying {envelope.kind} (attempt {item.context.attempt})",
            extra={
                "message_type": envelope.kind,
                "attempt": item.context.attempt,
                "migration_id": item.context.migration_id,
            },
        )
        await handler(item)


class RetryDispatcher:
    """
    Runs an action once and queues its payload for retry on failure.

    Args:
        broker: Broker used to publish retry messages
        retry_queue: Dedicated retry queue name
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given

    Example:
        >>> dispatcher = RetryDispatcher(broker, "migration.alerts.retry")
        >>> ok = await dispatcher.run_or_requeue(
        ...     lambda: mapping_store.create_mapping(record),
        ...     record,
        ...     MigrationMessageType.RETRY_MIGRATION_MAPPING,
        ...     context,
        ... )
    """

    def __init__(
        self,
        broker: MessageBroker,
        retry_queue: str,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._broker = broker
        self._retry_queue = retry_queue
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def retry_queue(self) -> str:
        return self._retry_queue

    async def run_or_requeue(
        self,
        action: Callable[[], Awaitable[Any]],
        payload: Any,
        message_type: Enum | str,
        context: MessageContext,
    ) -> bool:
        """
        Run ``action``; on failure queue ``payload`` for a retry.

        Args:
            action: Coroutine factory performing the work
            payload: The input the action works on, snapshotted before it runs
            message_type: Retry discriminator the retry consumer dispatches on
            context: Context of the current work item

        Returns:
            True if the action succeeded, False if a retry was queued

        Raises:
            BrokerError: If the retry message could not be published
        """
        snapshot = snapshot_payload(payload)
        kind = _kind_name(message_type)
        try:
            await action()
            return True
        except Exception as e:
            next_context = context.next_attempt()
            logger.warning(
                f"{kind} failed, queueing retry: {e}",
                exc_info=True,
                extra={
                    "message_type": kind,
                    "migration_id": context.migration_id,
                    "migration_type": context.migration_type,
                    "attempt": next_context.attempt,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            with self._tracer.span(
                "dualsync.retry.requeue",
                {
                    ATTR_MESSAGE_KIND: kind,
                    ATTR_MESSAGING_DESTINATION: self._retry_queue,
                    ATTR_RUN_ID: context.migration_id or "",
                    ATTR_MIGRATION_TYPE: context.migration_type,
                    ATTR_RETRY_ATTEMPT: next_context.attempt,
                    ATTR_ERROR_TYPE: type(e).__name__,
                },
            ):
                await self._broker.send(
                    self._retry_queue,
                    Envelope.internal(kind, WorkItem(context=next_context, payload=snapshot)),
                )
            return False


__all__ = [
    "RetryHandler",
    "RetryHandlerRegistry",
    "RetryDispatcher",
    "snapshot_payload",
]
