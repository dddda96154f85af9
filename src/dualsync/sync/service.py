"""
SynchronisationService - generic live-event handlers for one domain.

Each handler reads the current Legacy state and consults the Mapping Store:

- no mapping: create the record in Target, then create a LEGACY_CREATED
  mapping through the Retry Dispatcher
- mapping present: update the Target record in place

A mapping failure after the Target create is retried from the domain's retry
queue (RETRY_SYNCHRONISATION_MAPPING) instead of redelivering the event,
which would create a second Target record.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dualsync.broker.interface import MessageBroker
from dualsync.config import SynchronisationConfig
from dualsync.domain import SyncDomain
from dualsync.exceptions import LegacyEntityNotFoundError
from dualsync.mapping.client import MappingStoreClient
from dualsync.mapping.models import MappingRecord, MappingType
from dualsync.messages import ChangeEvent, MessageContext, SynchronisationMessageType, WorkItem
from dualsync.observability import (
    ATTR_DOMAIN,
    ATTR_EVENT_TYPE,
    ATTR_LEGACY_KEY,
    ATTR_TARGET_KEY,
    TelemetryClient,
    Tracer,
    create_telemetry_client,
    create_tracer,
)
from dualsync.retry import RetryDispatcher, RetryHandlerRegistry

logger = logging.getLogger(__name__)


class SynchronisationService:
    """
    Keeps Target in step with Legacy change events for one domain.

    Args:
        domain: Capability object for the synchronised domain
        mapping_store: Mapping Store client
        broker: Broker used for mapping retries
        config: Queue names and writer identity for the domain
        telemetry: Business telemetry client
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given
    """

    def __init__(
        self,
        domain: SyncDomain,
        mapping_store: MappingStoreClient,
        broker: MessageBroker,
        config: SynchronisationConfig | None = None,
        *,
        telemetry: TelemetryClient | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._domain = domain
        self._mappings = mapping_store
        self._config = config or SynchronisationConfig(domain=domain.name)
        self._telemetry = telemetry or create_telemetry_client()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._dispatcher = RetryDispatcher(broker, self._config.retry_queue, tracer=self._tracer)
        self._retry_handlers = RetryHandlerRegistry()
        self._retry_handlers.register(
            SynchronisationMessageType.RETRY_SYNCHRONISATION_MAPPING,
            self.retry_create_mapping,
        )

    @property
    def domain(self) -> SyncDomain:
        return self._domain

    @property
    def config(self) -> SynchronisationConfig:
        return self._config

    @property
    def retry_handlers(self) -> RetryHandlerRegistry:
        return self._retry_handlers

    def _event(self, suffix: str, properties: dict[str, Any]) -> None:
        self._telemetry.track_event(f"{self._domain.name}-{suffix}", properties)

    def _properties(self, event: ChangeEvent, legacy_key: dict[str, Any]) -> dict[str, Any]:
        return {
            "eventType": event.event_type,
            "legacyKey": json.dumps(legacy_key, sort_keys=True, default=str),
            **{k: v for k, v in event.payload.items() if isinstance(v, str | int)},
        }

    async def synchronise(self, event: ChangeEvent) -> None:
        """
        Create or update the Target record for an insert, update or child event.

        Raises:
            Exception: Legacy, Target or Mapping Store lookup failures, so the
                event is redelivered
        """
        legacy_key = self._domain.legacy_key_for(event)
        telemetry = self._properties(event, legacy_key)

        with self._tracer.span(
            "dualsync.sync.synchronise",
            {
                ATTR_DOMAIN: self._domain.name,
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_LEGACY_KEY: json.dumps(legacy_key, sort_keys=True, default=str),
            },
        ):
            try:
                legacy_entity = await self._domain.fetch_legacy(event)
            except LegacyEntityNotFoundError as e:
                logger.warning(
                    f"Legacy record for {event.event_type} {legacy_key} no longer exists",
                    extra={"domain": self._domain.name, "event_type": event.event_type},
                )
                self._event("synchronisation-not-found", {**telemetry, "reason": str(e)})
                return

            mapping = await self._mappings.find_by_legacy_key(legacy_key)
            if mapping is not None:
                await self._domain.update_on_target(mapping.target_key, legacy_entity)
                self._event(
                    "synchronisation-updated-success",
                    {**telemetry, "targetKey": mapping.target_key},
                )
                return

            target_key = await self._domain.create_on_target(event, legacy_entity)
            record = MappingRecord(
                legacy_key=legacy_key,
                target_key=target_key,
                mapping_type=MappingType.LEGACY_CREATED,
            )
            context = MessageContext(
                migration_type=self._domain.name,
                telemetry={k: str(v) for k, v in telemetry.items()},
            )
            created = await self._dispatcher.run_or_requeue(
                lambda: self.create_mapping(record, context),
                record,
                SynchronisationMessageType.RETRY_SYNCHRONISATION_MAPPING,
                context,
            )

        properties = {**telemetry, "targetKey": target_key}
        if not created:
            properties["mapping"] = "initial-failure"
        self._event("synchronisation-created-success", properties)

    async def delete(self, event: ChangeEvent) -> None:
        """
        Remove the Target record for a delete event.

        The mapping is deleted best-effort after the Target delete; a failure
        there is reported for manual repair rather than retried.
        """
        legacy_key = self._domain.legacy_key_for(event)
        telemetry = self._properties(event, legacy_key)

        mapping = await self._mappings.find_by_legacy_key(legacy_key)
        if mapping is None:
            logger.info(
                f"No mapping for deleted {legacy_key}, ignoring",
                extra={"domain": self._domain.name, "event_type": event.event_type},
            )
            self._event("synchronisation-deleted-ignored", telemetry)
            return

        telemetry["targetKey"] = mapping.target_key
        with self._tracer.span(
            "dualsync.sync.delete",
            {
                ATTR_DOMAIN: self._domain.name,
                ATTR_EVENT_TYPE: event.event_type,
                ATTR_TARGET_KEY: mapping.target_key,
            },
        ):
            await self._domain.delete_on_target(mapping.target_key)
            try:
                await self._mappings.delete_by_legacy_key(legacy_key)
            except Exception as e:
                logger.error(
                    f"Deleted {mapping.target_key} from Target but its mapping remains: {e}",
                    exc_info=True,
                    extra={"domain": self._domain.name, "target_key": mapping.target_key},
                )
                self._event("mapping-deleted-failed", {**telemetry, "reason": str(e)})

        self._event("synchronisation-deleted-success", telemetry)

    async def create_mapping(self, record: MappingRecord, context: MessageContext) -> None:
        """Create a sync mapping; a duplicate is reported, not raised."""
        result = await self._mappings.create_mapping(record)
        if not result.is_duplicate:
            return
        existing = result.existing
        duplicate = result.duplicate or record
        logger.warning(
            f"Duplicate mapping for {record.legacy_key}",
            extra={"domain": self._domain.name, "legacy_key": record.key},
        )
        self._event(
            "synchronisation-duplicate",
            {
                **context.telemetry,
                "existingTargetKey": existing.target_key if existing else None,
                "duplicateTargetKey": duplicate.target_key,
            },
        )

    async def retry_create_mapping(self, item: WorkItem) -> None:
        """Retry a mapping creation queued after a successful Target create."""
        record = MappingRecord.model_validate(item.payload)
        await self.create_mapping(record, item.context)
        self._event(
            "mapping-retry-success",
            {**item.context.telemetry, "targetKey": record.target_key, "attempt": item.context.attempt},
        )


__all__ = ["SynchronisationService"]
