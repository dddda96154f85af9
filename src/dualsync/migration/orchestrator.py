"""
MigrationOrchestrator - batch migration of one domain from Legacy to Target.

A run moves through the state machine::

    STARTED -> COMPLETED
    STARTED -> CANCELLED_REQUESTED -> CANCELLED

All work travels over the broker as WorkItems on the domain's work queue:

- MIGRATE_ENTITIES: fan out the first page and schedule the first status check
- MIGRATE_BY_PAGE: publish one MIGRATE_ENTITY per id, then the next page
- MIGRATE_ENTITY: fetch, transform, push and map one record
- MIGRATE_STATUS_CHECK: completion detection
- CANCEL_MIGRATION: cancellation sweep

Mapping creation failures after a successful Target push go to the retry
queue as RETRY_MIGRATION_MAPPING, handled by ``retry_create_mapping``.

Completion is a heuristic: the run completes when the mapping count reaches
the estimate, or when the queues have been empty and the mapping count stable
for more than ``complete_check_count`` consecutive checks.

Example:
    >>> orchestrator = MigrationOrchestrator(
    ...     domain=alerts,
    ...     run_repository=InMemoryMigrationRunRepository(),
    ...     mapping_store=InMemoryMappingStore(),
    ...     broker=broker,
    ...     queues=QueueConfig.for_domain("alerts"),
    ... )
    >>> run = await orchestrator.start_migration({"prisonIds": ["MDI"]})
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from dualsync.broker.interface import MessageBroker
from dualsync.config import MigrationConfig, QueueConfig
from dualsync.domain import MigrationDomain
from dualsync.exceptions import (
    InvalidRunStateError,
    InvalidStatusTransitionError,
    LegacyEntityNotFoundError,
    MigrationAlreadyInProgressError,
    MigrationRunNotFoundError,
)
from dualsync.mapping.client import MappingStoreClient
from dualsync.mapping.models import MappingRecord, MappingType
from dualsync.messages import (
    Envelope,
    MessageContext,
    MigrationMessageType,
    PageRequest,
    StatusCheck,
    WorkItem,
)
from dualsync.migration.models import (
    MigrationRun,
    MigrationStatus,
    generate_run_id,
    run_duration_minutes,
)
from dualsync.observability import (
    ATTR_CHECK_COUNT,
    ATTR_ENTITY_ID,
    ATTR_ESTIMATED_COUNT,
    ATTR_MIGRATION_TYPE,
    ATTR_PAGE_NUMBER,
    ATTR_RUN_ID,
    TelemetryClient,
    Tracer,
    create_telemetry_client,
    create_tracer,
)
from dualsync.retry import RetryDispatcher, RetryHandlerRegistry, snapshot_payload

if TYPE_CHECKING:
    from dualsync.repositories.runs import MigrationRunRepository

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Drives migration runs for one domain.

    The orchestrator is generic; everything domain-specific comes from the
    ``MigrationDomain`` capability object.

    Args:
        domain: Capability object for the migrated domain
        run_repository: Persistence for run history
        mapping_store: Mapping Store client
        broker: Message broker
        queues: Work and retry queue names for the domain
        config: Paging and completion-detection settings
        telemetry: Business telemetry client
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given
    """

    def __init__(
        self,
        domain: MigrationDomain,
        run_repository: MigrationRunRepository,
        mapping_store: MappingStoreClient,
        broker: MessageBroker,
        queues: QueueConfig,
        config: MigrationConfig | None = None,
        *,
        telemetry: TelemetryClient | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._domain = domain
        self._runs = run_repository
        self._mappings = mapping_store
        self._broker = broker
        self._queues = queues
        self._config = config or MigrationConfig()
        self._telemetry = telemetry or create_telemetry_client()

        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._dispatcher = RetryDispatcher(broker, queues.retry_queue, tracer=self._tracer)
        self._retry_handlers = RetryHandlerRegistry()
        self._retry_handlers.register(
            MigrationMessageType.RETRY_MIGRATION_MAPPING,
            self.retry_create_mapping,
        )

    @property
    def migration_type(self) -> str:
        return self._domain.name

    @property
    def queues(self) -> QueueConfig:
        return self._queues

    @property
    def retry_handlers(self) -> RetryHandlerRegistry:
        return self._retry_handlers

    def _event(self, suffix: str, properties: dict[str, Any]) -> None:
        self._telemetry.track_event(f"{self.migration_type}-migration-{suffix}", properties)

    async def _send(
        self,
        kind: MigrationMessageType,
        context: MessageContext,
        payload: Any,
        delay_seconds: float = 0,
    ) -> None:
        item = WorkItem(context=context, payload=snapshot_payload(payload))
        await self._broker.send(
            self._queues.work_queue,
            Envelope.internal(kind, item),
            delay_seconds=delay_seconds,
        )

    # ------------------------------------------------------------------
    # Operator surface
    # ------------------------------------------------------------------

    async def start_migration(self, filter: dict[str, Any] | None = None) -> MigrationRun:
        """
        Start a new run.

        Args:
            filter: Opaque selection criteria passed through to the domain

        Returns:
            The persisted run in STARTED status

        Raises:
            MigrationAlreadyInProgressError: A run of this domain is still active
        """
        filter = dict(filter or {})
        with self._tracer.span(
            "dualsync.migration.start",
            {ATTR_MIGRATION_TYPE: self.migration_type},
        ):
            active = await self._runs.get_active(self.migration_type)
            if active is not None:
                raise MigrationAlreadyInProgressError(self.migration_type, active.id)

            estimated_count = await self._domain.get_estimated_count(filter)
            run = MigrationRun(
                id=generate_run_id(),
                migration_type=self.migration_type,
                filter=filter,
                estimated_count=estimated_count,
                started_at=datetime.now(UTC),
            )
            await self._runs.create(run)

            context = self._context_for(run)
            await self._send(MigrationMessageType.MIGRATE_ENTITIES, context, filter)

        logger.info(
            f"Started {self.migration_type} migration {run.id} "
            f"with an estimated {estimated_count} records",
            extra={
                "migration_id": run.id,
                "migration_type": self.migration_type,
                "estimated_count": estimated_count,
            },
        )
        self._event(
            "started",
            {
                "migrationId": run.id,
                "estimatedCount": estimated_count,
                "filter": json.dumps(filter, default=str),
            },
        )
        return run

    async def cancel(self, run_id: str) -> MigrationRun:
        """
        Request cancellation of a run.

        The run moves to CANCELLED_REQUESTED immediately, waiting work is
        purged, and a cancellation sweep marks it CANCELLED once the queues
        stay empty. Cancelling a run that is already being cancelled is a
        no-op.

        Raises:
            MigrationRunNotFoundError: No such run
            InvalidRunStateError: The run has already completed
        """
        run = await self.get_run(run_id)
        if run.is_cancelling:
            logger.info(
                f"Migration {run_id} is already {run.status.value}",
                extra={"migration_id": run_id, "status": run.status.value},
            )
            return run
        if run.status != MigrationStatus.STARTED:
            raise InvalidRunStateError(run_id, run.status, "cancel")

        with self._tracer.span(
            "dualsync.migration.cancel",
            {ATTR_RUN_ID: run_id, ATTR_MIGRATION_TYPE: self.migration_type},
        ):
            run = await self._runs.update_status(run_id, MigrationStatus.CANCELLED_REQUESTED)
            purged = await self._broker.purge(self._queues.work_queue)
            await self._send(
                MigrationMessageType.CANCEL_MIGRATION,
                self._context_for(run),
                StatusCheck(),
                delay_seconds=self._config.cancel_check_retry_seconds,
            )

        logger.info(
            f"Cancel requested for migration {run_id}, purged {purged} messages",
            extra={"migration_id": run_id, "purged_count": purged},
        )
        self._event("cancel-requested", {"migrationId": run_id, "purgedCount": purged})
        return run

    async def refresh(self, run_id: str) -> MigrationRun:
        """
        Re-derive the counts of a completed run.

        Raises:
            MigrationRunNotFoundError: No such run
            InvalidRunStateError: The run is not COMPLETED
        """
        run = await self.get_run(run_id)
        if run.status != MigrationStatus.COMPLETED:
            raise InvalidRunStateError(run_id, run.status, "refresh")

        migrated_count, failed_count = await self._authoritative_counts(run_id)
        await self._runs.update_counts(run_id, migrated_count, failed_count)
        logger.info(
            f"Refreshed migration {run_id}: migrated={migrated_count} failed={failed_count}",
            extra={
                "migration_id": run_id,
                "migrated_count": migrated_count,
                "failed_count": failed_count,
            },
        )
        return await self.get_run(run_id)

    async def force_complete(self, run_id: str) -> MigrationRun:
        """
        Mark a STARTED run COMPLETED without waiting for completion detection.

        Raises:
            MigrationRunNotFoundError: No such run
            InvalidRunStateError: The run is not STARTED
        """
        run = await self.get_run(run_id)
        if run.status != MigrationStatus.STARTED:
            raise InvalidRunStateError(run_id, run.status, "force_complete")
        logger.warning(
            f"Operator forcing completion of migration {run_id}",
            extra={"migration_id": run_id},
        )
        return await self._complete(run, forced=True)

    async def get_run(self, run_id: str) -> MigrationRun:
        run = await self._runs.get(run_id)
        if run is None:
            raise MigrationRunNotFoundError(run_id)
        return run

    async def get_active_run(self) -> MigrationRun | None:
        return await self._runs.get_active(self.migration_type)

    async def list_runs(
        self,
        statuses: Sequence[MigrationStatus] | None = None,
        started_after: datetime | None = None,
        started_before: datetime | None = None,
        limit: int = 100,
    ) -> list[MigrationRun]:
        """List this domain's runs, newest first."""
        return await self._runs.list_runs(
            migration_type=self.migration_type,
            statuses=statuses,
            started_after=started_after,
            started_before=started_before,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Message handlers
    # ------------------------------------------------------------------

    async def migrate_entities(self, item: WorkItem) -> None:
        """Fan out the first page and schedule the first status check."""
        context = item.context
        if await self._is_cancelling(context.migration_id):
            return
        await self._send(
            MigrationMessageType.MIGRATE_BY_PAGE,
            context,
            PageRequest(filter=item.payload or {}, page_size=self._config.page_size),
        )
        await self._send(
            MigrationMessageType.MIGRATE_STATUS_CHECK,
            context,
            StatusCheck(),
            delay_seconds=self._config.complete_check_delay_seconds,
        )

    async def migrate_page(self, item: WorkItem) -> None:
        """Publish a MIGRATE_ENTITY per id on the page, then request the next page."""
        context = item.context
        request = PageRequest.model_validate(item.payload)
        if await self._is_cancelling(context.migration_id):
            logger.info(
                f"Dropping page {request.page_number} of cancelled migration "
                f"{context.migration_id}",
                extra={"migration_id": context.migration_id, "page_number": request.page_number},
            )
            return

        with self._tracer.span(
            "dualsync.migration.migrate_page",
            {
                ATTR_RUN_ID: context.migration_id or "",
                ATTR_MIGRATION_TYPE: self.migration_type,
                ATTR_PAGE_NUMBER: request.page_number,
            },
        ):
            page = await self._domain.get_ids(
                request.filter, request.page_number, request.page_size
            )
            for entity_id in page.ids:
                await self._send(MigrationMessageType.MIGRATE_ENTITY, context, entity_id)
            if not page.last and page.ids:
                await self._send(
                    MigrationMessageType.MIGRATE_BY_PAGE,
                    context,
                    request.model_copy(update={"page_number": request.page_number + 1}),
                )

        logger.debug(
            f"Page {request.page_number} of migration {context.migration_id} "
            f"produced {len(page.ids)} ids",
            extra={
                "migration_id": context.migration_id,
                "page_number": request.page_number,
                "id_count": len(page.ids),
                "last": page.last,
            },
        )

    async def migrate_entity(self, item: WorkItem) -> None:
        """
        Migrate one record.

        Raises:
            Exception: Any Legacy or Target failure other than not-found, so
                that broker redelivery applies
        """
        context = item.context
        entity_id = item.payload
        if await self._is_cancelling(context.migration_id):
            logger.debug(
                f"Skipping {entity_id} for cancelled migration {context.migration_id}",
                extra={"migration_id": context.migration_id, "entity_id": entity_id},
            )
            return

        legacy_key = self._domain.legacy_key(entity_id)
        telemetry = {"migrationId": context.migration_id, "legacyKey": json.dumps(legacy_key)}

        with self._tracer.span(
            "dualsync.migration.migrate_entity",
            {
                ATTR_RUN_ID: context.migration_id or "",
                ATTR_MIGRATION_TYPE: self.migration_type,
                ATTR_ENTITY_ID: str(entity_id),
            },
        ):
            existing = await self._mappings.find_by_legacy_key(legacy_key)
            if existing is not None:
                logger.info(
                    f"Will not migrate {legacy_key}: already mapped to {existing.target_key}",
                    extra={"migration_id": context.migration_id, "target_key": existing.target_key},
                )
                self._event("entity-skipped", {**telemetry, "targetKey": existing.target_key})
                return

            try:
                entity = await self._domain.fetch_entity(entity_id)
                transformed = await self._domain.transform(entity)
                target_key = await self._domain.push_to_target(entity_id, transformed)
            except LegacyEntityNotFoundError as e:
                logger.warning(
                    f"Legacy record {entity_id} no longer exists, skipping",
                    extra={"migration_id": context.migration_id, "entity_id": str(entity_id)},
                )
                self._event("entity-not-found", {**telemetry, "reason": str(e)})
                return
            except Exception as e:
                await self._record_failure(context, entity_id, e)
                self._event(
                    "entity-failed",
                    {**telemetry, "reason": str(e), "error": type(e).__name__},
                )
                raise

            record = MappingRecord(
                legacy_key=legacy_key,
                target_key=target_key,
                mapping_type=MappingType.MIGRATED,
                label=context.migration_id,
            )
            created = await self._dispatcher.run_or_requeue(
                lambda: self.create_mapping(record, context),
                record,
                MigrationMessageType.RETRY_MIGRATION_MAPPING,
                context,
            )

        properties = {**telemetry, "targetKey": target_key}
        if not created:
            properties["mapping"] = "initial-failure"
        self._event("entity-migrated", properties)

    async def create_mapping(self, record: MappingRecord, context: MessageContext) -> None:
        """
        Create the mapping for a migrated record.

        Used for the first attempt and for retries. A duplicate is reported
        but is not a failure.
        """
        result = await self._mappings.create_mapping(record)
        if result.is_duplicate:
            existing = result.existing
            duplicate = result.duplicate or record
            logger.warning(
                f"Duplicate mapping for {record.legacy_key}: existing "
                f"{existing.target_key if existing else None}, attempted {duplicate.target_key}",
                extra={"migration_id": context.migration_id, "legacy_key": record.key},
            )
            self._event(
                "duplicate",
                {
                    "migrationId": context.migration_id,
                    "existingLegacyKey": json.dumps(existing.legacy_key) if existing else None,
                    "existingTargetKey": existing.target_key if existing else None,
                    "existingLabel": existing.label if existing else None,
                    "duplicateLegacyKey": json.dumps(duplicate.legacy_key),
                    "duplicateTargetKey": duplicate.target_key,
                    "duplicateLabel": duplicate.label,
                },
            )
        await self._bump(context.migration_id, migrated=True)

    async def retry_create_mapping(self, item: WorkItem) -> None:
        """Retry a mapping creation that failed after the Target push."""
        record = MappingRecord.model_validate(item.payload)
        await self.create_mapping(record, item.context)

    async def status_check(self, item: WorkItem) -> None:
        """Completion detection for a run."""
        context = item.context
        check = StatusCheck.model_validate(item.payload)
        run = await self._runs.get(context.migration_id or "")
        if run is None:
            logger.warning(
                f"Status check for unknown migration {context.migration_id}",
                extra={"migration_id": context.migration_id},
            )
            return
        if run.status != MigrationStatus.STARTED:
            logger.debug(
                f"Status check ignored, migration {run.id} is {run.status.value}",
                extra={"migration_id": run.id, "status": run.status.value},
            )
            return

        with self._tracer.span(
            "dualsync.migration.status_check",
            {
                ATTR_RUN_ID: run.id,
                ATTR_MIGRATION_TYPE: self.migration_type,
                ATTR_CHECK_COUNT: check.check_count,
                ATTR_ESTIMATED_COUNT: run.estimated_count,
            },
        ):
            migrated = await self._mappings.count_by_label(run.id)
            if migrated >= run.estimated_count:
                await self._complete(run)
                return

            if await self._queues_busy():
                await self._send(
                    MigrationMessageType.MIGRATE_STATUS_CHECK,
                    context,
                    check.reset(migrated),
                    delay_seconds=self._config.complete_check_scheduled_retry_seconds,
                )
                return

            if migrated == check.last_migrated_count:
                next_check = check.increment(migrated)
            else:
                next_check = check.reset(migrated)

            if next_check.has_checked_enough_times(self._config.complete_check_count):
                await self._complete(run)
                return

            await self._send(
                MigrationMessageType.MIGRATE_STATUS_CHECK,
                context,
                next_check,
                delay_seconds=self._config.complete_check_retry_seconds,
            )

    async def cancel_sweep(self, item: WorkItem) -> None:
        """Purge leftover work until the queues stay empty, then mark CANCELLED."""
        context = item.context
        check = StatusCheck.model_validate(item.payload)
        run = await self._runs.get(context.migration_id or "")
        if run is None or run.status != MigrationStatus.CANCELLED_REQUESTED:
            return

        if await self._queues_busy():
            await self._broker.purge(self._queues.work_queue)
            await self._send(
                MigrationMessageType.CANCEL_MIGRATION,
                context,
                check.reset(0),
                delay_seconds=self._config.cancel_check_retry_seconds,
            )
            return

        next_check = check.increment(0)
        if not next_check.has_checked_enough_times(self._config.complete_check_count):
            await self._send(
                MigrationMessageType.CANCEL_MIGRATION,
                context,
                next_check,
                delay_seconds=self._config.complete_check_retry_seconds,
            )
            return

        migrated_count, failed_count = await self._authoritative_counts(run.id)
        try:
            run = await self._runs.update_status(
                run.id,
                MigrationStatus.CANCELLED,
                migrated_count=migrated_count,
                failed_count=failed_count,
            )
        except InvalidStatusTransitionError as e:
            logger.warning(f"Could not mark {run.id} cancelled: {e}", extra={"migration_id": run.id})
            return

        logger.info(
            f"Migration {run.id} cancelled",
            extra={
                "migration_id": run.id,
                "migrated_count": migrated_count,
                "failed_count": failed_count,
            },
        )
        self._event(
            "cancelled",
            {
                "migrationId": run.id,
                "estimatedCount": run.estimated_count,
                "migratedCount": migrated_count,
                "failedCount": failed_count,
                "durationMinutes": run_duration_minutes(run.id),
            },
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _context_for(self, run: MigrationRun) -> MessageContext:
        return MessageContext(
            migration_id=run.id,
            migration_type=self.migration_type,
            estimated_count=run.estimated_count,
        )

    async def _is_cancelling(self, run_id: str | None) -> bool:
        if run_id is None:
            return False
        run = await self._runs.get(run_id)
        return run is not None and run.is_cancelling

    async def _queues_busy(self) -> bool:
        for queue in (self._queues.work_queue, self._queues.retry_queue):
            if await self._broker.pending_count(queue) > 0:
                return True
        return False

    async def _authoritative_counts(self, run_id: str) -> tuple[int, int]:
        migrated_count = await self._mappings.count_by_label(run_id)
        failed_count = 0
        for queue in (self._queues.work_queue, self._queues.retry_queue):
            failed_count += await self._broker.dead_letter_count(queue)
        return migrated_count, failed_count

    async def _complete(self, run: MigrationRun, forced: bool = False) -> MigrationRun:
        migrated_count, failed_count = await self._authoritative_counts(run.id)
        try:
            run = await self._runs.update_status(
                run.id,
                MigrationStatus.COMPLETED,
                migrated_count=migrated_count,
                failed_count=failed_count,
            )
        except InvalidStatusTransitionError as e:
            if forced:
                raise
            logger.warning(
                f"Could not complete {run.id}: {e}",
                extra={"migration_id": run.id, "status": e.current_status.value},
            )
            return run

        logger.info(
            f"Migration {run.id} completed: migrated={migrated_count} failed={failed_count}",
            extra={
                "migration_id": run.id,
                "migrated_count": migrated_count,
                "failed_count": failed_count,
                "forced": forced,
            },
        )
        self._event(
            "completed",
            {
                "migrationId": run.id,
                "estimatedCount": run.estimated_count,
                "migratedCount": migrated_count,
                "failedCount": failed_count,
                "durationMinutes": run_duration_minutes(run.id),
                "forced": forced,
            },
        )
        return run

    async def _record_failure(self, context: MessageContext, entity_id: Any, error: Exception) -> None:
        logger.error(
            f"Failed to migrate {entity_id} in migration {context.migration_id}: {error}",
            exc_info=True,
            extra={
                "migration_id": context.migration_id,
                "entity_id": str(entity_id),
                "error_type": type(error).__name__,
            },
        )
        await self._bump(context.migration_id, migrated=False)

    async def _bump(self, run_id: str | None, *, migrated: bool) -> None:
        # In-flight counters are progress hints; completion overwrites them and
        # the repository ignores increments once the run is terminal.
        if run_id is None:
            return
        try:
            if migrated:
                await self._runs.increment_migrated(run_id)
            else:
                await self._runs.increment_failed(run_id)
        except MigrationRunNotFoundError:
            logger.warning(
                f"Cannot update counters of unknown migration {run_id}",
                extra={"migration_id": run_id},
            )


__all__ = ["MigrationOrchestrator"]
