"""
SynchronisationEventRouter - entry point for a domain's synchronisation queues.

Envelopes arrive from two sources on the same handler:

- ``Notification``: a Legacy change event. It passes the feature switch and
  self-write suppression, then is dispatched by its ChangeKind.
- A retry kind (e.g. RETRY_SYNCHRONISATION_MAPPING): a queued mapping retry.
  Retries skip the feature switch and self-write checks; the Target write
  they follow up on already happened.

Self-write suppression: when the synchroniser writes to Legacy it stamps its
own writer identity as the audit originator. Legacy then raises an event for
that write; the router drops it so a Target -> Legacy -> Target cycle cannot
form.
"""

from __future__ import annotations

import logging

from dualsync.broker.interface import MessageBroker
from dualsync.domain import ChangeKind
from dualsync.messages import NOTIFICATION, ChangeEvent, Envelope
from dualsync.observability import (
    ATTR_AUDIT_ORIGINATOR,
    ATTR_DOMAIN,
    ATTR_EVENT_TYPE,
    SpanKindEnum,
    TelemetryClient,
    Tracer,
    create_telemetry_client,
    create_tracer,
)
from dualsync.retry import RetryHandlerRegistry
from dualsync.sync.feature_switch import EventFeatureSwitch
from dualsync.sync.reconciler import IdentityReconciler
from dualsync.sync.service import SynchronisationService

logger = logging.getLogger(__name__)


class SynchronisationEventRouter:
    """
    Routes synchronisation envelopes for one domain.

    Args:
        service: Generic insert/update/delete handlers for the domain
        reconciler: Merge and booking-move handler, if the domain needs one
        feature_switch: Per-event switches (default: built from the service config)
        writer_identity: Audit originator of the synchroniser's own writes
            (default: from the service config)
        retry_handlers: Retry kinds accepted (default: the service's)
        telemetry: Business telemetry client
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create a tracer when none is given

    Example:
        >>> router = SynchronisationEventRouter(service, reconciler)
        >>> router.subscribe(broker)
        >>> await broker.start()
    """

    def __init__(
        self,
        service: SynchronisationService,
        reconciler: IdentityReconciler | None = None,
        *,
        feature_switch: EventFeatureSwitch | None = None,
        writer_identity: str | None = None,
        retry_handlers: RetryHandlerRegistry | None = None,
        telemetry: TelemetryClient | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._service = service
        self._reconciler = reconciler
        self._domain = service.domain
        self._feature_switch = feature_switch or EventFeatureSwitch.from_config(service.config)
        self._writer_identity = writer_identity or service.config.writer_identity
        self._retry_handlers = retry_handlers or service.retry_handlers
        self._telemetry = telemetry or create_telemetry_client()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def domain_name(self) -> str:
        return self._domain.name

    def subscribe(self, broker: MessageBroker) -> None:
        """Register on the domain's event and retry queues."""
        config = self._service.config
        broker.subscribe(config.event_queue, self.on_message)
        broker.subscribe(config.retry_queue, self.on_message)

    async def on_message(self, envelope: Envelope) -> None:
        match envelope.kind:
            case kind if kind == NOTIFICATION:
                await self._on_notification(envelope)
            case kind if kind in self._retry_handlers:
                await self._retry_handlers.dispatch(envelope)
            case kind:
                logger.warning(
                    f"Dropping unrecognised {kind} message for {self.domain_name}",
                    extra={
                        "domain": self.domain_name,
                        "message_type": kind,
                        "message_id": envelope.message_id,
                    },
                )

    async def _on_notification(self, envelope: Envelope) -> None:
        event = envelope.decode(ChangeEvent)
        event_type = envelope.event_type or event.event_type

        if not self._feature_switch.is_enabled(event_type, self.domain_name):
            logger.info(
                f"Feature switch is disabled for {self.domain_name} event {event_type}",
                extra={"domain": self.domain_name, "event_type": event_type},
            )
            return

        if event.audit_originator == self._writer_identity:
            logger.debug(
                f"Ignoring {event_type} raised by our own write",
                extra={"domain": self.domain_name, "event_type": event_type},
            )
            self._telemetry.track_event(
                f"{self.domain_name}-synchronisation-skipped",
                {"eventType": event_type, **event.payload},
            )
            return

        kind = self._domain.event_kinds.get(event_type)
        with self._tracer.span_with_kind(
            "dualsync.sync.route",
            SpanKindEnum.CONSUMER,
            {
                ATTR_DOMAIN: self.domain_name,
                ATTR_EVENT_TYPE: event_type,
                ATTR_AUDIT_ORIGINATOR: event.audit_originator or "",
            },
        ):
            match kind:
                case ChangeKind.INSERT | ChangeKind.UPDATE | ChangeKind.CHILD_CHANGED:
                    await self._service.synchronise(event)
                case ChangeKind.DELETE:
                    await self._service.delete(event)
                case ChangeKind.MERGE:
                    await self._require_reconciler(event_type).merge(event)
                case ChangeKind.BOOKING_MOVED:
                    await self._require_reconciler(event_type).booking_moved(event)
                case None:
                    logger.warning(
                        f"Received unexpected event type {event_type} for {self.domain_name}",
                        extra={"domain": self.domain_name, "event_type": event_type},
                    )

    def _require_reconciler(self, event_type: str) -> IdentityReconciler:
        if self._reconciler is None:
            raise RuntimeError(
                f"{self.domain_name} maps {event_type} to a reconciliation but has no reconciler"
            )
        return self._reconciler


__all__ = ["SynchronisationEventRouter"]
