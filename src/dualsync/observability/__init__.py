"""
Observability utilities for dualsync.

Provides the composition-based Tracer, business telemetry events and
standard span attribute names.

Example:
    >>> from dualsync.observability import create_tracer, MockTelemetryClient
    >>>
    >>> class Worker:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from dualsync.observability.attributes import (
    ATTR_AUDIT_ORIGINATOR,
    ATTR_CHECK_COUNT,
    ATTR_DOMAIN,
    ATTR_ENTITY_ID,
    ATTR_ERROR_TYPE,
    ATTR_ESTIMATED_COUNT,
    ATTR_EVENT_TYPE,
    ATTR_HTTP_METHOD,
    ATTR_HTTP_STATUS_CODE,
    ATTR_LEGACY_KEY,
    ATTR_MAPPING_DUPLICATE,
    ATTR_MAPPING_TYPE,
    ATTR_MESSAGE_KIND,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_MESSAGE_ID,
    ATTR_MESSAGING_OPERATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_MIGRATION_TYPE,
    ATTR_PAGE_NUMBER,
    ATTR_RETRY_ATTEMPT,
    ATTR_RUN_ID,
    ATTR_RUN_STATUS,
    ATTR_TARGET_KEY,
)
from dualsync.observability.telemetry import (
    MockTelemetryClient,
    OpenTelemetryTelemetryClient,
    TelemetryClient,
    TelemetryEvent,
    create_telemetry_client,
)
from dualsync.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    # Telemetry
    "TelemetryClient",
    "TelemetryEvent",
    "OpenTelemetryTelemetryClient",
    "MockTelemetryClient",
    "create_telemetry_client",
    # Attributes
    "ATTR_AUDIT_ORIGINATOR",
    "ATTR_CHECK_COUNT",
    "ATTR_DOMAIN",
    "ATTR_ENTITY_ID",
    "ATTR_ERROR_TYPE",
    "ATTR_ESTIMATED_COUNT",
    "ATTR_EVENT_TYPE",
    "ATTR_HTTP_METHOD",
    "ATTR_HTTP_STATUS_CODE",
    "ATTR_LEGACY_KEY",
    "ATTR_MAPPING_DUPLICATE",
    "ATTR_MAPPING_TYPE",
    "ATTR_MESSAGE_KIND",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MIGRATION_TYPE",
    "ATTR_PAGE_NUMBER",
    "ATTR_RETRY_ATTEMPT",
    "ATTR_RUN_ID",
    "ATTR_RUN_STATUS",
    "ATTR_TARGET_KEY",
]
