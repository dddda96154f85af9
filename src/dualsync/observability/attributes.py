"""
Standard span attributes for dualsync.

Attribute constants used across components for consistent span naming.
Messaging attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from dualsync.observability.attributes import ATTR_RUN_ID, ATTR_MIGRATION_TYPE
    >>>
    >>> with tracer.span(
    ...     "dualsync.migration.start",
    ...     {ATTR_RUN_ID: run.id, ATTR_MIGRATION_TYPE: run.migration_type},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_RUN_ID = "dualsync.migration.run_id"
"""Time-derived id of the migration run."""

ATTR_MIGRATION_TYPE = "dualsync.migration.type"
"""Domain being migrated (e.g., 'alerts')."""

ATTR_RUN_STATUS = "dualsync.migration.status"
"""Status of the run after the operation."""

ATTR_ESTIMATED_COUNT = "dualsync.migration.estimated_count"
"""Estimated number of records in the run (integer)."""

ATTR_PAGE_NUMBER = "dualsync.migration.page_number"
"""Zero-based page being enumerated (integer)."""

ATTR_CHECK_COUNT = "dualsync.migration.check_count"
"""Consecutive stable completion checks (integer)."""

# =============================================================================
# Entity / Mapping Attributes
# =============================================================================

ATTR_ENTITY_ID = "dualsync.entity.id"
"""Legacy identifier of the record being processed."""

ATTR_LEGACY_KEY = "dualsync.mapping.legacy_key"
"""Canonical legacy key of a mapping record."""

ATTR_TARGET_KEY = "dualsync.mapping.target_key"
"""Target-assigned identifier of a mapping record."""

ATTR_MAPPING_TYPE = "dualsync.mapping.type"
"""How the mapping was created (MIGRATED, LEGACY_CREATED, TARGET_CREATED)."""

ATTR_MAPPING_DUPLICATE = "dualsync.mapping.duplicate"
"""Whether a create request was answered with a duplicate (boolean)."""

# =============================================================================
# Synchronisation Attributes
# =============================================================================

ATTR_DOMAIN = "dualsync.sync.domain"
"""Domain whose live event is being handled."""

ATTR_EVENT_TYPE = "dualsync.sync.event_type"
"""Live change-event name (e.g., 'ALERT-INSERTED')."""

ATTR_AUDIT_ORIGINATOR = "dualsync.sync.audit_originator"
"""Process that last wrote the Legacy record."""

ATTR_MESSAGE_KIND = "dualsync.message.kind"
"""Envelope discriminator of a broker message."""

ATTR_RETRY_ATTEMPT = "dualsync.retry.attempt"
"""Retry attempt number carried in the message context (integer)."""

# =============================================================================
# Messaging Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_MESSAGING_SYSTEM = "messaging.system"
"""Messaging system identifier (e.g., 'rabbitmq', 'memory')."""

ATTR_MESSAGING_DESTINATION = "messaging.destination.name"
"""Queue name a message is sent to or received from."""

ATTR_MESSAGING_OPERATION = "messaging.operation"
"""Messaging operation ('publish', 'receive', 'purge')."""

ATTR_MESSAGING_MESSAGE_ID = "messaging.message.id"
"""Broker message id."""

# =============================================================================
# HTTP Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_HTTP_METHOD = "http.request.method"
"""HTTP method of an outbound request."""

ATTR_HTTP_STATUS_CODE = "http.response.status_code"
"""HTTP status of an outbound request (integer)."""

# =============================================================================
# Error Attributes
# =============================================================================

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails."""

__all__ = [
    "ATTR_RUN_ID",
    "ATTR_MIGRATION_TYPE",
    "ATTR_RUN_STATUS",
    "ATTR_ESTIMATED_COUNT",
    "ATTR_PAGE_NUMBER",
    "ATTR_CHECK_COUNT",
    "ATTR_ENTITY_ID",
    "ATTR_LEGACY_KEY",
    "ATTR_TARGET_KEY",
    "ATTR_MAPPING_TYPE",
    "ATTR_MAPPING_DUPLICATE",
    "ATTR_DOMAIN",
    "ATTR_EVENT_TYPE",
    "ATTR_AUDIT_ORIGINATOR",
    "ATTR_MESSAGE_KIND",
    "ATTR_RETRY_ATTEMPT",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_OPERATION",
    "ATTR_MESSAGING_MESSAGE_ID",
    "ATTR_HTTP_METHOD",
    "ATTR_HTTP_STATUS_CODE",
    "ATTR_ERROR_TYPE",
]
