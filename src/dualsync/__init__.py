"""
dualsync - Dual-system migration and synchronisation engine.

This library provides:
- Batch migration runs with paging, completion detection and cancellation
- Mapping Store client enforcing one mapping per legacy record
- Retry dispatch for mapping creation after non-idempotent Target writes
- Live synchronisation of Legacy change events with self-write suppression
- Merge and booking-move reconciliation
- In-memory and RabbitMQ brokers with dead-letter administration
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("dualsync")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from dualsync.broker import (
    DeadLetterAdmin,
    DeadLetterMessage,
    InMemoryBroker,
    MessageBroker,
    RabbitMQBroker,
    RabbitMQBrokerConfig,
)
from dualsync.config import (
    DEFAULT_WRITER_IDENTITY,
    MappingStoreConfig,
    MigrationConfig,
    QueueConfig,
    SynchronisationConfig,
)
from dualsync.domain import (
    BookingView,
    ChangeKind,
    MigrationDomain,
    Page,
    PersonState,
    ReconciliationDomain,
    SyncDomain,
)
from dualsync.exceptions import (
    BrokerError,
    DualSyncError,
    InvalidRunStateError,
    InvalidStatusTransitionError,
    LegacyEntityNotFoundError,
    MappingStoreError,
    MigrationAlreadyInProgressError,
    MigrationRunNotFoundError,
    OperatorError,
    UnknownMessageTypeError,
)
from dualsync.mapping import (
    CreateMappingResult,
    HttpMappingStoreClient,
    InMemoryMappingStore,
    MappingRecord,
    MappingStoreClient,
    MappingType,
)
from dualsync.messages import (
    ChangeEvent,
    Envelope,
    MessageContext,
    MigrationMessageType,
    SynchronisationMessageType,
    WorkItem,
)
from dualsync.migration import (
    MigrationMessageListener,
    MigrationOrchestrator,
    MigrationRun,
    MigrationStatus,
)
from dualsync.repositories import (
    InMemoryMigrationRunRepository,
    MigrationRunRepository,
    PostgreSQLMigrationRunRepository,
    SQLiteMigrationRunRepository,
)
from dualsync.retry import RetryDispatcher, RetryHandlerRegistry
from dualsync.sync import (
    EventFeatureSwitch,
    IdentityReconciler,
    SynchronisationEventRouter,
    SynchronisationService,
)

__all__ = [
    "__version__",
    # Configuration
    "DEFAULT_WRITER_IDENTITY",
    "MigrationConfig",
    "QueueConfig",
    "SynchronisationConfig",
    "MappingStoreConfig",
    # Domain capabilities
    "MigrationDomain",
    "SyncDomain",
    "ReconciliationDomain",
    "Page",
    "ChangeKind",
    "BookingView",
    "PersonState",
    # Exceptions
    "DualSyncError",
    "OperatorError",
    "MigrationRunNotFoundError",
    "MigrationAlreadyInProgressError",
    "InvalidRunStateError",
    "InvalidStatusTransitionError",
    "LegacyEntityNotFoundError",
    "MappingStoreError",
    "BrokerError",
    "UnknownMessageTypeError",
    # Messages
    "Envelope",
    "WorkItem",
    "MessageContext",
    "ChangeEvent",
    "MigrationMessageType",
    "SynchronisationMessageType",
    # Mapping Store
    "MappingStoreClient",
    "InMemoryMappingStore",
    "HttpMappingStoreClient",
    "MappingRecord",
    "MappingType",
    "CreateMappingResult",
    # Broker
    "MessageBroker",
    "InMemoryBroker",
    "RabbitMQBroker",
    "RabbitMQBrokerConfig",
    "DeadLetterMessage",
    "DeadLetterAdmin",
    # Retry
    "RetryDispatcher",
    "RetryHandlerRegistry",
    # Migration
    "MigrationRun",
    "MigrationStatus",
    "MigrationOrchestrator",
    "MigrationMessageListener",
    "MigrationRunRepository",
    "InMemoryMigrationRunRepository",
    "PostgreSQLMigrationRunRepository",
    "SQLiteMigrationRunRepository",
    # Synchronisation
    "EventFeatureSwitch",
    "SynchronisationService",
    "IdentityReconciler",
    "SynchronisationEventRouter",
]
