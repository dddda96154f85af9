"""
Batch migration of records from Legacy to Target.

Example:
    >>> from dualsync.migration import MigrationOrchestrator, MigrationMessageListener
    >>>
    >>> orchestrator = MigrationOrchestrator(domain, runs, mappings, broker, queues)
    >>> MigrationMessageListener(orchestrator).subscribe(broker)
    >>> await broker.start()
    >>> run = await orchestrator.start_migration({"fromDate": "2024-01-01"})
"""

from dualsync.migration.listener import MigrationMessageListener
from dualsync.migration.models import (
    VALID_TRANSITIONS,
    MigrationRun,
    MigrationStatus,
    generate_run_id,
    run_duration_minutes,
    run_started_at,
)
from dualsync.migration.orchestrator import MigrationOrchestrator

__all__ = [
    "MigrationStatus",
    "VALID_TRANSITIONS",
    "MigrationRun",
    "generate_run_id",
    "run_started_at",
    "run_duration_minutes",
    "MigrationOrchestrator",
    "MigrationMessageListener",
]
