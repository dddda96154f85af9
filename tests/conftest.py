"""
Shared pytest fixtures for the dualsync tests.

This module provides:
- Observability fixtures (mock_tracer, telemetry)
- Infrastructure fixtures (broker, mapping_store, run_repository)
- Configuration fixtures with short check intervals for fast scenarios
- SQLite fixtures (sqlite_connection)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import aiosqlite
import pytest
import pytest_asyncio

from dualsync.broker import InMemoryBroker
from dualsync.config import MigrationConfig, QueueConfig, SynchronisationConfig
from dualsync.mapping import InMemoryMappingStore
from dualsync.observability import MockTelemetryClient, MockTracer
from dualsync.repositories import InMemoryMigrationRunRepository

# ============================================================================
# Observability Fixtures
# ============================================================================


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer that records span names and attributes."""
    return MockTracer()


@pytest.fixture
def telemetry() -> MockTelemetryClient:
    """Telemetry client that records business events."""
    return MockTelemetryClient()


# ============================================================================
# Infrastructure Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def broker() -> AsyncGenerator[InMemoryBroker, None]:
    """
    In-memory broker that dead-letters on the second failed delivery.

    Stopped after the test so no consumer task outlives the event loop.
    """
    broker = InMemoryBroker(max_receive_count=2, enable_tracing=False)
    yield broker
    await broker.stop()


@pytest.fixture
def mapping_store() -> InMemoryMappingStore:
    """Fresh in-memory Mapping Store."""
    return InMemoryMappingStore()


@pytest.fixture
def run_repository() -> InMemoryMigrationRunRepository:
    """Fresh in-memory run repository."""
    return InMemoryMigrationRunRepository(enable_tracing=False)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def queues() -> QueueConfig:
    """Queue names for the alerts domain."""
    return QueueConfig.for_domain("alerts", max_receive_count=2)


@pytest.fixture
def fast_config() -> MigrationConfig:
    """Migration settings with millisecond check intervals."""
    return MigrationConfig(
        page_size=2,
        complete_check_delay_seconds=0.01,
        complete_check_count=2,
        complete_check_retry_seconds=0.01,
        complete_check_scheduled_retry_seconds=0.01,
        cancel_check_retry_seconds=0.01,
    )


@pytest.fixture
def sync_config() -> SynchronisationConfig:
    """Synchronisation settings for the alerts domain."""
    return SynchronisationConfig(domain="alerts")


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[Any, None]:
    """
    Provide a raw aiosqlite connection to an in-memory database.

    Creates a fresh in-memory SQLite database for each test.
    The connection is automatically closed after the test.
    """
    conn = await aiosqlite.connect(":memory:")
    yield conn
    await conn.close()
