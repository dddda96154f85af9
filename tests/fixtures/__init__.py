"""Shared test fixtures for dualsync tests."""

from tests.fixtures.domains import (
    FakeMigrationDomain,
    FakeReconciliationDomain,
    FakeSyncDomain,
    FlakyMappingStore,
    StaleLookupMappingStore,
    person,
)

__all__ = [
    "FakeMigrationDomain",
    "FakeReconciliationDomain",
    "FakeSyncDomain",
    "FlakyMappingStore",
    "StaleLookupMappingStore",
    "person",
]
