"""Unit tests for the exception hierarchy."""

from __future__ import annotations

import pytest

from dualsync.exceptions import (
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
from dualsync.migration.models import MigrationStatus


class TestOperatorErrors:
    """Tests for errors surfaced to operators."""

    @pytest.mark.parametrize(
        ("error", "status_code"),
        [
            (MigrationRunNotFoundError("r1"), 404),
            (MigrationAlreadyInProgressError("alerts", "r1"), 409),
            (InvalidRunStateError("r1", MigrationStatus.COMPLETED, "cancel"), 400),
        ],
    )
    def test_status_codes(self, error: OperatorError, status_code: int) -> None:
        assert error.status_code == status_code
        assert isinstance(error, DualSyncError)

    def test_already_in_progress_message(self) -> None:
        error = MigrationAlreadyInProgressError("alerts", "2024-01-01T00:00:00.000")
        assert str(error) == "Migration already in progress for alerts: 2024-01-01T00:00:00.000"

    def test_already_in_progress_without_run_id(self) -> None:
        assert str(MigrationAlreadyInProgressError("alerts")) == (
            "Migration already in progress for alerts"
        )

    def test_invalid_run_state_message(self) -> None:
        error = InvalidRunStateError("r1", MigrationStatus.STARTED, "refresh")
        assert str(error) == "Cannot refresh migration r1 with status STARTED"
        assert error.operation == "refresh"


class TestInternalErrors:
    """Tests for errors raised inside the engine."""

    def test_transition_error_carries_statuses(self) -> None:
        error = InvalidStatusTransitionError(
            "r1", MigrationStatus.COMPLETED, MigrationStatus.STARTED
        )
        assert error.current_status == MigrationStatus.COMPLETED
        assert "COMPLETED -> STARTED" in str(error)

    def test_legacy_not_found(self) -> None:
        error = LegacyEntityNotFoundError(42, "alert")
        assert error.entity_id == 42
        assert str(error) == "Legacy alert not found: 42"

    def test_mapping_store_error_status(self) -> None:
        assert MappingStoreError("boom", status_code=503).status_code == 503
        assert MappingStoreError("boom").status_code is None

    def test_unknown_message_type(self) -> None:
        error = UnknownMessageTypeError("BOGUS", "migration.alerts")
        assert str(error) == "Unknown message type on migration.alerts: BOGUS"
