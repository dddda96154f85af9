"""
Configuration classes for migration and synchronisation.

This module provides:
- MigrationConfig: Paging and completion-detection thresholds for a run
- QueueConfig: Queue names and delivery limits for one domain
- SynchronisationConfig: Live-event settings for one domain
- MappingStoreConfig: Location of the Mapping Store API

All configuration objects are frozen dataclasses validated on construction.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Self

DEFAULT_WRITER_IDENTITY = "DPS_SYNCHRONISATION"
"""Audit originator stamped on Legacy writes made by the synchroniser itself."""


class _DictMixin:
    """Round-trip helpers shared by the configuration dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """
        Build a config from a dictionary, ignoring unknown keys.

        Args:
            data: Mapping of field names to values

        Returns:
            A validated configuration instance
        """
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class MigrationConfig(_DictMixin):
    """
    Configuration for a migration run.

    Completion is detected heuristically: once the work queues are drained,
    the migrated count must stay unchanged for more than
    ``complete_check_count`` consecutive checks.

    Attributes:
        page_size: Number of ids requested from Legacy per page
        complete_check_delay_seconds: Delay before the first status check
        complete_check_count: Stable checks required before completing
        complete_check_retry_seconds: Delay between checks once queues are empty
        complete_check_scheduled_retry_seconds: Delay between checks while
            messages are still waiting on the queues
        cancel_check_retry_seconds: Delay between cancellation sweeps

    Example:
        >>> config = MigrationConfig(page_size=500, complete_check_count=9)
    """

    page_size: int = 1000
    complete_check_delay_seconds: float = 30.0
    complete_check_count: int = 9
    complete_check_retry_seconds: float = 1.0
    complete_check_scheduled_retry_seconds: float = 10.0
    cancel_check_retry_seconds: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.page_size < 1:
            raise ValueError(f"page_size must be positive, got {self.page_size}.")

        if self.complete_check_count < 0:
            raise ValueError(
                f"complete_check_count must be >= 0, got {self.complete_check_count}."
            )

        for name in (
            "complete_check_delay_seconds",
            "complete_check_retry_seconds",
            "complete_check_scheduled_retry_seconds",
            "cancel_check_retry_seconds",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}.")


@dataclass(frozen=True)
class QueueConfig(_DictMixin):
    """
    Queue names and delivery limits for one domain.

    Attributes:
        work_queue: Queue carrying first-attempt work
        retry_queue: Queue carrying mapping-creation retries
        max_receive_count: Deliveries before a message is dead-lettered
        max_concurrent_messages: Messages a consumer handles at once
    """

    work_queue: str
    retry_queue: str
    max_receive_count: int = 5
    max_concurrent_messages: int = 10

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.work_queue:
            raise ValueError("work_queue must not be empty.")
        if not self.retry_queue:
            raise ValueError("retry_queue must not be empty.")
        if self.work_queue == self.retry_queue:
            raise ValueError(
                f"retry_queue must differ from work_queue, both are {self.work_queue!r}."
            )
        if self.max_receive_count < 1:
            raise ValueError(f"max_receive_count must be positive, got {self.max_receive_count}.")
        if self.max_concurrent_messages < 1:
            raise ValueError(
                f"max_concurrent_messages must be positive, got {self.max_concurrent_messages}."
            )

    @classmethod
    def for_domain(cls, domain: str, **kwargs: Any) -> QueueConfig:
        """
        Build the conventional queue names for a domain.

        Example:
            >>> QueueConfig.for_domain("alerts").retry_queue
            'migration.alerts.retry'
        """
        return cls(
            work_queue=f"migration.{domain}",
            retry_queue=f"migration.{domain}.retry",
            **kwargs,
        )


@dataclass(frozen=True)
class SynchronisationConfig(_DictMixin):
    """
    Live-event synchronisation settings for one domain.

    Attributes:
        domain: Domain name used for telemetry and feature-switch lookups
        event_queue: Queue carrying Legacy change notifications
        retry_queue: Queue carrying mapping-creation retries
        writer_identity: Audit originator marking the synchroniser's own writes
        event_switches: Enabled flags keyed by "domain.EVENT" or "EVENT"
        default_enabled: Whether unlisted events are processed
    """

    domain: str
    event_queue: str = ""
    retry_queue: str = ""
    writer_identity: str = DEFAULT_WRITER_IDENTITY
    event_switches: dict[str, bool] = field(default_factory=dict)
    default_enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values and fill in default queue names."""
        if not self.domain:
            raise ValueError("domain must not be empty.")
        if not self.writer_identity:
            raise ValueError("writer_identity must not be empty.")
        if not self.event_queue:
            object.__setattr__(self, "event_queue", f"synchronisation.{self.domain}")
        if not self.retry_queue:
            object.__setattr__(self, "retry_queue", f"synchronisation.{self.domain}.retry")


@dataclass(frozen=True)
class MappingStoreConfig(_DictMixin):
    """
    Location of the Mapping Store API for one domain.

    Attributes:
        base_url: Root URL of the mapping service
        mapping_path: Path for create, find and delete
        count_path: Path for the count-by-label query
        timeout: Request timeout in seconds
    """

    base_url: str
    mapping_path: str = "/mapping"
    count_path: str = "/mapping/count"
    timeout: float = 10.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.base_url:
            raise ValueError("base_url must not be empty.")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}.")
        for name in ("mapping_path", "count_path"):
            value = getattr(self, name)
            if not value.startswith("/"):
                raise ValueError(f"{name} must start with '/', got {value!r}.")


__all__ = [
    "DEFAULT_WRITER_IDENTITY",
    "MigrationConfig",
    "QueueConfig",
    "SynchronisationConfig",
    "MappingStoreConfig",
]
