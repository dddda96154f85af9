"""
Business telemetry events.

Components report named business events such as ``alerts-migration-started``
or ``alerts-synchronisation-skipped`` through a TelemetryClient. The event
names and their properties are an operational contract: dashboards and
alerts query them, so components emit them at fixed points regardless of
whether tracing is enabled.

Implementations:
- OpenTelemetryTelemetryClient: logs the event and attaches it to the
  current span as a span event
- MockTelemetryClient: records events for assertions in tests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace

logger = logging.getLogger(__name__)


@runtime_checkable
class TelemetryClient(Protocol):
    """Protocol for emitting named business events."""

    def track_event(self, name: str, properties: dict[str, Any] | None = None) -> None:
        """
        Record a business event.

        Args:
            name: Event name, conventionally prefixed with the domain
            properties: Event properties; values are stringified on export
        """
        ...


def _stringify(properties: dict[str, Any] | None) -> dict[str, str]:
    return {k: str(v) for k, v in (properties or {}).items() if v is not None}


class OpenTelemetryTelemetryClient:
    """
    Telemetry client that logs events and records them as span events.

    When no span is recording the event is still logged, so nothing is lost
    in deployments that export logs only.

    Args:
        log_level: Level used for the event log record (default INFO)
    """

    def __init__(self, log_level: int = logging.INFO) -> None:
        self._log_level = log_level

    def track_event(self, name: str, properties: dict[str, Any] | None = None) -> None:
        attributes = _stringify(properties)
        logger.log(
            self._log_level,
            f"Telemetry event {name}",
            extra={"telemetry_event": name, "telemetry_properties": attributes},
        )
        span = trace.get_current_span()
        if span.is_recording():
            span.add_event(name, attributes=attributes)


@dataclass(frozen=True)
class TelemetryEvent:
    """A recorded telemetry event."""

    name: str
    properties: dict[str, str] = field(default_factory=dict)


class MockTelemetryClient:
    """
    Telemetry client that records events in memory.

    Example:
        >>> telemetry = MockTelemetryClient()
        >>> telemetry.track_event("alerts-migration-started", {"migrationId": "x"})
        >>> telemetry.names
        ['alerts-migration-started']
    """

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def track_event(self, name: str, properties: dict[str, Any] | None = None) -> None:
        self.events.append(TelemetryEvent(name=name, properties=_stringify(properties)))

    @property
    def names(self) -> list[str]:
        """Get just the event names for easy assertions."""
        return [event.name for event in self.events]

    def find(self, name: str) -> list[TelemetryEvent]:
        """Return every recorded event with the given name."""
        return [event for event in self.events if event.name == name]

    def clear(self) -> None:
        """Clear recorded events."""
        self.events.clear()


def create_telemetry_client() -> TelemetryClient:
    """Return the default telemetry client used when none is injected."""
    return OpenTelemetryTelemetryClient()


__all__ = [
    "TelemetryClient",
    "TelemetryEvent",
    "OpenTelemetryTelemetryClient",
    "MockTelemetryClient",
    "create_telemetry_client",
]
