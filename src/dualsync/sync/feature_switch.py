"""Per-event feature switches for live synchronisation."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from dualsync.config import SynchronisationConfig

logger = logging.getLogger(__name__)


class EventFeatureSwitch:
    """
    Decides whether a live event type is processed.

    Lookup order: ``"<domain>.<EVENT>"``, then ``"<EVENT>"``, then the
    default. Switches can be flipped at runtime.

    Example:
        >>> switch = EventFeatureSwitch({"alerts.ALERT-DELETED": False})
        >>> switch.is_enabled("ALERT-DELETED", "alerts")
        False
        >>> switch.is_enabled("ALERT-INSERTED", "alerts")
        True
    """

    def __init__(
        self,
        switches: Mapping[str, bool] | None = None,
        default_enabled: bool = True,
    ) -> None:
        self._switches = dict(switches or {})
        self._default = default_enabled

    @classmethod
    def from_config(cls, config: SynchronisationConfig) -> EventFeatureSwitch:
        return cls(config.event_switches, config.default_enabled)

    def is_enabled(self, event_type: str, domain: str | None = None) -> bool:
        if domain is not None:
            scoped = self._switches.get(f"{domain}.{event_type}")
            if scoped is not None:
                return scoped
        return self._switches.get(event_type, self._default)

    def set(self, event_type: str, enabled: bool, domain: str | None = None) -> None:
        key = f"{domain}.{event_type}" if domain else event_type
        self._switches[key] = enabled
        logger.info(
            f"Feature switch {key} set to {enabled}",
            extra={"switch": key, "enabled": enabled},
        )


__all__ = ["EventFeatureSwitch"]
