"""Unit tests for EventFeatureSwitch."""

from __future__ import annotations

from dualsync.config import SynchronisationConfig
from dualsync.sync import EventFeatureSwitch


class TestEventFeatureSwitch:
    """Tests for EventFeatureSwitch lookup order."""

    def test_default_enabled(self) -> None:
        assert EventFeatureSwitch().is_enabled("ALERT-INSERTED", "alerts")

    def test_default_disabled(self) -> None:
        assert not EventFeatureSwitch(default_enabled=False).is_enabled("ALERT-INSERTED")

    def test_domain_scoped_beats_global(self) -> None:
        switch = EventFeatureSwitch({"ALERT-DELETED": False, "alerts.ALERT-DELETED": True})
        assert switch.is_enabled("ALERT-DELETED", "alerts")
        assert not switch.is_enabled("ALERT-DELETED", "visits")
        assert not switch.is_enabled("ALERT-DELETED")

    def test_set_at_runtime(self) -> None:
        switch = EventFeatureSwitch()
        switch.set("ALERT-UPDATED", False, domain="alerts")
        assert not switch.is_enabled("ALERT-UPDATED", "alerts")
        assert switch.is_enabled("ALERT-UPDATED", "visits")

    def test_from_config(self) -> None:
        config = SynchronisationConfig(
            domain="alerts",
            event_switches={"ALERT-INSERTED": False},
            default_enabled=True,
        )
        switch = EventFeatureSwitch.from_config(config)
        assert not switch.is_enabled("ALERT-INSERTED", "alerts")
        assert switch.is_enabled("ALERT-UPDATED", "alerts")

    def test_input_mapping_not_aliased(self) -> None:
        switches = {"ALERT-INSERTED": True}
        switch = EventFeatureSwitch(switches)
        switch.set("ALERT-INSERTED", False)
        assert switches == {"ALERT-INSERTED": True}
