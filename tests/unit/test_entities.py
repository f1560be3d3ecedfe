"""Unit tests for control entities and their local actions."""

from __future__ import annotations

from typing import override
from unittest.mock import MagicMock

import pytest

from mixer_bridge.commands import SetFilterVolume, SetMute, SetVolume, SwitchScene
from mixer_bridge.entities import FilterLevelControl, LevelControl, SourceLevelControl, ToggleControl

from tests.unit.conftest import FakeHost


class TestSourceLevelControl:
    """Source level controls forward raw levels and toggle mute."""

    def test_volume_changed_dispatches_raw_level(self):
        dispatch = MagicMock()
        mic = SourceLevelControl("Mic", "Mic", dispatch, volume=0.5, muted=False)

        mic.volume_changed(0.3)

        dispatch.assert_called_once_with(SetVolume(source="Mic", volume=0.3))
        # mirror only follows the remote echo
        assert mic.volume == 0.5

    def test_mute_pressed_negates_current_state(self):
        """Mute toggles against the live value, not the value at construction."""
        dispatch = MagicMock()
        mic = SourceLevelControl("Mic", "Mic", dispatch, volume=0.5, muted=False)

        mic.mute_pressed()
        mic.muted = True
        mic.mute_pressed()

        assert [c.args[0] for c in dispatch.call_args_list] == [
            SetMute(source="Mic", muted=True),
            SetMute(source="Mic", muted=False),
        ]

    def test_setters_notify_host_only_on_change(self):
        host = FakeHost()
        mic = SourceLevelControl("Mic", "Mic", MagicMock(), volume=0.5, muted=False, host=host)

        mic.volume = 0.5
        mic.muted = False
        assert host.updates == []

        mic.volume = 0.7
        mic.muted = True
        assert host.updates == [mic, mic]
        assert mic.source_name == "Mic"

    def test_unbound_entity_does_not_notify(self):
        mic = SourceLevelControl("Mic", "Mic", MagicMock(), volume=0.5, muted=False)
        mic.volume = 0.1
        assert mic.host is None
        assert mic.volume == 0.1

    def test_base_level_control_cannot_be_instantiated(self):
        with pytest.raises(TypeError, match="abstract"):
            _ = LevelControl("x", "x", MagicMock(), volume=0.0, muted=False)  # type: ignore[abstract]

    def test_subclass_missing_action_cannot_be_instantiated(self):
        class VolumeOnly(LevelControl):
            @override
            def volume_changed(self, level: float) -> None:
                pass

        with pytest.raises(TypeError, match="mute_pressed"):
            _ = VolumeOnly("x", "x", MagicMock(), volume=0.0, muted=False)  # type: ignore[abstract]


class TestFilterLevelControl:
    """Audio monitor filter controls scale volume and ignore mute."""

    def test_identity(self):
        limiter = FilterLevelControl("Mic", "Limiter", MagicMock(), volume=0.8, muted=False)
        assert limiter.id == "Mic: Limiter"
        assert limiter.display_name == "Mic: Limiter"
        assert limiter.source_name == "Mic"
        assert limiter.filter_name == "Limiter"
        assert limiter.kind == "filter"

    def test_volume_changed_scales_and_updates_optimistically(self):
        dispatch = MagicMock()
        host = FakeHost()
        limiter = FilterLevelControl("Mic", "Limiter", dispatch, volume=0.8, muted=False, host=host)

        limiter.volume_changed(0.25)

        dispatch.assert_called_once_with(SetFilterVolume(source="Mic", filter_name="Limiter", volume=25.0))
        assert limiter.volume == 0.25
        assert host.updates == [limiter]

    def test_mute_pressed_sends_nothing(self):
        dispatch = MagicMock()
        limiter = FilterLevelControl("Mic", "Limiter", dispatch, volume=0.8, muted=True)

        limiter.mute_pressed()

        dispatch.assert_not_called()
        assert limiter.muted is True


class TestToggleControl:
    def test_pressed_dispatches_and_sets_active(self):
        dispatch = MagicMock()
        host = FakeHost()
        button = ToggleControl("B", 'OBS: Switch to "B" scene', dispatch, active=False, host=host)

        button.pressed()

        dispatch.assert_called_once_with(SwitchScene(scene="B"))
        assert button.active is True
        assert host.updates == [button]
        assert button.scene_name == "B"

    def test_pressing_active_scene_does_not_renotify(self):
        host = FakeHost()
        button = ToggleControl("A", "A", MagicMock(), active=True, host=host)
        button.pressed()
        assert host.updates == []
