"""Control entities mirrored onto the control surface.

``LevelControl`` covers continuous volume/mute controls (one per source and
one per audio monitor filter); ``ToggleControl`` covers scene buttons.

Field setters notify the host so the physical device follows the mirror.
Local action methods (``volume_changed``, ``mute_pressed``, ``pressed``) are
called by the host when the user touches the device; they turn the action into
a command value and hand it to the dispatch callable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Literal, override

from mixer_bridge.commands import SetFilterVolume, SetMute, SetVolume, SwitchScene
from mixer_bridge.const import FILTER_VOLUME_SCALE
from mixer_bridge.logging_abstraction import get_logger

if TYPE_CHECKING:
    from mixer_bridge.commands import CommandDispatch
    from mixer_bridge.structs import ControlSurfaceHost

logger = get_logger(__name__)

type LevelKind = Literal["source", "filter"]


class ControlEntity:
    """Base class for entities exposed to the control surface host."""

    lp: str = "ControlEntity:"

    def __init__(
        self,
        entity_id: str,
        display_name: str,
        dispatch: CommandDispatch,
        host: ControlSurfaceHost | None = None,
    ) -> None:
        self.id: str = entity_id
        self.display_name: str = display_name
        self._dispatch: CommandDispatch = dispatch
        self._host: ControlSurfaceHost | None = host

    @property
    def host(self) -> ControlSurfaceHost | None:
        return self._host

    def bind(self, host: ControlSurfaceHost | None) -> None:
        """Attach to (or with ``None`` detach from) a rendering host."""
        self._host = host

    def _notify(self) -> None:
        if self._host is not None:
            self._host.update(self)

    @override
    def __repr__(self) -> str:
        return f"<{type(self).__name__}: id={self.id!r}>"


class LevelControl(ControlEntity, ABC):
    """Volume + mute control."""

    lp: str = "LevelControl:"
    kind: LevelKind = "source"

    def __init__(
        self,
        entity_id: str,
        display_name: str,
        dispatch: CommandDispatch,
        *,
        volume: float,
        muted: bool,
        host: ControlSurfaceHost | None = None,
    ) -> None:
        super().__init__(entity_id, display_name, dispatch, host)
        self._volume: float = volume
        self._muted: bool = muted

    @property
    def volume(self) -> float:
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        if value == self._volume:
            return
        self._volume = value
        self._notify()

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        if value == self._muted:
            return
        self._muted = value
        self._notify()

    @abstractmethod
    def volume_changed(self, level: float) -> None:
        """Handle a local fader move to ``level`` in [0, 1]."""

    @abstractmethod
    def mute_pressed(self) -> None:
        """Handle a local press of the mute button."""


class SourceLevelControl(LevelControl):
    """Level control for a remote source; the entity id is the source name."""

    lp: str = "SourceLevelControl:"
    kind: LevelKind = "source"

    @property
    def source_name(self) -> str:
        return self.id

    @override
    def volume_changed(self, level: float) -> None:
        # Source volume is already on the remote's native scale.
        self._dispatch(SetVolume(source=self.source_name, volume=level))

    @override
    def mute_pressed(self) -> None:
        # Read at press time; remote mute events may have changed it since construction.
        self._dispatch(SetMute(source=self.source_name, muted=not self.muted))


class FilterLevelControl(LevelControl):
    """Level control for an audio monitor filter.

    The remote stores filter volume on a 0-100 scale while the entity works in
    0.0-1.0. The muted flag is cosmetic: it is copied from the owning source at
    discovery and a mute press sends nothing.
    """

    lp: str = "FilterLevelControl:"
    kind: LevelKind = "filter"

    def __init__(
        self,
        source_name: str,
        filter_name: str,
        dispatch: CommandDispatch,
        *,
        volume: float,
        muted: bool,
        host: ControlSurfaceHost | None = None,
    ) -> None:
        entity_id = f"{source_name}: {filter_name}"
        super().__init__(entity_id, entity_id, dispatch, volume=volume, muted=muted, host=host)
        self.source_name: str = source_name
        self.filter_name: str = filter_name

    @override
    def volume_changed(self, level: float) -> None:
        self._dispatch(
            SetFilterVolume(
                source=self.source_name,
                filter_name=self.filter_name,
                volume=level * FILTER_VOLUME_SCALE,
            ),
        )
        # no remote event echoes filter changes back, so keep the mirror in step here
        self.volume = level

    @override
    def mute_pressed(self) -> None:
        logger.debug("%s %s has no mute capability, ignoring press", self.lp, self.id)


class ToggleControl(ControlEntity):
    """Scene selection button."""

    lp: str = "ToggleControl:"

    def __init__(
        self,
        scene_name: str,
        display_name: str,
        dispatch: CommandDispatch,
        *,
        active: bool,
        host: ControlSurfaceHost | None = None,
    ) -> None:
        super().__init__(scene_name, display_name, dispatch, host)
        self._active: bool = active

    @property
    def scene_name(self) -> str:
        return self.id

    @property
    def active(self) -> bool:
        return self._active

    @active.setter
    def active(self, value: bool) -> None:
        if value == self._active:
            return
        self._active = value
        self._notify()

    def pressed(self) -> None:
        """Switch to this scene; optimistic until the scene-switched event arrives."""
        self._dispatch(SwitchScene(scene=self.scene_name))
        self.active = True
