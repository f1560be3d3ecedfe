"""Bidirectional state synchronization between the remote mixer and the registry.

Full sync enumerates sources, audio monitor filters and scenes and builds the
entity registry. Incremental events from the remote mixer are then applied to
the mirrored entities, and commands produced by local actions are executed
against the remote mixer.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from mixer_bridge import metrics
from mixer_bridge.commands import MixerCommand, SetFilterVolume, SetMute, SetVolume, SwitchScene
from mixer_bridge.const import AUDIO_MONITOR_FILTER_KIND, FILTER_VOLUME_SCALE, SCENE_DISPLAY_NAME_FMT
from mixer_bridge.entities import FilterLevelControl, SourceLevelControl, ToggleControl
from mixer_bridge.exceptions import MalformedPayloadError
from mixer_bridge.instrumentation import timed_async
from mixer_bridge.logging_abstraction import get_logger
from mixer_bridge.structs import (
    AudioMonitorFilter,
    FilterInfo,
    MuteChanged,
    RemoteScene,
    RemoteSource,
    SceneSwitched,
    SourceInfo,
    VolumeChanged,
)

if TYPE_CHECKING:
    from mixer_bridge.commands import CommandDispatch
    from mixer_bridge.registry import EntityRegistry
    from mixer_bridge.structs import RemoteMixerClient

logger = get_logger(__name__)


def filter_volume(info: FilterInfo) -> float:
    """Return the raw 0-100 volume from an audio monitor filter's settings."""
    raw = info.settings.get("volume")
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        msg = f"filter {info.name!r} has no numeric volume setting"
        raise MalformedPayloadError(msg, info.settings)
    return float(raw)


class SyncEngine:
    """Keeps the entity registry consistent with the remote mixer."""

    lp: str = "SyncEngine:"

    def __init__(
        self,
        client: RemoteMixerClient,
        registry: EntityRegistry,
        dispatch: CommandDispatch,
    ) -> None:
        self.client: RemoteMixerClient = client
        self.registry: EntityRegistry = registry
        self.dispatch: CommandDispatch = dispatch
        self.current_scene: str = ""

    def _is_stale(self, generation: int) -> bool:
        return generation != self.registry.generation

    # Full sync

    @timed_async("full_sync")
    async def full_sync(self) -> None:
        """Enumerate remote state and populate the registry.

        Sources and scenes are mapped concurrently. Any failed request aborts
        the whole sync by propagating its exception.
        """
        lp = f"{self.lp}full_sync:"
        generation = self.registry.generation
        start = time.perf_counter()
        logger.info("%s Starting full sync", lp, extra={"generation": generation})
        try:
            _ = await asyncio.gather(self.map_sources(generation), self.map_scenes(generation))
        except Exception:
            metrics.record_full_sync(time.perf_counter() - start, "error")
            raise
        if self._is_stale(generation):
            metrics.record_full_sync(time.perf_counter() - start, "stale")
            logger.info("%s Full sync superseded by a newer session", lp, extra={"generation": generation})
            return
        metrics.record_full_sync(time.perf_counter() - start, "success")
        logger.info(
            "%s Full sync complete",
            lp,
            extra={
                "generation": generation,
                "entities": len(self.registry),
                "current_scene": self.current_scene,
            },
        )

    async def map_sources(self, generation: int) -> None:
        sources = await self.client.get_source_list()
        if self._is_stale(generation):
            return
        logger.debug("%s Mapping %d sources", self.lp, len(sources))
        _ = await asyncio.gather(*(self._map_source(generation, source) for source in sources))

    async def _map_source(self, generation: int, info: SourceInfo) -> None:
        volume, muted = await asyncio.gather(
            self.client.get_volume(info.name),
            self.client.get_mute(info.name),
        )
        if self._is_stale(generation):
            return
        source = RemoteSource(name=info.name, volume=volume, muted=muted)
        entity = SourceLevelControl(
            source.name,
            source.name,
            self.dispatch,
            volume=source.volume,
            muted=source.muted,
        )
        if not self.registry.put_if_current(generation, source.name, entity):
            return
        await self._map_filters(generation, source)

    async def _map_filters(self, generation: int, source: RemoteSource) -> None:
        filters = await self.client.get_source_filters(source.name)
        if self._is_stale(generation):
            return
        for info in filters:
            if info.type != AUDIO_MONITOR_FILTER_KIND:
                continue
            monitor = AudioMonitorFilter(
                source_name=source.name,
                filter_name=info.name,
                volume_raw=filter_volume(info),
            )
            # muted mirrors the source at discovery time; filters have no mute of their own
            entity = FilterLevelControl(
                monitor.source_name,
                monitor.filter_name,
                self.dispatch,
                volume=monitor.volume_raw / FILTER_VOLUME_SCALE,
                muted=source.muted,
            )
            _ = self.registry.put_if_current(generation, monitor.entity_id, entity)

    async def map_scenes(self, generation: int) -> None:
        scene_list = await self.client.get_scene_list()
        if self._is_stale(generation):
            return
        self.current_scene = scene_list.current_scene
        logger.debug(
            "%s Mapping %d scenes (current: %s)",
            self.lp,
            len(scene_list.scenes),
            self.current_scene,
        )
        for info in scene_list.scenes:
            scene = RemoteScene(name=info.name)
            button = ToggleControl(
                scene.name,
                SCENE_DISPLAY_NAME_FMT.format(scene=scene.name),
                self.dispatch,
                active=scene.name == self.current_scene,
            )
            _ = self.registry.put_if_current(generation, scene.name, button)

    # Incremental events

    def handle_event(self, event: VolumeChanged | MuteChanged | SceneSwitched) -> None:
        """Apply a remote event to the mirror.

        Events for identifiers that are not mirrored are dropped silently.
        """
        if isinstance(event, VolumeChanged):
            applied = self._apply_level(event.source_name, volume=event.volume)
        elif isinstance(event, MuteChanged):
            applied = self._apply_level(event.source_name, muted=event.muted)
        elif isinstance(event, SceneSwitched):
            self._apply_scene_switch(event.scene_name)
            applied = True
        else:
            logger.warning("%s Unsupported event type: %r", self.lp, event)
            return
        metrics.record_event(event.kind, "applied" if applied else "dropped")

    def _apply_level(self, source_name: str, *, volume: float | None = None, muted: bool | None = None) -> bool:
        entity = self.registry.get(source_name)
        if not isinstance(entity, SourceLevelControl):
            logger.debug("%s No level control for %r, dropping event", self.lp, source_name)
            return False
        if volume is not None:
            entity.volume = volume
        if muted is not None:
            entity.muted = muted
        return True

    def _apply_scene_switch(self, scene_name: str) -> None:
        self.current_scene = scene_name
        # re-derive every toggle so a missed switch event cannot leave two active
        for button in self.registry.scenes():
            button.active = button.id == scene_name
        logger.debug("%s Current scene: %s", self.lp, scene_name)

    # Local commands

    async def execute(self, command: MixerCommand) -> None:
        """Send the remote request matching a local command."""
        if isinstance(command, SetVolume):
            await self.client.set_volume(command.source, command.volume)
        elif isinstance(command, SetMute):
            await self.client.set_mute(command.source, command.muted)
        elif isinstance(command, SetFilterVolume):
            await self.client.set_filter_settings(
                command.source,
                command.filter_name,
                {"volume": command.volume},
            )
        elif isinstance(command, SwitchScene):
            await self.client.set_current_scene(command.scene)
        else:
            msg = f"Unsupported command: {command!r}"
            raise TypeError(msg)
