"""Core data structures and typing protocols for the mixer bridge."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

if TYPE_CHECKING:
    from mixer_bridge.entities import ControlEntity
    from mixer_bridge.settings import BridgeSettings


class SessionState(StrEnum):
    """Lifecycle states of a bridge session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    CONNECTED = "connected"


# Remote payloads


class SourceInfo(BaseModel):
    """A source entry from the remote source list."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    type: str | None = None
    type_id: str | None = Field(default=None, alias="typeId")


class FilterInfo(BaseModel):
    """A filter attached to a remote source."""

    model_config = ConfigDict(extra="ignore")

    name: str
    type: str
    enabled: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)


class SceneInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str


class SceneList(BaseModel):
    """Remote scene list together with the currently active scene name."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    current_scene: str = Field(alias="current-scene")
    scenes: list[SceneInfo] = Field(default_factory=list)

    @property
    def scene_names(self) -> list[str]:
        return [scene.name for scene in self.scenes]


# Mirrored remote state


class RemoteSource(BaseModel):
    """Snapshot of a source as seen during full sync."""

    name: str
    volume: float
    muted: bool


class AudioMonitorFilter(BaseModel):
    """Audio monitor filter; ``volume_raw`` is on the remote 0-100 scale."""

    source_name: str
    filter_name: str
    volume_raw: float

    @property
    def entity_id(self) -> str:
        return f"{self.source_name}: {self.filter_name}"


class RemoteScene(BaseModel):
    name: str


# Incremental events, validated at the client boundary


class VolumeChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["volume_changed"] = "volume_changed"
    source_name: str
    volume: float


class MuteChanged(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["mute_changed"] = "mute_changed"
    source_name: str
    muted: bool


class SceneSwitched(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["scene_switched"] = "scene_switched"
    scene_name: str


MixerEvent = Annotated[VolumeChanged | MuteChanged | SceneSwitched, Field(discriminator="kind")]
EVENT_ADAPTER: TypeAdapter[VolumeChanged | MuteChanged | SceneSwitched] = TypeAdapter(MixerEvent)


class ConnectionLost(BaseModel):
    """Emitted by the client when the transport closes without a disconnect() call."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["connection_lost"] = "connection_lost"
    reason: str


type RemoteEvent = VolumeChanged | MuteChanged | SceneSwitched | ConnectionLost
type EventHandler = Callable[[RemoteEvent], None]


# Collaborator protocols


class RemoteMixerClient(Protocol):
    """Connection, request/response calls and event stream of the remote mixer.

    Every request raises on failure (``RemoteConnectionError`` when the
    transport is down, ``RemoteRequestError`` when the mixer rejects it).
    """

    request_timeout: float | None

    @property
    def connected(self) -> bool: ...

    async def connect(self, address: str, password: str) -> None: ...

    async def disconnect(self) -> None: ...

    async def get_source_list(self) -> list[SourceInfo]: ...

    async def get_volume(self, source: str) -> float: ...

    async def get_mute(self, source: str) -> bool: ...

    async def set_volume(self, source: str, volume: float) -> None: ...

    async def set_mute(self, source: str, muted: bool) -> None: ...

    async def get_source_filters(self, source: str) -> list[FilterInfo]: ...

    async def set_filter_settings(self, source: str, filter_name: str, settings: dict[str, Any]) -> None: ...

    async def get_scene_list(self) -> SceneList: ...

    async def set_current_scene(self, scene: str) -> None: ...

    def subscribe(self, handler: EventHandler) -> None: ...

    def unsubscribe(self, handler: EventHandler) -> None: ...


class ControlSurfaceHost(Protocol):
    """Renders control entities on the physical surface.

    The host only holds references; the entity registry owns lifecycle.
    """

    def attach(self, entity: ControlEntity) -> None:
        """Start rendering a newly registered entity."""
        ...

    def update(self, entity: ControlEntity) -> None:
        """Reflect a changed ``volume``/``muted``/``active`` field to the device."""
        ...

    def reset(self) -> None:
        """Drop every entity reference (the registry was cleared)."""
        ...


class StatusReporter(Protocol):
    def set_status(self, text: str) -> None: ...


class SettingsProvider(Protocol):
    async def get_settings(self) -> BridgeSettings: ...
