"""Shared fixtures for unit tests.

This module provides in-memory fakes for the remote mixer, the control surface
host and the settings provider so the core can be tested without a network.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from mixer_bridge.entities import ControlEntity
from mixer_bridge.exceptions import RemoteConnectionError, RemoteRequestError
from mixer_bridge.registry import EntityRegistry
from mixer_bridge.settings import BridgeSettings
from mixer_bridge.structs import EventHandler, FilterInfo, SceneInfo, SceneList, SourceInfo


class FakeRemoteMixerClient:
    """Remote mixer double backed by plain dicts.

    ``fail`` maps a method name to the exception that method raises;
    ``gates`` maps a method name to an event the call waits on before returning.
    """

    def __init__(self) -> None:
        self.request_timeout: float | None = None
        self.sources: dict[str, dict[str, Any]] = {}
        self.filters: dict[str, list[FilterInfo]] = {}
        self.scenes: list[str] = []
        self.current_scene: str = ""
        self.fail: dict[str, BaseException] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.handlers: list[EventHandler] = []
        self._connected: bool = False

    @property
    def connected(self) -> bool:
        return self._connected

    def add_source(self, name: str, volume: float = 1.0, muted: bool = False) -> None:
        self.sources[name] = {"volume": volume, "muted": muted}

    def add_filter(self, source: str, name: str, kind: str, settings: dict[str, Any]) -> None:
        self.filters.setdefault(source, []).append(FilterInfo(name=name, type=kind, settings=settings))

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            _ = await gate.wait()
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    async def connect(self, address: str, password: str) -> None:
        await self._call("connect", address, password)
        self._connected = True

    async def disconnect(self) -> None:
        await self._call("disconnect")
        self._connected = False

    async def get_source_list(self) -> list[SourceInfo]:
        await self._call("get_source_list")
        return [SourceInfo(name=name) for name in self.sources]

    async def get_volume(self, source: str) -> float:
        await self._call("get_volume", source)
        return self.sources[source]["volume"]

    async def get_mute(self, source: str) -> bool:
        await self._call("get_mute", source)
        return self.sources[source]["muted"]

    async def set_volume(self, source: str, volume: float) -> None:
        await self._call("set_volume", source, volume)

    async def set_mute(self, source: str, muted: bool) -> None:
        await self._call("set_mute", source, muted)

    async def get_source_filters(self, source: str) -> list[FilterInfo]:
        await self._call("get_source_filters", source)
        return list(self.filters.get(source, []))

    async def set_filter_settings(self, source: str, filter_name: str, settings: dict[str, Any]) -> None:
        await self._call("set_filter_settings", source, filter_name, settings)

    async def get_scene_list(self) -> SceneList:
        await self._call("get_scene_list")
        return SceneList(current_scene=self.current_scene, scenes=[SceneInfo(name=n) for n in self.scenes])

    async def set_current_scene(self, scene: str) -> None:
        await self._call("set_current_scene", scene)

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self.handlers:
            self.handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def emit(self, event: Any) -> None:
        for handler in list(self.handlers):
            handler(event)


class FakeHost:
    """Control surface host that records every call."""

    def __init__(self) -> None:
        self.attached: list[ControlEntity] = []
        self.updates: list[ControlEntity] = []
        self.resets: int = 0

    def attach(self, entity: ControlEntity) -> None:
        self.attached.append(entity)

    def update(self, entity: ControlEntity) -> None:
        self.updates.append(entity)

    def reset(self) -> None:
        self.resets += 1
        self.attached = []


class FakeStatus:
    def __init__(self) -> None:
        self.history: list[str] = []

    def set_status(self, text: str) -> None:
        self.history.append(text)

    @property
    def last(self) -> str | None:
        return self.history[-1] if self.history else None


class FakeSettingsProvider:
    def __init__(self, settings: BridgeSettings | None = None, error: Exception | None = None) -> None:
        self.settings: BridgeSettings = settings or BridgeSettings()
        self.error: Exception | None = error
        self.calls: int = 0

    async def get_settings(self) -> BridgeSettings:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.settings


@pytest.fixture
def fake_client() -> FakeRemoteMixerClient:
    """Remote mixer matching the reference scenario.

    Sources "Mic" (0.5, unmuted, with an audio monitor filter "Limiter" at 80
    plus a non-monitor "Gain" filter) and "Desktop" (1.0, muted); scenes "A"
    and "B" with "A" active.
    """
    client = FakeRemoteMixerClient()
    client.add_source("Mic", volume=0.5, muted=False)
    client.add_source("Desktop", volume=1.0, muted=True)
    client.add_filter("Mic", "Limiter", "audio_monitor", {"volume": 80})
    client.add_filter("Mic", "Gain", "gain_filter", {"db": 3.0})
    client.scenes = ["A", "B"]
    client.current_scene = "A"
    return client


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def fake_status() -> FakeStatus:
    return FakeStatus()


@pytest.fixture
def fake_settings() -> FakeSettingsProvider:
    return FakeSettingsProvider(BridgeSettings(address="obs.local:4444", password="hunter2"))


@pytest.fixture
def registry(fake_host: FakeHost) -> EntityRegistry:
    return EntityRegistry(fake_host)


@pytest.fixture
def connection_refused() -> RemoteConnectionError:
    return RemoteConnectionError("connect ECONNREFUSED", state="connecting")


@pytest.fixture
def auth_failed() -> RemoteRequestError:
    return RemoteRequestError("Authenticate", "Authentication Failed.")
