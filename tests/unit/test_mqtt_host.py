"""Unit tests for the MQTT control surface host."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import aiomqtt
import pytest

from mixer_bridge.commands import SetFilterVolume, SetMute, SetVolume, SwitchScene
from mixer_bridge.entities import FilterLevelControl, SourceLevelControl, ToggleControl
from mixer_bridge.surface.mqtt_host import MQTTSurfaceHost, entity_key, parse_level, slugify

MIC = entity_key("Mic")
LIMITER = entity_key("Mic: Limiter")
SCENE_A = entity_key("A")
SCENE_B = entity_key("B")


@pytest.fixture
def host() -> MQTTSurfaceHost:
    """Host wired to a mocked aiomqtt client, marked connected."""
    mqtt_host = MQTTSurfaceHost(topic="mb", ha_topic="ha", hostname="broker", port=1883)
    client = MagicMock()
    client.publish = AsyncMock()
    mqtt_host.client = client
    mqtt_host._connected = True
    return mqtt_host


def _published(host: MQTTSurfaceHost) -> dict[str, bytes]:
    assert host.client is not None
    publish = host.client.publish
    assert isinstance(publish, AsyncMock)
    return {c.args[0]: c.args[1] for c in publish.await_args_list}


class TestHelpers:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("Mic", "mic"), ("Mic: Limiter", "mic_limiter"), ("Desktop Audio", "desktop_audio"), ("Café", "cafe")],
    )
    def test_slugify(self, text: str, expected: str):
        assert slugify(text) == expected

    @pytest.mark.parametrize(
        ("payload", "expected"),
        [(b"0.25", 0.25), (b"50", 0.5), (b"1", 1.0), (b"-3", 0.0), (b"250", 1.0)],
    )
    def test_parse_level(self, payload: bytes, expected: float):
        assert parse_level(payload) == pytest.approx(expected)

    def test_parse_level_invalid(self):
        assert parse_level(b"loud") is None
        assert parse_level(b"\xff") is None

    @pytest.mark.parametrize("payload", [b"nan", b"NaN", b"inf", b"-inf"])
    def test_parse_level_non_finite(self, payload: bytes):
        assert parse_level(payload) is None

    def test_entity_key_keeps_readable_slug(self):
        key = entity_key("Mic: Limiter")
        assert key.startswith("mic_limiter_")
        assert len(key) == len("mic_limiter_") + 8
        assert entity_key("Mic: Limiter") == key

    @pytest.mark.parametrize(
        ("first", "second"),
        [("Mic 1", "Mic_1"), ("Mic: Limiter", "Mic Limiter"), ("Микрофон", "Рабочий стол")],
    )
    def test_entity_key_distinguishes_similar_ids(self, first: str, second: str):
        assert slugify(first) == slugify(second)
        assert entity_key(first) != entity_key(second)

    def test_entity_key_non_ascii_is_topic_safe(self):
        key = entity_key("Микрофон")
        assert key
        assert all(c.isascii() and (c.isalnum() or c == "_") for c in key)


class TestPublishing:
    """Entities are published as discovery configs plus state."""

    @pytest.mark.asyncio
    async def test_attach_publishes_discovery_and_state(self, host: MQTTSurfaceHost):
        publisher = asyncio.create_task(host._publisher_loop())
        mic = SourceLevelControl("Mic", "Mic", MagicMock(), volume=0.5, muted=True)
        scene = ToggleControl("A", 'OBS: Switch to "A" scene', MagicMock(), active=True)

        host.attach(mic)
        host.attach(scene)
        await host.flush()
        _ = publisher.cancel()

        published = _published(host)
        assert json.loads(published[f"mb/level/{MIC}/state"]) == {"volume": 0.5, "muted": True}
        assert published[f"mb/scene/{SCENE_A}/state"] == b"ON"
        number = json.loads(published[f"ha/number/mb/{MIC}_volume/config"])
        assert number["command_topic"] == f"mb/level/{MIC}/set"
        assert number["name"] == "Mic volume"
        button = json.loads(published[f"ha/button/mb/{MIC}_mute/config"])
        assert button["command_topic"] == f"mb/level/{MIC}/mute"
        switch = json.loads(published[f"ha/switch/mb/scene_{SCENE_A}/config"])
        assert switch["command_topic"] == f"mb/scene/{SCENE_A}/press"
        assert switch["name"] == 'OBS: Switch to "A" scene'

    @pytest.mark.asyncio
    async def test_update_publishes_state(self, host: MQTTSurfaceHost):
        publisher = asyncio.create_task(host._publisher_loop())
        scene = ToggleControl("B", "B", MagicMock(), active=False, host=host)

        scene.active = True
        await host.flush()
        _ = publisher.cancel()

        assert _published(host) == {f"mb/scene/{SCENE_B}/state": b"ON"}

    @pytest.mark.asyncio
    async def test_reset_removes_discovery_and_forgets_entities(self, host: MQTTSurfaceHost):
        publisher = asyncio.create_task(host._publisher_loop())
        host.attach(SourceLevelControl("Mic", "Mic", MagicMock(), volume=0.5, muted=False))
        host.reset()
        await host.flush()
        _ = publisher.cancel()

        published = _published(host)
        assert published[f"ha/number/mb/{MIC}_volume/config"] == b""
        assert published[f"ha/button/mb/{MIC}_mute/config"] == b""
        assert host._levels == {}

    @pytest.mark.asyncio
    async def test_set_status_is_retained(self, host: MQTTSurfaceHost):
        publisher = asyncio.create_task(host._publisher_loop())
        host.set_status("Connected")
        await host.flush()
        _ = publisher.cancel()

        assert host.client is not None
        host.client.publish.assert_awaited_once_with("mb/status", b"Connected", qos=0, retain=True)
        assert host.status_text == "Connected"

    def test_publishes_dropped_while_disconnected(self, host: MQTTSurfaceHost):
        host._connected = False
        host.set_status("Connecting...")
        host.attach(SourceLevelControl("Mic", "Mic", MagicMock(), volume=0.5, muted=False))

        assert host._outbox.qsize() == 0
        # still remembered for republish after reconnect
        assert host.status_text == "Connecting..."
        assert MIC in host._levels

    @pytest.mark.asyncio
    async def test_publish_error_marks_disconnected(self, host: MQTTSurfaceHost):
        assert host.client is not None
        host.client.publish = AsyncMock(side_effect=aiomqtt.MqttError("gone"))
        assert await host.publish("mb/status", b"x") is False
        assert host.is_connected is False


class TestCommandRouting:
    """Inbound command topics drive entity local actions."""

    @pytest.fixture
    def dispatch(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def attached(self, host: MQTTSurfaceHost, dispatch: MagicMock) -> MQTTSurfaceHost:
        host._connected = False
        host.attach(SourceLevelControl("Mic", "Mic", dispatch, volume=0.5, muted=False))
        host.attach(FilterLevelControl("Mic", "Limiter", dispatch, volume=0.8, muted=False))
        host.attach(ToggleControl("B", "B", dispatch, active=False))
        return host

    @pytest.mark.asyncio
    async def test_level_set(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message(f"mb/level/{MIC}/set", b"0.3")
        dispatch.assert_called_once_with(SetVolume("Mic", 0.3))

    @pytest.mark.asyncio
    async def test_filter_level_set_percent(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message(f"mb/level/{LIMITER}/set", b"25")
        dispatch.assert_called_once_with(SetFilterVolume("Mic", "Limiter", 25.0))

    @pytest.mark.asyncio
    async def test_invalid_level_is_ignored(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message(f"mb/level/{MIC}/set", b"loud")
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_mute_press(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message(f"mb/level/{MIC}/mute", b"press")
        dispatch.assert_called_once_with(SetMute("Mic", True))

    @pytest.mark.asyncio
    async def test_scene_press(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message(f"mb/scene/{SCENE_B}/press", b"ON")
        await attached.handle_message(f"mb/scene/{SCENE_B}/press", b"OFF")
        dispatch.assert_called_once_with(SwitchScene("B"))

    @pytest.mark.asyncio
    async def test_unknown_targets_are_ignored(self, attached: MQTTSurfaceHost, dispatch: MagicMock):
        await attached.handle_message("mb/level/ghost/set", b"0.3")
        await attached.handle_message("mb/scene/ghost/press", b"ON")
        await attached.handle_message(f"other/level/{MIC}/set", b"0.3")
        await attached.handle_message(f"mb/level/{MIC}/explode", b"1")
        dispatch.assert_not_called()

    @pytest.mark.asyncio
    async def test_reconnect_button_runs_callback(self, host: MQTTSurfaceHost):
        callback = AsyncMock(return_value=True)
        host.on_reconnect = callback

        await host.handle_message("mb/bridge/reconnect", b"PRESS")
        assert host._reconnect_task is not None
        _ = await host._reconnect_task

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reconnect_without_callback_is_ignored(self, host: MQTTSurfaceHost):
        await host.handle_message("mb/bridge/reconnect", b"PRESS")
        assert host._reconnect_task is None

    @pytest.mark.asyncio
    async def test_second_reconnect_cancels_running_one(self, host: MQTTSurfaceHost):
        release = asyncio.Event()
        calls: list[int] = []

        async def slow_reconnect() -> bool:
            calls.append(len(calls))
            _ = await release.wait()
            return True

        host.on_reconnect = slow_reconnect
        await host.handle_message("mb/bridge/reconnect", b"PRESS")
        first = host._reconnect_task
        assert first is not None
        await asyncio.sleep(0)

        await host.handle_message("mb/bridge/reconnect", b"PRESS")
        second = host._reconnect_task
        assert second is not None
        assert second is not first

        with pytest.raises(asyncio.CancelledError):
            _ = await first
        release.set()
        assert await second is True
        assert calls == [0, 1]


class TestNonAsciiAndCollidingIds:
    """Entities whose ids slugify alike keep separate topics and routing."""

    @pytest.mark.asyncio
    async def test_non_ascii_sources_route_independently(self, host: MQTTSurfaceHost):
        dispatch = MagicMock()
        host.attach(SourceLevelControl("Микрофон", "Микрофон", dispatch, volume=0.5, muted=False))
        host.attach(SourceLevelControl("Рабочий стол", "Рабочий стол", dispatch, volume=1.0, muted=False))
        assert len(host._levels) == 2

        await host.handle_message(f"mb/level/{entity_key('Микрофон')}/set", b"0.2")
        await host.handle_message(f"mb/level/{entity_key('Рабочий стол')}/mute", b"press")

        assert [c.args[0] for c in dispatch.call_args_list] == [
            SetVolume("Микрофон", 0.2),
            SetMute("Рабочий стол", True),
        ]

    @pytest.mark.asyncio
    async def test_filter_and_source_with_same_slug(self, host: MQTTSurfaceHost):
        dispatch = MagicMock()
        host.attach(FilterLevelControl("Mic", "Limiter", dispatch, volume=0.8, muted=False))
        host.attach(SourceLevelControl("Mic Limiter", "Mic Limiter", dispatch, volume=0.5, muted=False))

        await host.handle_message(f"mb/level/{entity_key('Mic: Limiter')}/set", b"0.5")
        await host.handle_message(f"mb/level/{entity_key('Mic Limiter')}/set", b"0.5")

        assert [c.args[0] for c in dispatch.call_args_list] == [
            SetFilterVolume("Mic", "Limiter", 50.0),
            SetVolume("Mic Limiter", 0.5),
        ]

    def test_discovery_unique_ids_do_not_clash(self, host: MQTTSurfaceHost):
        first = SourceLevelControl("Mic 1", "Mic 1", MagicMock(), volume=0.5, muted=False)
        second = SourceLevelControl("Mic_1", "Mic_1", MagicMock(), volume=0.5, muted=False)

        ids = [config["unique_id"] for entity in (first, second) for _, config in host.discovery_payloads(entity)]
        topics = [topic for entity in (first, second) for topic, _ in host.discovery_payloads(entity)]

        assert len(set(ids)) == 4
        assert len(set(topics)) == 4


class TestRepublish:
    @pytest.mark.asyncio
    async def test_republish_all_after_reconnect(self, host: MQTTSurfaceHost):
        host._connected = False
        host.attach(ToggleControl("A", "A", MagicMock(), active=True))
        host.set_status("Connected")
        host._connected = True

        publisher = asyncio.create_task(host._publisher_loop())
        await host.republish_all()
        await host.flush()
        _ = publisher.cancel()

        published = _published(host)
        assert published["mb/availability"] == b"online"
        assert published["mb/status"] == b"Connected"
        assert published[f"mb/scene/{SCENE_A}/state"] == b"ON"
        assert f"ha/switch/mb/scene_{SCENE_A}/config" in published
