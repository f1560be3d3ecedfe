"""MQTT control surface host.

Publishes every registered entity to an MQTT broker (Home Assistant style
discovery plus state topics) and routes messages on the command topics back
to the entities' local action methods. Also carries the bridge status slot and
the reconnect button.

Topic layout, with ``{topic}`` the bridge base topic and ``{key}`` the
entity key (see ``entity_key``):

- ``{topic}/level/{key}/state``  JSON ``{"volume": float, "muted": bool}``
- ``{topic}/level/{key}/set``    volume, 0.0-1.0 (values above 1 are read as percent)
- ``{topic}/level/{key}/mute``   any payload toggles mute
- ``{topic}/scene/{key}/state``  ``ON`` / ``OFF``
- ``{topic}/scene/{key}/press``  any payload except ``OFF`` switches scene
- ``{topic}/bridge/reconnect``    any payload triggers a reconnect
- ``{topic}/status``              retained status text
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
import re
import unicodedata
from collections.abc import Awaitable, Callable
from typing import Any, cast

import aiomqtt

from mixer_bridge.const import (
    MIXER_BRIDGE_HASS_TOPIC,
    MIXER_BRIDGE_MQTT_CONN_DELAY,
    MIXER_BRIDGE_MQTT_HOST,
    MIXER_BRIDGE_MQTT_PASS,
    MIXER_BRIDGE_MQTT_PORT,
    MIXER_BRIDGE_MQTT_USER,
    MIXER_BRIDGE_TOPIC,
    ORIGIN_STRUCT,
)
from mixer_bridge.entities import ControlEntity, LevelControl, ToggleControl
from mixer_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)

type ReconnectCallback = Callable[[], Awaitable[object]]
type OutboxItem = tuple[str, bytes, bool]


def slugify(text: str) -> str:
    """
    Convert text to a slug suitable for topics and entity IDs.
    E.g., 'Mic: Limiter' -> 'mic_limiter'
    """
    text = unicodedata.normalize("NFKD", text)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[-\s]+", "_", text)
    return text.strip("_")


def entity_key(entity_id: str) -> str:
    """
    Topic segment and unique_id stem for an entity id.

    The readable slug is suffixed with a digest of the full id, so ids that
    slugify alike ('Mic 1' / 'Mic_1') or to nothing ('Микрофон') stay distinct.
    E.g., 'Mic: Limiter' -> 'mic_limiter_<8 hex chars>'
    """
    digest = hashlib.sha1(entity_id.encode("utf-8"), usedforsecurity=False).hexdigest()[:8]
    slug = slugify(entity_id)
    return f"{slug}_{digest}" if slug else digest


def parse_level(payload: bytes) -> float | None:
    """Parse a volume payload into 0.0-1.0; values above 1 are percentages."""
    try:
        value = float(payload.decode().strip())
    except (UnicodeDecodeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    if value > 1.0:
        value /= 100.0
    return min(max(value, 0.0), 1.0)


class MQTTSurfaceHost:
    """Control surface host and status reporter backed by an MQTT broker."""

    lp: str = "mqtt:"

    def __init__(
        self,
        topic: str = MIXER_BRIDGE_TOPIC,
        ha_topic: str = MIXER_BRIDGE_HASS_TOPIC,
        hostname: str = MIXER_BRIDGE_MQTT_HOST,
        port: int = MIXER_BRIDGE_MQTT_PORT,
        username: str | None = MIXER_BRIDGE_MQTT_USER,
        password: str | None = MIXER_BRIDGE_MQTT_PASS,
        on_reconnect: ReconnectCallback | None = None,
    ) -> None:
        self.topic: str = topic or "mixer_bridge"
        self.ha_topic: str = ha_topic or "homeassistant"
        self.hostname: str = hostname
        self.port: int = port
        self.username: str | None = username
        self.password: str | None = password
        self.on_reconnect: ReconnectCallback | None = on_reconnect
        self.client: aiomqtt.Client | None = None
        self.start_task: asyncio.Task[None] | None = None
        self.status_text: str = ""
        self._connected: bool = False
        self._levels: dict[str, LevelControl] = {}
        self._scenes: dict[str, ToggleControl] = {}
        self._outbox: asyncio.Queue[OutboxItem] = asyncio.Queue()
        self._publisher_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[object] | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Topics

    def _level_topic(self, key: str, leaf: str) -> str:
        return f"{self.topic}/level/{key}/{leaf}"

    def _scene_topic(self, key: str, leaf: str) -> str:
        return f"{self.topic}/scene/{key}/{leaf}"

    def _discovery_topics(self, entity: ControlEntity) -> list[str]:
        key = entity_key(entity.id)
        if isinstance(entity, ToggleControl):
            return [f"{self.ha_topic}/switch/{self.topic}/scene_{key}/config"]
        return [
            f"{self.ha_topic}/number/{self.topic}/{key}_volume/config",
            f"{self.ha_topic}/button/{self.topic}/{key}_mute/config",
        ]

    def _device_struct(self) -> dict[str, Any]:
        return {
            "identifiers": [self.topic],
            "name": "Mixer Bridge",
            "sw_version": ORIGIN_STRUCT["sw_version"],
        }

    def discovery_payloads(self, entity: ControlEntity) -> list[tuple[str, dict[str, Any]]]:
        """Build Home Assistant discovery configs for an entity."""
        key = entity_key(entity.id)
        topics = self._discovery_topics(entity)
        availability = [{"topic": f"{self.topic}/availability"}]
        if isinstance(entity, ToggleControl):
            return [
                (
                    topics[0],
                    {
                        "name": entity.display_name,
                        "unique_id": f"{self.topic}_scene_{key}",
                        "state_topic": self._scene_topic(key, "state"),
                        "command_topic": self._scene_topic(key, "press"),
                        "availability": availability,
                        "device": self._device_struct(),
                        "origin": ORIGIN_STRUCT,
                    },
                ),
            ]
        return [
            (
                topics[0],
                {
                    "name": f"{entity.display_name} volume",
                    "unique_id": f"{self.topic}_{key}_volume",
                    "state_topic": self._level_topic(key, "state"),
                    "value_template": "{{ value_json.volume }}",
                    "command_topic": self._level_topic(key, "set"),
                    "min": 0.0,
                    "max": 1.0,
                    "step": 0.01,
                    "json_attributes_topic": self._level_topic(key, "state"),
                    "availability": availability,
                    "device": self._device_struct(),
                    "origin": ORIGIN_STRUCT,
                },
            ),
            (
                topics[1],
                {
                    "name": f"{entity.display_name} mute",
                    "unique_id": f"{self.topic}_{key}_mute",
                    "command_topic": self._level_topic(key, "mute"),
                    "payload_press": "press",
                    "availability": availability,
                    "device": self._device_struct(),
                    "origin": ORIGIN_STRUCT,
                },
            ),
        ]

    def state_message(self, entity: ControlEntity) -> tuple[str, bytes]:
        key = entity_key(entity.id)
        if isinstance(entity, ToggleControl):
            return self._scene_topic(key, "state"), b"ON" if entity.active else b"OFF"
        level = cast("LevelControl", entity)
        payload = json.dumps({"volume": level.volume, "muted": level.muted}).encode()
        return self._level_topic(key, "state"), payload

    # ControlSurfaceHost

    def attach(self, entity: ControlEntity) -> None:
        key = entity_key(entity.id)
        if isinstance(entity, ToggleControl):
            self._scenes[key] = entity
        elif isinstance(entity, LevelControl):
            self._levels[key] = entity
        else:
            logger.warning("%s Unsupported entity type: %r", self.lp, entity)
            return
        self._enqueue_entity(entity)

    def update(self, entity: ControlEntity) -> None:
        topic, payload = self.state_message(entity)
        self._enqueue(topic, payload, retain=True)

    def reset(self) -> None:
        for entity in [*self._levels.values(), *self._scenes.values()]:
            for topic in self._discovery_topics(entity):
                # empty retained config removes the entity from Home Assistant
                self._enqueue(topic, b"", retain=True)
        self._levels = {}
        self._scenes = {}

    # StatusReporter

    def set_status(self, text: str) -> None:
        self.status_text = text
        self._enqueue(f"{self.topic}/status", text.encode(), retain=True)

    # Publishing

    def _enqueue_entity(self, entity: ControlEntity) -> None:
        for topic, config in self.discovery_payloads(entity):
            self._enqueue(topic, json.dumps(config).encode(), retain=True)
        self.update(entity)

    def _enqueue(self, topic: str, payload: bytes, retain: bool = False) -> None:
        if not self._connected:
            logger.debug("%s Not connected, dropping publish to %s", self.lp, topic)
            return
        self._outbox.put_nowait((topic, payload, retain))

    async def _publisher_loop(self) -> None:
        while True:
            topic, payload, retain = await self._outbox.get()
            try:
                _ = await self.publish(topic, payload, retain=retain)
            finally:
                self._outbox.task_done()

    async def publish(self, topic: str, payload: bytes, retain: bool = False) -> bool:
        """Publish a message to the MQTT broker."""
        lp = f"{self.lp}publish:"
        if not self._connected or self.client is None:
            return False
        try:
            await self.client.publish(topic, payload, qos=0, retain=retain)
        except aiomqtt.MqttCodeError as mqtt_code_exc:
            logger.warning("%s [MqttCodeError] -> %s", lp, mqtt_code_exc)
            self._connected = False
        except aiomqtt.MqttError as mqtt_err:
            logger.warning("%s [MqttError] -> %s", lp, mqtt_err)
            self._connected = False
        else:
            return True
        return False

    async def flush(self) -> None:
        """Wait until every queued publish has been sent."""
        await self._outbox.join()

    async def republish_all(self) -> None:
        """Publish availability, status and every attached entity (after (re)connect)."""
        _ = await self.publish(f"{self.topic}/availability", b"online", retain=True)
        if self.status_text:
            self.set_status(self.status_text)
        for entity in [*self._levels.values(), *self._scenes.values()]:
            self._enqueue_entity(entity)

    # Command routing

    async def handle_message(self, topic: str, payload: bytes) -> None:
        """Route one inbound MQTT message to the matching entity action."""
        lp = f"{self.lp}rcv:"
        parts = topic.split("/")
        if len(parts) < 3 or parts[0] != self.topic:
            logger.debug("%s Ignoring message on %s", lp, topic)
            return

        if parts[1:] == ["bridge", "reconnect"]:
            self._trigger_reconnect()
            return

        if len(parts) != 4:
            logger.warning("%s Unknown command topic: %s", lp, topic)
            return
        family, key, action = parts[1], parts[2], parts[3]

        if family == "level":
            level = self._levels.get(key)
            if level is None:
                logger.debug("%s No level control %r, dropping %s", lp, key, topic)
                return
            if action == "set":
                value = parse_level(payload)
                if value is None:
                    logger.warning("%s Invalid level payload for %s: %r", lp, key, payload)
                    return
                level.volume_changed(value)
            elif action == "mute":
                level.mute_pressed()
            else:
                logger.warning("%s Unknown level action: %s", lp, topic)
        elif family == "scene":
            scene = self._scenes.get(key)
            if scene is None:
                logger.debug("%s No scene button %r, dropping %s", lp, key, topic)
                return
            if action != "press":
                logger.warning("%s Unknown scene action: %s", lp, topic)
            elif payload.strip().upper() != b"OFF":
                scene.pressed()
        else:
            logger.warning("%s Unknown command topic: %s", lp, topic)

    def _trigger_reconnect(self) -> None:
        if self.on_reconnect is None:
            logger.warning("%s Reconnect requested but no handler is set", self.lp)
            return
        previous = self._reconnect_task
        if previous is not None and not previous.done():
            logger.info("%s Reconnect already in progress, cancelling it and starting over", self.lp)
            _ = previous.cancel()
        logger.info("%s Reconnect button pressed", self.lp)
        self._reconnect_task = asyncio.create_task(self._run_reconnect(self.on_reconnect))

    async def _run_reconnect(self, callback: ReconnectCallback) -> object:
        return await callback()

    async def _receive(self) -> None:
        lp = f"{self.lp}rcv:"
        assert self.client is not None, "client must be initialized"
        topics = [
            f"{self.topic}/level/+/+",
            f"{self.topic}/scene/+/press",
            f"{self.topic}/bridge/reconnect",
        ]
        for topic in topics:
            await self.client.subscribe(topic, qos=0)
        logger.debug("%s Subscribed to MQTT topics: %s", lp, topics)
        async for message in self.client.messages:
            payload = message.payload
            if not isinstance(payload, bytes | bytearray) or not payload:
                logger.debug("%s Empty or non-bytes payload on %s, skipping", lp, message.topic)
                continue
            try:
                await self.handle_message(message.topic.value, bytes(payload))
            except Exception:
                logger.exception("%s Failed to handle message on %s", lp, message.topic)

    # Lifecycle

    async def connect(self) -> bool:
        lp = f"{self.lp}connect:"
        self._connected = False
        will = aiomqtt.Will(topic=f"{self.topic}/availability", payload=b"offline", retain=True)
        self.client = aiomqtt.Client(
            hostname=self.hostname,
            port=self.port,
            username=self.username,
            password=self.password,
            will=will,
        )
        try:
            _ = await self.client.__aenter__()
        except aiomqtt.MqttError:
            logger.exception("%s Connection failed [MqttError]", lp)
            return False
        self._connected = True
        logger.info("%s Connected to MQTT broker: %s port: %s", lp, self.hostname, self.port)
        return True

    def _connection_delay(self) -> int:
        delay = MIXER_BRIDGE_MQTT_CONN_DELAY
        if delay <= 0:
            logger.debug("%s MQTT connection delay <= 0, using 5 seconds", self.lp)
            return 5
        return delay

    async def start(self) -> None:
        """Connect, publish everything and process commands; reconnect on broker errors."""
        lp = f"{self.lp}start:"
        while True:
            if not await self.connect():
                delay = self._connection_delay()
                logger.info("%s Connecting to MQTT broker failed, retrying in %s seconds", lp, delay)
                await asyncio.sleep(delay)
                continue
            self._publisher_task = asyncio.create_task(self._publisher_loop(), name="mqtt_publisher")
            try:
                await self.republish_all()
                await self._receive()
            except aiomqtt.MqttError as e:
                logger.warning("%s MQTT error: %s, reconnecting", lp, e)
                self._connected = False
            finally:
                await self._stop_publisher()

    async def _stop_publisher(self) -> None:
        task, self._publisher_task = self._publisher_task, None
        if task is not None and not task.done():
            _ = task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("%s Publisher task cancelled", self.lp)

    async def stop(self) -> None:
        lp = f"{self.lp}stop:"
        if self._connected:
            _ = await self.publish(f"{self.topic}/availability", b"offline", retain=True)
        await self._stop_publisher()
        if self.client is not None:
            try:
                await self.client.__aexit__(None, None, None)
            except aiomqtt.MqttError as e:
                logger.warning("%s MQTT disconnect failed: %s", lp, e)
            else:
                logger.info("%s Disconnected from MQTT broker", lp)
        self._connected = False
        if self.start_task is not None and not self.start_task.done():
            _ = self.start_task.cancel()
