"""OBS websocket (protocol v4) client.

Implements the ``RemoteMixerClient`` protocol over an aiohttp websocket:
JSON requests carry a ``message-id`` that the matching response echoes back,
and push events carry an ``update-type``. Event payloads are validated into
the typed event union here so nothing past this module sees raw dicts.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import itertools
from collections.abc import Iterator
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from mixer_bridge.const import MIXER_BRIDGE_REQUEST_TIMEOUT
from mixer_bridge.exceptions import MalformedPayloadError, RemoteConnectionError, RemoteRequestError
from mixer_bridge.instrumentation import timed_async
from mixer_bridge.logging_abstraction import get_logger
from mixer_bridge.structs import (
    EVENT_ADAPTER,
    ConnectionLost,
    EventHandler,
    FilterInfo,
    MuteChanged,
    RemoteEvent,
    SceneList,
    SceneSwitched,
    SourceInfo,
    VolumeChanged,
)

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# update-type -> (event kind, {event field: wire key})
EVENT_FIELDS: dict[str, tuple[str, dict[str, str]]] = {
    "SourceVolumeChanged": ("volume_changed", {"source_name": "sourceName", "volume": "volume"}),
    "SourceMuteStateChanged": ("mute_changed", {"source_name": "sourceName", "muted": "muted"}),
    "SwitchScenes": ("scene_switched", {"scene_name": "scene-name"}),
}


def build_auth_response(password: str, salt: str, challenge: str) -> str:
    """Answer an authentication challenge.

    ``secret = b64(sha256(password + salt))`` then
    ``auth = b64(sha256(secret + challenge))``.
    """
    secret = base64.b64encode(hashlib.sha256((password + salt).encode()).digest()).decode()
    return base64.b64encode(hashlib.sha256((secret + challenge).encode()).digest()).decode()


def parse_event(data: dict[str, Any]) -> VolumeChanged | MuteChanged | SceneSwitched | None:
    """Convert a raw update message into a typed event.

    Returns None for update types the bridge does not mirror.

    Raises:
        MalformedPayloadError: a mirrored update type is missing fields

    """
    update_type = data.get("update-type")
    mapping = EVENT_FIELDS.get(update_type) if isinstance(update_type, str) else None
    if mapping is None:
        return None
    kind, fields = mapping
    raw: dict[str, Any] = {"kind": kind}
    for field_name, wire_key in fields.items():
        raw[field_name] = data.get(wire_key)
    try:
        return EVENT_ADAPTER.validate_python(raw)
    except ValidationError as e:
        msg = f"invalid {update_type} event"
        raise MalformedPayloadError(msg, data) from e


def to_ws_url(address: str) -> str:
    if address.startswith(("ws://", "wss://")):
        return address
    return f"ws://{address}"


class ObsWebSocketClient:
    """Remote mixer client for OBS websocket v4."""

    lp: str = "obs:"

    def __init__(self, request_timeout: float | None = MIXER_BRIDGE_REQUEST_TIMEOUT) -> None:
        self.request_timeout: float | None = request_timeout
        self.address: str | None = None
        self.http_session: aiohttp.ClientSession | None = None
        self.ws: aiohttp.ClientWebSocketResponse | None = None
        self.receive_task: asyncio.Task[None] | None = None
        self._pending: dict[str, tuple[str, asyncio.Future[dict[str, Any]]]] = {}
        self._handlers: list[EventHandler] = []
        self._message_ids: Iterator[int] = itertools.count(1)
        self._attempt: int = 0

    @property
    def connected(self) -> bool:
        return self.ws is not None and not self.ws.closed

    # Event subscription

    def subscribe(self, handler: EventHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    # Connection lifecycle

    @timed_async("obs_connect")
    async def connect(self, address: str, password: str) -> None:
        """Open the websocket and authenticate if the server requires it.

        Each call owns the session, websocket and receive task it creates and
        only ever releases those. A ``disconnect()`` or newer ``connect()`` while
        this one is still opening supersedes it.

        Raises:
            RemoteConnectionError: the websocket could not be opened, or the attempt was superseded
            RemoteRequestError: authentication was rejected

        """
        lp = f"{self.lp}connect:"
        await self.disconnect()
        attempt = self._attempt
        url = to_ws_url(address)
        self.address = address
        session = aiohttp.ClientSession()
        self.http_session = session
        try:
            ws = await session.ws_connect(url, autoping=True)
        except (aiohttp.ClientError, OSError) as e:
            await self._release(session)
            msg = f"Could not connect to {address}: {e}"
            raise RemoteConnectionError(msg, state="connecting") from e
        except BaseException:
            await self._release(session)
            raise

        if attempt != self._attempt:
            logger.debug("%s Attempt superseded while opening websocket", lp, extra={"url": url})
            await self._release(session, ws)
            msg = f"Connection attempt to {address} was superseded"
            raise RemoteConnectionError(msg, state="superseded")

        self.ws = ws
        task = asyncio.create_task(self._receive_loop(ws), name=f"obs_receive:{address}")
        self.receive_task = task
        logger.debug("%s Websocket open", lp, extra={"url": url})
        try:
            await self._authenticate(password)
        except BaseException:
            await self._release(session, ws, task)
            raise
        logger.info("%s Connected to remote mixer", lp, extra={"address": address})

    async def _authenticate(self, password: str) -> None:
        data = await self.send("GetAuthRequired")
        if not data.get("authRequired"):
            return
        challenge = data.get("challenge")
        salt = data.get("salt")
        if not isinstance(challenge, str) or not isinstance(salt, str):
            msg = "authentication challenge is missing salt or challenge"
            raise MalformedPayloadError(msg, data)
        _ = await self.send("Authenticate", auth=build_auth_response(password, salt, challenge))
        logger.debug("%s Authenticated", self.lp)

    async def disconnect(self) -> None:
        """Close the current websocket and supersede any connect() in flight.

        Safe to call when not connected.
        """
        self._attempt += 1
        self._fail_pending(RemoteConnectionError("Disconnected", state="disconnected"))
        await self._release(self.http_session, self.ws, self.receive_task)

    async def _release(
        self,
        session: aiohttp.ClientSession | None,
        ws: aiohttp.ClientWebSocketResponse | None = None,
        task: asyncio.Task[None] | None = None,
    ) -> None:
        """Close the given objects; clear the client's references only where they still point at them."""
        if task is not None:
            if self.receive_task is task:
                self.receive_task = None
            if not task.done():
                _ = task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    logger.debug("%s Receive task cancelled", self.lp)
        if ws is not None:
            if self.ws is ws:
                self.ws = None
            if not ws.closed:
                _ = await ws.close()
        if session is not None:
            if self.http_session is session:
                self.http_session = None
            if not session.closed:
                logger.debug("%s Closing aiohttp ClientSession", self.lp)
                await session.close()

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for _request_type, fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)

    def _emit(self, event: RemoteEvent) -> None:
        lp = f"{self.lp}emit:"
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("%s Event handler failed for %r", lp, event)

    # Message handling

    async def _receive_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        lp = f"{self.lp}rcv:"
        cancelled = False
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = msg.json()
                    except ValueError:
                        logger.warning("%s Dropping non-JSON message: %.80s", lp, msg.data)
                        continue
                    if isinstance(data, dict):
                        self.handle_message(data)
                    else:
                        logger.warning("%s Dropping non-object message: %.80s", lp, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("%s Websocket error: %s", lp, ws.exception())
                    break
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            logger.debug("%s Receive loop ended", lp)
            # a stale socket must not fail requests or report loss for its successor
            if self.ws is ws:
                self._fail_pending(RemoteConnectionError("Connection closed", state="closed"))
                if not cancelled:
                    reason = self._loss_reason(ws)
                    logger.warning("%s %s", lp, reason, extra={"address": self.address})
                    self._emit(ConnectionLost(reason=reason))

    def _loss_reason(self, ws: aiohttp.ClientWebSocketResponse) -> str:
        error = ws.exception()
        if error is not None:
            return f"Connection to {self.address} lost: {error}"
        return f"Connection to {self.address} closed (code {ws.close_code})"

    def handle_message(self, data: dict[str, Any]) -> None:
        """Route a decoded message to its pending request or to event handlers."""
        lp = f"{self.lp}handle_message:"
        message_id = data.get("message-id")
        if message_id is not None:
            entry = self._pending.get(str(message_id))
            if entry is None:
                logger.debug("%s Response for unknown message-id %s", lp, message_id)
                return
            request_type, fut = entry
            if fut.done():
                return
            if data.get("status") == "error":
                fut.set_exception(RemoteRequestError(request_type, str(data.get("error") or "request failed")))
            else:
                fut.set_result(data)
            return

        if "update-type" in data:
            try:
                event = parse_event(data)
            except MalformedPayloadError as e:
                logger.warning("%s %s", lp, e, extra={"payload": data})
                return
            if event is not None:
                self._emit(event)

    async def send(self, request_type: str, **fields: Any) -> dict[str, Any]:
        """Send a request and wait for its response.

        Raises:
            RemoteConnectionError: not connected, or the connection dropped
            RemoteRequestError: the mixer answered with an error status or timed out

        """
        ws = self.ws
        if ws is None or ws.closed:
            msg = f"Cannot send {request_type}: not connected"
            raise RemoteConnectionError(msg, state="disconnected")
        message_id = str(next(self._message_ids))
        fut: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = (request_type, fut)
        payload = {"request-type": request_type, "message-id": message_id, **fields}
        try:
            await ws.send_json(payload)
            if self.request_timeout:
                return await asyncio.wait_for(fut, self.request_timeout)
            return await fut
        except TimeoutError as e:
            msg = f"{request_type} timed out after {self.request_timeout}s"
            raise RemoteRequestError(request_type, msg) from e
        except (aiohttp.ClientError, ConnectionResetError) as e:
            msg = f"Cannot send {request_type}: {e}"
            raise RemoteConnectionError(msg, state="closed") from e
        finally:
            _ = self._pending.pop(message_id, None)

    # Typed requests

    @staticmethod
    def _validate(model: type[M], payload: Any, request_type: str) -> M:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            msg = f"unexpected {request_type} response"
            raise MalformedPayloadError(msg, payload) from e

    @staticmethod
    def _require(data: dict[str, Any], key: str, request_type: str) -> Any:
        if key not in data:
            msg = f"{request_type} response has no {key!r}"
            raise MalformedPayloadError(msg, data)
        return data[key]

    async def get_source_list(self) -> list[SourceInfo]:
        data = await self.send("GetSourcesList")
        return [self._validate(SourceInfo, s, "GetSourcesList") for s in data.get("sources") or []]

    async def get_volume(self, source: str) -> float:
        data = await self.send("GetVolume", source=source)
        return float(self._require(data, "volume", "GetVolume"))

    async def get_mute(self, source: str) -> bool:
        data = await self.send("GetMute", source=source)
        return bool(self._require(data, "muted", "GetMute"))

    async def set_volume(self, source: str, volume: float) -> None:
        _ = await self.send("SetVolume", source=source, volume=volume)

    async def set_mute(self, source: str, muted: bool) -> None:
        _ = await self.send("SetMute", source=source, mute=muted)

    async def get_source_filters(self, source: str) -> list[FilterInfo]:
        data = await self.send("GetSourceFilters", sourceName=source)
        return [self._validate(FilterInfo, f, "GetSourceFilters") for f in data.get("filters") or []]

    async def set_filter_settings(self, source: str, filter_name: str, settings: dict[str, Any]) -> None:
        _ = await self.send(
            "SetSourceFilterSettings",
            sourceName=source,
            filterName=filter_name,
            filterSettings=settings,
        )

    async def get_scene_list(self) -> SceneList:
        data = await self.send("GetSceneList")
        return self._validate(SceneList, data, "GetSceneList")

    async def set_current_scene(self, scene: str) -> None:
        _ = await self.send("SetCurrentScene", **{"scene-name": scene})
