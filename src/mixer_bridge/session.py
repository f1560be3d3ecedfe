"""Session lifecycle: connect, full sync, teardown and reconnect."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from mixer_bridge import metrics
from mixer_bridge.commands import CommandProcessor, MixerCommand
from mixer_bridge.const import STATUS_CONNECTED, STATUS_CONNECTING
from mixer_bridge.correlation import correlation_context
from mixer_bridge.exceptions import describe_error
from mixer_bridge.logging_abstraction import get_logger
from mixer_bridge.registry import EntityRegistry
from mixer_bridge.structs import ConnectionLost, SessionState
from mixer_bridge.sync_engine import SyncEngine

if TYPE_CHECKING:
    from mixer_bridge.structs import (
        ControlSurfaceHost,
        RemoteEvent,
        RemoteMixerClient,
        SettingsProvider,
        StatusReporter,
    )

logger = get_logger(__name__)


class SessionManager:
    """Owns one remote mixer session and everything mirrored from it.

    ``init()`` may be called from any state, including while connected, and
    always performs a full reset before reconnecting. Failures are reported
    through the status slot and leave the session disconnected; retrying is up
    to the operator.
    """

    lp: str = "SessionManager:"

    def __init__(
        self,
        client: RemoteMixerClient,
        settings: SettingsProvider,
        host: ControlSurfaceHost | None = None,
        status: StatusReporter | None = None,
    ) -> None:
        self.client: RemoteMixerClient = client
        self.settings: SettingsProvider = settings
        self.status: StatusReporter | None = status
        self.registry: EntityRegistry = EntityRegistry(host)
        self.commands: CommandProcessor = CommandProcessor(self._execute_command)
        self.engine: SyncEngine = SyncEngine(client, self.registry, self.commands.submit)
        self.state: SessionState = SessionState.DISCONNECTED
        self.status_text: str = ""
        self._subscribed: bool = False
        metrics.record_session_state(self.state)

    @property
    def current_scene(self) -> str:
        return self.engine.current_scene

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("%s %s -> %s", self.lp, self.state, state)
        self.state = state
        metrics.record_session_state(state)

    def _report(self, text: str) -> None:
        self.status_text = text
        if self.status is not None:
            self.status.set_status(text)

    async def _execute_command(self, cmd: MixerCommand) -> None:
        await self.engine.execute(cmd)

    def _subscribe(self) -> None:
        if not self._subscribed:
            self.client.subscribe(self._on_event)
            self._subscribed = True

    def _on_event(self, event: RemoteEvent) -> None:
        if isinstance(event, ConnectionLost):
            self._connection_lost(event.reason)
        else:
            self.engine.handle_event(event)

    def _connection_lost(self, reason: str) -> None:
        """Drop the mirror and report ``reason`` after the remote closed on its own."""
        if self.state not in (SessionState.SYNCING, SessionState.CONNECTED):
            logger.debug("%s Ignoring connection loss in state %s", self.lp, self.state)
            return
        logger.warning("%s Remote mixer connection lost: %s", self.lp, reason)
        # bumps the generation, so a full sync still in flight is discarded
        _ = self.registry.clear()
        self._set_state(SessionState.DISCONNECTED)
        self._report(reason)

    async def _disconnect(self) -> None:
        try:
            await self.client.disconnect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("%s Disconnect failed: %s", self.lp, e)

    async def init(self) -> bool:
        """Reset and (re)connect, then run a full sync.

        Returns:
            True when the session reached the connected state

        """
        with correlation_context():
            lp = f"{self.lp}init:"
            await self._disconnect()
            generation = self.registry.clear()
            self._set_state(SessionState.CONNECTING)
            self._report(STATUS_CONNECTING)

            try:
                settings = await self.settings.get_settings()
                if settings.request_timeout is not None:
                    self.client.request_timeout = settings.request_timeout
                logger.info("%s Connecting to remote mixer", lp, extra={"address": settings.address})
                await self.client.connect(settings.address, settings.password)
                if self.registry.generation != generation:
                    logger.info("%s Superseded while connecting", lp)
                    return False
                self._set_state(SessionState.SYNCING)
                self._subscribe()
                await self.engine.full_sync()
            except asyncio.CancelledError:
                raise
            except Exception as err:
                if self.registry.generation != generation:
                    logger.info("%s Superseded attempt failed: %s", lp, err)
                    return False
                logger.warning("%s Remote mixer error: %s", lp, describe_error(err), extra={"error": repr(err)})
                self._set_state(SessionState.DISCONNECTED)
                self._report(describe_error(err))
                return False

            if self.registry.generation != generation:
                logger.info("%s Superseded during full sync", lp)
                return False
            self._set_state(SessionState.CONNECTED)
            self._report(STATUS_CONNECTED)
            logger.info(
                "%s Connected",
                lp,
                extra={"entities": len(self.registry), "current_scene": self.current_scene},
            )
            return True

    async def teardown(self) -> None:
        """Disconnect and drop every mirrored entity."""
        await self._disconnect()
        _ = self.registry.clear()
        self._set_state(SessionState.DISCONNECTED)
        logger.info("%s Session torn down", self.lp)

    async def close(self) -> None:
        """Tear down and stop processing queued commands."""
        await self.teardown()
        await self.commands.stop()
        if self._subscribed:
            self.client.unsubscribe(self._on_event)
            self._subscribed = False
