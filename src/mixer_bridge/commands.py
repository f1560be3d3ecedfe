"""Command values produced by local control actions, and their processor.

Entities never talk to the remote mixer directly. A fader move or button
press builds one of the command values below and hands it to the
``CommandProcessor``, which executes commands one at a time through the
sync engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import ClassVar

from mixer_bridge import metrics
from mixer_bridge.const import COMMAND_PROCESSOR_TASK_NAME
from mixer_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class MixerCommand:
    """Base class for commands sent to the remote mixer."""

    cmd_type: ClassVar[str] = "command"


@dataclass(frozen=True, slots=True)
class SetVolume(MixerCommand):
    """Set a source volume (remote native 0.0-1.0 scale)."""

    cmd_type: ClassVar[str] = "set_volume"

    source: str
    volume: float


@dataclass(frozen=True, slots=True)
class SetMute(MixerCommand):
    cmd_type: ClassVar[str] = "set_mute"

    source: str
    muted: bool


@dataclass(frozen=True, slots=True)
class SetFilterVolume(MixerCommand):
    """Set an audio monitor filter volume (remote 0-100 scale)."""

    cmd_type: ClassVar[str] = "set_filter_volume"

    source: str
    filter_name: str
    volume: float


@dataclass(frozen=True, slots=True)
class SwitchScene(MixerCommand):
    cmd_type: ClassVar[str] = "switch_scene"

    scene: str


type CommandDispatch = Callable[[MixerCommand], None]
type CommandExecutor = Callable[[MixerCommand], Awaitable[None]]


class CommandProcessor:
    """Sequential executor for mixer commands.

    ``submit()`` is synchronous so entity action methods can stay synchronous;
    the queue is drained by a single task started on demand.
    """

    lp: str = "CommandProcessor:"

    def __init__(self, executor: CommandExecutor) -> None:
        self._executor: CommandExecutor = executor
        self._queue: asyncio.Queue[MixerCommand] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, cmd: MixerCommand) -> None:
        """Queue a command and make sure the processing task is running."""
        self._queue.put_nowait(cmd)
        logger.debug("%s Queued command: %r (queue size: %d)", self.lp, cmd, self._queue.qsize())
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.process_next(), name=COMMAND_PROCESSOR_TASK_NAME)

    async def process_next(self) -> None:
        """Execute queued commands until the queue is empty."""
        lp = f"{self.lp}process_next:"
        while not self._queue.empty():
            cmd = self._queue.get_nowait()
            try:
                logger.debug("%s Executing: %r", lp, cmd)
                await self._executor(cmd)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s Command failed: %r", lp, cmd)
                metrics.record_command(cmd.cmd_type, "error")
            else:
                metrics.record_command(cmd.cmd_type, "ok")
            finally:
                self._queue.task_done()
        logger.debug("%s Processing loop ended", lp)

    async def drain(self) -> None:
        """Wait until every queued command has been executed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the processing task and discard queued commands."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            _ = task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("%s Processing task cancelled", self.lp)
        while not self._queue.empty():
            _ = self._queue.get_nowait()
            self._queue.task_done()
