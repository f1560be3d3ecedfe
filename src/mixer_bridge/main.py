"""Main entrypoint and lifecycle management for the mixer bridge service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Protocol, cast, runtime_checkable

import dotenv
import uvloop

from mixer_bridge import metrics
from mixer_bridge.const import (
    MIXER_BRIDGE_DEBUG,
    MIXER_BRIDGE_HASS_TOPIC,
    MIXER_BRIDGE_METRICS_PORT,
    MIXER_BRIDGE_MQTT_HOST,
    MIXER_BRIDGE_MQTT_PORT,
    MIXER_BRIDGE_TOPIC,
    MIXER_BRIDGE_VERSION,
    MQTT_HOST_START_TASK_NAME,
)
from mixer_bridge.correlation import correlation_context, ensure_correlation_id
from mixer_bridge.logging_abstraction import PACKAGE_LOGGER, get_logger
from mixer_bridge.remote import ObsWebSocketClient
from mixer_bridge.session import SessionManager
from mixer_bridge.settings import FileSettingsProvider
from mixer_bridge.surface import MQTTSurfaceHost

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
mqtt_logger = logging.getLogger("mqtt")
mqtt_logger.setLevel(logging.ERROR)
mqtt_logger.propagate = False


@runtime_checkable
class _CLIArgs(Protocol):
    debug: bool
    env: Path | None
    config: Path | None


def enable_debug_logging() -> None:
    """Lower the package logger to DEBUG; module loggers inherit it."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)


def build_surface_host() -> MQTTSurfaceHost:
    """Create the MQTT host from the current environment (after any ``--env`` load)."""
    port = os.environ.get("MIXER_BRIDGE_MQTT_PORT", "")
    return MQTTSurfaceHost(
        topic=os.environ.get("MIXER_BRIDGE_TOPIC", MIXER_BRIDGE_TOPIC),
        ha_topic=os.environ.get("MIXER_BRIDGE_HASS_TOPIC", MIXER_BRIDGE_HASS_TOPIC),
        hostname=os.environ.get("MIXER_BRIDGE_MQTT_HOST", MIXER_BRIDGE_MQTT_HOST),
        port=int(port) if port.isdigit() else MIXER_BRIDGE_MQTT_PORT,
        username=os.environ.get("MIXER_BRIDGE_MQTT_USER"),
        password=os.environ.get("MIXER_BRIDGE_MQTT_PASS"),
    )


class MixerBridge:
    """Controller wiring the remote mixer session to the MQTT control surface."""

    lp: str = "MixerBridge:"

    def __init__(self, config_file: Path | None = None) -> None:
        self.config_file: Path | None = config_file
        self.loop: asyncio.AbstractEventLoop | None = None
        self.host: MQTTSurfaceHost = build_surface_host()
        self.client: ObsWebSocketClient = ObsWebSocketClient()
        self.settings: FileSettingsProvider = FileSettingsProvider(config_file)
        self.session: SessionManager = SessionManager(
            self.client,
            self.settings,
            host=self.host,
            status=self.host,
        )
        self.host.on_reconnect = self.session.init
        self._stopping: bool = False

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        self.loop = loop
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.signal_handler, signum)
        logger.debug("%s Signal handlers configured for SIGINT & SIGTERM", self.lp)

    def signal_handler(self, signum: int) -> None:
        logger.info("%s Intercepted signal: %s (%s)", self.lp, signal.Signals(signum).name, signum)
        loop = self.loop or asyncio.get_event_loop()
        _ = loop.create_task(self.stop())

    async def start(self) -> None:
        """Start the MQTT host and open the first remote mixer session."""
        _ = ensure_correlation_id("bridge")
        self.install_signal_handlers(asyncio.get_running_loop())

        metrics_port = MIXER_BRIDGE_METRICS_PORT
        if metrics_port is not None:
            metrics.start_metrics_server(metrics_port)
            logger.info("%s Metrics server started", self.lp, extra={"port": metrics_port})

        logger.info(
            "%s Starting MQTT surface host and remote mixer session",
            self.lp,
            extra={"settings_file": str(self.settings.path)},
        )
        h_start: asyncio.Task[None] = asyncio.create_task(self.host.start(), name=MQTT_HOST_START_TASK_NAME)
        self.host.start_task = h_start
        try:
            _ = await asyncio.gather(h_start, self.session.init(), return_exceptions=True)
        except asyncio.CancelledError:
            logger.info("%s Startup cancelled", self.lp)
        except Exception as e:
            logger.exception("%s Service startup failed", self.lp, extra={"error": str(e)})
            await self.stop()
            raise

    async def stop(self) -> None:
        """Close the session and the MQTT host."""
        if self._stopping:
            return
        self._stopping = True
        logger.info("%s Shutting down mixer bridge...", self.lp)
        await self.session.close()
        await self.host.stop()


def parse_cli(argv: list[str] | None = None) -> _CLIArgs:
    """Parse CLI arguments for the bridge process."""
    parser = argparse.ArgumentParser(description="Mixer Bridge")
    _ = parser.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    _ = parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    _ = parser.add_argument("--config", help="Path to the settings YAML file", default=None, type=Path)
    args = cast("_CLIArgs", cast("object", parser.parse_args(argv)))

    if args.debug:
        enable_debug_logging()
        logger.info("Debug mode enabled via CLI argument")

    if args.env:
        env_path = args.env.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info(" Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return args


def check_python_version() -> None:
    if sys.version_info < (3, 12):
        logger.critical("Python 3.12 or newer is required, found %s", sys.version.split()[0])
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """Run the mixer bridge entry point."""
    with correlation_context("process"):
        logger.info("Starting Mixer Bridge", extra={"version": MIXER_BRIDGE_VERSION})
        args = parse_cli(argv)

        if MIXER_BRIDGE_DEBUG:
            logger.info("Debug logging enabled via configuration")
            enable_debug_logging()

        check_python_version()
        bridge = MixerBridge(config_file=args.config)
        try:
            uvloop.run(bridge.start())
        except KeyboardInterrupt:
            logger.info("Interrupted, exiting")
        finally:
            logger.info("Mixer Bridge stopped")


if __name__ == "__main__":
    main()
