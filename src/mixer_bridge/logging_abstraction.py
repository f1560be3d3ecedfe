"""Logging for the mixer bridge.

Handlers live on the ``mixer_bridge`` package logger and are installed once;
module loggers propagate to it. Call sites pass structured context through
``extra=``, which lands on the record as ``extra_data`` and is rendered as a
``context`` object (JSON) or ``| key=value`` tail (human).
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import cast, override

from mixer_bridge.const import (
    MIXER_BRIDGE_DEBUG,
    MIXER_BRIDGE_LOG_CORRELATION_ENABLED,
    MIXER_BRIDGE_LOG_FORMAT,
    MIXER_BRIDGE_LOG_HUMAN_OUTPUT,
    MIXER_BRIDGE_LOG_JSON_FILE,
)
from mixer_bridge.correlation import get_correlation_id

__all__ = [
    "PACKAGE_LOGGER",
    "BridgeLogger",
    "HumanReadableFormatter",
    "JSONFormatter",
    "configure_logging",
    "get_logger",
]

PACKAGE_LOGGER = "mixer_bridge"


def _context(record: logging.LogRecord) -> Mapping[str, object] | None:
    extra_data = getattr(record, "extra_data", None)
    if isinstance(extra_data, Mapping) and extra_data:
        return cast("Mapping[str, object]", extra_data)
    return None


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the session correlation id."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "line": record.lineno,
            "message": record.getMessage(),
            "correlation_id": get_correlation_id(),
        }
        context = _context(record)
        if context is not None:
            log_data["context"] = dict(context)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    def __init__(self, show_correlation: bool = MIXER_BRIDGE_LOG_CORRELATION_ENABLED) -> None:
        super().__init__(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(module)s:%(lineno)d] %(correlation_id)s > %(message)s",
            datefmt="%m/%d/%y %H:%M:%S",
        )
        self.show_correlation: bool = show_correlation

    @override
    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id() if self.show_correlation else None
        record.correlation_id = f"[{correlation_id}]" if correlation_id else "[-]"

        formatted = super().format(record)
        context = _context(record)
        if context is not None:
            formatted += " | " + " | ".join(f"{k}={v}" for k, v in context.items())
        return formatted


def _human_handler(output: str) -> logging.Handler:
    if output == "stdout":
        return logging.StreamHandler(sys.stdout)
    if output == "stderr":
        return logging.StreamHandler(sys.stderr)
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, mode="a")


def configure_logging(
    log_format: str = MIXER_BRIDGE_LOG_FORMAT,
    json_file: str | None = MIXER_BRIDGE_LOG_JSON_FILE or None,
    human_output: str = MIXER_BRIDGE_LOG_HUMAN_OUTPUT,
    debug: bool = MIXER_BRIDGE_DEBUG,
) -> logging.Logger:
    """Install the package handlers, replacing any installed earlier.

    ``log_format`` is "human", "json" or "both"; JSON output needs ``json_file``.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    level = logging.DEBUG if debug else logging.INFO
    package_logger.setLevel(level)

    if log_format in ("json", "both") and json_file:
        json_path = Path(json_file)
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_handler = logging.FileHandler(json_path, mode="a")
        json_handler.setFormatter(JSONFormatter())
        package_logger.addHandler(json_handler)

    if log_format in ("human", "both"):
        human_handler = _human_handler(human_output or "stdout")
        human_handler.setFormatter(HumanReadableFormatter())
        package_logger.addHandler(human_handler)

    return package_logger


class BridgeLogger:
    """Thin wrapper that moves ``extra=`` into ``record.extra_data``.

    Keeping context under one attribute avoids clashes with LogRecord fields
    such as ``name`` or ``message``.
    """

    def __init__(self, name: str) -> None:
        self.logger: logging.Logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        msg: str,
        *args: object,
        extra: Mapping[str, object] | None = None,
        exc_info: bool = False,
    ) -> None:
        payload = {"extra_data": dict(extra)} if extra else None
        # stacklevel points %(module)s/%(lineno)d at the caller, not this wrapper
        self.logger.log(level, msg, *args, extra=payload, exc_info=exc_info, stacklevel=3)

    def debug(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.DEBUG, msg, *args, extra=extra)

    def info(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.INFO, msg, *args, extra=extra)

    def warning(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.WARNING, msg, *args, extra=extra)

    def error(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra)

    def critical(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.CRITICAL, msg, *args, extra=extra)

    def exception(self, msg: str, *args: object, extra: Mapping[str, object] | None = None) -> None:
        self._log(logging.ERROR, msg, *args, extra=extra, exc_info=True)


def get_logger(name: str) -> BridgeLogger:
    """Return a wrapper for ``name``, installing the package handlers on first use."""
    if not logging.getLogger(PACKAGE_LOGGER).handlers:
        _ = configure_logging()
    return BridgeLogger(name)
