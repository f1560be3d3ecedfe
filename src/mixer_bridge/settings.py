"""Bridge settings: YAML file overlaid with environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from mixer_bridge.const import (
    DEFAULT_REMOTE_ADDRESS,
    DEFAULT_REMOTE_PASSWORD,
    ENV_REMOTE_ADDRESS,
    ENV_REMOTE_PASSWORD,
    ENV_REQUEST_TIMEOUT,
    MIXER_BRIDGE_CONFIG_FILE_PATH,
)
from mixer_bridge.exceptions import SettingsError
from mixer_bridge.logging_abstraction import get_logger

logger = get_logger(__name__)

# environment variable -> settings key
ENV_OVERRIDES: dict[str, str] = {
    ENV_REMOTE_ADDRESS: "address",
    ENV_REMOTE_PASSWORD: "password",
    ENV_REQUEST_TIMEOUT: "request_timeout",
}


class BridgeSettings(BaseModel):
    """Options recognised for the remote mixer connection.

    ``address`` and ``password`` are optional; a missing or null value falls
    back to the local default endpoint and an empty password.
    """

    address: str = DEFAULT_REMOTE_ADDRESS
    password: str = DEFAULT_REMOTE_PASSWORD
    request_timeout: float | None = None

    @field_validator("address", mode="before")
    @classmethod
    def _default_address(cls, value: Any) -> Any:
        return DEFAULT_REMOTE_ADDRESS if value is None or value == "" else value

    @field_validator("password", mode="before")
    @classmethod
    def _default_password(cls, value: Any) -> Any:
        return DEFAULT_REMOTE_PASSWORD if value is None else value


class FileSettingsProvider:
    """Reads ``BridgeSettings`` from a YAML file each time they are requested.

    A missing file is not an error: defaults (plus any environment overrides)
    are returned.
    """

    lp: str = "settings:"

    def __init__(self, path: str | Path | None = None) -> None:
        self.path: Path = Path(path or MIXER_BRIDGE_CONFIG_FILE_PATH).expanduser()

    def _read_file(self) -> dict[str, Any]:
        lp = f"{self.lp}read:"
        if not self.path.exists():
            logger.info("%s Settings file not found, using defaults", lp, extra={"path": str(self.path)})
            return {}
        try:
            with self.path.open() as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(str(e), str(self.path)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            msg = "top level must be a mapping"
            raise SettingsError(msg, str(self.path))
        return data

    async def get_settings(self) -> BridgeSettings:
        data = self._read_file()
        for env_var, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                data[key] = value
        try:
            settings = BridgeSettings.model_validate(data)
        except ValidationError as e:
            raise SettingsError(str(e), str(self.path)) from e
        logger.debug(
            "%s Loaded settings",
            self.lp,
            extra={"address": settings.address, "password_set": bool(settings.password)},
        )
        return settings
