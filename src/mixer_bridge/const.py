import os

from mixer_bridge import __version__

__all__ = [
    "AUDIO_MONITOR_FILTER_KIND",
    "COMMAND_PROCESSOR_TASK_NAME",
    "DEFAULT_REMOTE_ADDRESS",
    "DEFAULT_REMOTE_PASSWORD",
    "ENV_REMOTE_ADDRESS",
    "ENV_REMOTE_PASSWORD",
    "ENV_REQUEST_TIMEOUT",
    "FILTER_VOLUME_SCALE",
    "MIXER_BRIDGE_CONFIG_FILE_PATH",
    "MIXER_BRIDGE_DEBUG",
    "MIXER_BRIDGE_HASS_TOPIC",
    "MIXER_BRIDGE_LOG_CORRELATION_ENABLED",
    "MIXER_BRIDGE_LOG_FORMAT",
    "MIXER_BRIDGE_LOG_HUMAN_OUTPUT",
    "MIXER_BRIDGE_LOG_JSON_FILE",
    "MIXER_BRIDGE_METRICS_PORT",
    "MIXER_BRIDGE_MQTT_CONN_DELAY",
    "MIXER_BRIDGE_MQTT_HOST",
    "MIXER_BRIDGE_MQTT_PASS",
    "MIXER_BRIDGE_MQTT_PORT",
    "MIXER_BRIDGE_MQTT_USER",
    "MIXER_BRIDGE_PERF_THRESHOLD_MS",
    "MIXER_BRIDGE_PERF_TRACKING",
    "MIXER_BRIDGE_REQUEST_TIMEOUT",
    "MIXER_BRIDGE_TOPIC",
    "MIXER_BRIDGE_VERSION",
    "MQTT_HOST_START_TASK_NAME",
    "ORIGIN_STRUCT",
    "SCENE_DISPLAY_NAME_FMT",
    "SRC_REPO_URL",
    "STATUS_CONNECTED",
    "STATUS_CONNECTING",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")

MIXER_BRIDGE_VERSION: str = __version__
SRC_REPO_URL: str = "https://github.com/mixer-bridge/mixer-bridge"

# Remote mixer defaults (used when settings omit them)
DEFAULT_REMOTE_ADDRESS: str = "localhost:4444"
DEFAULT_REMOTE_PASSWORD: str = ""
AUDIO_MONITOR_FILTER_KIND: str = "audio_monitor"
# audio monitor filters store their volume on a 0-100 scale
FILTER_VOLUME_SCALE: float = 100.0
SCENE_DISPLAY_NAME_FMT: str = 'OBS: Switch to "{scene}" scene'

STATUS_CONNECTING: str = "Connecting..."
STATUS_CONNECTED: str = "Connected"

# Read by FileSettingsProvider on every get_settings() call, so a later --env load applies
ENV_REMOTE_ADDRESS: str = "MIXER_BRIDGE_REMOTE_ADDRESS"
ENV_REMOTE_PASSWORD: str = "MIXER_BRIDGE_REMOTE_PASSWORD"
ENV_REQUEST_TIMEOUT: str = "MIXER_BRIDGE_REQUEST_TIMEOUT"

_request_timeout = os.environ.get(ENV_REQUEST_TIMEOUT, "")
try:
    _request_timeout_value: float | None = float(_request_timeout) if _request_timeout else None
except ValueError:
    _request_timeout_value = None
MIXER_BRIDGE_REQUEST_TIMEOUT: float | None = _request_timeout_value

MIXER_BRIDGE_CONFIG_FILE_PATH: str = os.environ.get(
    "MIXER_BRIDGE_CONFIG_FILE",
    "~/.config/mixer-bridge/settings.yaml",
)

MIXER_BRIDGE_MQTT_HOST = os.environ.get("MIXER_BRIDGE_MQTT_HOST", "localhost")
_mqtt_port = os.environ.get("MIXER_BRIDGE_MQTT_PORT", "1883")
try:
    _mqtt_port_value: int = int(_mqtt_port) if _mqtt_port else 1883
except ValueError:
    _mqtt_port_value = 1883
MIXER_BRIDGE_MQTT_PORT: int = _mqtt_port_value
MIXER_BRIDGE_MQTT_USER = os.environ.get("MIXER_BRIDGE_MQTT_USER")
MIXER_BRIDGE_MQTT_PASS = os.environ.get("MIXER_BRIDGE_MQTT_PASS")
MIXER_BRIDGE_TOPIC = os.environ.get("MIXER_BRIDGE_TOPIC", "mixer_bridge")
MIXER_BRIDGE_HASS_TOPIC = os.environ.get("MIXER_BRIDGE_HASS_TOPIC", "homeassistant")
MIXER_BRIDGE_MQTT_CONN_DELAY: int = int(os.environ.get("MIXER_BRIDGE_MQTT_CONN_DELAY", "10"))

MIXER_BRIDGE_DEBUG = os.environ.get("MIXER_BRIDGE_DEBUG", "0").casefold() in YES_ANSWER

_metrics_port = os.environ.get("MIXER_BRIDGE_METRICS_PORT", "")
MIXER_BRIDGE_METRICS_PORT: int | None = int(_metrics_port) if _metrics_port.isdigit() else None

MQTT_HOST_START_TASK_NAME = "MQTTSurfaceHost_START"
COMMAND_PROCESSOR_TASK_NAME = "CommandProcessor_RUN"

ORIGIN_STRUCT = {
    "name": "mixer-bridge",
    "sw_version": MIXER_BRIDGE_VERSION,
    "support_url": SRC_REPO_URL,
}

# Logging Configuration
MIXER_BRIDGE_LOG_FORMAT: str = os.environ.get("MIXER_BRIDGE_LOG_FORMAT", "human")  # "json", "human", or "both"
MIXER_BRIDGE_LOG_JSON_FILE: str = os.environ.get("MIXER_BRIDGE_LOG_JSON_FILE", "")
MIXER_BRIDGE_LOG_HUMAN_OUTPUT: str = os.environ.get("MIXER_BRIDGE_LOG_HUMAN_OUTPUT", "stdout")
MIXER_BRIDGE_LOG_CORRELATION_ENABLED: bool = (
    os.environ.get("MIXER_BRIDGE_LOG_CORRELATION_ENABLED", "true").casefold() in YES_ANSWER
)

# Performance Instrumentation
MIXER_BRIDGE_PERF_TRACKING: bool = os.environ.get("MIXER_BRIDGE_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("MIXER_BRIDGE_PERF_THRESHOLD_MS", "500")
MIXER_BRIDGE_PERF_THRESHOLD_MS: int = int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 500
