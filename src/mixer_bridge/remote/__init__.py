"""Remote mixer client implementations."""

from .obs_websocket import ObsWebSocketClient, build_auth_response, parse_event

__all__ = ["ObsWebSocketClient", "build_auth_response", "parse_event"]
