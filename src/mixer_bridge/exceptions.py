"""Exception hierarchy for the mixer bridge.

Every error carries a short human-readable ``description``; the session
boundary reports it verbatim to the control surface status slot.
"""

from __future__ import annotations


class MixerBridgeError(Exception):
    """Base exception for all mixer bridge errors."""

    description: str = ""

    def __init__(self, description: str) -> None:
        self.description = description
        super().__init__(description)


class RemoteConnectionError(MixerBridgeError):
    """Connection to the remote mixer failed or was lost.

    Raised when:
    - The websocket cannot be opened (bad address, refused)
    - A request is issued while disconnected
    - The connection closes with requests still pending

    Attributes:
        reason: Specific failure reason
        state: Connection state when error occurred

    """

    def __init__(self, reason: str, state: str = "unknown") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(reason)


class RemoteRequestError(MixerBridgeError):
    """The remote mixer answered a request with an error status.

    Attributes:
        request_type: Remote request name (e.g. "GetVolume")
        description: Error text returned by the remote mixer

    """

    def __init__(self, request_type: str, description: str) -> None:
        self.request_type: str = request_type
        super().__init__(description)


class MalformedPayloadError(MixerBridgeError):
    """A response or event does not have the expected shape.

    Attributes:
        reason: What was missing or invalid
        payload: The offending payload, for debugging

    """

    def __init__(self, reason: str, payload: object = None) -> None:
        self.reason: str = reason
        self.payload: object = payload
        super().__init__(f"Malformed payload: {reason}")


class SettingsError(MixerBridgeError):
    """Settings file cannot be read or does not validate."""

    def __init__(self, reason: str, path: str | None = None) -> None:
        self.reason: str = reason
        self.path: str | None = path
        super().__init__(f"Invalid settings{f' in {path}' if path else ''}: {reason}")


def describe_error(err: BaseException) -> str:
    """Return the human-readable description reported for ``err``.

    Prefers a ``description`` attribute, then the exception message, then the
    exception type name when the message is empty.
    """
    description = getattr(err, "description", None)
    if isinstance(description, str) and description:
        return description
    message = str(err)
    if message:
        return message
    return type(err).__name__
