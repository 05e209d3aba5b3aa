"""
Relay Errors - failure taxonomy for the Figma command relay.

Every error raised out of ``connect``/``join_channel``/``send_command`` is a
``RelayError`` subclass carrying a short machine-readable ``code`` so the tool
layer can build structured payloads without string matching.
"""

import json
from typing import Dict, Any, Optional


class RelayError(Exception):
    """Base class for all relay failures."""

    code: str = "relay_error"


class RelayConnectionError(RelayError, ConnectionError):
    """Opening the transport failed (handshake or network error)."""

    code = "connection_error"


class ConnectionLost(RelayError, ConnectionError):
    """The connection dropped while the request was in flight."""

    code = "connection_lost"


class ChannelJoinError(RelayError):
    """The relay rejected the join, or never acknowledged it."""

    code = "channel_join_failed"

    def __init__(self, message: str, channel: Optional[str] = None):
        self.channel = channel
        super().__init__(message)


class NoChannelError(RelayError):
    """A command was attempted before any channel was joined."""

    code = "no_channel"


class RequestTimeoutError(RelayError, TimeoutError):
    """No response arrived before the request deadline."""

    code = "timeout"

    def __init__(self, message: str, command: Optional[str] = None, timeout: Optional[float] = None):
        self.command = command
        self.timeout = timeout
        super().__init__(message)


class ProtocolError(RelayError):
    """A frame could not be parsed or routed."""

    code = "protocol_error"


class IllegalStateError(RelayError, RuntimeError):
    """A send was attempted while the connection is not open."""

    code = "illegal_state"


class BackpressureError(RelayError):
    """Too many requests are outstanding."""

    code = "backpressure"


class RemoteError(RelayError):
    """
    The host explicitly reported a failure for a command.

    Carries a structured payload so callers can self-correct.
    Payload shape: { code: str, message: str, details?: dict }
    """

    def __init__(self, payload: Any, command: str | None = None, params: Any = None):
        self.command = command
        self.params = params

        # Hosts send either an object, a JSON-encoded object, or plain text
        if isinstance(payload, str):
            try:
                decoded = json.loads(payload)
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                payload = decoded

        if isinstance(payload, dict):
            self.code: str = str(payload.get("code") or "remote_error")
            self.message: str = str(payload.get("message", ""))
            self.details: Dict[str, Any] = payload.get("details", {}) or {}
        else:
            self.code = "remote_error"
            self.message = str(payload)
            self.details = {}

        self.payload = {"code": self.code, "message": self.message, "details": self.details}

        super().__init__(self.message if self.message else self.code)
