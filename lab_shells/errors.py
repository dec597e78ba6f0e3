from enum import Enum
from typing import Optional


class GatewayError(Exception):
    """Base class for every error raised by the session gateway."""


class InvalidHandshake(GatewayError):
    """The first message is not parseable or misses required fields."""


class UnsupportedKind(GatewayError):
    """The handshake names a target kind outside the known variants."""

    def __init__(self, kind: str):
        super().__init__(f"Unsupported target kind: {kind!r}")
        self.kind = kind


class ConnectReason(Enum):
    TIMEOUT = "timeout"
    AUTH_FAILED = "auth_failed"
    REFUSED = "refused"
    UNKNOWN = "unknown"


class ConnectError(GatewayError):
    """The backend could not be reached or would not let us in."""

    def __init__(self, reason: ConnectReason, message: Optional[str] = None):
        self.reason = reason
        self.message = message or reason.value.replace("_", " ")
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"ConnectError({self.reason.value!r}, {self.message!r})"


class AdapterRuntimeError(GatewayError):
    """Mid-session failure reported by a backend, or use of a dead adapter."""


class TransportError(GatewayError):
    """Client-side disconnect or protocol violation."""


class InvalidTransition(GatewayError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid session transition {current} -> {target}")
        self.current = current
        self.target = target
