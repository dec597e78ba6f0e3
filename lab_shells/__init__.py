"""Lab Shells - WebSocket terminal gateway for containerlab nodes."""

from .gateway import SessionGateway
from .session import TerminalSession
from .record import SessionRecord, SessionState, CloseReason
from .config import GatewayConfig, load_config
from .events import get_event_bus, EventBus, SessionEvent, EventType
from .handshake import HandshakeRequest, ResolvedHandshake, TargetKind, resolve_handshake
from .errors import (
    GatewayError,
    InvalidHandshake,
    UnsupportedKind,
    ConnectError,
    ConnectReason,
    AdapterRuntimeError,
    TransportError,
    InvalidTransition,
)
from .adapters import (
    BackendAdapter,
    ContainerExecAdapter,
    RemoteHostShellAdapter,
    NetworkDeviceSshAdapter,
    ExitInfo,
    build_adapter,
)

import asyncio
from typing import Optional

# Singleton gateway instance
_gateway_instance: Optional[SessionGateway] = None
_gateway_lock: Optional[asyncio.Lock] = None
_gateway_kwargs: Optional[dict] = None

def _get_lock() -> asyncio.Lock:
    global _gateway_lock
    if _gateway_lock is None:
        _gateway_lock = asyncio.Lock()
    return _gateway_lock

async def get_gateway(**kwargs) -> SessionGateway:
    """Get or create the singleton SessionGateway instance.

    This is a process-wide singleton. If kwargs are provided after the gateway
    is created, they must match the original creation kwargs.
    """
    global _gateway_instance
    global _gateway_kwargs
    if _gateway_instance is not None:
        if kwargs and _gateway_kwargs is not None and kwargs != _gateway_kwargs:
            raise ValueError("SessionGateway singleton already created with different configuration")
        return _gateway_instance

    async with _get_lock():
        if _gateway_instance is None:
            _gateway_kwargs = dict(kwargs)
            _gateway_instance = SessionGateway(**kwargs)

    return _gateway_instance

__all__ = [
    "SessionGateway",
    "TerminalSession",
    "SessionRecord",
    "SessionState",
    "CloseReason",
    "GatewayConfig",
    "load_config",
    "get_event_bus",
    "EventBus",
    "SessionEvent",
    "EventType",
    "HandshakeRequest",
    "ResolvedHandshake",
    "TargetKind",
    "resolve_handshake",
    "GatewayError",
    "InvalidHandshake",
    "UnsupportedKind",
    "ConnectError",
    "ConnectReason",
    "AdapterRuntimeError",
    "TransportError",
    "InvalidTransition",
    "BackendAdapter",
    "ContainerExecAdapter",
    "RemoteHostShellAdapter",
    "NetworkDeviceSshAdapter",
    "ExitInfo",
    "build_adapter",
    "get_gateway",
]
