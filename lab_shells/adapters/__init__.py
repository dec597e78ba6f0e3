from typing import Callable, Dict, Type

from ..config import GatewayConfig
from ..handshake import ResolvedHandshake, TargetKind
from .base import BackendAdapter, ExitInfo
from .container import ContainerExecAdapter
from .network_device import DeviceAuthClient, NetworkDeviceSshAdapter
from .pty_process import PtyProcessAdapter
from .remote_host import RemoteHostShellAdapter

ADAPTER_TYPES: Dict[TargetKind, Type[BackendAdapter]] = {
    TargetKind.CONTAINER_EXEC: ContainerExecAdapter,
    TargetKind.REMOTE_HOST_SHELL: RemoteHostShellAdapter,
    TargetKind.NETWORK_DEVICE_SSH: NetworkDeviceSshAdapter,
}

AdapterFactory = Callable[[ResolvedHandshake, GatewayConfig], BackendAdapter]


def build_adapter(resolved: ResolvedHandshake, config: GatewayConfig) -> BackendAdapter:
    """Construct (but do not start) the adapter for a resolved handshake."""
    return ADAPTER_TYPES[resolved.kind](resolved.target, config)


__all__ = [
    "ADAPTER_TYPES",
    "AdapterFactory",
    "BackendAdapter",
    "ContainerExecAdapter",
    "DeviceAuthClient",
    "ExitInfo",
    "NetworkDeviceSshAdapter",
    "PtyProcessAdapter",
    "RemoteHostShellAdapter",
    "build_adapter",
]
