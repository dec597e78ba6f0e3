"""Handshake parsing and adapter selection.

The first frame on a terminal WebSocket is a JSON object naming the lab node
to attach to. Resolution only decides *what* to build; connecting happens in
the session so connect failures stay distinct from handshake failures.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .config import GatewayConfig
from .errors import InvalidHandshake, UnsupportedKind

logger = logging.getLogger(__name__)


class TargetKind(Enum):
    CONTAINER_EXEC = "container_exec"
    REMOTE_HOST_SHELL = "remote_host_shell"
    NETWORK_DEVICE_SSH = "network_device_ssh"


CONTAINER_KIND = "linux"
REMOTE_HOST_KIND = "sonic-vm"

# Canonical field -> names the dashboard front end has used for it.
_ALIASES: Dict[str, tuple] = {
    "targetKind": ("targetKind", "nodeKind"),
    "targetName": ("targetName", "nodeName"),
    "targetAddress": ("targetAddress", "nodeIp"),
    "username": ("username",),
    "initialColumns": ("initialColumns", "cols"),
    "initialRows": ("initialRows", "rows"),
}


@dataclass(frozen=True)
class HandshakeRequest:
    target_kind: str
    target_name: Optional[str]
    target_address: Optional[str]
    username: str
    columns: int
    rows: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetKind": self.target_kind,
            "targetName": self.target_name,
            "targetAddress": self.target_address,
            "username": self.username,
            "initialColumns": self.columns,
            "initialRows": self.rows,
        }


@dataclass(frozen=True)
class ResolvedHandshake:
    request: HandshakeRequest
    kind: TargetKind
    # Container name, host name or device address depending on `kind`.
    target: str


def _pick(data: Dict[str, Any], field_name: str) -> Any:
    for key in _ALIASES[field_name]:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _optional_str(data: Dict[str, Any], field_name: str) -> Optional[str]:
    value = _pick(data, field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidHandshake(f"{field_name} must be a string")
    value = value.strip()
    return value or None


def _required_str(data: Dict[str, Any], field_name: str) -> str:
    value = _optional_str(data, field_name)
    if value is None:
        raise InvalidHandshake(f"Missing required field: {field_name}")
    return value


def _dimension(data: Dict[str, Any], field_name: str, default: int) -> int:
    value = _pick(data, field_name)
    if value is None:
        return default
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidHandshake(f"{field_name} must be a number")
    if isinstance(value, float) and not value.is_integer():
        raise InvalidHandshake(f"{field_name} must be a whole number")
    if value < 1 or value > 10000:
        raise InvalidHandshake(f"{field_name} out of range: {value}")
    return int(value)


def parse_handshake(message: Union[str, bytes], config: GatewayConfig) -> HandshakeRequest:
    """Parse and validate the raw first frame into a HandshakeRequest."""
    if isinstance(message, (bytes, bytearray)):
        try:
            message = bytes(message).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidHandshake("Handshake is not valid UTF-8") from exc
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise InvalidHandshake("Handshake is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidHandshake("Handshake must be a JSON object")

    return HandshakeRequest(
        target_kind=_required_str(data, "targetKind"),
        target_name=_optional_str(data, "targetName"),
        target_address=_optional_str(data, "targetAddress"),
        username=_required_str(data, "username"),
        columns=_dimension(data, "initialColumns", config.default_columns),
        rows=_dimension(data, "initialRows", config.default_rows),
    )


def select_kind(target_kind: str, config: GatewayConfig) -> TargetKind:
    if target_kind == CONTAINER_KIND:
        return TargetKind.CONTAINER_EXEC
    if target_kind == REMOTE_HOST_KIND:
        return TargetKind.REMOTE_HOST_SHELL
    if target_kind in config.network_device_kinds:
        return TargetKind.NETWORK_DEVICE_SSH
    if config.strict_kinds:
        raise UnsupportedKind(target_kind)
    logger.warning("Unknown target kind %r, falling back to network device SSH", target_kind)
    return TargetKind.NETWORK_DEVICE_SSH


def resolve_handshake(message: Union[str, bytes], config: GatewayConfig) -> ResolvedHandshake:
    """Validate the first frame and decide which adapter variant to build.

    Raises InvalidHandshake for unparseable or incomplete requests and
    UnsupportedKind for kinds outside the known variants.
    """
    request = parse_handshake(message, config)
    kind = select_kind(request.target_kind, config)

    if kind is TargetKind.CONTAINER_EXEC:
        target = request.target_name
        if not target:
            raise InvalidHandshake("Missing required field: targetName")
    elif kind is TargetKind.REMOTE_HOST_SHELL:
        target = request.target_name or request.target_address
        if not target:
            raise InvalidHandshake("Missing required field: targetName")
    else:
        target = request.target_address or request.target_name
        if not target:
            raise InvalidHandshake("Missing required field: targetAddress")

    return ResolvedHandshake(request=request, kind=kind, target=target)
