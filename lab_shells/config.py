from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml


ENV_PREFIX = "LAB_SHELLS_"

# containerlab node kinds that expose an SSH management plane.
DEFAULT_NETWORK_DEVICE_KINDS: Tuple[str, ...] = (
    "eos",
    "ceos",
    "arista_ceos",
    "arista_veos",
    "srl",
    "nokia_srlinux",
    "nokia_sros",
    "vr-sros",
    "vr-vmx",
    "vr-vqfx",
    "vr-xrv9k",
    "vr-csr",
    "vr-n9kv",
    "vr-veos",
    "crpd",
    "juniper_crpd",
    "juniper_vmx",
    "juniper_vjunosrouter",
    "juniper_vjunosswitch",
    "juniper_vsrx",
    "cisco_xrd",
    "cisco_xrv9k",
    "cisco_csr1000v",
    "cisco_n9kv",
    "cisco_c8000v",
    "xrd",
    "sonic-vs",
    "cumulus_cvx",
    "cvx",
    "fortinet_fortigate",
    "mikrotik_ros",
    "openbsd",
    "vyosnetworks_vyos",
)


def _truthy(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    val = str(raw).strip().lower()
    return val in {"1", "true", "yes", "y", "on"}


def _split_list(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, (list, tuple)):
        items = [str(x) for x in raw]
    else:
        items = str(raw).split(",")
    return tuple(x.strip() for x in items if x.strip())


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime settings for the session gateway.

    Credentials live here rather than in adapter code so tests and deployments
    can inject their own.
    """

    host: str = "0.0.0.0"
    port: int = 3001
    ws_path: str = "/ws/ssh"
    log_level: str = "INFO"

    # Container exec
    container_runtime: str = "docker"
    container_shell: str = "sh"

    # Remote host shell (shell-out to the ssh client)
    ssh_binary: str = "ssh"
    remote_host_user: str = "admin"
    # Host-key checking is off for lab VMs that get rebuilt with fresh keys.
    remote_host_ssh_options: Tuple[str, ...] = (
        "StrictHostKeyChecking=no",
        "UserKnownHostsFile=/dev/null",
    )

    # Network device SSH
    device_username: str = "admin"
    device_password: str = "admin"
    device_port: int = 22
    network_device_kinds: Tuple[str, ...] = DEFAULT_NETWORK_DEVICE_KINDS
    strict_kinds: bool = True

    # Timing
    connect_timeout: float = 10.0
    handshake_timeout: float = 30.0
    stop_grace_period: float = 2.0

    # Terminal
    term_type: str = "xterm-256color"
    default_columns: int = 80
    default_rows: int = 24

    # Relay
    max_pending_output: int = 256
    binary_output: bool = False
    resize_frames: bool = False

    def replace(self, **changes: Any) -> "GatewayConfig":
        return dataclasses.replace(self, **changes)


_FIELD_TYPES: Dict[str, Any] = {f.name: f.type for f in dataclasses.fields(GatewayConfig)}


def _coerce(name: str, raw: Any) -> Any:
    kind = _FIELD_TYPES[name]
    if kind == "bool":
        return _truthy(raw)
    if kind == "int":
        return int(raw)
    if kind == "float":
        return float(raw)
    if kind.startswith("Tuple"):
        return _split_list(raw)
    return str(raw)


def parse_config_data(raw: Any) -> Dict[str, Any]:
    """Validate an in-memory config document and coerce its values."""
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError("gateway config must be a mapping")
    out: Dict[str, Any] = {}
    for key, value in raw.items():
        name = str(key).replace("-", "_")
        if name not in _FIELD_TYPES:
            raise ValueError(f"unknown gateway config key '{key}'")
        out[name] = _coerce(name, value)
    return out


def _env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in _FIELD_TYPES:
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        out[name] = _coerce(name, raw)
    return out


def load_config(
    path: Optional[Union[str, Path]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> GatewayConfig:
    """Build a GatewayConfig from defaults, an optional YAML file, then env.

    The file path comes from `path` or `LAB_SHELLS_CONFIG`. Environment
    variables (`LAB_SHELLS_<FIELD>`) win over the file.
    """
    env_map = os.environ if env is None else env
    values: Dict[str, Any] = {}

    config_path = path or env_map.get(ENV_PREFIX + "CONFIG")
    if config_path:
        p = Path(os.path.expanduser(str(config_path)))
        if not p.exists():
            raise FileNotFoundError(f"gateway config not found: {p}")
        with p.open("r", encoding="utf-8") as f:
            values.update(parse_config_data(yaml.safe_load(f)))

    values.update(_env_overrides(env_map))
    return GatewayConfig(**values)


def ssh_option_args(options: Iterable[str]) -> List[str]:
    args: List[str] = []
    for opt in options:
        args.extend(["-o", opt])
    return args
