import argparse
import json
import logging
import sys
from typing import Any, Dict, Optional

import uvicorn

from ..adapters import build_adapter
from ..adapters.pty_process import PtyProcessAdapter
from ..config import GatewayConfig, load_config
from ..errors import GatewayError
from ..handshake import resolve_handshake

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)


def describe_resolution(message: str, config: GatewayConfig) -> Dict[str, Any]:
    """Resolve a handshake without connecting and describe what would run."""
    resolved = resolve_handshake(message, config)
    adapter = build_adapter(resolved, config)
    out: Dict[str, Any] = {
        "kind": resolved.kind.value,
        "target": resolved.target,
        "request": resolved.request.to_dict(),
    }
    if isinstance(adapter, PtyProcessAdapter):
        out["command"] = adapter.build_command(resolved.request)
    else:
        out["ssh"] = {
            "host": resolved.target,
            "port": config.device_port,
            "username": config.device_username,
            "connect_timeout": config.connect_timeout,
        }
    return out


def _load(args) -> GatewayConfig:
    config = load_config(getattr(args, "config", None))
    overrides: Dict[str, Any] = {}
    for name in ("host", "port", "log_level"):
        value: Optional[Any] = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    return config.replace(**overrides) if overrides else config


def main(argv=None):
    parser = argparse.ArgumentParser(description="Lab Shells terminal gateway")
    parser.add_argument("--config", default=None, help="Path to a YAML gateway config")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # lab-shells serve
    serve_parser = subparsers.add_parser("serve", help="Run the WebSocket terminal gateway")
    serve_parser.add_argument("--host", default=None, help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port (default from config)")
    serve_parser.add_argument("--log-level", dest="log_level", default=None, help="Log level")

    # lab-shells resolve '<handshake json>'
    resolve_parser = subparsers.add_parser("resolve", help="Show which backend a handshake would attach to")
    resolve_parser.add_argument("handshake", help="Handshake JSON, or - to read stdin")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = _load(args)
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(config.log_level)

    if args.command == "resolve":
        message = sys.stdin.read() if args.handshake == "-" else args.handshake
        try:
            info = describe_resolution(message, config)
        except GatewayError as exc:
            print(f"{exc.__class__.__name__}: {exc}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(info, indent=2))
        return

    if args.command == "serve":
        from ..app import create_app

        app = create_app(config)
        print(f"Terminal gateway ready at ws://{config.host}:{config.port}{config.ws_path}")
        uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
