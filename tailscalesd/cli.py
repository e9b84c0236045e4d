from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional

from tailscalesd.config import Settings
from tailscalesd.logger import configure_logging, get_logger
from tailscalesd.schemas.devices import Device
from tailscalesd.services.discovery import PartialResultsError, is_stale
from tailscalesd.services.sources import build_discoverer, build_filters, close_discoverer
from tailscalesd.services.translate import translate
from tailscalesd.versioning import get_version

_logger = get_logger("cli")

# Maps argparse destinations onto Settings fields.
_SETTING_ARGS = {
    "address": "listen",
    "poll": "poll_limit_seconds",
    "ipv6": "include_ipv6",
    "localapi": "use_local_api",
    "localapi_socket": "local_api_socket",
    "tailnet": "tailnet",
    "token": "token",
    "client_id": "client_id",
    "client_secret": "client_secret",
    "api_host": "api_host",
    "level": "log_level",
}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Settings from the environment, overridden by any flags given on the command line."""
    overrides: Dict[str, Any] = {}
    for dest, field in _SETTING_ARGS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides[field] = value
    return Settings(**overrides)


def cmd_version(args: argparse.Namespace) -> int:
    print(f"tailscalesd version {get_version()}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from tailscalesd.main import create_app

    settings = settings_from_args(args)
    configure_logging(settings.log_level, settings.log_file or None)
    app = create_app(settings)
    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.listen_port,
        log_config=None,
        access_log=False,
        timeout_keep_alive=60,
    )
    return 0


async def _discover_once(settings: Settings) -> list[Device]:
    discoverer = build_discoverer(settings)
    try:
        return await discoverer.devices()
    except PartialResultsError as exc:
        if not is_stale(exc):
            raise
        _logger.warning("discovery.stale", "Serving potentially stale results", error=str(exc))
        return exc.devices
    finally:
        await close_discoverer(discoverer)


def cmd_devices(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    configure_logging(settings.log_level, settings.log_file or None)
    devices = asyncio.run(_discover_once(settings))
    if args.raw:
        _print_json([device.model_dump(mode="json") for device in devices])
        return 0
    targets = translate(devices, build_filters(settings))
    _print_json([target.to_payload() for target in targets])
    return 0


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--poll",
        help="Max frequency with which to poll the Tailscale API, e.g. 5m. "
        "Cached results are served between intervals.",
    )
    parser.add_argument(
        "--ipv6",
        action="store_true",
        default=None,
        help="Include IPv6 target addresses.",
    )
    parser.add_argument(
        "--localapi",
        action="store_true",
        default=None,
        help="Use the Tailscale local API exported by the local node's tailscaled.",
    )
    parser.add_argument(
        "--localapi-socket",
        dest="localapi_socket",
        help="Unix domain socket used to reach the local tailscaled API.",
    )
    parser.add_argument("--tailnet", help="Tailnet name.")
    parser.add_argument("--token", help="Tailscale API token.")
    parser.add_argument("--client-id", dest="client_id", help="Tailscale OAuth client ID.")
    parser.add_argument("--client-secret", dest="client_secret", help="Tailscale OAuth client secret.")
    parser.add_argument("--api-host", dest="api_host", help="Tailscale public API host.")
    parser.add_argument("--level", help="Log level, e.g. DEBUG, INFO, WARNING.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tailscalesd",
        description="Prometheus HTTP service discovery for Tailscale tailnets.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Serve service discovery over HTTP")
    serve.add_argument("--address", help="Address on which to serve, e.g. 0.0.0.0:9242.")
    _add_source_args(serve)
    serve.set_defaults(func=cmd_serve)

    devices = sub.add_parser("devices", help="Run one discovery pass and print the results")
    _add_source_args(devices)
    devices.add_argument("--raw", action="store_true", help="Print devices instead of targets.")
    devices.set_defaults(func=cmd_devices)

    version = sub.add_parser("version", help="Print the version and exit")
    version.set_defaults(func=cmd_version)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
