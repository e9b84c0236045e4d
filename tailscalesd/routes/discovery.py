from __future__ import annotations

import json

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, Response
from starlette.types import Receive, Scope, Send

from tailscalesd.dependencies import DiscoveryExport, get_export
from tailscalesd.logger import get_logger
from tailscalesd.services.discovery import PartialResultsError, is_stale
from tailscalesd.services.translate import translate

router = APIRouter(tags=["discovery"])
_logger = get_logger("api.discovery")

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
UNINITIALIZED_MESSAGE = "Attempted to serve with an improperly initialized handler"
DISCOVERY_FAILED_MESSAGE = "Failed to discover Tailscale devices"
ENCODE_FAILED_MESSAGE = "Failed to encode targets as JSON"


class TargetsResponse(Response):
    media_type = JSON_CONTENT_TYPE

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as exc:
            # Headers are already out; nothing left to tell the client.
            _logger.debug(
                "discovery.write_failed",
                "Failed sending JSON payload to the client",
                error_type=type(exc).__name__,
                error=str(exc),
            )


def _server_error(message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=500)


@router.get("/", include_in_schema=False)
async def serve_targets(export: DiscoveryExport = Depends(get_export)) -> Response:
    if export.discoverer is None:
        _logger.error("discovery.uninitialized", UNINITIALIZED_MESSAGE)
        return _server_error(UNINITIALIZED_MESSAGE)

    try:
        devices = await export.discoverer.devices()
    except PartialResultsError as exc:
        if not is_stale(exc):
            _logger.error("discovery.failed", DISCOVERY_FAILED_MESSAGE, error=str(exc))
            return _server_error(f"{DISCOVERY_FAILED_MESSAGE}: {exc}")
        _logger.warning(
            "discovery.stale",
            "Serving potentially stale results",
            devices=len(exc.devices),
            error=str(exc),
        )
        devices = exc.devices
    except Exception as exc:  # noqa: BLE001
        _logger.error(
            "discovery.failed",
            DISCOVERY_FAILED_MESSAGE,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _server_error(f"{DISCOVERY_FAILED_MESSAGE}: {exc}")

    targets = translate(devices, export.filters)
    try:
        body = json.dumps(
            [target.to_payload() for target in targets],
            ensure_ascii=False,
            separators=(",", ":"),
        )
    except (TypeError, ValueError) as exc:
        _logger.error("discovery.encode_failed", ENCODE_FAILED_MESSAGE, error=str(exc))
        return _server_error(ENCODE_FAILED_MESSAGE)

    _logger.debug("discovery.served", "Served targets", targets=len(targets))
    return TargetsResponse(body + "\n")
