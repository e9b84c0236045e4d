from __future__ import annotations

import asyncio
import json
from time import perf_counter
from typing import Any, Optional

import httpx

from tailscalesd.metrics import DiscoveryMetrics
from tailscalesd.services.discovery import FailedRequestError, PayloadError

DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(DEFAULT_REQUEST_TIMEOUT_SECONDS, connect=DEFAULT_CONNECT_TIMEOUT_SECONDS)


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    api: str,
    host: str,
    metrics: DiscoveryMetrics,
    auth: Optional[httpx.Auth] = None,
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> Any:
    """GET ``url`` and decode the JSON body.

    Transport failures, timeouts and non-2xx responses raise
    :class:`FailedRequestError`; bodies that are not JSON raise
    :class:`PayloadError`. ``timeout_seconds`` bounds the whole exchange.
    """
    start = perf_counter()
    metrics.record_api_request(api=api, host=host)
    try:
        response = await asyncio.wait_for(
            client.get(url, auth=auth if auth is not None else httpx.USE_CLIENT_DEFAULT),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        metrics.record_api_error(api=api, host=host)
        raise FailedRequestError(api, host, f"timed out after {timeout_seconds}s") from exc
    except httpx.HTTPError as exc:
        metrics.record_api_error(api=api, host=host)
        raise FailedRequestError(api, host, f"{type(exc).__name__}: {exc}") from exc
    except ValueError as exc:
        # Raised by auth flows which could not obtain credentials.
        metrics.record_api_error(api=api, host=host)
        raise FailedRequestError(api, host, str(exc)) from exc
    finally:
        metrics.observe_api_latency(api=api, host=host, duration_ms=(perf_counter() - start) * 1000)

    if not response.is_success:
        metrics.record_api_error(api=api, host=host)
        raise FailedRequestError(api, host, f"{response.status_code} {response.reason_phrase}".strip())

    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        metrics.record_api_payload_error(api=api, host=host)
        raise PayloadError(api, host, str(exc)) from exc
