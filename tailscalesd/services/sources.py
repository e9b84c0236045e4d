from __future__ import annotations

from typing import Optional

from tailscalesd.config import Settings
from tailscalesd.logger import get_logger
from tailscalesd.metrics import DiscoveryMetrics, NullMetrics
from tailscalesd.services.discovery import Discoverer
from tailscalesd.services.local_api import LocalAPIDiscoverer
from tailscalesd.services.multi import MultiDiscoverer
from tailscalesd.services.public_api import oauth_discoverer, token_discoverer
from tailscalesd.services.ratelimited import RateLimitedDiscoverer
from tailscalesd.services.translate import (
    TargetFilter,
    filter_empty_labels,
    filter_ipv6_addresses,
)

_logger = get_logger("services.sources")

DEFAULT_FILTERS: tuple[TargetFilter, ...] = (filter_empty_labels,)


def build_discoverer(
    settings: Settings,
    *,
    metrics: Optional[DiscoveryMetrics] = None,
) -> MultiDiscoverer:
    """Build the rate limited source chain described by ``settings``.

    Sources are registered local API first, then token, then OAuth, and the
    merged device order follows that registration order.
    """
    sink: DiscoveryMetrics = metrics or NullMetrics()
    multi = MultiDiscoverer(metrics=sink)

    def _register(name: str, source: Discoverer) -> None:
        multi.append(
            RateLimitedDiscoverer(
                source,
                settings.poll_limit_seconds,
                metrics=sink,
                name=name,
            )
        )
        _logger.info(
            "sources.register",
            "Registered discoverer",
            source=name,
            poll_limit_seconds=settings.poll_limit_seconds,
        )

    if settings.use_local_api:
        _register("local", LocalAPIDiscoverer(settings.local_api_socket, metrics=sink))
    if settings.token:
        _register(
            "token",
            token_discoverer(settings.tailnet, settings.token, api_host=settings.api_host, metrics=sink),
        )
    if settings.has_oauth:
        _register(
            "oauth",
            oauth_discoverer(
                settings.tailnet,
                settings.client_id,
                settings.client_secret,
                api_host=settings.api_host,
                metrics=sink,
            ),
        )
    return multi


def build_filters(settings: Settings) -> tuple[TargetFilter, ...]:
    filters = list(DEFAULT_FILTERS)
    if not settings.include_ipv6:
        filters.append(filter_ipv6_addresses)
    return tuple(filters)


async def close_discoverer(discoverer: MultiDiscoverer) -> None:
    """Close the HTTP clients held by the upstream sources of ``discoverer``."""
    for wrapped in discoverer.discoverers:
        source = getattr(wrapped, "wrap", wrapped)
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
