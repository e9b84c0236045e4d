from __future__ import annotations

from contextlib import asynccontextmanager
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence
from uuid import uuid4

from fastapi import FastAPI, Request, Response

from tailscalesd.config import Settings, get_settings
from tailscalesd.logger import get_logger
from tailscalesd.metrics import PrometheusMetrics, new_registry
from tailscalesd.routes import discovery, system
from tailscalesd.services.discovery import Discoverer
from tailscalesd.services.multi import MultiDiscoverer
from tailscalesd.services.sources import (
    DEFAULT_FILTERS,
    build_discoverer,
    build_filters,
    close_discoverer,
)
from tailscalesd.services.translate import TargetFilter

logger = get_logger("api")


def create_app(
    settings: Optional[Settings] = None,
    *,
    discoverer: Optional[Discoverer] = None,
    extra_filters: Optional[Sequence[TargetFilter]] = None,
    metrics: Optional[PrometheusMetrics] = None,
) -> FastAPI:
    """Build the service discovery application.

    Without an explicit ``discoverer`` the rate limited source chain is built
    from ``settings``. ``extra_filters`` run after the empty label filter;
    when omitted, the IPv6 filter is added unless ``settings.include_ipv6``.
    """
    settings = settings or get_settings()
    metrics = metrics or PrometheusMetrics(new_registry())
    owns_discoverer = discoverer is None
    if discoverer is None:
        discoverer = build_discoverer(settings, metrics=metrics)
    if extra_filters is None:
        filters = build_filters(settings)
    else:
        filters = DEFAULT_FILTERS + tuple(extra_filters)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sources = len(discoverer) if isinstance(discoverer, MultiDiscoverer) else 1
        logger.info(
            "app.startup",
            "Serving Tailscale service discovery",
            listen=settings.listen,
            version=settings.app_version,
            sources=sources,
            include_ipv6=settings.include_ipv6,
        )
        yield
        if owns_discoverer and isinstance(discoverer, MultiDiscoverer):
            await close_discoverer(discoverer)
        logger.info("app.shutdown", "Tailscale service discovery done")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.discoverer = discoverer
    app.state.filters = filters

    @app.middleware("http")
    async def request_logging(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid4())
        client: Optional[str] = request.client.host if request.client else None

        start = perf_counter()
        with logger.context(request_id=request_id):
            logger.debug(
                "request.start",
                "Started",
                method=request.method,
                path=request.url.path,
                client=client,
            )
            try:
                response = await call_next(request)
            except Exception as exc:
                duration = perf_counter() - start
                logger.exception(
                    "request.error",
                    "Failed",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round(duration * 1000, 1),
                    error_type=type(exc).__name__,
                )
                metrics.observe_http_request(
                    method=request.method,
                    path=request.url.path,
                    status=500,
                    duration_seconds=duration,
                )
                raise

            duration = perf_counter() - start
            logger.info(
                "request.complete",
                "Completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 1),
            )
            metrics.observe_http_request(
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_seconds=duration,
            )

        response.headers["X-Request-ID"] = request_id
        return response

    app.include_router(system.router)
    app.include_router(discovery.router)
    return app
