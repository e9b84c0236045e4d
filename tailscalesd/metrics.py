from __future__ import annotations

from typing import Optional, Protocol

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    GC_COLLECTOR,
    PLATFORM_COLLECTOR,
    PROCESS_COLLECTOR,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

API_LATENCY_BUCKETS_MS = (
    1,
    2.75,
    7.5625,
    20.7969,
    57.1914,
    157.2764,
    432.5100,
    1189.4025,
    3270.8569,
    8994.8566,
)


class DiscoveryMetrics(Protocol):
    def record_api_request(self, *, api: str, host: str) -> None: ...

    def record_api_error(self, *, api: str, host: str) -> None: ...

    def record_api_payload_error(self, *, api: str, host: str) -> None: ...

    def observe_api_latency(self, *, api: str, host: str, duration_ms: float) -> None: ...

    def record_devices_found(self, *, tailnet: str, count: int) -> None: ...

    def record_multi_request(self) -> None: ...

    def record_multi_error(self) -> None: ...

    def record_rate_limited_request(self) -> None: ...

    def record_rate_limited_refresh(self) -> None: ...

    def record_rate_limited_stale(self) -> None: ...

    def observe_http_request(
        self, *, method: str, path: str, status: int, duration_seconds: float
    ) -> None: ...


class NullMetrics:
    """Metrics sink that drops everything."""

    def record_api_request(self, *, api: str, host: str) -> None:
        pass

    def record_api_error(self, *, api: str, host: str) -> None:
        pass

    def record_api_payload_error(self, *, api: str, host: str) -> None:
        pass

    def observe_api_latency(self, *, api: str, host: str, duration_ms: float) -> None:
        pass

    def record_devices_found(self, *, tailnet: str, count: int) -> None:
        pass

    def record_multi_request(self) -> None:
        pass

    def record_multi_error(self) -> None:
        pass

    def record_rate_limited_request(self) -> None:
        pass

    def record_rate_limited_refresh(self) -> None:
        pass

    def record_rate_limited_stale(self) -> None:
        pass

    def observe_http_request(
        self, *, method: str, path: str, status: int, duration_seconds: float
    ) -> None:
        pass


class PrometheusMetrics:
    """Metrics sink backed by prometheus_client collectors on one registry.

    Build a single instance per registry; registering the same metric names
    twice on one registry raises ``ValueError``.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else REGISTRY
        self._api_requests = Counter(
            "tailscalesd_tailscale_api_requests",
            "Counter of requests made to Tailscale APIs. Labeled with the API host to which requests are made.",
            labelnames=("api", "host"),
            registry=self.registry,
        )
        self._api_errors = Counter(
            "tailscalesd_tailscale_api_errors",
            "Counter of errors during requests to Tailscale APIs. "
            "Denominated by tailscalesd_tailscale_api_requests.",
            labelnames=("api", "host"),
            registry=self.registry,
        )
        self._api_payload_errors = Counter(
            "tailscalesd_tailscale_api_payload_errors",
            "Counter of bad payload responses from Tailscale APIs. "
            "Denominated by tailscalesd_tailscale_api_requests.",
            labelnames=("api", "host"),
            registry=self.registry,
        )
        self._api_latency = Histogram(
            "tailscalesd_tailscale_api_request_latency_ms",
            "Histogram of API request latency measured in milliseconds. Bucketed geometrically.",
            labelnames=("api", "host"),
            buckets=API_LATENCY_BUCKETS_MS,
            registry=self.registry,
        )
        self._devices_found = Counter(
            "tailscalesd_public_api_devices_found",
            "Counter of devices found using the public API, labeled with tailnet name.",
            labelnames=("tailnet",),
            registry=self.registry,
        )
        self._multi_requests = Counter(
            "tailscalesd_tailscale_multi_requests",
            "Counter of all requests to a multi-discoverer.",
            registry=self.registry,
        )
        self._multi_errors = Counter(
            "tailscalesd_tailscale_multi_errors",
            "Counter of errors during requests to all multi-discoverer. "
            "Denominated by tailscalesd_tailscale_multi_requests.",
            registry=self.registry,
        )
        self._rate_limited_requests = Counter(
            "tailscalesd_tailscale_rate_limited_requests",
            "Counter of all requests to a rate limited discoverer.",
            registry=self.registry,
        )
        self._rate_limited_refreshes = Counter(
            "tailscalesd_tailscale_rate_limited_refreshes",
            "Counter of requests to a rate limited discoverer which result in a data refresh.",
            registry=self.registry,
        )
        self._rate_limited_stale = Counter(
            "tailscalesd_tailscale_rate_limited_stale",
            "Counter of requests to a rate limited discoverer which result in a return of stale results.",
            registry=self.registry,
        )
        self._http_requests = Counter(
            "tailscalesd_http_requests_total",
            "Total HTTP requests",
            labelnames=("method", "path", "status"),
            registry=self.registry,
        )
        self._http_latency = Histogram(
            "tailscalesd_http_request_duration_seconds",
            "HTTP request latency seconds",
            labelnames=("method", "path"),
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.3, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

    def record_api_request(self, *, api: str, host: str) -> None:
        self._api_requests.labels(api=api, host=host).inc()

    def record_api_error(self, *, api: str, host: str) -> None:
        self._api_errors.labels(api=api, host=host).inc()

    def record_api_payload_error(self, *, api: str, host: str) -> None:
        self._api_payload_errors.labels(api=api, host=host).inc()

    def observe_api_latency(self, *, api: str, host: str, duration_ms: float) -> None:
        self._api_latency.labels(api=api, host=host).observe(duration_ms)

    def record_devices_found(self, *, tailnet: str, count: int) -> None:
        self._devices_found.labels(tailnet=tailnet).inc(count)

    def record_multi_request(self) -> None:
        self._multi_requests.inc()

    def record_multi_error(self) -> None:
        self._multi_errors.inc()

    def record_rate_limited_request(self) -> None:
        self._rate_limited_requests.inc()

    def record_rate_limited_refresh(self) -> None:
        self._rate_limited_refreshes.inc()

    def record_rate_limited_stale(self) -> None:
        self._rate_limited_stale.inc()

    def observe_http_request(
        self, *, method: str, path: str, status: int, duration_seconds: float
    ) -> None:
        self._http_requests.labels(method=method, path=path, status=str(status)).inc()
        self._http_latency.labels(method=method, path=path).observe(duration_seconds)

    def render(self) -> bytes:
        return generate_latest(self.registry)


def new_registry() -> CollectorRegistry:
    """A registry carrying the process, platform and GC collectors."""
    registry = CollectorRegistry()
    for collector in (PROCESS_COLLECTOR, PLATFORM_COLLECTOR, GC_COLLECTOR):
        registry.register(collector)
    return registry


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
