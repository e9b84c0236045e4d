from __future__ import annotations

from typing import Iterator

import pytest
from prometheus_client import CollectorRegistry

from tailscalesd.config import get_settings
from tailscalesd.metrics import PrometheusMetrics

_SETTINGS_ENV = (
    "LISTEN",
    "EXPOSE_IPV6",
    "TAILSCALE_USE_LOCAL_API",
    "TAILSCALE_API_POLL_LIMIT",
    "TAILSCALE_LOCAL_API_SOCKET",
    "TAILNET",
    "TAILSCALE_API_TOKEN",
    "TAILSCALE_CLIENT_ID",
    "TAILSCALE_CLIENT_SECRET",
    "TAILSCALE_API_HOST",
    "LOG_LEVEL",
    "LOG_FILE",
    "METRICS_ENABLED",
    "TAILSCALESD_VERSION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the working tree out of the tests.
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> PrometheusMetrics:
    return PrometheusMetrics(registry)
