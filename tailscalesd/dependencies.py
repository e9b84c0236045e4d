from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from tailscalesd.config import Settings
from tailscalesd.metrics import PrometheusMetrics
from tailscalesd.services.discovery import Discoverer
from tailscalesd.services.sources import DEFAULT_FILTERS
from tailscalesd.services.translate import TargetFilter


@dataclass(frozen=True)
class DiscoveryExport:
    discoverer: Optional[Discoverer]
    filters: tuple[TargetFilter, ...] = DEFAULT_FILTERS


def get_export(request: Request) -> DiscoveryExport:
    return DiscoveryExport(
        discoverer=getattr(request.app.state, "discoverer", None),
        filters=getattr(request.app.state, "filters", DEFAULT_FILTERS),
    )


def get_app_settings(request: Request) -> Settings:
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=503, detail="Service is not configured.")
    return settings


def get_metrics(request: Request) -> Optional[PrometheusMetrics]:
    return getattr(request.app.state, "metrics", None)
