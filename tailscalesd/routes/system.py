from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from tailscalesd.config import Settings
from tailscalesd.dependencies import get_app_settings, get_metrics
from tailscalesd.logger import get_logger
from tailscalesd.metrics import PrometheusMetrics, metrics_content_type

router = APIRouter()
_logger = get_logger("api.system")


@router.get("/health", tags=["system"])
async def health() -> Dict[str, str]:
    now = datetime.now(timezone.utc).isoformat()
    _logger.debug("health.check", "Health check", status="ok")
    return {"status": "ok", "time": now}


@router.get("/version", tags=["system"])
async def version(settings: Settings = Depends(get_app_settings)) -> Dict[str, str]:
    return {"app": settings.app_name, "version": settings.app_version}


@router.get("/metrics", include_in_schema=False)
async def metrics(
    settings: Settings = Depends(get_app_settings),
    sink: Optional[PrometheusMetrics] = Depends(get_metrics),
) -> Response:
    if not settings.metrics_enabled:
        raise HTTPException(status_code=404, detail="Metrics are disabled.")
    if sink is None:
        raise HTTPException(status_code=503, detail="Prometheus backend is not available.")
    return Response(content=sink.render(), media_type=metrics_content_type())
