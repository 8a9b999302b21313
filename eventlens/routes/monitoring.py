"""
Monitoring Routes

Liveness and Prometheus metrics.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from eventlens.config import settings

router = APIRouter(tags=["Monitoring"])

APP_START_TIME = time.time()


@router.get("/health")
async def health_check() -> dict:
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "uptime_seconds": round(time.time() - APP_START_TIME, 2),
    }


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
