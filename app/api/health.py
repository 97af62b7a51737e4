"""Health, readiness and liveness endpoints for the signal engine."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Response

from app.api.routes import current_aggregator, current_series_reader
from signal_engine.config import get_settings

router = APIRouter(tags=["Health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Process health with the service and algorithm versions."""
    settings = get_settings()
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": settings.service_version,
        "algorithmVersion": settings.algorithm_version,
        "timestamp": _now(),
    }


@router.get("/ready")
async def readiness_check(response: Response) -> dict[str, Any]:
    """Ready once the aggregator and series reader are wired and the cache is open.

    Answers 503 during startup, after shutdown, or when the result cache
    has been closed.
    """
    aggregator = current_aggregator()
    reader = current_series_reader()
    cache_open = aggregator is not None and not aggregator.cache.closed
    ready = cache_open and reader is not None

    if not ready:
        response.status_code = 503
    return {
        "status": "ready" if ready else "not_ready",
        "service": get_settings().service_name,
        "checks": {
            "aggregator": aggregator is not None,
            "seriesReader": reader is not None,
            "cacheOpen": cache_open,
        },
        "inFlight": aggregator.cache.stats()["inFlight"] if cache_open else 0,
        "timestamp": _now(),
    }


@router.get("/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness: the event loop is serving requests."""
    return {"status": "alive", "timestamp": _now()}
