"""
Health check endpoints for the outreach coordination service.
"""
import asyncio
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from outreach_engine.core.config import get_settings
from outreach_engine.core.dependencies import (
    get_cache_gateway,
    get_dispatch_gateway,
    get_persistence_gateway,
)
from outreach_engine.core.logging import get_logger
from outreach_engine.models.schemas import DependencyHealthResponse, HealthResponse
from outreach_engine.services.cache import CacheGateway
from outreach_engine.services.database import PersistenceGateway
from outreach_engine.services.dispatch import WorkDispatchGateway

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Basic health check endpoint.

    Returns service status, version, and uptime.
    """
    settings = get_settings()
    start_time = getattr(request.app.state, "start_time", time.time())

    response = HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=time.time() - start_time,
        timestamp=datetime.now(timezone.utc),
        service_name=settings.service_name,
    )
    logger.info("Health check completed", status=response.status, uptime_seconds=response.uptime_seconds)
    return response


@router.get("/health/dependencies", response_model=DependencyHealthResponse)
async def dependencies_health_check(
    persistence: PersistenceGateway = Depends(get_persistence_gateway),
    cache: CacheGateway = Depends(get_cache_gateway),
    dispatcher: WorkDispatchGateway = Depends(get_dispatch_gateway),
):
    """
    Health check for the store, the cache, and the executor circuits.

    Any open executor circuit degrades the service; a down store or cache
    makes it unhealthy.
    """
    persistence_healthy, cache_healthy = await asyncio.gather(
        persistence.health_check(),
        cache.health_check(),
    )
    executors = dispatcher.get_status()
    circuits_closed = all(status["state"] == "closed" for status in executors.values())

    if not (persistence_healthy and cache_healthy):
        overall_status = "unhealthy"
    elif not circuits_closed:
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    logger.info(
        "Dependencies health check completed",
        persistence=persistence_healthy,
        cache=cache_healthy,
        overall_status=overall_status,
    )
    return DependencyHealthResponse(
        persistence=persistence_healthy,
        cache=cache_healthy,
        executors=executors,
        overall_status=overall_status,
    )
