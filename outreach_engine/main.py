"""Main FastAPI application for the outreach coordination service."""

import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from outreach_engine.api.agents import router as agents_router
from outreach_engine.api.customers import router as customers_router
from outreach_engine.api.health import router as health_router
from outreach_engine.api.tasks import router as tasks_router
from outreach_engine.core.config import get_settings
from outreach_engine.core.dependencies import (
    get_cache_gateway,
    get_context_engine,
    get_dispatch_gateway,
    get_persistence_gateway,
    get_task_coordinator,
)
from outreach_engine.core.exceptions import BaseAPIException
from outreach_engine.core.logging import get_correlation_id, get_logger, setup_logging
from outreach_engine.core.middleware import CorrelationIDMiddleware, SlowRequestMiddleware

settings = get_settings()

# Initialize logging
setup_logging(settings.log_level)
logger = get_logger(__name__)

app = FastAPI(
    title="Outreach Coordination Service",
    description="Coordinates multi-channel payment-collection outreach and customer risk context",
    version=settings.service_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(SlowRequestMiddleware, slow_request_threshold_ms=1000.0)
app.add_middleware(CorrelationIDMiddleware)

# CORS middleware
if settings.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Include API routers
app.include_router(health_router, prefix=settings.api_prefix, tags=["health"])
app.include_router(agents_router, prefix=settings.api_prefix)
app.include_router(tasks_router, prefix=settings.api_prefix)
app.include_router(customers_router, prefix=settings.api_prefix)


@app.exception_handler(BaseAPIException)
async def api_exception_handler(request: Request, exc: BaseAPIException):
    """Return the error envelope with the request's correlation id."""
    body = exc.to_dict()
    body["correlation_id"] = get_correlation_id() or exc.correlation_id
    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers)


@app.on_event("startup")
async def startup_event():
    """Initialize both engines on startup."""
    app.state.start_time = time.time()
    logger.info("Starting outreach coordination service", version=settings.service_version)

    try:
        await get_task_coordinator().initialize()
        logger.info("Task coordinator started")
    except Exception as e:
        logger.error("Failed to start task coordinator", error=str(e), exc_info=True)
        # Continue startup even if the coordinator fails

    try:
        await get_context_engine().initialize()
        logger.info("Context engine started")
    except Exception as e:
        logger.error("Failed to start context engine", error=str(e), exc_info=True)

    logger.info("Service startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down outreach coordination service")

    try:
        await get_task_coordinator().shutdown()
    except Exception as e:
        logger.error("Failed to stop task coordinator", error=str(e))

    try:
        await get_context_engine().shutdown()
    except Exception as e:
        logger.error("Failed to stop context engine", error=str(e))

    await get_dispatch_gateway().close()
    await get_cache_gateway().close()
    await get_persistence_gateway().close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "outreach_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
