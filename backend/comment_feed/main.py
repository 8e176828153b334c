"""
Comment feed trigger host.

Exposes the four connection triggers over HTTP for hosts that forward
connection events as POST requests, plus health and metrics endpoints.

Run with:
    uvicorn comment_feed.main:app --port 8002
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from shared.config.settings import settings
from shared.config.logging import get_logger, setup_logging
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.infrastructure.redis_pool import close_redis_pool
from shared.utils.exceptions import FeedError
from comment_feed import __version__
from comment_feed.dependencies import (
    close_dependencies,
    get_metrics_collector,
    get_registry,
    get_trigger_services,
)
from comment_feed.metrics import generate_prometheus_metrics
from comment_feed.triggers.handlers import dispatch_trigger

logger = get_logger("comment_feed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, create the registry up front, close pools on exit."""
    setup_logging()
    logger.info(
        "Starting comment feed trigger host",
        port=settings.trigger_port,
        env=settings.environment,
        registry=settings.registry_backend,
    )
    for problem in settings.validate_production_settings():
        logger.warning("Configuration problem", problem=problem)

    await get_registry()

    yield

    logger.info("Shutting down comment feed trigger host")
    await close_dependencies()
    if settings.registry_backend == "redis":
        await close_redis_pool()


app = FastAPI(
    title="Comment Feed",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)


@app.exception_handler(FeedError)
async def feed_error_handler(request: Request, exc: FeedError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


# =============================================================================
# Triggers
# =============================================================================


@app.post("/triggers/{route_key}")
async def invoke_trigger(route_key: str, event: Any = Body(...)) -> dict[str, Any]:
    """
    Invoke one trigger.

    route_key is one of $connect, $disconnect, setchannel, sendmessage
    (or connect, disconnect, set-channel, send-message).
    """
    services = await get_trigger_services()
    return await dispatch_trigger(route_key, event, services)


# =============================================================================
# Health Check
# =============================================================================


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "service": "comment-feed",
        "version": app.version,
        "environment": settings.environment,
        "registry": settings.registry_backend,
    }


@app.get("/health/detailed")
async def detailed_health_check():
    """Detailed health check with store status."""
    registry = await get_registry()
    checks: dict[str, Any] = {
        "service": "comment-feed",
        "environment": settings.environment,
        "dependencies": {},
    }

    try:
        await registry.ping()
        store = {"status": "healthy"}
    except FeedError as e:
        store = {"status": "unhealthy", "error": e.detail}
    if hasattr(registry, "get_stats"):
        store.update(registry.get_stats())
    checks["dependencies"]["registry"] = store

    all_healthy = store["status"] == "healthy"
    checks["status"] = "healthy" if all_healthy else "degraded"

    if not all_healthy:
        return JSONResponse(content=checks, status_code=503)
    return checks


# =============================================================================
# Prometheus Metrics Endpoint
# =============================================================================


@app.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Configure Prometheus scrape:
        scrape_configs:
          - job_name: 'comment-feed'
            static_configs:
              - targets: ['localhost:8002']
            metrics_path: '/metrics'
    """
    return PlainTextResponse(
        content=generate_prometheus_metrics(get_metrics_collector()),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
