"""
Redis Connection Pool Management.

Single lazily created async pool shared by the connection registry and the
health checks.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any

import redis.asyncio as redis

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)


# Global Redis connection pool singleton (async)
_redis_pool: redis.Redis | None = None
_redis_pool_lock: asyncio.Lock | None = None
_pool_lock_init = threading.Lock()


def _get_pool_lock() -> asyncio.Lock:
    """
    Get or create the pool lock (lazy initialization for event loop safety).

    Uses threading.Lock with double-check pattern so concurrent callers never
    create different asyncio.Lock instances.
    """
    global _redis_pool_lock
    if _redis_pool_lock is None:
        with _pool_lock_init:
            if _redis_pool_lock is None:
                _redis_pool_lock = asyncio.Lock()
    return _redis_pool_lock


async def get_redis_pool() -> redis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool

    # Fast path: pool already initialized
    if _redis_pool is not None:
        return _redis_pool

    async with _get_pool_lock():
        # Double-check after acquiring lock
        if _redis_pool is None:
            _redis_pool = redis.from_url(
                settings.redis_url,
                max_connections=settings.redis_pool_max_connections,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout,
                socket_timeout=settings.redis_socket_timeout,
                health_check_interval=30,
            )
            logger.info(
                "Redis async pool initialized",
                max_connections=settings.redis_pool_max_connections,
                timeout=settings.redis_socket_timeout,
            )
    return _redis_pool


async def close_redis_pool() -> None:
    """Close all Redis connections on application shutdown."""
    global _redis_pool, _redis_pool_lock

    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
        logger.info("Redis async pool closed")
    _redis_pool_lock = None


async def check_redis_health(timeout: float = 3.0) -> dict[str, Any]:
    """
    Ping the pool with a timeout.

    Returns a dict with status "healthy" or "unhealthy"; never raises.
    """
    start = time.perf_counter()
    try:
        pool = await get_redis_pool()
        await asyncio.wait_for(pool.ping(), timeout=timeout)
    except asyncio.TimeoutError:
        return {"status": "unhealthy", "component": "redis", "error": "timeout"}
    except Exception as e:
        logger.warning("Redis health check failed", error=str(e))
        return {"status": "unhealthy", "component": "redis", "error": str(e)}

    return {
        "status": "healthy",
        "component": "redis",
        "latency_ms": round((time.perf_counter() - start) * 1000, 2),
        "max_connections": settings.redis_pool_max_connections,
    }
