"""
Infrastructure module: Redis and request correlation.

Provides:
- Async Redis pool and health check (redis_pool.py)
- Correlation IDs for logs (correlation.py)
"""

from shared.infrastructure.redis_pool import (
    get_redis_pool,
    close_redis_pool,
    check_redis_health,
)
from shared.infrastructure.correlation import (
    CorrelationIdFilter,
    CorrelationIdMiddleware,
    bind_request_id,
    get_request_id,
)

__all__ = [
    # redis
    "get_redis_pool",
    "close_redis_pool",
    "check_redis_health",
    # correlation
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "bind_request_id",
    "get_request_id",
]
