"""
Shared module for infrastructure used by the comment feed services.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging

- shared.infrastructure: Redis and correlation
  - redis_pool.py: Async Redis pool, health check
  - correlation.py: Request/invocation IDs for logs

- shared.utils: Utilities
  - exceptions.py: Errors with auto-logging and status codes

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.infrastructure.redis_pool import get_redis_pool
    from shared.utils.exceptions import MalformedInput, StoreUnavailable
"""
