"""
Connection Registry: persisted channel -> {connection_id} mapping.
"""

from comment_feed.registry.base import (
    ConnectionRecord,
    ConnectionRegistry,
    PendingSwitch,
    require_identifier,
)
from comment_feed.registry.memory import InMemoryConnectionRegistry
from comment_feed.registry.redis_registry import RedisConnectionRegistry

__all__ = [
    "ConnectionRecord",
    "ConnectionRegistry",
    "PendingSwitch",
    "require_identifier",
    "InMemoryConnectionRegistry",
    "RedisConnectionRegistry",
]
