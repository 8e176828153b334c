"""
Redis Connection Registry.

Key layout (prefix = settings.registry_namespace):
- {prefix}:channel:{channel}      SET of connection ids
- {prefix}:connection:{id}        STRING, channel the connection last joined
- {prefix}:switch:{id}            HASH, pending-switch journal entry (with TTL)

Register and Deregister run as Lua scripts so the channel set and the reverse
key change together. Every Redis failure surfaces as StoreUnavailable.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from redis.exceptions import RedisError

from shared.config.logging import get_logger, mask_connection_id
from shared.utils.exceptions import StoreUnavailable
from comment_feed.registry.base import (
    ConnectionRecord,
    ConnectionRegistry,
    PendingSwitch,
    require_identifier,
)
from comment_feed.registry.lua_scripts import REGISTER_SCRIPT, DEREGISTER_SCRIPT
from comment_feed.resilience import CircuitBreaker, CircuitOpenError

logger = get_logger(__name__)

T = TypeVar("T")

# Errors that mean "the round trip did not happen or its result is unknown"
STORE_ERRORS: tuple[type[BaseException], ...] = (
    RedisError,
    OSError,
    asyncio.TimeoutError,
    CircuitOpenError,
)

SCAN_BATCH = 500


class RedisConnectionRegistry(ConnectionRegistry):
    """
    Connection registry backed by Redis.

    Args:
        redis_client: redis.asyncio client (decode_responses=True).
        namespace: Key prefix, the deployed table name.
        switch_pending_ttl: Seconds a journal entry survives.
        breaker: Circuit breaker guarding every round trip.
    """

    def __init__(
        self,
        redis_client: Any,
        namespace: str = "websocket.comment-feed",
        switch_pending_ttl: int = 300,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._redis = redis_client
        self._namespace = namespace
        self._switch_pending_ttl = switch_pending_ttl
        self._breaker = breaker or CircuitBreaker("connection_registry")
        self._register_script = redis_client.register_script(REGISTER_SCRIPT)
        self._deregister_script = redis_client.register_script(DEREGISTER_SCRIPT)

    # =========================================================================
    # Keys
    # =========================================================================

    def channel_key(self, channel: str) -> str:
        return f"{self._namespace}:channel:{channel}"

    def connection_key(self, connection_id: str) -> str:
        return f"{self._namespace}:connection:{connection_id}"

    def switch_key(self, connection_id: str) -> str:
        return f"{self._namespace}:switch:{connection_id}"

    def record_keys(self, record: ConnectionRecord) -> list[str]:
        """KEYS of the register/deregister scripts."""
        return [self.channel_key(record.channel), self.connection_key(record.connection_id)]

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def _call(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        **log_context: Any,
    ) -> T:
        """Run one round trip through the breaker, translating store errors."""
        try:
            async with self._breaker:
                return await fn()
        except STORE_ERRORS as e:
            raise StoreUnavailable(operation, cause=e, **log_context) from e

    # =========================================================================
    # Contract operations
    # =========================================================================

    async def register(self, channel: str, connection_id: str) -> None:
        record = ConnectionRecord(channel, connection_id)
        added = await self._call(
            "register",
            lambda: self._register_script(
                keys=self.record_keys(record),
                args=[record.connection_id, record.channel],
            ),
            channel=channel,
        )
        logger.debug(
            "Connection registered",
            channel=channel,
            connection_id=mask_connection_id(connection_id),
            new=bool(added),
        )

    async def deregister(self, channel: str, connection_id: str) -> None:
        record = ConnectionRecord(channel, connection_id)
        removed = await self._call(
            "deregister",
            lambda: self._deregister_script(
                keys=self.record_keys(record),
                args=[record.connection_id, record.channel],
            ),
            channel=channel,
        )
        logger.debug(
            "Connection deregistered",
            channel=channel,
            connection_id=mask_connection_id(connection_id),
            was_present=bool(removed),
        )

    async def query(self, channel: str) -> set[str]:
        require_identifier("channel", channel)
        members = await self._call(
            "query",
            lambda: self._redis.smembers(self.channel_key(channel)),
            channel=channel,
        )
        return set(members or ())

    # =========================================================================
    # Lookups
    # =========================================================================

    async def channel_of(self, connection_id: str) -> str | None:
        require_identifier("connectionId", connection_id)
        return await self._call(
            "channel_of",
            lambda: self._redis.get(self.connection_key(connection_id)),
        )

    async def _scan_suffixes(self, operation: str, kind: str) -> list[str]:
        prefix = f"{self._namespace}:{kind}:"

        async def scan() -> list[str]:
            found = []
            async for key in self._redis.scan_iter(match=f"{prefix}*", count=SCAN_BATCH):
                found.append(key[len(prefix):])
            return found

        return await self._call(operation, scan)

    async def channels(self) -> list[str]:
        # Redis drops empty sets, so every key found has members
        return sorted(await self._scan_suffixes("channels", "channel"))

    # =========================================================================
    # Pending-switch journal
    # =========================================================================

    async def begin_switch(self, pending: PendingSwitch) -> None:
        key = self.switch_key(pending.connection_id)

        async def write() -> None:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(
                    key,
                    mapping={
                        "from_channel": pending.from_channel,
                        "to_channel": pending.to_channel,
                        "started_at": repr(pending.started_at),
                    },
                )
                pipe.expire(key, self._switch_pending_ttl)
                await pipe.execute()

        await self._call("begin_switch", write, to_channel=pending.to_channel)

    async def end_switch(self, connection_id: str) -> None:
        await self._call(
            "end_switch",
            lambda: self._redis.delete(self.switch_key(connection_id)),
        )

    async def pending_switches(self) -> list[PendingSwitch]:
        connection_ids = await self._scan_suffixes("pending_switches", "switch")
        pending = []
        for connection_id in connection_ids:
            entry = await self._call(
                "pending_switches",
                lambda cid=connection_id: self._redis.hgetall(self.switch_key(cid)),
            )
            # Expired between SCAN and HGETALL
            if not entry:
                continue
            pending.append(
                PendingSwitch(
                    connection_id=connection_id,
                    from_channel=entry.get("from_channel", ""),
                    to_channel=entry.get("to_channel", ""),
                    started_at=float(entry.get("started_at", 0.0)),
                )
            )
        return pending

    async def ping(self) -> bool:
        return bool(await self._call("ping", self._redis.ping))

    def get_stats(self) -> dict[str, Any]:
        return {"backend": "redis", "circuit": self._breaker.get_stats()}
