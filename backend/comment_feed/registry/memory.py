"""
In-memory Connection Registry.

Dict-of-sets registry for local runs and tests. Same semantics as the Redis
registry, including the reverse index used by disconnect.
"""

from __future__ import annotations

import asyncio
import time

from shared.config.logging import get_logger
from comment_feed.registry.base import (
    ConnectionRecord,
    ConnectionRegistry,
    PendingSwitch,
    require_identifier,
)

logger = get_logger(__name__)


class InMemoryConnectionRegistry(ConnectionRegistry):
    """
    Connection indices kept in process memory.

    Indices maintained:
    - by_channel: channel -> set[connection_id]
    - connection_to_channel: connection_id -> channel (reverse mapping)
    - pending: connection_id -> PendingSwitch

    All mutations hold one asyncio.Lock so each operation is atomic, the way a
    single store write is.
    """

    def __init__(self, switch_pending_ttl: float = 300.0) -> None:
        self._by_channel: dict[str, set[str]] = {}
        self._connection_to_channel: dict[str, str] = {}
        self._pending: dict[str, PendingSwitch] = {}
        self._switch_pending_ttl = switch_pending_ttl
        self._lock = asyncio.Lock()

    async def register(self, channel: str, connection_id: str) -> None:
        record = ConnectionRecord(channel, connection_id)
        async with self._lock:
            self._by_channel.setdefault(record.channel, set()).add(record.connection_id)
            self._connection_to_channel[record.connection_id] = record.channel

    async def deregister(self, channel: str, connection_id: str) -> None:
        record = ConnectionRecord(channel, connection_id)
        async with self._lock:
            members = self._by_channel.get(record.channel)
            if members is not None:
                members.discard(record.connection_id)
                if not members:
                    del self._by_channel[record.channel]
            # Keep the reverse entry if it already points at another channel
            if self._connection_to_channel.get(record.connection_id) == record.channel:
                del self._connection_to_channel[record.connection_id]

    async def query(self, channel: str) -> set[str]:
        require_identifier("channel", channel)
        async with self._lock:
            return set(self._by_channel.get(channel, ()))

    async def channel_of(self, connection_id: str) -> str | None:
        require_identifier("connectionId", connection_id)
        async with self._lock:
            return self._connection_to_channel.get(connection_id)

    async def channels(self) -> list[str]:
        async with self._lock:
            return sorted(self._by_channel)

    async def begin_switch(self, pending: PendingSwitch) -> None:
        async with self._lock:
            self._pending[pending.connection_id] = pending

    async def end_switch(self, connection_id: str) -> None:
        async with self._lock:
            self._pending.pop(connection_id, None)

    async def pending_switches(self) -> list[PendingSwitch]:
        now = time.time()
        async with self._lock:
            expired = [
                cid for cid, p in self._pending.items()
                if now - p.started_at > self._switch_pending_ttl
            ]
            for cid in expired:
                del self._pending[cid]
            return list(self._pending.values())

    def get_stats(self) -> dict[str, int]:
        """Counts for health endpoints (no lock, snapshot may be slightly stale)."""
        return {
            "channels": len(self._by_channel),
            "connections": len(self._connection_to_channel),
            "pending_switches": len(self._pending),
        }
