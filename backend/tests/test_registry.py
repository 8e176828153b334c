"""
Tests for the in-memory connection registry.

Tests verify:
- Register is idempotent and Deregister tolerates absence
- Query returns a set, empty for unknown channels
- The reverse index used by disconnect
- Pending-switch journal expiry
"""

import time

import pytest

from shared.utils.exceptions import MalformedInput
from comment_feed.registry.base import ConnectionRecord, PendingSwitch
from comment_feed.registry.memory import InMemoryConnectionRegistry


@pytest.fixture
def memory_registry():
    return InMemoryConnectionRegistry()


# =============================================================================
# ConnectionRecord
# =============================================================================


class TestConnectionRecord:
    """Tests for the persisted record shape."""

    def test_item_uses_deployed_field_names(self):
        record = ConnectionRecord(channel="room1", connection_id="abc123")

        assert record.to_item() == {"channel": "room1", "connectionId": "abc123"}

    @pytest.mark.parametrize("channel,connection_id", [
        ("", "abc"),
        ("   ", "abc"),
        ("room1", ""),
        (None, "abc"),
    ])
    def test_rejects_empty_identifiers(self, channel, connection_id):
        with pytest.raises(MalformedInput):
            ConnectionRecord(channel=channel, connection_id=connection_id)


# =============================================================================
# Contract operations
# =============================================================================


class TestRegisterDeregisterQuery:
    """Tests for the three contract operations."""

    @pytest.mark.asyncio
    async def test_query_unknown_channel_is_empty(self, memory_registry):
        assert await memory_registry.query("nobody-here") == set()

    @pytest.mark.asyncio
    async def test_register_then_query(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.register("room1", "c2")
        await memory_registry.register("room2", "c3")

        assert await memory_registry.query("room1") == {"c1", "c2"}
        assert await memory_registry.query("room2") == {"c3"}

    @pytest.mark.asyncio
    async def test_register_is_idempotent(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.register("room1", "c1")

        assert await memory_registry.query("room1") == {"c1"}

    @pytest.mark.asyncio
    async def test_deregister_absent_is_success(self, memory_registry):
        await memory_registry.deregister("room1", "never-registered")

        assert await memory_registry.query("room1") == set()

    @pytest.mark.asyncio
    async def test_deregister_removes_only_that_record(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.register("room1", "c2")

        await memory_registry.deregister("room1", "c1")

        assert await memory_registry.query("room1") == {"c2"}

    @pytest.mark.asyncio
    async def test_query_returns_a_copy(self, memory_registry):
        await memory_registry.register("room1", "c1")

        members = await memory_registry.query("room1")
        members.add("intruder")

        assert await memory_registry.query("room1") == {"c1"}

    @pytest.mark.asyncio
    async def test_rejects_empty_channel(self, memory_registry):
        with pytest.raises(MalformedInput):
            await memory_registry.register("", "c1")
        with pytest.raises(MalformedInput):
            await memory_registry.query("")


# =============================================================================
# Lookups
# =============================================================================


class TestLookups:
    """Tests for the reverse index and channel listing."""

    @pytest.mark.asyncio
    async def test_channel_of_follows_last_register(self, memory_registry):
        assert await memory_registry.channel_of("c1") is None

        await memory_registry.register("room1", "c1")
        assert await memory_registry.channel_of("c1") == "room1"

        await memory_registry.register("room2", "c1")
        assert await memory_registry.channel_of("c1") == "room2"

    @pytest.mark.asyncio
    async def test_deregister_keeps_reverse_entry_for_other_channel(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.register("room2", "c1")

        await memory_registry.deregister("room1", "c1")

        assert await memory_registry.channel_of("c1") == "room2"

    @pytest.mark.asyncio
    async def test_deregister_clears_reverse_entry(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.deregister("room1", "c1")

        assert await memory_registry.channel_of("c1") is None

    @pytest.mark.asyncio
    async def test_channels_lists_only_non_empty(self, memory_registry):
        await memory_registry.register("b", "c1")
        await memory_registry.register("a", "c2")
        await memory_registry.deregister("b", "c1")

        assert await memory_registry.channels() == ["a"]

    @pytest.mark.asyncio
    async def test_stats(self, memory_registry):
        await memory_registry.register("room1", "c1")
        await memory_registry.register("room1", "c2")

        assert memory_registry.get_stats() == {
            "channels": 1,
            "connections": 2,
            "pending_switches": 0,
        }


# =============================================================================
# Pending-switch journal
# =============================================================================


class TestPendingSwitchJournal:
    """Tests for the switch journal."""

    @pytest.mark.asyncio
    async def test_begin_and_end(self, memory_registry):
        await memory_registry.begin_switch(PendingSwitch("c1", "room1", "room2"))

        pending = await memory_registry.pending_switches()
        assert [(p.connection_id, p.from_channel, p.to_channel) for p in pending] == [
            ("c1", "room1", "room2"),
        ]

        await memory_registry.end_switch("c1")
        assert await memory_registry.pending_switches() == []

    @pytest.mark.asyncio
    async def test_end_is_idempotent(self, memory_registry):
        await memory_registry.end_switch("unknown")

        assert await memory_registry.pending_switches() == []

    @pytest.mark.asyncio
    async def test_expired_entries_are_dropped(self):
        registry = InMemoryConnectionRegistry(switch_pending_ttl=10)
        await registry.begin_switch(
            PendingSwitch("old", "room1", "room2", started_at=time.time() - 60),
        )
        await registry.begin_switch(PendingSwitch("fresh", "room1", "room2"))

        pending = await registry.pending_switches()

        assert [p.connection_id for p in pending] == ["fresh"]
        assert registry.get_stats()["pending_switches"] == 1

    @pytest.mark.asyncio
    async def test_ping(self, memory_registry):
        assert await memory_registry.ping() is True
