"""
Tests for the broadcast dispatcher.

Tests verify:
- Every member gets exactly one send, non-members none
- One target's failure never blocks or fails the others
- Gone targets are deregistered after the fan-out, best effort
- The in-process time budget abandons slow sends
- Payloads are passed through unmodified
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from shared.utils.exceptions import MalformedInput, StoreUnavailable
from comment_feed.broadcast.dispatcher import BroadcastDispatcher, encode_payload
from comment_feed.push.base import GONE, DeliveryStatus, PushResult


async def _join(registry, channel, *connection_ids):
    for cid in connection_ids:
        await registry.register(channel, cid)


class TestBroadcast:
    """Tests for broadcast fan-out."""

    @pytest.mark.asyncio
    async def test_delivers_to_every_member(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2", "c3")

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["c1", "c2", "c3"]
        assert report.failed == []
        assert gateway.received == {"c1": [b"hi"], "c2": [b"hi"], "c3": [b"hi"]}
        assert sorted(gateway.attempts) == ["c1", "c2", "c3"]

    @pytest.mark.asyncio
    async def test_non_members_receive_nothing(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1")
        await _join(registry, "room2", "c2")

        await dispatcher.broadcast("room1", "only room1")

        assert "c2" not in gateway.attempts

    @pytest.mark.asyncio
    async def test_gateway_factory_called_only_for_members(self, registry, gateway):
        built = []

        def build():
            built.append(1)
            return gateway

        dispatcher = BroadcastDispatcher(registry, build)
        await dispatcher.broadcast("emptyroom", "anyone?")
        assert built == []

        await _join(registry, "room1", "c1", "c2")
        report = await dispatcher.broadcast("room1", "hi")

        assert built == [1]
        assert report.delivered == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_empty_channel_sends_nothing(self, dispatcher, gateway, metrics):
        report = await dispatcher.broadcast("emptyroom", "anyone?")

        assert report.is_empty
        assert report.targets == 0
        assert gateway.attempts == []
        snapshot = metrics.get_snapshot()["broadcast"]
        assert snapshot["total"] == 1
        assert snapshot["empty"] == 1

    @pytest.mark.asyncio
    async def test_sends_run_concurrently(self, dispatcher, registry, gateway):
        members = [f"c{i}" for i in range(5)]
        await _join(registry, "room1", *members)
        for cid in members:
            gateway.delays[cid] = 0.01

        await dispatcher.broadcast("room1", "hi")

        assert gateway.max_in_flight == 5

    @pytest.mark.asyncio
    async def test_message_passed_through_unmodified(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1")
        message = '{"text": "héllo 👋", "nested": {"a": 1}}'

        await dispatcher.broadcast("room1", message)

        assert gateway.received["c1"] == [message.encode("utf-8")]

    @pytest.mark.asyncio
    async def test_bytes_message_sent_as_is(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1")

        await dispatcher.broadcast("room1", b"\x00\x01raw")

        assert gateway.received["c1"] == [b"\x00\x01raw"]


class TestFailureIsolation:
    """Tests for per-target failure handling."""

    @pytest.mark.asyncio
    async def test_gone_target_is_cleaned_up(self, dispatcher, registry, gateway, metrics):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c2"] = GONE

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["c1"]
        assert report.gone == ["c2"]
        assert report.cleaned_up == ["c2"]
        assert await registry.query("room1") == {"c1"}
        assert metrics.get_snapshot()["broadcast"]["cleaned_up"] == 1

    @pytest.mark.asyncio
    async def test_transient_error_keeps_membership(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c1"] = PushResult(DeliveryStatus.DELIVERY_ERROR, "HTTP 500")

        report = await dispatcher.broadcast("room1", "hi")

        assert report.failed == ["c1"]
        assert report.delivered == ["c2"]
        assert report.results["c1"].detail == "HTTP 500"
        assert await registry.query("room1") == {"c1", "c2"}

    @pytest.mark.asyncio
    async def test_raising_gateway_is_a_delivery_error(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c1"] = RuntimeError("boom")

        report = await dispatcher.broadcast("room1", "hi")

        assert report.status_of("c1") == DeliveryStatus.DELIVERY_ERROR
        assert report.results["c1"].detail == "RuntimeError"
        assert report.status_of("c2") == DeliveryStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_slow_target_does_not_block_others(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "slow", "fast")
        gateway.delays["slow"] = 0.05
        gateway.outcomes["slow"] = GONE

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["fast"]
        assert report.gone == ["slow"]

    @pytest.mark.asyncio
    async def test_cleanup_failure_is_recorded_not_raised(self, dispatcher, registry, gateway, metrics):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c2"] = GONE
        registry.fail_on.add("deregister")

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["c1"]
        assert report.cleanup_failed == ["c2"]
        assert report.cleaned_up == []
        assert metrics.get_snapshot()["broadcast"]["cleanup_failed"] == 1

    @pytest.mark.asyncio
    async def test_cancelled_cleanup_is_not_counted_as_cleaned(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c2"] = GONE
        registry.deregister = AsyncMock(side_effect=asyncio.CancelledError())

        report = await dispatcher.broadcast("room1", "hi")

        assert report.cleanup_failed == ["c2"]
        assert report.cleaned_up == []

    @pytest.mark.asyncio
    async def test_query_failure_sends_nothing(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1")
        registry.fail_on.add("query")

        with pytest.raises(StoreUnavailable):
            await dispatcher.broadcast("room1", "hi")

        assert gateway.attempts == []


class TestTimeBudget:
    """Tests for the in-process fan-out budget."""

    @pytest.mark.asyncio
    async def test_pending_sends_reported_as_timeout(self, registry, gateway, metrics):
        await _join(registry, "room1", "fast", "stuck")
        gateway.delays["stuck"] = 10
        dispatcher = BroadcastDispatcher(registry, gateway, metrics=metrics, timeout=0.05)

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["fast"]
        assert report.failed == ["stuck"]
        assert report.results["stuck"].detail == "timeout"
        assert gateway.in_flight == 0
        assert metrics.get_snapshot()["broadcast"]["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_zero_timeout_means_no_budget(self, registry, gateway):
        await _join(registry, "room1", "c1")
        gateway.delays["c1"] = 0.02
        dispatcher = BroadcastDispatcher(registry, gateway, timeout=0)

        report = await dispatcher.broadcast("room1", "hi")

        assert report.delivered == ["c1"]

    @pytest.mark.asyncio
    async def test_host_cancellation_cancels_sends(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2")
        gateway.delays["c1"] = 10
        gateway.delays["c2"] = 10

        task = asyncio.create_task(dispatcher.broadcast("room1", "hi"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.01)
        assert gateway.in_flight == 0


class TestPayload:
    """Tests for payload encoding and validation."""

    def test_encode_str(self):
        assert encode_payload("ñ") == "ñ".encode("utf-8")

    def test_encode_rejects_non_text(self):
        with pytest.raises(MalformedInput):
            encode_payload({"text": "hi"})

    def test_encode_enforces_limit(self):
        with pytest.raises(MalformedInput):
            encode_payload("x" * 11, max_bytes=10)

    @pytest.mark.asyncio
    async def test_oversized_message_sends_nothing(self, registry, gateway):
        await _join(registry, "room1", "c1")
        dispatcher = BroadcastDispatcher(registry, gateway, max_message_bytes=4)

        with pytest.raises(MalformedInput):
            await dispatcher.broadcast("room1", "too long")

        assert gateway.attempts == []

    @pytest.mark.asyncio
    async def test_empty_channel_name_rejected(self, dispatcher):
        with pytest.raises(MalformedInput):
            await dispatcher.broadcast("", "hi")


class TestDeliveryReport:
    """Tests for the report shape."""

    @pytest.mark.asyncio
    async def test_to_dict(self, dispatcher, registry, gateway):
        await _join(registry, "room1", "c1", "c2")
        gateway.outcomes["c2"] = GONE

        report = (await dispatcher.broadcast("room1", "hi")).to_dict()

        assert report["channel"] == "room1"
        assert report["targets"] == 2
        assert report["delivered"] == 1
        assert report["target_gone"] == 1
        assert report["delivery_error"] == 0
        assert report["cleaned_up"] == ["c2"]
        assert report["results"]["c2"] == {"status": "target_gone", "detail": None}
