"""
Broadcast Dispatcher.

Resolves a channel to its members and fans one message out to all of them
concurrently. One target's failure never blocks the others: every send runs
as its own task, all tasks are joined, and outcomes are folded into a
DeliveryReport. Targets the gateway reports gone are deregistered afterwards.

Ordering: the registry query happens before every send; sends themselves are
unordered.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from shared.config.logging import get_logger, mask_connection_id
from shared.utils.exceptions import MalformedInput
from comment_feed.broadcast.report import DeliveryReport, TargetResult
from comment_feed.metrics import MetricsCollector
from comment_feed.push.base import DeliveryStatus, PushGateway
from comment_feed.registry.base import ConnectionRegistry, require_identifier

logger = get_logger(__name__)


def encode_payload(message: str | bytes, max_bytes: int | None = None) -> bytes:
    """Message text as sent on the wire, unmodified apart from UTF-8 encoding."""
    if isinstance(message, bytes):
        payload = message
    elif isinstance(message, str):
        payload = message.encode("utf-8")
    else:
        raise MalformedInput("message must be a string", field="message")

    if max_bytes is not None and len(payload) > max_bytes:
        raise MalformedInput(
            f"message is {len(payload)} bytes, limit is {max_bytes}",
            field="message",
        )
    return payload


class BroadcastDispatcher:
    """
    Fans messages out to every member of a channel.

    Args:
        registry: Connection registry to resolve members.
        gateway: Push gateway used for every send, or a zero-argument factory
            for one. A factory is only called once a channel has members.
        metrics: Metrics collector.
        timeout: In-process budget in seconds for one fan-out, None for none.
        max_message_bytes: Payload size limit.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        gateway: PushGateway | Callable[[], PushGateway],
        metrics: MetricsCollector | None = None,
        timeout: float | None = None,
        max_message_bytes: int | None = None,
    ) -> None:
        self._registry = registry
        self._gateway: PushGateway | None = None
        self._gateway_factory: Callable[[], PushGateway] | None = None
        if isinstance(gateway, PushGateway):
            self._gateway = gateway
        else:
            self._gateway_factory = gateway
        self._metrics = metrics or MetricsCollector()
        self._timeout = timeout or None
        self._max_message_bytes = max_message_bytes

    async def broadcast(self, channel: str, message: str | bytes) -> DeliveryReport:
        """
        Deliver a message to every connection currently in a channel.

        Raises:
            MalformedInput: invalid channel or oversized message.
            StoreUnavailable: the member query failed; nothing was sent.
            ConfigurationError: the channel has members but no gateway could
                be built for them.
        """
        require_identifier("channel", channel)
        payload = encode_payload(message, self._max_message_bytes)

        members = await self._registry.query(channel)
        self._metrics.increment("broadcast", "total")

        report = DeliveryReport(channel=channel)
        if not members:
            self._metrics.increment("broadcast", "empty")
            logger.info("Broadcast to empty channel", channel=channel)
            return report

        gateway = self._resolve_gateway()
        await self._fan_out(gateway, sorted(members), payload, report)
        await self._cleanup_gone(report)
        self._record(report)

        logger.info(
            "Broadcast dispatched",
            channel=channel,
            targets=report.targets,
            delivered=len(report.delivered),
            gone=len(report.gone),
            failed=len(report.failed),
        )
        return report

    def _resolve_gateway(self) -> PushGateway:
        if self._gateway is None:
            self._gateway = self._gateway_factory()
        return self._gateway

    async def _send(
        self,
        gateway: PushGateway,
        connection_id: str,
        payload: bytes,
    ) -> TargetResult:
        """One push send. Never raises except for cancellation."""
        try:
            result = await gateway.send(connection_id, payload)
        except Exception as e:
            logger.debug(
                "Push send raised",
                connection_id=mask_connection_id(connection_id),
                error=str(e),
            )
            return TargetResult(connection_id, DeliveryStatus.DELIVERY_ERROR, type(e).__name__)
        return TargetResult(connection_id, result.status, result.detail)

    async def _fan_out(
        self,
        gateway: PushGateway,
        members: list[str],
        payload: bytes,
        report: DeliveryReport,
    ) -> None:
        tasks = {
            asyncio.create_task(self._send(gateway, cid, payload), name=f"push:{cid}"): cid
            for cid in members
        }

        try:
            done, pending = await asyncio.wait(tasks, timeout=self._timeout)
        except asyncio.CancelledError:
            # Invocation terminated by the host: in-flight sends are abandoned
            for task in tasks:
                task.cancel()
            raise

        for task in done:
            report.add(task.result())

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                report.add(TargetResult(tasks[task], DeliveryStatus.DELIVERY_ERROR, "timeout"))
            self._metrics.increment("broadcast", "timeouts", len(pending))
            logger.warning(
                "Broadcast budget expired, pending sends abandoned",
                channel=report.channel,
                abandoned=len(pending),
                timeout=self._timeout,
            )

    async def _cleanup_gone(self, report: DeliveryReport) -> None:
        """Best-effort deregistration of targets the gateway reported gone."""
        gone = report.gone
        if not gone:
            return

        results = await asyncio.gather(
            *[self._registry.deregister(report.channel, cid) for cid in gone],
            return_exceptions=True,
        )
        for cid, result in zip(gone, results):
            if isinstance(result, BaseException):
                report.cleanup_failed.append(cid)
                logger.warning(
                    "Stale connection cleanup failed",
                    channel=report.channel,
                    connection_id=mask_connection_id(cid),
                    error=str(result),
                )
            else:
                report.cleaned_up.append(cid)

    def _record(self, report: DeliveryReport) -> None:
        self._metrics.increment("broadcast", "delivered", len(report.delivered))
        self._metrics.increment("broadcast", "target_gone", len(report.gone))
        self._metrics.increment("broadcast", "delivery_errors", len(report.failed))
        self._metrics.increment("broadcast", "cleaned_up", len(report.cleaned_up))
        self._metrics.increment("broadcast", "cleanup_failed", len(report.cleanup_failed))
