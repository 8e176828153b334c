"""
Membership Manager.

Join, leave and switch channels on top of the connection registry.

Per connection: Unregistered -> Joined(channel) on join, Joined(A) -> Joined(B)
on switch, Joined(*) -> Unregistered on leave.

A switch is a delete followed by an insert and is not atomic. When the delete
succeeds and the insert fails the connection is registered nowhere; that case
raises PartialSwitchFailure and is never retried here, since a timed-out
insert may in fact have landed.
"""

from __future__ import annotations

from shared.config.logging import get_logger, mask_connection_id
from shared.utils.exceptions import PartialSwitchFailure, StoreUnavailable
from comment_feed.metrics import MetricsCollector
from comment_feed.registry.base import (
    ConnectionRegistry,
    PendingSwitch,
    require_identifier,
)

logger = get_logger(__name__)


class MembershipManager:
    """Channel membership changes for one registry."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        default_channel: str = "default",
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._registry = registry
        self._default_channel = require_identifier("default_channel", default_channel)
        self._metrics = metrics or MetricsCollector()

    @property
    def default_channel(self) -> str:
        return self._default_channel

    async def join(self, connection_id: str, channel: str) -> None:
        """Register the connection under a channel. Repeating it is harmless."""
        await self._registry.register(channel, connection_id)
        self._metrics.increment("membership", "joins")
        logger.info(
            "Connection joined",
            channel=channel,
            connection_id=mask_connection_id(connection_id),
        )

    async def join_default(self, connection_id: str) -> str:
        """Join the default channel, returning its name."""
        await self.join(connection_id, self._default_channel)
        return self._default_channel

    async def leave(self, connection_id: str, channel: str) -> None:
        """
        Remove the connection from a channel. Leaving twice is a no-op.

        Any pending-switch journal entry is dropped too, so the sweep never
        re-registers a connection that has gone away.
        """
        await self._registry.deregister(channel, connection_id)
        await self._clear_journal(connection_id)
        self._metrics.increment("membership", "leaves")
        logger.info(
            "Connection left",
            channel=channel,
            connection_id=mask_connection_id(connection_id),
        )

    async def leave_current(self, connection_id: str) -> str | None:
        """
        Leave whatever channel the connection is in.

        Returns the channel left, or None when the connection was unknown.
        """
        channel = await self._registry.channel_of(connection_id)
        if channel is None:
            logger.info(
                "Leave for unknown connection, nothing to remove",
                connection_id=mask_connection_id(connection_id),
            )
            # A failed switch leaves no reverse entry but may leave a journal entry
            await self._clear_journal(connection_id)
            return None
        await self.leave(connection_id, channel)
        return channel

    async def switch_channel(
        self,
        connection_id: str,
        from_channel: str,
        to_channel: str,
    ) -> None:
        """
        Move a connection from one channel to another.

        Order is strict: journal entry, Deregister(from), Register(to),
        journal clear.

        Raises:
            StoreUnavailable: nothing changed (journal write or delete failed).
            PartialSwitchFailure: delete succeeded, insert failed.
        """
        require_identifier("connectionId", connection_id)
        require_identifier("channel", from_channel)
        require_identifier("new_channel", to_channel)

        if from_channel == to_channel:
            # No delete window needed, a plain register is idempotent
            await self._registry.register(to_channel, connection_id)
            logger.debug(
                "Switch to same channel",
                channel=to_channel,
                connection_id=mask_connection_id(connection_id),
            )
            return

        await self._registry.begin_switch(
            PendingSwitch(
                connection_id=connection_id,
                from_channel=from_channel,
                to_channel=to_channel,
            )
        )

        try:
            await self._registry.deregister(from_channel, connection_id)
        except StoreUnavailable:
            await self._clear_journal(connection_id, to_channel)
            raise

        try:
            await self._registry.register(to_channel, connection_id)
        except StoreUnavailable as e:
            self._metrics.increment("membership", "partial_switch_failures")
            raise PartialSwitchFailure(
                connection_id=connection_id,
                from_channel=from_channel,
                to_channel=to_channel,
                failed_step="register",
                cause=e.cause or e,
            ) from e

        await self._clear_journal(connection_id, to_channel)

        self._metrics.increment("membership", "switches")
        logger.info(
            "Connection switched channel",
            from_channel=from_channel,
            to_channel=to_channel,
            connection_id=mask_connection_id(connection_id),
        )

    async def _clear_journal(self, connection_id: str, to_channel: str | None = None) -> None:
        try:
            await self._registry.end_switch(connection_id)
        except StoreUnavailable:
            # The entry expires on its own
            logger.warning(
                "Could not clear switch journal entry",
                connection_id=mask_connection_id(connection_id),
                to_channel=to_channel,
            )
