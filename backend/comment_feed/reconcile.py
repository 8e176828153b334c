"""
Reconciliation sweep.

Finds registry state that the normal trigger flow cannot fix by itself:
- orphans: connections a PartialSwitchFailure left registered nowhere
  (found through the pending-switch journal);
- duplicates: a connection listed in a channel other than the one its
  reverse key names, so it would receive two channels' messages;
- unindexed: a member without a reverse key, so disconnect cannot find it;
- gone: members the push gateway no longer knows (probe mode only).

Without `repair` the sweep only reports. It is meant to be run by an operator
or a scheduler, never from inside a trigger.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from shared.config.logging import get_logger, mask_connection_id
from comment_feed.push.base import PushGateway
from comment_feed.registry.base import ConnectionRecord, ConnectionRegistry, PendingSwitch

logger = get_logger(__name__)


@dataclass
class SweepReport:
    orphaned: list[PendingSwitch] = field(default_factory=list)
    duplicates: list[tuple[str, str, str]] = field(default_factory=list)  # (channel, id, owner)
    unindexed: list[ConnectionRecord] = field(default_factory=list)
    gone: list[ConnectionRecord] = field(default_factory=list)
    stale_journal: list[str] = field(default_factory=list)
    repaired: int = 0

    @property
    def clean(self) -> bool:
        return not (self.orphaned or self.duplicates or self.unindexed or self.gone)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orphaned": [
                {"connectionId": p.connection_id, "from": p.from_channel, "to": p.to_channel}
                for p in self.orphaned
            ],
            "duplicates": [
                {"channel": ch, "connectionId": cid, "owner": owner}
                for ch, cid, owner in self.duplicates
            ],
            "unindexed": [record.to_item() for record in self.unindexed],
            "gone": [record.to_item() for record in self.gone],
            "stale_journal": list(self.stale_journal),
            "repaired": self.repaired,
        }


class ReconciliationSweep:
    """
    Args:
        registry: Registry to inspect.
        gateway: Push gateway used by probe mode.
        grace_period: Journal entries younger than this are switches still in
            flight and are left alone.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        gateway: PushGateway | None = None,
        grace_period: float = 30.0,
    ) -> None:
        self._registry = registry
        self._gateway = gateway
        self._grace_period = grace_period

    async def run(self, probe: bool = False, repair: bool = False) -> SweepReport:
        if probe and self._gateway is None:
            raise ValueError("probe mode needs a push gateway")

        report = SweepReport()
        await self._check_journal(report, repair)
        for channel in await self._registry.channels():
            await self._check_channel(channel, report, repair, probe)

        logger.info(
            "Reconciliation sweep finished",
            orphaned=len(report.orphaned),
            duplicates=len(report.duplicates),
            unindexed=len(report.unindexed),
            gone=len(report.gone),
            repaired=report.repaired,
            repair=repair,
        )
        return report

    async def _check_journal(self, report: SweepReport, repair: bool) -> None:
        for pending in await self._registry.pending_switches():
            if pending.age < self._grace_period:
                continue

            cid = pending.connection_id
            owner = await self._registry.channel_of(cid)
            if owner is not None:
                # Switch finished (or never started its delete); only the journal is left
                report.stale_journal.append(cid)
                if repair:
                    await self._registry.end_switch(cid)
                continue

            report.orphaned.append(pending)
            logger.warning(
                "Orphaned connection found",
                connection_id=mask_connection_id(cid),
                from_channel=pending.from_channel,
                to_channel=pending.to_channel,
            )
            if repair:
                await self._registry.register(pending.to_channel, cid)
                await self._registry.end_switch(cid)
                report.repaired += 1

    async def _check_channel(
        self,
        channel: str,
        report: SweepReport,
        repair: bool,
        probe: bool,
    ) -> None:
        members = sorted(await self._registry.query(channel))

        for cid in members:
            owner = await self._registry.channel_of(cid)
            if owner == channel:
                continue
            if owner is None:
                report.unindexed.append(ConnectionRecord(channel, cid))
                if repair:
                    await self._registry.register(channel, cid)
                    report.repaired += 1
            else:
                report.duplicates.append((channel, cid, owner))
                if repair:
                    await self._registry.deregister(channel, cid)
                    report.repaired += 1

        if not probe or not members:
            return

        alive = await asyncio.gather(*[self._gateway.probe(cid) for cid in members])
        for cid, is_alive in zip(members, alive):
            if is_alive:
                continue
            report.gone.append(ConnectionRecord(channel, cid))
            if repair:
                await self._registry.deregister(channel, cid)
                report.repaired += 1
