"""
Delivery report of one broadcast.

Individual failures are data: a report with failed targets still belongs to a
successful dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from comment_feed.push.base import DeliveryStatus


@dataclass(frozen=True)
class TargetResult:
    connection_id: str
    status: DeliveryStatus
    detail: str | None = None


@dataclass
class DeliveryReport:
    """Per-target outcomes plus the registry cleanup they triggered."""

    channel: str
    results: dict[str, TargetResult] = field(default_factory=dict)
    cleaned_up: list[str] = field(default_factory=list)
    cleanup_failed: list[str] = field(default_factory=list)

    def add(self, result: TargetResult) -> None:
        self.results[result.connection_id] = result

    def _ids_with(self, status: DeliveryStatus) -> list[str]:
        return sorted(cid for cid, r in self.results.items() if r.status == status)

    @property
    def targets(self) -> int:
        return len(self.results)

    @property
    def delivered(self) -> list[str]:
        return self._ids_with(DeliveryStatus.DELIVERED)

    @property
    def gone(self) -> list[str]:
        return self._ids_with(DeliveryStatus.TARGET_GONE)

    @property
    def failed(self) -> list[str]:
        return self._ids_with(DeliveryStatus.DELIVERY_ERROR)

    @property
    def is_empty(self) -> bool:
        return not self.results

    def status_of(self, connection_id: str) -> DeliveryStatus | None:
        result = self.results.get(connection_id)
        return result.status if result else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "targets": self.targets,
            "delivered": len(self.delivered),
            "target_gone": len(self.gone),
            "delivery_error": len(self.failed),
            "cleaned_up": list(self.cleaned_up),
            "cleanup_failed": list(self.cleanup_failed),
            "results": {
                cid: {"status": r.status.value, "detail": r.detail}
                for cid, r in sorted(self.results.items())
            },
        }
