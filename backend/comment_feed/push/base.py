"""
Push gateway contract.

The gateway delivers one payload to one connection id and reports one of
three outcomes. It never raises for a per-target failure; the dispatcher still
treats an unexpected exception as a transient delivery error.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class DeliveryStatus(str, Enum):
    """Per-target outcome of one push send."""

    DELIVERED = "delivered"
    TARGET_GONE = "target_gone"  # Endpoint no longer exists, remove it from the registry
    DELIVERY_ERROR = "delivery_error"  # Transient failure


@dataclass(frozen=True)
class PushResult:
    status: DeliveryStatus
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED


DELIVERED = PushResult(DeliveryStatus.DELIVERED)
GONE = PushResult(DeliveryStatus.TARGET_GONE)


class PushGateway(ABC):
    """External service capable of delivering a payload to one connection."""

    @abstractmethod
    async def send(self, connection_id: str, payload: bytes) -> PushResult:
        """Deliver payload to one connection."""

    @abstractmethod
    async def probe(self, connection_id: str) -> bool:
        """
        True if the connection still exists.

        Transient failures count as alive, only a definite "gone" is False.
        """

    async def close(self) -> None:
        """Release gateway resources."""
