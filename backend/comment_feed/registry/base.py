"""
Connection Registry contract.

The registry owns the persisted mapping channel -> {connection_id}. Every
operation is one round trip to the external store and raises StoreUnavailable
when that round trip fails; absence is never an error.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from shared.utils.exceptions import MalformedInput


@dataclass(frozen=True)
class ConnectionRecord:
    """
    The only persisted entity.

    The pair (channel, connection_id) is unique in the store. That a
    connection belongs to at most one channel is kept by the membership
    manager's delete-before-insert protocol, not by the store.
    """

    channel: str
    connection_id: str

    def __post_init__(self) -> None:
        require_identifier("channel", self.channel)
        require_identifier("connectionId", self.connection_id)

    def to_item(self) -> dict[str, str]:
        """Store item, field names as deployed."""
        return {"channel": self.channel, "connectionId": self.connection_id}


@dataclass(frozen=True)
class PendingSwitch:
    """Journal entry written before a channel switch starts."""

    connection_id: str
    from_channel: str
    to_channel: str
    started_at: float = field(default_factory=time.time)

    @property
    def age(self) -> float:
        return time.time() - self.started_at


def require_identifier(name: str, value: Any) -> str:
    """Channels and connection ids are non-empty strings."""
    if not isinstance(value, str) or not value.strip():
        raise MalformedInput(f"{name} must be a non-empty string", field=name)
    return value


class ConnectionRegistry(ABC):
    """
    Abstract connection registry.

    Implementations:
    - RedisConnectionRegistry: deployed store
    - InMemoryConnectionRegistry: single process, development and tests
    """

    # =========================================================================
    # Contract operations
    # =========================================================================

    @abstractmethod
    async def register(self, channel: str, connection_id: str) -> None:
        """Insert or overwrite the record. Idempotent."""

    @abstractmethod
    async def deregister(self, channel: str, connection_id: str) -> None:
        """Delete the record if present. Absence is success."""

    @abstractmethod
    async def query(self, channel: str) -> set[str]:
        """All current members of a channel. An empty set is a valid result."""

    # =========================================================================
    # Lookups
    # =========================================================================

    @abstractmethod
    async def channel_of(self, connection_id: str) -> str | None:
        """Channel the connection was last registered under, if any."""

    @abstractmethod
    async def channels(self) -> list[str]:
        """Channels holding at least one member."""

    # =========================================================================
    # Pending-switch journal
    # =========================================================================

    @abstractmethod
    async def begin_switch(self, pending: PendingSwitch) -> None:
        """Record that a switch is about to start."""

    @abstractmethod
    async def end_switch(self, connection_id: str) -> None:
        """Drop the journal entry of a finished switch. Idempotent."""

    @abstractmethod
    async def pending_switches(self) -> list[PendingSwitch]:
        """Journal entries that have not been cleared or expired."""

    async def ping(self) -> bool:
        """Store reachability. Raises StoreUnavailable when unreachable."""
        return True

    async def close(self) -> None:
        """Release store resources."""
