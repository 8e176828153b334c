"""
Circuit Breaker for connection store round trips.

Keeps a degraded store from being hit by every trigger invocation. While the
circuit is open, registry calls fail fast; there is no in-process retry.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"  # Store calls pass through, failures are counted
    OPEN = "open"  # Store calls rejected until the recovery timeout passes
    HALF_OPEN = "half_open"  # One trial call decides between CLOSED and OPEN


class CircuitOpenError(Exception):
    """Store call rejected without being attempted."""


class CircuitBreaker:
    """
    Guards the registry's store calls.

    Usage:
        async with breaker:
            return await redis.smembers(key)

    Consecutive failures open the circuit. After recovery_timeout a single
    trial call is let through; its outcome closes or reopens the circuit.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ):
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: float = 0
        self._trial_in_flight = False
        self._lock = threading.Lock()

        self._rejected_calls = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    async def __aenter__(self) -> "CircuitBreaker":
        self._admit()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self.record_success()
        else:
            self.record_failure()
        return False

    def _admit(self) -> None:
        """Raises CircuitOpenError when the call must not reach the store."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                waited = time.time() - self._opened_at
                if waited < self._recovery_timeout:
                    self._rejected_calls += 1
                    raise CircuitOpenError(
                        f"Circuit '{self._name}' open, retry in "
                        f"{self._recovery_timeout - waited:.1f}s"
                    )
                self._transition_to(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self._rejected_calls += 1
                    raise CircuitOpenError(f"Circuit '{self._name}' is testing recovery")
                self._trial_in_flight = True

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN or self._failure_count >= self._failure_threshold:
                self._opened_at = time.time()
                self._transition_to(CircuitState.OPEN)

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            self._transition_to(CircuitState.CLOSED)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Caller holds the lock."""
        old_state = self._state
        self._trial_in_flight = False
        if old_state == new_state:
            return
        self._state = new_state

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            "Store circuit state change",
            name=self._name,
            from_state=old_state.value,
            to_state=new_state.value,
            failure_count=self._failure_count,
        )

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self._name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self._failure_threshold,
                "rejected_calls": self._rejected_calls,
            }
