"""
Pytest configuration and fixtures for backend tests.

Everything runs against the in-memory registry and a recording push gateway;
no Redis or network access is needed.
"""

import os

# Must be set before shared.config.settings is imported anywhere
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REGISTRY_BACKEND", "memory")
os.environ.setdefault("PUSH_ENDPOINT_URL", "https://push.test/dev")

import asyncio

import pytest
from fastapi.testclient import TestClient

from shared.utils.exceptions import StoreUnavailable
from comment_feed import dependencies
from comment_feed.broadcast.dispatcher import BroadcastDispatcher
from comment_feed.membership import MembershipManager
from comment_feed.metrics import MetricsCollector
from comment_feed.push.base import DELIVERED, PushGateway, PushResult
from comment_feed.registry.memory import InMemoryConnectionRegistry
from comment_feed.triggers.handlers import TriggerServices


# =============================================================================
# Fakes
# =============================================================================


class RecordingPushGateway(PushGateway):
    """
    Push gateway that records every send.

    outcomes maps a connection id to the PushResult it should return, or to an
    exception the send should raise. delays maps an id to seconds to sleep
    before answering. Ids in `gone` fail the liveness probe.
    """

    def __init__(self):
        self.outcomes: dict[str, PushResult | Exception] = {}
        self.delays: dict[str, float] = {}
        self.gone: set[str] = set()
        self.attempts: list[str] = []
        self.received: dict[str, list[bytes]] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def send(self, connection_id: str, payload: bytes) -> PushResult:
        self.attempts.append(connection_id)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Yield so concurrent sends overlap
            await asyncio.sleep(self.delays.get(connection_id, 0))
        finally:
            self.in_flight -= 1

        outcome = self.outcomes.get(connection_id, DELIVERED)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome.ok:
            self.received.setdefault(connection_id, []).append(payload)
        return outcome

    async def probe(self, connection_id: str) -> bool:
        return connection_id not in self.gone

    async def close(self) -> None:
        self.closed = True


class FlakyRegistry(InMemoryConnectionRegistry):
    """
    In-memory registry whose operations can be made to fail.

    Operation names added to `fail_on` raise StoreUnavailable without
    touching state. `calls` records every operation in order.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_on: set[str] = set()
        self.calls: list[tuple] = []

    def _maybe_fail(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        if operation in self.fail_on:
            raise StoreUnavailable(operation, cause=ConnectionError("store down"))

    async def register(self, channel, connection_id):
        self._maybe_fail("register", channel, connection_id)
        await super().register(channel, connection_id)

    async def deregister(self, channel, connection_id):
        self._maybe_fail("deregister", channel, connection_id)
        await super().deregister(channel, connection_id)

    async def query(self, channel):
        self._maybe_fail("query", channel)
        return await super().query(channel)

    async def channel_of(self, connection_id):
        self._maybe_fail("channel_of", connection_id)
        return await super().channel_of(connection_id)

    async def begin_switch(self, pending):
        self._maybe_fail("begin_switch", pending.connection_id)
        await super().begin_switch(pending)

    async def end_switch(self, connection_id):
        self._maybe_fail("end_switch", connection_id)
        await super().end_switch(connection_id)

    async def ping(self):
        self._maybe_fail("ping")
        return True


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_dependencies():
    """Drop dependency singletons before and after every test."""
    dependencies.reset_singletons()
    yield
    dependencies.reset_singletons()


@pytest.fixture
def registry():
    """Registry with failure injection, healthy by default."""
    return FlakyRegistry()


@pytest.fixture
def gateway():
    return RecordingPushGateway()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def membership(registry, metrics):
    return MembershipManager(registry, default_channel="default", metrics=metrics)


@pytest.fixture
def dispatcher(registry, gateway, metrics):
    return BroadcastDispatcher(registry, gateway, metrics=metrics, max_message_bytes=128 * 1024)


@pytest.fixture
def gateway_requests():
    """Endpoint URLs the services asked a gateway for, in order."""
    return []


@pytest.fixture
def services(registry, membership, gateway, metrics, gateway_requests):
    def gateway_for(endpoint_url):
        gateway_requests.append(endpoint_url)
        return gateway

    return TriggerServices(
        registry=registry,
        membership=membership,
        gateway_for=gateway_for,
        metrics=metrics,
        max_message_bytes=128 * 1024,
    )


@pytest.fixture
def client(registry, gateway, gateway_requests):
    """
    Test client for the trigger host with the registry and gateway replaced.
    """
    from comment_feed.main import app

    def gateway_for(endpoint_url):
        gateway_requests.append(endpoint_url)
        return gateway

    dependencies.override_registry(registry)
    dependencies.override_gateway_factory(gateway_for)

    with TestClient(app) as test_client:
        yield test_client
