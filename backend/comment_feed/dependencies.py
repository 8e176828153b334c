"""
Dependency wiring for the comment feed.

Singletons for the registry, metrics and push gateways, created on first use
from settings. Tests replace them through `override_registry` and
`override_gateway_factory`, and clear them with `reset_singletons`.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Callable

from shared.config.settings import settings
from shared.config.logging import get_logger
from shared.infrastructure.redis_pool import get_redis_pool
from shared.utils.exceptions import ConfigurationError
from comment_feed.membership import MembershipManager
from comment_feed.metrics import MetricsCollector
from comment_feed.push.base import PushGateway
from comment_feed.push.http_gateway import HttpPushGateway
from comment_feed.registry.base import ConnectionRegistry
from comment_feed.registry.memory import InMemoryConnectionRegistry
from comment_feed.registry.redis_registry import RedisConnectionRegistry
from comment_feed.resilience import CircuitBreaker
from comment_feed.triggers.handlers import TriggerServices

logger = get_logger(__name__)


# =============================================================================
# Singleton Instances
# =============================================================================

_registry: ConnectionRegistry | None = None
_registry_lock: asyncio.Lock | None = None
_metrics_collector: MetricsCollector | None = None
_gateways: dict[str, PushGateway] = {}
_gateway_factory: Callable[[str | None], PushGateway] | None = None
_singleton_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get singleton MetricsCollector instance.

    Thread-safe with double-check locking.
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _singleton_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def _get_registry_lock() -> asyncio.Lock:
    global _registry_lock
    if _registry_lock is None:
        with _singleton_lock:
            if _registry_lock is None:
                _registry_lock = asyncio.Lock()
    return _registry_lock


async def get_registry() -> ConnectionRegistry:
    """Get the registry configured by settings.registry_backend."""
    global _registry
    if _registry is not None:
        return _registry

    async with _get_registry_lock():
        if _registry is None:
            if settings.registry_backend == "memory":
                _registry = InMemoryConnectionRegistry(
                    switch_pending_ttl=settings.switch_pending_ttl,
                )
            elif settings.registry_backend == "redis":
                _registry = RedisConnectionRegistry(
                    await get_redis_pool(),
                    namespace=settings.registry_namespace,
                    switch_pending_ttl=settings.switch_pending_ttl,
                    breaker=CircuitBreaker(
                        "connection_registry",
                        failure_threshold=settings.store_circuit_failure_threshold,
                        recovery_timeout=settings.store_circuit_recovery_timeout,
                    ),
                )
            else:
                raise ValueError(f"Unknown registry backend {settings.registry_backend!r}")
            logger.info("Connection registry created", backend=settings.registry_backend)
    return _registry


def get_push_gateway(endpoint_url: str | None = None) -> PushGateway:
    """
    Get the push gateway for a management endpoint.

    Falls back to settings.push_endpoint_url; one cached gateway per endpoint.

    Raises:
        ConfigurationError: neither the event nor settings name an endpoint.
    """
    if _gateway_factory is not None:
        return _gateway_factory(endpoint_url)

    url = endpoint_url or settings.push_endpoint_url
    if not url:
        raise ConfigurationError(
            "No push endpoint: event has no domainName and PUSH_ENDPOINT_URL is not set",
            setting="PUSH_ENDPOINT_URL",
        )

    gateway = _gateways.get(url)
    if gateway is None:
        with _singleton_lock:
            gateway = _gateways.get(url)
            if gateway is None:
                gateway = HttpPushGateway(
                    url,
                    timeout=settings.push_timeout,
                    max_connections=settings.push_max_connections,
                )
                _gateways[url] = gateway
    return gateway


async def get_trigger_services() -> TriggerServices:
    """Collaborators for the trigger handlers."""
    registry = await get_registry()
    metrics = get_metrics_collector()
    return TriggerServices(
        registry=registry,
        membership=MembershipManager(
            registry,
            default_channel=settings.default_channel,
            metrics=metrics,
        ),
        gateway_for=get_push_gateway,
        metrics=metrics,
        broadcast_timeout=settings.broadcast_timeout or None,
        max_message_bytes=settings.max_message_bytes,
    )


# =============================================================================
# Overrides and cleanup
# =============================================================================


def override_registry(registry: ConnectionRegistry | None) -> None:
    global _registry
    _registry = registry


def override_gateway_factory(factory: Callable[[str | None], PushGateway] | None) -> None:
    global _gateway_factory
    _gateway_factory = factory


async def close_dependencies() -> None:
    """Close gateways and the registry on shutdown."""
    for gateway in list(_gateways.values()):
        await gateway.close()
    _gateways.clear()
    if _registry is not None:
        await _registry.close()


def reset_singletons() -> None:
    """Drop every singleton. For tests only."""
    global _registry, _registry_lock, _metrics_collector, _gateway_factory
    with _singleton_lock:
        _registry = None
        _registry_lock = None
        _metrics_collector = None
        _gateway_factory = None
        _gateways.clear()
