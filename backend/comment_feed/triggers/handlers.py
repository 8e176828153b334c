"""
Trigger handlers.

One handler per inbound trigger. Each takes the raw event and the injected
services, invokes exactly one of the membership manager or the broadcast
dispatcher, and returns {"statusCode": 200}. Failures propagate to the host
as FeedError subclasses.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from shared.config.logging import get_logger, mask_connection_id
from shared.infrastructure.correlation import bind_request_id
from shared.utils.exceptions import (
    ConfigurationError,
    FeedError,
    MalformedInput,
    StoreUnavailable,
)
from comment_feed.broadcast.dispatcher import BroadcastDispatcher
from comment_feed.membership import MembershipManager
from comment_feed.metrics import MetricsCollector
from comment_feed.push.base import PushGateway
from comment_feed.registry.base import ConnectionRegistry
from comment_feed.triggers.events import (
    ConnectEvent,
    DisconnectEvent,
    SendMessageEvent,
    SetChannelEvent,
    TriggerEvent,
    parse_event,
)

logger = get_logger(__name__)

OK: dict[str, int] = {"statusCode": 200}

Handler = Callable[[Any, "TriggerServices"], Awaitable[dict[str, Any]]]


@dataclass
class TriggerServices:
    """Collaborators injected into every handler."""

    registry: ConnectionRegistry
    membership: MembershipManager
    gateway_for: Callable[[str | None], PushGateway]
    metrics: MetricsCollector
    broadcast_timeout: float | None = None
    max_message_bytes: int | None = None

    def dispatcher(self, endpoint_url: str | None = None) -> BroadcastDispatcher:
        return BroadcastDispatcher(
            self.registry,
            functools.partial(self.gateway_for, endpoint_url),
            metrics=self.metrics,
            timeout=self.broadcast_timeout,
            max_message_bytes=self.max_message_bytes,
        )


def _request_id_of(raw: Any) -> str | None:
    if isinstance(raw, dict):
        context = raw.get("requestContext")
        if isinstance(context, dict):
            return context.get("requestId")
    return None


def trigger(model: type[TriggerEvent]):
    """
    Wrap a handler body with parsing, correlation and metrics.

    The wrapped function receives the event already parsed into `model`.
    """
    def decorate(fn: Callable[[Any, TriggerServices], Awaitable[None]]) -> Handler:
        @functools.wraps(fn)
        async def wrapper(raw: Any, services: TriggerServices) -> dict[str, Any]:
            with bind_request_id(_request_id_of(raw)):
                try:
                    event = parse_event(model, raw)
                    await fn(event, services)
                except MalformedInput:
                    services.metrics.increment("trigger", "malformed")
                    raise
                except StoreUnavailable:
                    services.metrics.increment("trigger", "store_errors")
                    raise
                except ConfigurationError:
                    services.metrics.increment("trigger", "config_errors")
                    raise
                services.metrics.increment("trigger", "handled")
                return dict(OK)

        return wrapper

    return decorate


# =============================================================================
# Handlers
# =============================================================================


@trigger(ConnectEvent)
async def handle_connect(event: ConnectEvent, services: TriggerServices) -> None:
    """New connection joins the default channel."""
    await services.membership.join_default(event.connection_id)


@trigger(DisconnectEvent)
async def handle_disconnect(event: DisconnectEvent, services: TriggerServices) -> None:
    """Connection leaves its current channel."""
    logger.info("Disconnection", connection_id=mask_connection_id(event.connection_id))
    await services.membership.leave_current(event.connection_id)


@trigger(SetChannelEvent)
async def handle_set_channel(event: SetChannelEvent, services: TriggerServices) -> None:
    """Connection moves from body.channel to body.new_channel."""
    await services.membership.switch_channel(
        event.connection_id,
        event.body.channel,
        event.body.new_channel,
    )


@trigger(SendMessageEvent)
async def handle_send_message(event: SendMessageEvent, services: TriggerServices) -> None:
    """Broadcast body.message to every connection in body.channel."""
    dispatcher = services.dispatcher(event.endpoint_url)
    await dispatcher.broadcast(event.body.channel, event.body.message)


# =============================================================================
# Routing
# =============================================================================

TRIGGER_ROUTES: dict[str, Handler] = {
    "$connect": handle_connect,
    "$disconnect": handle_disconnect,
    "setchannel": handle_set_channel,
    "sendmessage": handle_send_message,
}

# Path-friendly aliases for hosts that cannot route on "$"-prefixed keys
ROUTE_ALIASES: dict[str, str] = {
    "connect": "$connect",
    "disconnect": "$disconnect",
    "set-channel": "setchannel",
    "send-message": "sendmessage",
}


def resolve_route(route_key: str) -> Handler:
    """
    Map a host route key to its handler.

    Raises:
        MalformedInput: unknown route key.
    """
    handler = TRIGGER_ROUTES.get(ROUTE_ALIASES.get(route_key, route_key))
    if handler is None:
        raise MalformedInput(f"Unknown trigger route {route_key!r}", route_key=route_key)
    return handler


async def dispatch_trigger(
    route_key: str,
    raw: Any,
    services: TriggerServices,
) -> dict[str, Any]:
    """Invoke the handler registered for a route key."""
    try:
        handler = resolve_route(route_key)
    except FeedError:
        services.metrics.increment("trigger", "malformed")
        raise
    return await handler(raw, services)
