"""
Inbound triggers: connect, disconnect, set-channel, send-message.
"""

from comment_feed.triggers.events import (
    ConnectEvent,
    DisconnectEvent,
    SendMessageEvent,
    SetChannelEvent,
    TriggerEvent,
    parse_event,
)
from comment_feed.triggers.handlers import (
    TRIGGER_ROUTES,
    TriggerServices,
    dispatch_trigger,
    handle_connect,
    handle_disconnect,
    handle_send_message,
    handle_set_channel,
    resolve_route,
)

__all__ = [
    "ConnectEvent",
    "DisconnectEvent",
    "SendMessageEvent",
    "SetChannelEvent",
    "TriggerEvent",
    "parse_event",
    "TRIGGER_ROUTES",
    "TriggerServices",
    "dispatch_trigger",
    "handle_connect",
    "handle_disconnect",
    "handle_send_message",
    "handle_set_channel",
    "resolve_route",
]
