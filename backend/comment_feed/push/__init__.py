"""
Push gateway: delivers a payload to one connection id.
"""

from comment_feed.push.base import (
    DELIVERED,
    GONE,
    DeliveryStatus,
    PushGateway,
    PushResult,
)
from comment_feed.push.http_gateway import HttpPushGateway, endpoint_from_request_context

__all__ = [
    "DELIVERED",
    "GONE",
    "DeliveryStatus",
    "PushGateway",
    "PushResult",
    "HttpPushGateway",
    "endpoint_from_request_context",
]
