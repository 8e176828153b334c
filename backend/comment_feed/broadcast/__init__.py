"""
Broadcast: channel fan-out with per-target outcomes.
"""

from comment_feed.broadcast.dispatcher import BroadcastDispatcher, encode_payload
from comment_feed.broadcast.report import DeliveryReport, TargetResult

__all__ = [
    "BroadcastDispatcher",
    "encode_payload",
    "DeliveryReport",
    "TargetResult",
]
