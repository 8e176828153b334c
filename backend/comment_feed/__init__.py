"""
Comment feed backend: connection registry and broadcast dispatcher.

STRUCTURE:
- comment_feed.registry: channel -> {connection_id} store (Redis, in-memory)
- comment_feed.membership: join, leave, channel switch
- comment_feed.broadcast: concurrent fan-out with per-target report
- comment_feed.push: push gateway contract and HTTP client
- comment_feed.triggers: inbound payloads and handlers
- comment_feed.reconcile: operator sweep for orphaned / stale entries
- comment_feed.main: FastAPI trigger host
"""

__version__ = "1.0.0"
