"""
HTTP push gateway.

Talks to a connection management API:
- POST {endpoint}/@connections/{id}   deliver the raw payload
- GET  {endpoint}/@connections/{id}   connection status

410 Gone means the connection no longer exists. Any other non-2xx status,
timeout or transport error is a transient delivery error.
"""

from __future__ import annotations

import asyncio
import threading
from urllib.parse import quote

import httpx

from shared.config.logging import get_logger, mask_connection_id
from comment_feed.push.base import (
    DELIVERED,
    GONE,
    DeliveryStatus,
    PushGateway,
    PushResult,
)

logger = get_logger(__name__)


def endpoint_from_request_context(domain_name: str | None, stage: str | None) -> str | None:
    """Management endpoint of the API that accepted the connection."""
    if not domain_name:
        return None
    if stage:
        return f"https://{domain_name}/{stage}"
    return f"https://{domain_name}"


class HttpPushGateway(PushGateway):
    """
    Push gateway over HTTP with a pooled, lazily created httpx client.

    One instance per management endpoint; the client is shared by every send
    of a broadcast.
    """

    def __init__(
        self,
        endpoint_url: str,
        timeout: float = 5.0,
        max_connections: int = 100,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint_url = endpoint_url.rstrip("/")
        self.timeout = timeout
        self._max_connections = max_connections
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock: asyncio.Lock | None = None
        self._init_lock = threading.Lock()

    def _get_lock(self) -> asyncio.Lock:
        if self._client_lock is None:
            with self._init_lock:
                if self._client_lock is None:
                    self._client_lock = asyncio.Lock()
        return self._client_lock

    async def _get_client(self) -> httpx.AsyncClient:
        # Fast path: client already initialized
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._get_lock():
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(
                        max_connections=self._max_connections,
                        max_keepalive_connections=min(self._max_connections, 20),
                    ),
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def connection_url(self, connection_id: str) -> str:
        return f"{self.endpoint_url}/@connections/{quote(connection_id, safe='')}"

    async def send(self, connection_id: str, payload: bytes) -> PushResult:
        client = await self._get_client()
        try:
            response = await client.post(
                self.connection_url(connection_id),
                content=payload,
            )
        except httpx.TimeoutException:
            return PushResult(DeliveryStatus.DELIVERY_ERROR, "timeout")
        except httpx.HTTPError as e:
            logger.debug(
                "Push transport error",
                connection_id=mask_connection_id(connection_id),
                error=str(e),
            )
            return PushResult(DeliveryStatus.DELIVERY_ERROR, type(e).__name__)

        if response.status_code == httpx.codes.GONE:
            return GONE
        if response.is_success:
            return DELIVERED
        return PushResult(DeliveryStatus.DELIVERY_ERROR, f"HTTP {response.status_code}")

    async def probe(self, connection_id: str) -> bool:
        client = await self._get_client()
        try:
            response = await client.get(self.connection_url(connection_id))
        except httpx.HTTPError:
            return True
        return response.status_code != httpx.codes.GONE
