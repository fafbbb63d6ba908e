"""Async read-only client for the Square REST API.

Every call acquires a token from the per-connection RateLimiter and runs
inside the RetryPolicy, so transient 5xx/429 and network failures are
retried with backoff. Data only flows from Square into the app; this
client never writes to the merchant's account.
"""

from __future__ import annotations

from collections.abc import Hashable
from typing import Any

import httpx
import structlog

from src.restaurant_ops.config import Settings, get_settings
from src.restaurant_ops.pos.errors import SquareApiError
from src.restaurant_ops.pos.rate_limiter import RateLimiter
from src.restaurant_ops.pos.retry import RetryPolicy

logger = structlog.get_logger(__name__)


class SquareClient:
    """Async client for the Square v2 REST API.

    Args:
        access_token: OAuth access token for the merchant connection.
        connection_id: Key for the rate limiter bucket (one per connection).
        retry_policy: Shared or per-client RetryPolicy; built from settings
            when omitted.
        rate_limiter: Shared RateLimiter; built from settings when omitted.
        settings: Settings override (base URL, API version, timeout).
        transport: Optional httpx transport, used by tests.
    """

    def __init__(
        self,
        access_token: str,
        connection_id: Hashable = "default",
        retry_policy: RetryPolicy | None = None,
        rate_limiter: RateLimiter | None = None,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._connection_id = connection_id
        self._base_url = settings.get_square_base_url()
        self._timeout = settings.SQUARE_TIMEOUT
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": settings.SQUARE_API_VERSION,
            "Content-Type": "application/json",
        }
        self._transport = transport
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.rate_limiter = rate_limiter or RateLimiter.from_settings(settings)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Single physical request. Raises SquareApiError on non-2xx."""
        await self.rate_limiter.acquire_token(self._connection_id)

        async with self._client() as client:
            response = await client.request(method, path, **kwargs)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            retry_after_ms = float(retry_after) * 1000 if retry_after and retry_after.isdigit() else None
            self.rate_limiter.handle_rate_limit_error(self._connection_id, retry_after_ms)

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise SquareApiError(response.status_code, body)

        return response.json()

    async def _call(self, name: str, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        return await self.retry_policy.execute_with_retry(
            lambda: self._send(method, path, **kwargs),
            context={"method": name, "connection_id": self._connection_id},
        )

    async def list_locations(self) -> list[dict[str, Any]]:
        """GET /locations."""
        data = await self._call("locations.list", "GET", "/locations")
        return data.get("locations", [])

    async def list_catalog(
        self,
        types: list[str] | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        """GET /catalog/list for one page.

        Returns:
            Dict with ``objects`` and ``cursor`` (None on the last page).
        """
        params: dict[str, str] = {}
        if types:
            params["types"] = ",".join(types)
        if cursor:
            params["cursor"] = cursor
        data = await self._call("catalog.list", "GET", "/catalog/list", params=params)
        return {"objects": data.get("objects", []), "cursor": data.get("cursor")}

    async def search_orders(
        self,
        location_ids: list[str],
        cursor: str | None = None,
        query: dict[str, Any] | None = None,
        limit: int = 100,
    ) -> dict[str, Any]:
        """POST /orders/search for one page of orders."""
        body: dict[str, Any] = {"location_ids": location_ids, "limit": limit}
        if cursor:
            body["cursor"] = cursor
        if query:
            body["query"] = query
        data = await self._call("orders.search", "POST", "/orders/search", json=body)
        return {"orders": data.get("orders", []), "cursor": data.get("cursor")}

    async def retrieve_inventory_counts(
        self,
        catalog_object_ids: list[str] | None = None,
        location_ids: list[str] | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        """POST /inventory/counts/batch-retrieve for one page of counts."""
        body: dict[str, Any] = {}
        if catalog_object_ids:
            body["catalog_object_ids"] = catalog_object_ids
        if location_ids:
            body["location_ids"] = location_ids
        if cursor:
            body["cursor"] = cursor
        data = await self._call(
            "inventory.batch_retrieve_counts", "POST", "/inventory/counts/batch-retrieve", json=body
        )
        return {"counts": data.get("counts", []), "cursor": data.get("cursor")}
