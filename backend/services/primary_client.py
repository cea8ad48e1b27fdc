"""
Client for the primary (POS) system's item/stock API.

Only three calls are used: item lookup by SKU within a location, stock for a
location, and setting an item's quantity. Transport errors and non-2xx
answers surface as DownstreamSyncFailure, and so do bodies that are not JSON.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from core.config import settings
from core.errors import DownstreamSyncFailure

logger = logging.getLogger(__name__)


class PrimarySystemClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (settings.primary_api_base_url if base_url is None else base_url).rstrip("/")
        self.token = settings.primary_api_token if token is None else token
        self.timeout = settings.primary_api_timeout if timeout is None else timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.enabled:
            raise DownstreamSyncFailure("Primary system is not configured")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self._headers(),
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("primary system %s %s failed: %s", method, path, e)
            raise DownstreamSyncFailure(f"Primary system request failed: {e}", path=path)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.status_code >= 400:
            logger.warning(
                "primary system answered %s for %s: %s", response.status_code, path, response.text[:200]
            )
            raise DownstreamSyncFailure(
                f"Primary system error {response.status_code}",
                path=path,
                status=response.status_code,
            )

    @staticmethod
    def _json(response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError:
            logger.warning("primary system sent a non-JSON body for %s: %s", path, response.text[:200])
            raise DownstreamSyncFailure("Primary system returned invalid JSON", path=path)

    async def get_item_by_sku(self, sku: str, location_id: int) -> Optional[Dict[str, Any]]:
        path = "/items"
        response = await self._request("GET", path, params={"sku": sku, "location_id": location_id})
        if response.status_code == 404:
            return None
        self._raise_for_status(response, path)
        elements = _elements(self._json(response, path))
        return elements[0] if elements else None

    async def get_stock_by_location(self, location_id: int) -> List[Dict[str, Any]]:
        path = f"/locations/{location_id}/stock"
        response = await self._request("GET", path)
        self._raise_for_status(response, path)
        return _elements(self._json(response, path))

    async def patch_quantity(self, item_ref: str, location_id: int, quantity: Decimal) -> None:
        path = f"/items/{item_ref}/quantity"
        response = await self._request(
            "PATCH", path, json={"location_id": location_id, "quantity": str(quantity)}
        )
        self._raise_for_status(response, path)


def _elements(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("elements", "items", "stock"):
            if isinstance(payload.get(key), list):
                return payload[key]
        return [payload]
    return []


def item_ref(item) -> str:
    """Identifier of a local item record inside the primary system."""
    return item.external_id or str(item.id)
