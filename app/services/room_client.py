"""Async HTTP client for the trading-room API used by the room engines."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class RoomApiError(RuntimeError):
    """Raised when a trading-room API call fails or answers non-2xx."""


class RoomApiClient:
    def __init__(self, room_id: str, base_url: str = None, timeout: float = None, http: httpx.AsyncClient = None):
        self.room_id = room_id
        self.http = http or httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
        )

    @property
    def prefix(self) -> str:
        return f"/api/trading-room/{self.room_id}"

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.http.request(method, self.prefix + path, **kwargs)
        except httpx.HTTPError as e:
            raise RoomApiError(f"{method} {path} failed: {e}") from e
        if resp.status_code >= 400:
            raise RoomApiError(f"{method} {path} returned {resp.status_code}: {resp.text}")
        try:
            return resp.json()
        except ValueError:
            return {}

    async def list_open_orders(self, symbol: str) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/open-orders", params={'symbol': symbol, 'status': 'open'})
        data = body.get('data')
        return data if isinstance(data, list) else []

    async def fill_order(self, order_id: str, fill_price: float) -> Dict[str, Any]:
        payload = {'action': 'fill', 'orderId': order_id, 'fillPrice': fill_price}
        return await self._request("PATCH", "/open-orders", json=payload)

    async def list_scheduled_orders(self, status: Optional[str] = "pending") -> Dict[str, Any]:
        params = {'status': status} if status else None
        body = await self._request("GET", "/scheduled-orders", params=params)
        data = body.get('data')
        return {'data': data if isinstance(data, list) else []}

    async def execute_scheduled(self, order_id: str, client_time: str, current_price: float) -> Dict[str, Any]:
        payload = {'client_time': client_time, 'current_price': current_price}
        return await self._request("POST", f"/scheduled-orders/{order_id}/execute", json=payload)

    async def aclose(self) -> None:
        await self.http.aclose()
