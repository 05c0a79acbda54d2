"""
REST client for the orders API.
Thin wrapper over httpx; every transport failure or non-2xx answer is
raised as NetworkError so callers have one thing to fall back on.
"""
from typing import Any, Dict, List, Optional

import httpx

from orderledger.common.config import get_settings
from orderledger.common.errors import NetworkError
from orderledger.common.logging import get_logger
from orderledger.models.orders import Order

logger = get_logger(__name__)


class OrdersApi:
    """GET/POST/PATCH /orders"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 token: Optional[str] = None, transport: Optional[httpx.BaseTransport] = None):
        settings = get_settings()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = httpx.Client(
            base_url=base_url or settings.API_BASE_URL,
            timeout=timeout or settings.API_TIMEOUT,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def list_orders(self, params: Optional[Dict[str, str]] = None) -> List[Order]:
        """GET /orders"""
        body = self._request("GET", "/orders", params=params)
        if isinstance(body, dict):
            body = body.get("orders", body.get("data", []))
        return [Order.model_validate(item) for item in body]

    def create_order(self, order: Order, client_reference: Optional[str] = None) -> Order:
        """POST /orders. client_reference lets the server echo the provisional id on new_order."""
        payload = order.to_wire()
        payload.pop("id", None)
        if client_reference:
            payload["clientReference"] = client_reference
        return Order.model_validate(self._unwrap(self._request("POST", "/orders", json=payload)))

    def update_order(self, order_id: str, patch: Dict[str, Any]) -> Order:
        """PATCH /orders/:id"""
        return Order.model_validate(self._unwrap(self._request("PATCH", f"/orders/{order_id}", json=patch)))

    def cancel_order(self, order_id: str, reason: str) -> Order:
        """POST /orders/:id/cancel"""
        body = self._request("POST", f"/orders/{order_id}/cancel", json={"reason": reason})
        return Order.model_validate(self._unwrap(body))

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("%s %s failed with %s", method, path, e.response.status_code)
            raise NetworkError(
                f"{method} {path} returned {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise NetworkError(f"{method} {path} failed: {e}") from e
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{method} {path} returned a non-JSON body") from e

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "order" in body and isinstance(body["order"], dict):
            return body["order"]
        return body
