# storefront/client/api_client.py
from typing import Any, Dict, List, Optional

import requests

from storefront.utils.retry import http_retry
from storefront.utils.settings import STOREFRONT_API_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def error_detail(exc: Exception, default: str = "Something went wrong, please try again") -> str:
    """Komunikat z odpowiedzi API ({"detail": ...}) albo domyslny."""
    response = getattr(exc, "response", None)
    if response is None:
        return default
    try:
        detail = response.json().get("detail")
    except ValueError:
        return default
    return detail if isinstance(detail, str) and detail else default


class StorefrontClient:
    """
    Klient HTTP serwera sklepu uzywany przez CartEngine.
    Bledy 4xx/5xx -> requests.HTTPError, siec -> retry (tenacity) i RequestException.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: int = 5,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or STOREFRONT_API_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.user_id: Optional[int] = None
        self.email: Optional[str] = None

    def set_identity(self, user_id: Optional[int], email: Optional[str] = None):
        self.user_id = user_id
        self.email = email

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.user_id is not None:
            headers["X-User-Id"] = str(self.user_id)
        if self.email:
            headers["X-User-Email"] = self.email
        return headers

    @http_retry()
    def _request(self, method: str, path: str, json: Any = None, params: Dict[str, Any] | None = None):
        url = f"{self.base_url}{path}"
        logger.info(f"StorefrontClient {method} {url}")

        resp = self.session.request(
            method,
            url,
            json=json,
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    # cart mirror
    def sync_cart(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/carts/sync", json=payload)

    def get_cart(self, cart_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/carts/{cart_id}")

    def merge_guest_cart(self, guest_cart_id: str, user_id: int) -> Dict[str, Any]:
        return self._request(
            "POST", "/carts/merge", json={"guest_cart_id": guest_cart_id, "user_id": user_id}
        )

    def validate_stock(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._request("POST", "/carts/validate-stock", json={"items": items})

    def validate_discount(self, code: str) -> Dict[str, Any]:
        return self._request("POST", "/carts/discounts/validate", json={"code": code})

    def validate_gift_card(self, code: str) -> Dict[str, Any]:
        return self._request("POST", "/carts/gift-cards/validate", json={"code": code})

    # checkout
    def create_intent(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/checkout/intent", json=payload)

    def update_shipping(self, order_id: int, shipping_method: Dict[str, Any], email: str | None = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"order_id": order_id, "shipping_method": shipping_method}
        if email:
            body["email"] = email
        return self._request("PATCH", "/checkout/shipping", json=body)
