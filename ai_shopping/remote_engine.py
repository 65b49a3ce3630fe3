"""
Commerce Engine client for an engine that runs as a separate HTTP service.

Enabled by AIS_ENGINE_URL. Every request carries the engine API key and the
configured timeout; transport errors and non-2xx answers become
UpstreamFailure. Lookups answered with 404 map to None.
"""

import logging
from dataclasses import asdict, fields
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ai_shopping.commerce_engine import (
    CommerceEngine, ComputedTotals, CustomerInfo, OrderRecord, OrderRequest, PaymentMethod,
    PricedLine, PricingContext, ProductInfo, ResolvedLine, ShippingRate,
)
from ai_shopping.errors import UpstreamFailure

logger = logging.getLogger(__name__)


def _context_payload(context: PricingContext) -> dict:
    return {
        "lines": [
            {
                "key": line.key,
                "product_id": line.product_id,
                "variation_id": line.variation_id,
                "variation": line.variation,
                "quantity": line.quantity,
            }
            for line in context.lines
        ],
        "billing": context.billing,
        "shipping": context.shipping,
        "shipping_method": context.shipping_method,
        "coupons": context.coupons,
    }


def _known(cls, data: dict) -> dict:
    """Only the keys `cls` declares; newer engines may send more."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _product_from_json(data: dict) -> ProductInfo:
    return ProductInfo(**_known(ProductInfo, data))


def _totals_from_json(data: dict) -> ComputedTotals:
    items = [PricedLine(**item) for item in data.get("items", [])]
    known = _known(ComputedTotals, data)
    known.pop("items", None)
    return ComputedTotals(items=items, **known)


def _order_from_json(data: dict) -> OrderRecord:
    return OrderRecord(**_known(OrderRecord, data))


class RemoteCommerceEngine(CommerceEngine):
    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0,
                 client: Optional[httpx.Client] = None):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = client or httpx.Client(base_url=base_url.rstrip("/"), headers=headers,
                                             timeout=timeout or None)

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, allow_404: bool = False, **kwargs) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Commerce engine timeout: %s %s", method, path)
            raise UpstreamFailure(
                f"The commerce engine timed out on {method} {path}. Retry the request.", "upstream_timeout"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Commerce engine unreachable: %s %s: %s", method, path, exc)
            raise UpstreamFailure(
                f"The commerce engine is unreachable ({exc.__class__.__name__}). Retry the request."
            ) from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error("Commerce engine %s %s -> %d", method, path, response.status_code)
            raise UpstreamFailure(
                f"The commerce engine answered {response.status_code} on {method} {path}. Retry the request."
            )
        return response.json()

    # Catalog

    def find_product(self, product_id: int) -> Optional[ProductInfo]:
        data = self._request("GET", f"/products/{int(product_id)}", allow_404=True)
        return _product_from_json(data) if data else None

    def find_product_by_sku(self, sku: str) -> Optional[ProductInfo]:
        data = self._request("GET", "/products/by-sku", params={"sku": sku}, allow_404=True)
        return _product_from_json(data) if data else None

    def search_products(self, search: str = "", category: Optional[str] = None,
                        min_price_cents: Optional[int] = None, max_price_cents: Optional[int] = None,
                        page: int = 1, per_page: int = 10) -> Tuple[List[ProductInfo], int]:
        params = {"search": search, "page": page, "per_page": per_page}
        if category:
            params["category"] = category
        if min_price_cents is not None:
            params["min_price_cents"] = min_price_cents
        if max_price_cents is not None:
            params["max_price_cents"] = max_price_cents
        data = self._request("GET", "/products", params=params)
        return [_product_from_json(p) for p in data.get("products", [])], int(data.get("total", 0))

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/categories")

    def list_variations(self, product_id: int) -> List[ProductInfo]:
        data = self._request("GET", f"/products/{int(product_id)}/variations", allow_404=True)
        return [_product_from_json(v) for v in data or []]

    def list_tags(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/tags")

    def list_attributes(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/attributes")

    def list_attribute_terms(self, attribute_id: int) -> Optional[List[Dict[str, Any]]]:
        return self._request("GET", f"/attributes/{int(attribute_id)}/terms", allow_404=True)

    def list_reviews(self, product_id: Optional[int] = None, rating: Optional[int] = None,
                     page: int = 1, per_page: int = 10) -> List[Dict[str, Any]]:
        params = {"page": page, "per_page": per_page}
        if product_id:
            params["product_id"] = product_id
        if rating:
            params["rating"] = rating
        return self._request("GET", "/reviews", params=params)

    # Pricing

    def price_cart(self, context: PricingContext) -> ComputedTotals:
        return _totals_from_json(self._request("POST", "/cart/price", json=_context_payload(context)))

    def validate_coupon(self, code: str) -> bool:
        data = self._request("GET", f"/coupons/{quote(code, safe='')}", allow_404=True)
        return bool(data and data.get("valid"))

    # Orders

    def create_order(self, order: OrderRequest) -> OrderRecord:
        headers = {"Idempotency-Key": order.idempotency_key} if order.idempotency_key else None
        return _order_from_json(self._request("POST", "/orders", json=asdict(order), headers=headers))

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        data = self._request("GET", f"/orders/{int(order_id)}", allow_404=True)
        return _order_from_json(data) if data else None

    def find_order_by_key(self, idempotency_key: str) -> Optional[OrderRecord]:
        if not idempotency_key:
            return None
        data = self._request("GET", "/orders/by-key", params={"key": idempotency_key}, allow_404=True)
        return _order_from_json(data) if data else None

    def add_order_note(self, order_id: int, note: str) -> Optional[Dict[str, Any]]:
        return self._request("POST", f"/orders/{int(order_id)}/notes", json={"note": note}, allow_404=True)

    # Customers

    def find_customer(self, customer_id: int) -> Optional[CustomerInfo]:
        data = self._request("GET", f"/customers/{int(customer_id)}", allow_404=True)
        return CustomerInfo(**_known(CustomerInfo, data)) if data else None

    def list_customer_orders(self, customer_id: int, page: int = 1,
                             per_page: int = 10) -> List[Dict[str, Any]]:
        return self._request("GET", f"/customers/{int(customer_id)}/orders",
                             params={"page": page, "per_page": per_page})

    # Payment and fulfillment

    def list_payment_gateways(self) -> List[PaymentMethod]:
        return [PaymentMethod(**g) for g in self._request("GET", "/payment-gateways")]

    def list_shipping_methods(self, destination: Dict[str, Any],
                              lines: List[ResolvedLine]) -> List[ShippingRate]:
        payload = {
            "destination": destination,
            "lines": [{"product_id": l.product_id, "variation_id": l.variation_id, "quantity": l.quantity}
                      for l in lines],
        }
        return [ShippingRate(**r) for r in self._request("POST", "/shipping-methods", json=payload)]

    def has_shipping_zones(self) -> bool:
        return bool(self.list_shipping_zones())

    def list_shipping_zones(self) -> List[Dict[str, Any]]:
        return list(self._request("GET", "/shipping-zones"))

    def list_tax_rates(self) -> List[Dict[str, Any]]:
        return list(self._request("GET", "/tax-rates"))

    def active_extensions(self) -> List[str]:
        return list(self._request("GET", "/extensions"))
