"""
Commerce Engine interface.

The catalog/pricing/order backend is an external collaborator. Handlers only
ever talk to it through CommerceEngine; SQLCommerceEngine (sql_engine.py) and
RemoteCommerceEngine (remote_engine.py) are the two implementations.

BoundedEngine wraps either one so each call is limited by the configured
timeout and surfaces failures as UpstreamFailure.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from ai_shopping.errors import CommerceError, UpstreamFailure

logger = logging.getLogger(__name__)


# ============================================================================
# Value types exchanged with the engine
# ============================================================================

@dataclass
class ProductInfo:
    id: int
    name: str
    price_cents: int
    parent_id: Optional[int] = None
    sku: Optional[str] = None
    regular_price_cents: Optional[int] = None
    stock_quantity: Optional[int] = None
    in_stock: bool = True
    purchasable: bool = True
    needs_shipping: bool = True
    weight_lbs: Optional[float] = None
    category: Optional[str] = None
    description: str = ""
    short_description: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None
    variation_ids: List[int] = field(default_factory=list)

    @property
    def on_sale(self) -> bool:
        return self.regular_price_cents is not None and self.price_cents < self.regular_price_cents

    def to_dict(self) -> dict:
        data = asdict(self)
        data["on_sale"] = self.on_sale
        return data


@dataclass
class PricedLine:
    key: str
    product_id: int
    variation_id: int
    name: str
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    discount_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    sku: Optional[str] = None
    variation: Dict[str, str] = field(default_factory=dict)
    needs_shipping: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ComputedTotals:
    """Fresh pricing for one session read; never persisted."""

    currency: str
    items: List[PricedLine] = field(default_factory=list)
    subtotal_cents: int = 0
    discount_cents: int = 0
    shipping_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    needs_shipping: bool = False
    coupons: List[str] = field(default_factory=list)            # applied
    ineligible_coupons: List[str] = field(default_factory=list)
    dropped_items: List[str] = field(default_factory=list)      # line keys
    shipping_method: Optional[str] = None

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.items],
            "item_count": self.item_count,
            "coupons": list(self.coupons),
            "ineligible_coupons": list(self.ineligible_coupons),
            "dropped_items": list(self.dropped_items),
            "needs_shipping": self.needs_shipping,
            "shipping_method": self.shipping_method,
            "totals": {
                "subtotal_cents": self.subtotal_cents,
                "discount_cents": self.discount_cents,
                "shipping_cents": self.shipping_cents,
                "tax_cents": self.tax_cents,
                "total_cents": self.total_cents,
                "currency": self.currency,
            },
        }


@dataclass
class ResolvedLine:
    """A session line paired with the product it currently resolves to."""

    key: str
    product: ProductInfo
    quantity: int
    product_id: int
    variation_id: int = 0
    variation: Dict[str, str] = field(default_factory=dict)


@dataclass
class PricingContext:
    """
    Everything one pricing pass needs, built per request and handed to the
    engine explicitly. Nothing here outlives the call.
    """

    lines: List[ResolvedLine]
    billing: Dict[str, Any] = field(default_factory=dict)
    shipping: Dict[str, Any] = field(default_factory=dict)
    shipping_method: Optional[str] = None
    coupons: List[str] = field(default_factory=list)

    @property
    def destination(self) -> Dict[str, Any]:
        """Tax/shipping jurisdiction: shipping address, else billing address."""
        return self.shipping if self.shipping.get("country") else self.billing


@dataclass
class ShippingRate:
    id: str
    label: str
    cost_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PaymentMethod:
    id: str
    title: str
    description: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrderRecord:
    id: int
    status: str
    currency: str
    total_cents: int
    subtotal_cents: int = 0
    discount_cents: int = 0
    shipping_cents: int = 0
    tax_cents: int = 0
    payment_method: str = ""
    payment_method_title: str = ""
    shipping_method: str = ""
    billing: Dict[str, Any] = field(default_factory=dict)
    shipping: Dict[str, Any] = field(default_factory=dict)
    coupons: List[str] = field(default_factory=list)
    lines: List[Dict[str, Any]] = field(default_factory=list)
    customer_note: str = ""
    created_via: str = "rest"
    created_at: Optional[str] = None
    order_key: str = ""
    customer_id: Optional[int] = None
    notes: List[Dict[str, Any]] = field(default_factory=list)
    tracking: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class OrderRequest:
    """What order creation needs; totals come from a fresh pricing pass."""

    totals: ComputedTotals
    billing: Dict[str, Any]
    shipping: Dict[str, Any]
    payment_method: str
    coupons: List[str]
    status: str
    created_via: str
    customer_note: str = ""
    # the checkout session token; one order per key
    idempotency_key: str = ""


@dataclass
class CustomerInfo:
    id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    created_at: Optional[str] = None
    orders_count: int = 0
    total_spent_cents: int = 0
    billing: Dict[str, Any] = field(default_factory=dict)
    shipping: Dict[str, Any] = field(default_factory=dict)

    def profile(self) -> dict:
        data = asdict(self)
        data.pop("billing")
        data.pop("shipping")
        return data


# ============================================================================
# Interface
# ============================================================================

class CommerceEngine(ABC):
    """Catalog, pricing and order persistence."""

    @abstractmethod
    def find_product(self, product_id: int) -> Optional[ProductInfo]:
        """Product or variation by id."""

    @abstractmethod
    def find_product_by_sku(self, sku: str) -> Optional[ProductInfo]:
        ...

    def is_purchasable(self, product: ProductInfo) -> bool:
        return product.purchasable

    def is_in_stock(self, product: ProductInfo, quantity: int = 1) -> bool:
        if not product.in_stock:
            return False
        return product.stock_quantity is None or product.stock_quantity >= quantity

    @abstractmethod
    def search_products(self, search: str = "", category: Optional[str] = None,
                        min_price_cents: Optional[int] = None, max_price_cents: Optional[int] = None,
                        page: int = 1, per_page: int = 10) -> Tuple[List[ProductInfo], int]:
        """(page of products, total matches)."""

    @abstractmethod
    def list_categories(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_variations(self, product_id: int) -> List[ProductInfo]:
        """Published variations of a variable product; [] for simple products."""

    @abstractmethod
    def list_tags(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_attributes(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_attribute_terms(self, attribute_id: int) -> Optional[List[Dict[str, Any]]]:
        """None when the attribute does not exist."""

    @abstractmethod
    def list_reviews(self, product_id: Optional[int] = None, rating: Optional[int] = None,
                     page: int = 1, per_page: int = 10) -> List[Dict[str, Any]]:
        """Approved reviews, newest first."""

    @abstractmethod
    def price_cart(self, context: PricingContext) -> ComputedTotals:
        """One complete price/discount/shipping/tax pass."""

    @abstractmethod
    def validate_coupon(self, code: str) -> bool:
        """True when the coupon exists, is enabled and has not expired."""

    @abstractmethod
    def create_order(self, order: OrderRequest) -> OrderRecord:
        """
        Persist the order. A repeated idempotency_key returns the order
        already created for it instead of a second one.
        """

    @abstractmethod
    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        ...

    @abstractmethod
    def find_order_by_key(self, idempotency_key: str) -> Optional[OrderRecord]:
        ...

    @abstractmethod
    def add_order_note(self, order_id: int, note: str) -> Optional[Dict[str, Any]]:
        """Customer-visible note; None when the order does not exist."""

    @abstractmethod
    def find_customer(self, customer_id: int) -> Optional[CustomerInfo]:
        ...

    @abstractmethod
    def list_customer_orders(self, customer_id: int, page: int = 1,
                             per_page: int = 10) -> List[Dict[str, Any]]:
        """Order summaries, newest first."""

    @abstractmethod
    def list_payment_gateways(self) -> List[PaymentMethod]:
        """Enabled gateways only."""

    @abstractmethod
    def list_shipping_methods(self, destination: Dict[str, Any],
                              lines: List[ResolvedLine]) -> List[ShippingRate]:
        ...

    @abstractmethod
    def has_shipping_zones(self) -> bool:
        ...

    @abstractmethod
    def list_shipping_zones(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_tax_rates(self) -> List[Dict[str, Any]]:
        ...

    def active_extensions(self) -> List[str]:
        return []


# ============================================================================
# Timeout bound
# ============================================================================

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="commerce-engine")


def call_bounded(fn: Callable, *args, timeout: float = 0, operation: str = "", **kwargs):
    """
    Run an engine call under a timeout. Domain errors pass through; a timeout
    or any other failure becomes a retryable UpstreamFailure.

    A timed-out call keeps running on its worker thread, so a bounded engine
    must not share the caller's database session, and create_order must be
    idempotent for the retry that follows.
    """
    name = operation or getattr(fn, "__name__", "engine call")
    try:
        if not timeout or timeout <= 0:
            return fn(*args, **kwargs)
        future = _executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            logger.error("Commerce engine timed out after %.1fs: %s", timeout, name)
            raise UpstreamFailure(
                f"The commerce engine did not respond within {timeout:g}s ({name}). "
                "This is temporary; retry the request.",
                "upstream_timeout",
            )
    except CommerceError:
        raise
    except Exception as exc:
        logger.exception("Commerce engine call failed: %s", name)
        raise UpstreamFailure(
            f"The commerce engine failed during {name}. This is usually temporary; retry the request.",
            "upstream_failure",
        ) from exc


class BoundedEngine(CommerceEngine):
    """Delegates every call to `inner` through call_bounded()."""

    def __init__(self, inner: CommerceEngine, timeout: float = 0):
        self.inner = inner
        self.timeout = timeout

    def _call(self, name: str, *args, **kwargs):
        return call_bounded(getattr(self.inner, name), *args, timeout=self.timeout, operation=name, **kwargs)

    def find_product(self, product_id):
        return self._call("find_product", product_id)

    def find_product_by_sku(self, sku):
        return self._call("find_product_by_sku", sku)

    def is_purchasable(self, product):
        return self.inner.is_purchasable(product)

    def is_in_stock(self, product, quantity=1):
        return self.inner.is_in_stock(product, quantity)

    def search_products(self, search="", category=None, min_price_cents=None, max_price_cents=None,
                        page=1, per_page=10):
        return self._call("search_products", search, category, min_price_cents, max_price_cents, page, per_page)

    def list_categories(self):
        return self._call("list_categories")

    def list_variations(self, product_id):
        return self._call("list_variations", product_id)

    def list_tags(self):
        return self._call("list_tags")

    def list_attributes(self):
        return self._call("list_attributes")

    def list_attribute_terms(self, attribute_id):
        return self._call("list_attribute_terms", attribute_id)

    def list_reviews(self, product_id=None, rating=None, page=1, per_page=10):
        return self._call("list_reviews", product_id, rating, page, per_page)

    def price_cart(self, context):
        return self._call("price_cart", context)

    def validate_coupon(self, code):
        return self._call("validate_coupon", code)

    def create_order(self, order):
        return self._call("create_order", order)

    def get_order(self, order_id):
        return self._call("get_order", order_id)

    def find_order_by_key(self, idempotency_key):
        return self._call("find_order_by_key", idempotency_key)

    def add_order_note(self, order_id, note):
        return self._call("add_order_note", order_id, note)

    def find_customer(self, customer_id):
        return self._call("find_customer", customer_id)

    def list_customer_orders(self, customer_id, page=1, per_page=10):
        return self._call("list_customer_orders", customer_id, page, per_page)

    def list_payment_gateways(self):
        return self._call("list_payment_gateways")

    def list_shipping_methods(self, destination, lines):
        return self._call("list_shipping_methods", destination, lines)

    def has_shipping_zones(self):
        return self._call("has_shipping_zones")

    def list_shipping_zones(self):
        return self._call("list_shipping_zones")

    def list_tax_rates(self):
        return self._call("list_tax_rates")

    def active_extensions(self):
        return self._call("active_extensions")
