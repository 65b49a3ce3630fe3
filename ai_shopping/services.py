"""
Commerce service: the one internal API behind every protocol adapter.

REST, ACP, UCP and MCP handlers translate their wire shapes into calls on
CommerceService; none of them call each other. The service owns session
validation rules so every protocol reports the same errors for the same
mistakes.
"""

import logging
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ai_shopping.cart_session import CartSessionStore, CartState, LineItem
from ai_shopping.commerce_engine import (
    CommerceEngine, ComputedTotals, CustomerInfo, OrderRecord, OrderRequest, ProductInfo,
)
from ai_shopping.config import Settings
from ai_shopping.database import utcnow
from ai_shopping.errors import EmptyCart, NotFound, ValidationError, missing_field
from ai_shopping.logger import short_token
from ai_shopping.totals import TotalsEngine, buyer_context

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = (
    "first_name", "last_name", "company", "address_1", "address_2",
    "city", "state", "postcode", "country", "email", "phone",
)
REQUIRED_BILLING_FIELDS = ("first_name", "last_name", "email", "country")
OFFLINE_GATEWAYS = ("cod", "bacs", "cheque")
MAX_PER_PAGE = 100

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

CAPABILITY_CATALOG = "dev.ucp.shopping.catalog"
CAPABILITY_CHECKOUT = "dev.ucp.shopping.checkout"
CAPABILITY_ORDERS = "dev.ucp.shopping.orders"
CAPABILITY_FULFILLMENT = "dev.ucp.shopping.fulfillment"


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value or ""))


def clean_address(data: Optional[Dict[str, Any]], kind: str = "billing") -> Dict[str, str]:
    """Keep known address fields as stripped strings; country is required, email must be valid."""
    if not isinstance(data, dict):
        raise ValidationError(
            f"'{kind}_address' must be an object with fields: {', '.join(ADDRESS_FIELDS)}.",
            "invalid_address",
        )
    address = {}
    for field in ADDRESS_FIELDS:
        value = data.get(field)
        if value is not None and str(value).strip():
            address[field] = str(value).strip()
    if "country" in address:
        address["country"] = address["country"].upper()
    if "state" in address:
        address["state"] = address["state"].upper()
    if not address.get("country"):
        raise ValidationError(
            f"Missing required field 'country' in {kind} address: expected a 2-letter ISO code, e.g. \"US\".",
            "missing_country",
        )
    if "email" in address and not is_email(address["email"]):
        raise ValidationError(f"Invalid email '{address['email']}' in {kind} address.", "invalid_email")
    return address


def order_status_for(payment_method: str, created_via: str) -> str:
    """Agent-protocol orders are paid on completion; REST orders wait unless paid offline."""
    if created_via != "rest":
        return "processing"
    if not payment_method or payment_method in OFFLINE_GATEWAYS:
        return "processing"
    return "pending"


def _price(value: Any, field: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be a number in store currency units, got {value!r}.",
                              "invalid_" + field)


def _as_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be an integer, got {value!r}.", "invalid_" + field)
    return number


class CommerceService:
    def __init__(self, db: Session, settings: Settings, engine: CommerceEngine,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.settings = settings
        self.engine = engine
        self.store = CartSessionStore(db, settings.cart_ttl_seconds, clock)
        self.totals = TotalsEngine(engine)

    # ========================================================================
    # Sessions
    # ========================================================================

    def create_cart(self, owner_id: int = 0) -> CartState:
        token = self.store.create(owner_id)
        return self.store.load(token)

    def load(self, token: str, **kwargs) -> CartState:
        return self.store.load(token, **kwargs)

    def price(self, state: CartState) -> ComputedTotals:
        return self.totals.price_session(state.line_items, state.buyer, state.coupons)

    def cart_view(self, state: CartState, totals: Optional[ComputedTotals] = None) -> dict:
        totals = totals or self.price(state)
        view = {"cart_token": state.token}
        view.update(totals.to_dict())
        view["billing_address"] = state.buyer.get("billing_address") or {}
        view["shipping_address"] = state.buyer.get("shipping_address") or {}
        view["payment_method"] = state.buyer.get("payment_method")
        view["expires_at"] = state.expires_at.isoformat() + "Z" if state.expires_at else None
        return view

    def delete_cart(self, token: str) -> None:
        self.store.delete(token)

    # ========================================================================
    # Items
    # ========================================================================

    def _product_for_line(self, product_id: int, variation_id: int = 0) -> Tuple[ProductInfo, ProductInfo]:
        """(parent, purchasable unit) or a NotFound/ValidationError naming the fix."""
        product = self.engine.find_product(product_id)
        if product is None:
            raise NotFound(
                f"Product {product_id} not found. Search products with GET /products.", "product_not_found"
            )
        if not variation_id:
            if product.variation_ids:
                raise ValidationError(
                    f"Product {product_id} has variations; pass 'variation_id' "
                    f"(one of {product.variation_ids}).",
                    "missing_variation",
                )
            return product, product
        variation = self.engine.find_product(variation_id)
        if variation is None or variation.parent_id != product.id:
            raise NotFound(
                f"Variation {variation_id} not found for product {product_id}. "
                f"Valid variation ids: {product.variation_ids}.",
                "variation_not_found",
            )
        return product, variation

    def _check_buyable(self, unit: ProductInfo, quantity: int) -> None:
        if not self.engine.is_purchasable(unit):
            raise ValidationError(f"Product {unit.id} ({unit.name}) cannot be purchased.", "not_purchasable")
        if not self.engine.is_in_stock(unit, quantity):
            available = unit.stock_quantity if unit.stock_quantity is not None else 0
            raise ValidationError(
                f"Product {unit.id} ({unit.name}) is out of stock for quantity {quantity} "
                f"(available: {available}).",
                "out_of_stock",
            )

    def add_item(self, token: str, product_id: Any, quantity: Any = 1, variation_id: Any = 0,
                 variation: Optional[dict] = None) -> Tuple[CartState, LineItem]:
        if product_id in (None, "", 0):
            raise missing_field("product_id", "a positive integer product id")
        product_id = _as_int(product_id, "product_id")
        quantity = _as_int(1 if quantity is None else quantity, "quantity")
        variation_id = _as_int(variation_id or 0, "variation_id")
        if quantity < 1:
            raise ValidationError("'quantity' must be at least 1.", "invalid_quantity")

        state = self.store.load(token)
        _, unit = self._product_for_line(product_id, variation_id)
        options = dict(variation or (unit.attributes if variation_id else {}))
        item = LineItem.build(product_id, quantity, variation_id, options)

        existing = state.items.get(item.key)
        self._check_buyable(unit, quantity + (existing.quantity if existing else 0))

        line = state.add_item(item)
        self.store.save(state.token, state.line_items, state.coupons)
        return state, line

    def update_item(self, token: str, key: str, quantity: Any) -> CartState:
        quantity = _as_int(quantity, "quantity")
        if quantity < 1:
            raise ValidationError(
                f"Quantity must be at least 1. To remove the item use DELETE /cart/items/{key}.",
                "invalid_quantity",
            )
        state = self.store.load(token)
        item = state.items.get(key)
        if item is None:
            raise NotFound(f"Cart item '{key}' not found. Get current item keys with GET /cart.", "item_not_found")
        unit = self.engine.find_product(item.variation_id or item.product_id)
        if unit is None:
            raise NotFound(f"Product {item.product_id} no longer exists; remove item '{key}'.",
                           "product_not_found")
        self._check_buyable(unit, quantity)
        item.quantity = quantity
        self.store.save(state.token, state.line_items, state.coupons)
        return state

    def remove_item(self, token: str, key: str) -> CartState:
        state = self.store.load(token)
        if key not in state.items:
            raise NotFound(f"Cart item '{key}' not found. Get current item keys with GET /cart.", "item_not_found")
        del state.items[key]
        self.store.save(state.token, state.line_items, state.coupons)
        return state

    def resolve_item_refs(self, refs: Any) -> List[LineItem]:
        """
        Line items from [{product_id|sku, variation_id?, quantity?}, ...].
        Unresolvable or unpurchasable references are skipped.
        """
        if not isinstance(refs, list) or not refs:
            raise ValidationError(
                "Missing required field 'items': Provide an array of {product_id, quantity} or {sku, quantity}.",
                "missing_items",
            )
        items: List[LineItem] = []
        for ref in refs:
            if not isinstance(ref, dict):
                continue
            try:
                quantity = max(1, int(ref.get("quantity") or 1))
            except (TypeError, ValueError):
                quantity = 1
            unit = None
            if ref.get("sku"):
                unit = self.engine.find_product_by_sku(str(ref["sku"]))
            elif ref.get("product_id"):
                try:
                    unit = self.engine.find_product(int(ref.get("variation_id") or ref["product_id"]))
                except (TypeError, ValueError):
                    unit = None
            if unit is None or not self.engine.is_purchasable(unit):
                continue
            if unit.parent_id:
                items.append(LineItem.build(unit.parent_id, quantity, unit.id, unit.attributes))
            else:
                items.append(LineItem.build(unit.id, quantity))
        return items

    # ========================================================================
    # Coupons
    # ========================================================================

    def apply_coupon(self, token: str, code: Any) -> CartState:
        if not code or not str(code).strip():
            raise missing_field("code", "a coupon code string")
        code = str(code).strip().upper()
        state = self.store.load(token)
        if not self.engine.validate_coupon(code):
            raise NotFound(f"Coupon '{code}' does not exist or has expired.", "invalid_coupon")
        if not state.add_coupon(code):
            raise ValidationError(f"Coupon '{code}' is already applied to this cart.", "coupon_already_applied")
        self.store.save(state.token, state.line_items, state.coupons)
        return state

    def remove_coupon(self, token: str, code: str) -> CartState:
        code = (code or "").strip().upper()
        state = self.store.load(token)
        if code not in state.coupons:
            raise NotFound(f"Coupon '{code}' is not applied to this cart.", "coupon_not_applied")
        state.coupons.remove(code)
        self.store.save(state.token, state.line_items, state.coupons)
        return state

    # ========================================================================
    # Buyer context
    # ========================================================================

    def set_address(self, token: str, kind: str, data: Any) -> CartState:
        address = clean_address(data, kind)
        state = self.store.load(token)
        state.buyer[f"{kind}_address"] = address
        self.store.save_buyer_context(state.token, state.buyer)
        return state

    def set_shipping_method(self, token: str, method_id: Any) -> CartState:
        if not method_id:
            raise missing_field("shipping_method", "a shipping method id from the shipping methods list")
        state = self.store.load(token)
        self._check_shipping_method(state, str(method_id))
        state.buyer["shipping_method"] = str(method_id)
        self.store.save_buyer_context(state.token, state.buyer)
        return state

    def set_payment_method(self, token: str, method_id: Any) -> CartState:
        if not method_id:
            raise missing_field("payment_method", "an enabled payment gateway id")
        self._check_payment_method(str(method_id))
        state = self.store.load(token)
        state.buyer["payment_method"] = str(method_id)
        self.store.save_buyer_context(state.token, state.buyer)
        return state

    def update_buyer(self, state: CartState, billing: Any = None, shipping: Any = None,
                     shipping_method: Any = None, payment_method: Any = None) -> None:
        """Apply whichever buyer fields were supplied, then persist once."""
        if billing is not None:
            state.buyer["billing_address"] = clean_address(billing, "billing")
        if shipping is not None:
            state.buyer["shipping_address"] = clean_address(shipping, "shipping")
        if shipping_method:
            self._check_shipping_method(state, str(shipping_method))
            state.buyer["shipping_method"] = str(shipping_method)
        if payment_method:
            self._check_payment_method(str(payment_method))
            state.buyer["payment_method"] = str(payment_method)
        self.store.save_state(state)

    def _check_shipping_method(self, state: CartState, method_id: str) -> None:
        options = [rate.id for rate in self.shipping_methods(state)]
        if options and method_id not in options:
            raise ValidationError(
                f"Unknown shipping method '{method_id}'. Available: {', '.join(options)}.",
                "invalid_shipping_method",
            )

    def _check_payment_method(self, method_id: str) -> None:
        options = [gateway.id for gateway in self.engine.list_payment_gateways()]
        if method_id not in options:
            raise ValidationError(
                f"Unknown payment method '{method_id}'. Available: {', '.join(options) or 'none'}.",
                "invalid_payment_method",
            )

    def shipping_methods(self, state: CartState) -> list:
        billing, shipping = buyer_context(state.buyer)
        destination = shipping if shipping.get("country") else billing
        lines, _ = self.totals.resolve_lines(state.line_items)
        return self.engine.list_shipping_methods(destination, lines)

    def payment_methods(self) -> list:
        return self.engine.list_payment_gateways()

    # ========================================================================
    # Checkout
    # ========================================================================

    def checkout_errors(self, state: CartState, totals: ComputedTotals) -> List[str]:
        """Everything still missing before an order can be placed."""
        errors = []
        if not totals.items:
            errors.append("Cart is empty. Add items with POST /cart/items.")
        billing = state.buyer.get("billing_address") or {}
        if not billing:
            errors.append("Billing address is required. Set it with PUT /checkout/billing-address.")
        else:
            for field in REQUIRED_BILLING_FIELDS:
                if not billing.get(field):
                    errors.append(f"Billing {field} is required.")
            if billing.get("email") and not is_email(billing["email"]):
                errors.append("Billing email is invalid.")
        if totals.needs_shipping and not state.buyer.get("shipping_address"):
            errors.append("Shipping address is required. Set it with PUT /checkout/shipping-address.")
        if not state.buyer.get("payment_method"):
            errors.append("Payment method is required. Choose one from GET /checkout/payment-methods.")
        return errors

    def place_order(self, state: CartState, created_via: str, payment_method: Optional[str] = None,
                    customer_note: str = "") -> OrderRecord:
        """
        Price the session one final time, create the order and delete the
        session. Requires items and a billing address.

        The session token is the order's idempotency key: when an earlier
        attempt already created the order (e.g. it finished after a timeout),
        that order is returned and no second one is placed.
        """
        existing = self.engine.find_order_by_key(state.token)
        if existing is not None:
            self.store.delete(state.token)
            logger.info("Cart %s was already placed as order %s", short_token(state.token), existing.id)
            return existing

        if state.is_empty:
            raise EmptyCart()
        billing = state.buyer.get("billing_address") or {}
        if not billing:
            raise ValidationError(
                "Billing address is required before completing the order. "
                "Provide billing_address with first_name, last_name, email and country.",
                "missing_billing",
            )
        payment_method = payment_method or state.buyer.get("payment_method") or ""
        if payment_method:
            self._check_payment_method(payment_method)

        totals = self.price(state)
        if not totals.items:
            raise EmptyCart("None of the items in this cart can currently be purchased. "
                            "Replace them with available products.")

        order = self.engine.create_order(OrderRequest(
            totals=totals,
            billing=billing,
            shipping=state.buyer.get("shipping_address") or {},
            payment_method=payment_method,
            coupons=list(totals.coupons),
            status=order_status_for(payment_method, created_via),
            created_via=created_via,
            customer_note=customer_note or "",
            idempotency_key=state.token,
        ))
        self.store.delete(state.token)
        logger.info("Order %s placed via %s from cart %s", order.id, created_via, short_token(state.token))
        return order

    def get_order(self, order_id: Any) -> OrderRecord:
        order_id = _as_int(order_id, "order_id")
        order = self.engine.get_order(order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found.", "order_not_found")
        return order

    def order_tracking(self, order_id: Any) -> dict:
        order = self.get_order(order_id)
        return {"order_id": order.id, "status": order.status, "tracking": list(order.tracking)}

    def add_order_note(self, order_id: Any, note: Any) -> dict:
        order_id = _as_int(order_id, "order_id")
        text = str(note).strip() if note is not None else ""
        if not text:
            raise ValidationError('Missing required field "note". Provide the note text as a string.',
                                  "missing_note")
        created = self.engine.add_order_note(order_id, text)
        if created is None:
            raise NotFound(f"Order {order_id} not found.", "order_not_found")
        logger.info("Note %s added to order %s", created.get("id"), order_id)
        return {"note_id": created.get("id"), "note": created, "message": "Note added to order."}

    # ========================================================================
    # Customer accounts
    # ========================================================================

    def _customer_id(self, customer_id: Any) -> int:
        if customer_id in (None, "", 0):
            raise ValidationError("Provide a customer_id parameter to retrieve account info.",
                                  "missing_customer_id")
        return _as_int(customer_id, "customer_id")

    def _customer(self, customer_id: Any) -> CustomerInfo:
        customer_id = self._customer_id(customer_id)
        customer = self.engine.find_customer(customer_id)
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found.", "customer_not_found")
        return customer

    def account(self, customer_id: Any) -> dict:
        return self._customer(customer_id).profile()

    def account_orders(self, customer_id: Any, page: int = 1, per_page: int = 10) -> dict:
        customer = self._customer(customer_id)
        page = max(1, _as_int(page or 1, "page"))
        per_page = min(MAX_PER_PAGE, max(1, _as_int(per_page or 10, "per_page")))
        orders = self.engine.list_customer_orders(customer.id, page, per_page)
        return {"orders": orders, "page": page, "per_page": per_page}

    def account_addresses(self, customer_id: Any) -> dict:
        customer = self._customer(customer_id)
        billing = {field: customer.billing.get(field, "") for field in ADDRESS_FIELDS}
        shipping = {field: customer.shipping.get(field, "") for field in ADDRESS_FIELDS
                    if field not in ("email", "phone")}
        return {"billing": billing, "shipping": shipping}

    # ========================================================================
    # Catalog and store
    # ========================================================================

    def search_products(self, search: str = "", category: Optional[str] = None,
                        min_price: Optional[float] = None, max_price: Optional[float] = None,
                        page: int = 1, per_page: int = 10) -> dict:
        page = max(1, _as_int(page or 1, "page"))
        per_page = min(MAX_PER_PAGE, max(1, _as_int(per_page or 10, "per_page")))
        min_price = _price(min_price, "min_price")
        max_price = _price(max_price, "max_price")
        products, total = self.engine.search_products(
            search=search or "",
            category=category or None,
            min_price_cents=round(min_price * 100) if min_price is not None else None,
            max_price_cents=round(max_price * 100) if max_price is not None else None,
            page=page,
            per_page=per_page,
        )
        return {
            "products": [p.to_dict() for p in products],
            "total": total,
            "page": page,
            "per_page": per_page,
            "total_pages": (total + per_page - 1) // per_page,
        }

    def get_product(self, product_id: Any) -> ProductInfo:
        try:
            product_id = int(product_id)
        except (TypeError, ValueError):
            raise ValidationError(f"'product_id' must be an integer, got {product_id!r}.", "invalid_product_id")
        product = self.engine.find_product(product_id)
        if product is None:
            raise NotFound(f"Product {product_id} not found. Search products with GET /products.",
                           "product_not_found")
        return product

    def list_categories(self) -> list:
        return self.engine.list_categories()

    def get_variations(self, product_id: Any) -> List[dict]:
        product = self.get_product(product_id)
        if not product.variation_ids:
            raise NotFound(f"Product {product.id} is not a variable product; it has no variations.",
                           "invalid_product")
        return [variation.to_dict() for variation in self.engine.list_variations(product.id)]

    def list_tags(self) -> list:
        return self.engine.list_tags()

    def list_attributes(self) -> list:
        return self.engine.list_attributes()

    def attribute_terms(self, attribute_id: Any) -> list:
        attribute_id = _as_int(attribute_id, "attribute_id")
        terms = self.engine.list_attribute_terms(attribute_id)
        if terms is None:
            raise NotFound(f"Attribute {attribute_id} not found. List attributes with GET /products/attributes.",
                           "attribute_not_found")
        return terms

    def list_reviews(self, product_id: Any = None, rating: Any = None,
                     page: int = 1, per_page: int = 10) -> dict:
        product_id = _as_int(product_id, "product_id") if product_id not in (None, "") else None
        rating = _as_int(rating, "rating") if rating not in (None, "") else None
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError(f"'rating' must be between 1 and 5, got {rating}.", "invalid_rating")
        page = max(1, _as_int(page or 1, "page"))
        per_page = min(MAX_PER_PAGE, max(1, _as_int(per_page or 10, "per_page")))
        reviews = self.engine.list_reviews(product_id, rating, page, per_page)
        return {"reviews": reviews, "page": page, "per_page": per_page}

    def shipping_zones(self) -> list:
        return self.engine.list_shipping_zones()

    def tax_rates(self) -> list:
        return self.engine.list_tax_rates()

    def merchant_capabilities(self) -> List[str]:
        capabilities = [CAPABILITY_CATALOG, CAPABILITY_CHECKOUT, CAPABILITY_ORDERS]
        if self.engine.has_shipping_zones():
            capabilities.append(CAPABILITY_FULFILLMENT)
        return capabilities

    def store_info(self) -> dict:
        s = self.settings
        return {
            "name": s.store_name,
            "description": s.store_description,
            "url": s.store_url,
            "currency": s.currency,
            "locales": list(s.supported_locales),
            "version": s.version,
            "protocols": {"rest": True, **s.enabled_protocols()},
            "rate_limits": {"read": s.rate_limit_read, "write": s.rate_limit_write},
            "capabilities": self.merchant_capabilities(),
            "payment_methods": [g.to_dict() for g in self.payment_methods()],
        }
