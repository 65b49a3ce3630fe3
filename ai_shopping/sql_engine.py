"""
Reference Commerce Engine backed by the SQLAlchemy catalog tables.

Used when no remote engine URL is configured. Pricing follows the usual
storefront order of operations: goods subtotal, coupon discounts allocated
across lines, shipping for the chosen method, then sales tax on the
discounted goods for the destination state.

Built on a session factory the engine opens a session per call, which is
what bounded calls on worker threads need. Built on a Session it reuses the
caller's session.
"""

import logging
import secrets
from collections import Counter
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ai_shopping.commerce_engine import (
    CommerceEngine, ComputedTotals, CustomerInfo, OrderRecord, OrderRequest, PaymentMethod,
    PricedLine, PricingContext, ProductInfo, ResolvedLine, ShippingRate,
)
from ai_shopping.coupons import evaluate_coupon, is_live, normalize_code
from ai_shopping.database import utcnow
from ai_shopping.models import (
    Coupon, Customer, Order, OrderLine, OrderNote, PaymentGateway, Product, ProductAttribute,
    ProductReview, ShippingZone,
)
from ai_shopping.shipping_tax import (
    DEFAULT_SHIPPING_METHOD, SHIPPING_METHODS, STATE_TAX, allocate, shipping_cost, tax_rate_pct,
)

logger = logging.getLogger(__name__)

# statuses that count towards a customer's total spent
PAID_STATUSES = ("processing", "completed")


def _slug(value: str) -> str:
    return str(value).strip().lower().replace(" ", "-")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _product_info(row: Product, variation_ids: List[int]) -> ProductInfo:
    in_stock = row.stock_quantity is None or row.stock_quantity > 0
    return ProductInfo(
        id=row.id,
        parent_id=row.parent_id,
        name=row.name,
        sku=row.sku,
        price_cents=row.price_cents or 0,
        regular_price_cents=row.regular_price_cents,
        stock_quantity=row.stock_quantity,
        in_stock=in_stock,
        # a variable product is bought through one of its variations
        purchasable=(row.price_cents or 0) > 0 and not variation_ids,
        needs_shipping=not row.is_virtual,
        weight_lbs=row.weight_lbs,
        category=row.category,
        description=row.description or "",
        short_description=row.short_description or "",
        attributes=dict(row.attributes or {}),
        image_url=row.image_url,
        variation_ids=variation_ids,
    )


def _order_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=order.id,
        order_key=order.order_key,
        status=order.status,
        currency=order.currency,
        subtotal_cents=order.subtotal_cents,
        discount_cents=order.discount_cents,
        shipping_cents=order.shipping_cents,
        tax_cents=order.tax_cents,
        total_cents=order.total_cents,
        payment_method=order.payment_method or "",
        payment_method_title=order.payment_method_title or "",
        shipping_method=order.shipping_method or "",
        billing=dict(order.billing or {}),
        shipping=dict(order.shipping or {}),
        coupons=list(order.coupons or []),
        lines=[
            {
                "product_id": line.product_id,
                "variation_id": line.variation_id,
                "name": line.name,
                "sku": line.sku,
                "quantity": line.quantity,
                "subtotal_cents": line.subtotal_cents,
                "total_cents": line.total_cents,
                "tax_cents": line.tax_cents,
            }
            for line in order.lines
        ],
        customer_note=order.customer_note or "",
        created_via=order.created_via or "rest",
        created_at=_iso(order.created_at),
        customer_id=order.customer_id,
        notes=[_note_dict(note) for note in order.notes if note.customer_note],
        tracking=list(order.tracking or []),
    )


def _note_dict(note: OrderNote) -> Dict[str, Any]:
    return {"id": note.id, "content": note.content, "date": _iso(note.created_at)}


class SQLCommerceEngine(CommerceEngine):
    def __init__(self, db: Optional[Session] = None, currency: str = "USD",
                 clock: Callable[[], datetime] = utcnow, session_factory: Optional[sessionmaker] = None):
        if db is None and session_factory is None:
            raise ValueError("SQLCommerceEngine needs a Session or a session factory")
        self.db = db
        self.session_factory = session_factory
        self.currency = currency
        self.clock = clock

    @contextmanager
    def session(self):
        if self.session_factory is None:
            yield self.db
            return
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @staticmethod
    def _variation_ids(db: Session, product_id: int) -> List[int]:
        rows = (
            db.query(Product.id)
            .filter(Product.parent_id == product_id, Product.status == "publish")
            .order_by(Product.id)
            .all()
        )
        return [r[0] for r in rows]

    def find_product(self, product_id: int) -> Optional[ProductInfo]:
        with self.session() as db:
            row = db.get(Product, int(product_id))
            if row is None or row.status != "publish":
                return None
            return _product_info(row, self._variation_ids(db, row.id))

    def find_product_by_sku(self, sku: str) -> Optional[ProductInfo]:
        if not sku:
            return None
        with self.session() as db:
            row = db.query(Product).filter(Product.sku == sku, Product.status == "publish").first()
            if row is None:
                return None
            return _product_info(row, self._variation_ids(db, row.id))

    def search_products(self, search: str = "", category: Optional[str] = None,
                        min_price_cents: Optional[int] = None, max_price_cents: Optional[int] = None,
                        page: int = 1, per_page: int = 10) -> Tuple[List[ProductInfo], int]:
        with self.session() as db:
            query = db.query(Product).filter(Product.parent_id.is_(None), Product.status == "publish")
            if search:
                pattern = f"%{search}%"
                query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern),
                                         Product.sku.ilike(pattern)))
            if category:
                query = query.filter(Product.category == category)
            if min_price_cents is not None:
                query = query.filter(Product.price_cents >= min_price_cents)
            if max_price_cents is not None:
                query = query.filter(Product.price_cents <= max_price_cents)

            total = query.count()
            rows = query.order_by(Product.id).offset((page - 1) * per_page).limit(per_page).all()
            return [_product_info(row, self._variation_ids(db, row.id)) for row in rows], total

    def list_categories(self) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(Product.category, func.count(Product.id))
                .filter(Product.parent_id.is_(None), Product.status == "publish", Product.category.isnot(None))
                .group_by(Product.category)
                .order_by(Product.category)
                .all()
            )
        return [{"name": name, "slug": _slug(name), "count": count} for name, count in rows]

    def list_variations(self, product_id: int) -> List[ProductInfo]:
        with self.session() as db:
            rows = (
                db.query(Product)
                .filter(Product.parent_id == int(product_id), Product.status == "publish")
                .order_by(Product.id)
                .all()
            )
            return [_product_info(row, []) for row in rows]

    def list_tags(self) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(Product.tags)
                .filter(Product.parent_id.is_(None), Product.status == "publish")
                .all()
            )
        counts = Counter(tag for (tags,) in rows for tag in (tags or []))
        return [{"name": name, "slug": _slug(name), "count": counts[name]} for name in sorted(counts)]

    def list_attributes(self) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = db.query(ProductAttribute).order_by(ProductAttribute.id).all()
            return [
                {"id": row.id, "name": row.name, "slug": row.slug, "type": row.type, "order_by": row.order_by}
                for row in rows
            ]

    def list_attribute_terms(self, attribute_id: int) -> Optional[List[Dict[str, Any]]]:
        with self.session() as db:
            attribute = db.get(ProductAttribute, int(attribute_id))
            if attribute is None:
                return None
            rows = (
                db.query(Product.attributes)
                .filter(Product.parent_id.isnot(None), Product.status == "publish")
                .all()
            )
            slug = attribute.slug
        counts = Counter(str(attrs[slug]) for (attrs,) in rows if attrs and attrs.get(slug))
        return [{"name": name, "slug": _slug(name), "count": counts[name]} for name in sorted(counts)]

    def list_reviews(self, product_id: Optional[int] = None, rating: Optional[int] = None,
                     page: int = 1, per_page: int = 10) -> List[Dict[str, Any]]:
        with self.session() as db:
            query = db.query(ProductReview).filter(ProductReview.approved.is_(True))
            if product_id:
                query = query.filter(ProductReview.product_id == int(product_id))
            if rating:
                query = query.filter(ProductReview.rating == int(rating))
            rows = (
                query.order_by(ProductReview.created_at.desc(), ProductReview.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            return [
                {
                    "id": row.id,
                    "product_id": row.product_id,
                    "reviewer": row.reviewer,
                    "rating": row.rating,
                    "review": row.review or "",
                    "verified": bool(row.verified),
                    "date": _iso(row.created_at),
                }
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    def validate_coupon(self, code: str) -> bool:
        with self.session() as db:
            return is_live(db.get(Coupon, normalize_code(code)), self.clock())

    def price_cart(self, context: PricingContext) -> ComputedTotals:
        now = self.clock()
        lines = context.lines
        subtotals = [line.product.price_cents * line.quantity for line in lines]
        subtotal = sum(subtotals)

        discount = 0
        free_shipping = False
        applied: List[str] = []
        ineligible: List[str] = []
        with self.session() as db:
            for code in context.coupons:
                coupon = db.get(Coupon, normalize_code(code))
                if not is_live(coupon, now):
                    ineligible.append(code)
                    continue
                result = evaluate_coupon(coupon, subtotal, discount)
                if not result.valid:
                    ineligible.append(code)
                    continue
                discount += result.discount_cents
                free_shipping = free_shipping or result.free_shipping
                applied.append(code)

        line_discounts = allocate(discount, subtotals)
        needs_shipping = any(line.product.needs_shipping for line in lines)

        method = None
        shipping = 0
        if needs_shipping:
            method = context.shipping_method if context.shipping_method in SHIPPING_METHODS else DEFAULT_SHIPPING_METHOD
            parcels = [(line.product.weight_lbs, line.quantity) for line in lines if line.product.needs_shipping]
            shipping = 0 if free_shipping else shipping_cost(method, parcels)

        destination = context.destination
        rate = tax_rate_pct(destination.get("country"), destination.get("state"))

        priced: List[PricedLine] = []
        for line, line_subtotal, line_discount in zip(lines, subtotals, line_discounts):
            taxable = line_subtotal - line_discount
            line_tax = round(taxable * rate / 100)
            priced.append(PricedLine(
                key=line.key,
                product_id=line.product_id,
                variation_id=line.variation_id,
                name=line.product.name,
                sku=line.product.sku,
                variation=dict(line.variation),
                quantity=line.quantity,
                unit_price_cents=line.product.price_cents,
                subtotal_cents=line_subtotal,
                discount_cents=line_discount,
                tax_cents=line_tax,
                total_cents=taxable + line_tax,
                needs_shipping=line.product.needs_shipping,
            ))

        tax = sum(line.tax_cents for line in priced)
        return ComputedTotals(
            currency=self.currency,
            items=priced,
            subtotal_cents=subtotal,
            discount_cents=discount,
            shipping_cents=shipping,
            tax_cents=tax,
            total_cents=subtotal - discount + shipping + tax,
            needs_shipping=needs_shipping,
            coupons=applied,
            ineligible_coupons=ineligible,
            shipping_method=method,
        )

    # ------------------------------------------------------------------
    # Fulfillment, tax and payment
    # ------------------------------------------------------------------

    def has_shipping_zones(self) -> bool:
        with self.session() as db:
            return db.query(ShippingZone.id).first() is not None

    def list_shipping_zones(self) -> List[Dict[str, Any]]:
        methods = [
            {"id": method_id, "title": label, "enabled": True}
            for method_id, (label, _) in SHIPPING_METHODS.items()
        ]
        with self.session() as db:
            rows = db.query(ShippingZone).order_by(ShippingZone.id).all()
            return [
                {
                    "id": zone.id,
                    "name": zone.name,
                    "locations": [
                        {"code": f"{zone.country}:{zone.state}", "type": "state"} if zone.state
                        else {"code": zone.country, "type": "country"}
                    ],
                    "methods": [dict(m) for m in methods],
                }
                for zone in rows
            ]

    def list_tax_rates(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": rate_id,
                "country": "US",
                "state": state,
                "rate": rate,
                "name": f"{state} Sales Tax",
                "priority": 1,
                "compound": False,
                "shipping": False,
            }
            for rate_id, (state, rate) in enumerate(sorted(STATE_TAX.items()), start=1)
        ]

    @staticmethod
    def _ships_to(db: Session, country: str, state: Optional[str]) -> bool:
        zones = db.query(ShippingZone).filter(ShippingZone.country == country.upper()).all()
        return any(z.state is None or z.state.upper() == (state or "").upper() for z in zones)

    def list_shipping_methods(self, destination: Dict[str, Any],
                              lines: List[ResolvedLine]) -> List[ShippingRate]:
        with self.session() as db:
            if db.query(ShippingZone.id).first() is None:
                return []
            country = destination.get("country")
            if country and not self._ships_to(db, country, destination.get("state")):
                return []
        parcels = [(line.product.weight_lbs, line.quantity) for line in lines if line.product.needs_shipping]
        return [
            ShippingRate(id=method_id, label=label, cost_cents=shipping_cost(method_id, parcels))
            for method_id, (label, _) in SHIPPING_METHODS.items()
        ]

    def list_payment_gateways(self) -> List[PaymentMethod]:
        with self.session() as db:
            rows = (
                db.query(PaymentGateway)
                .filter(PaymentGateway.enabled.is_(True))
                .order_by(PaymentGateway.sort_order, PaymentGateway.id)
                .all()
            )
            return [PaymentMethod(id=row.id, title=row.title, description=row.description or "") for row in rows]

    def active_extensions(self) -> List[str]:
        with self.session() as db:
            if db.query(Coupon.code).filter(Coupon.enabled.is_(True)).first() is not None:
                return ["dev.ucp.shopping.discounts"]
        return []

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @staticmethod
    def _order_by_key(db: Session, idempotency_key: str) -> Optional[Order]:
        if not idempotency_key:
            return None
        return db.query(Order).filter(Order.idempotency_key == idempotency_key).first()

    def create_order(self, order: OrderRequest) -> OrderRecord:
        totals = order.totals
        with self.session() as db:
            existing = self._order_by_key(db, order.idempotency_key)
            if existing is not None:
                logger.info("Order %s already exists for this checkout; not creating another", existing.id)
                return _order_record(existing)

            gateway = db.get(PaymentGateway, order.payment_method) if order.payment_method else None
            email = (order.billing.get("email") or "").strip().lower()
            customer = db.query(Customer).filter(Customer.email == email).first() if email else None
            now = self.clock()
            row = Order(
                order_key="order_" + secrets.token_hex(8),
                idempotency_key=order.idempotency_key or None,
                customer_id=customer.id if customer else None,
                status=order.status,
                currency=totals.currency,
                subtotal_cents=totals.subtotal_cents,
                discount_cents=totals.discount_cents,
                shipping_cents=totals.shipping_cents,
                tax_cents=totals.tax_cents,
                total_cents=totals.total_cents,
                payment_method=order.payment_method or "",
                payment_method_title=gateway.title if gateway else "",
                shipping_method=totals.shipping_method or "",
                billing=dict(order.billing),
                shipping=dict(order.shipping or order.billing),
                coupons=list(totals.coupons),
                customer_note=order.customer_note or "",
                created_via=order.created_via,
                created_at=now,
                paid_at=now if order.status == "processing" else None,
            )
            for line in totals.items:
                row.lines.append(OrderLine(
                    product_id=line.product_id,
                    variation_id=line.variation_id,
                    name=line.name,
                    sku=line.sku,
                    quantity=line.quantity,
                    subtotal_cents=line.subtotal_cents,
                    total_cents=line.total_cents,
                    tax_cents=line.tax_cents,
                ))
                stocked = db.get(Product, line.variation_id or line.product_id)
                if stocked is not None and stocked.stock_quantity is not None:
                    stocked.stock_quantity = max(0, stocked.stock_quantity - line.quantity)

            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                # a concurrent completion of the same checkout committed first
                db.rollback()
                existing = self._order_by_key(db, order.idempotency_key)
                if existing is None:
                    raise
                return _order_record(existing)
            db.refresh(row)
            logger.info("Order %s created via %s: status=%s total=%s", row.id, row.created_via, row.status,
                        row.total_cents)
            return _order_record(row)

    def get_order(self, order_id: int) -> Optional[OrderRecord]:
        with self.session() as db:
            row = db.get(Order, int(order_id))
            return _order_record(row) if row is not None else None

    def find_order_by_key(self, idempotency_key: str) -> Optional[OrderRecord]:
        with self.session() as db:
            row = self._order_by_key(db, idempotency_key)
            return _order_record(row) if row is not None else None

    def add_order_note(self, order_id: int, note: str) -> Optional[Dict[str, Any]]:
        with self.session() as db:
            if db.get(Order, int(order_id)) is None:
                return None
            row = OrderNote(order_id=int(order_id), content=note, customer_note=True, created_at=self.clock())
            db.add(row)
            db.commit()
            db.refresh(row)
            return _note_dict(row)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def find_customer(self, customer_id: int) -> Optional[CustomerInfo]:
        with self.session() as db:
            row = db.get(Customer, int(customer_id))
            if row is None:
                return None
            orders_count = db.query(func.count(Order.id)).filter(Order.customer_id == row.id).scalar()
            spent = (
                db.query(func.coalesce(func.sum(Order.total_cents), 0))
                .filter(Order.customer_id == row.id, Order.status.in_(PAID_STATUSES))
                .scalar()
            )
            return CustomerInfo(
                id=row.id,
                email=row.email,
                first_name=row.first_name or "",
                last_name=row.last_name or "",
                username=row.username or "",
                created_at=_iso(row.created_at),
                orders_count=int(orders_count or 0),
                total_spent_cents=int(spent or 0),
                billing=dict(row.billing or {}),
                shipping=dict(row.shipping or {}),
            )

    def list_customer_orders(self, customer_id: int, page: int = 1,
                             per_page: int = 10) -> List[Dict[str, Any]]:
        with self.session() as db:
            rows = (
                db.query(Order)
                .filter(Order.customer_id == int(customer_id))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
                .all()
            )
            return [
                {
                    "id": row.id,
                    "status": row.status,
                    "total_cents": row.total_cents,
                    "currency": row.currency,
                    "created_at": _iso(row.created_at),
                    "item_count": sum(line.quantity for line in row.lines),
                }
                for row in rows
            ]
