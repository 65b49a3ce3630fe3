"""
SQLAlchemy database models.

Gateway state:
- ApiKey (caller credentials, hashed secrets)
- RateBucket (per-credential token buckets)
- CartSession (token-addressed carts and buyer context)

Reference commerce engine catalog:
- Product (variations are products with a parent_id), ProductAttribute, ProductReview
- Coupon, PaymentGateway, ShippingZone
- Customer, Order, OrderLine, OrderNote
"""

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ai_shopping.database import Base, utcnow


# ============================================================================
# Gateway state
# ============================================================================

class ApiKey(Base):
    """
    API credential presented as a bearer secret.
    Only the SHA-256 of the secret is stored; rotation is delete + recreate.
    """
    __tablename__ = "ais_api_keys"

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(200), nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True, index=True)
    tier = Column(String(20), nullable=False, default="read")
    rate_limit_read = Column(Integer, nullable=False, default=0)   # 0 = use default
    rate_limit_write = Column(Integer, nullable=False, default=0)
    revoked = Column(Boolean, nullable=False, default=False)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class RateBucket(Base):
    """Token bucket per (credential, operation class); refilled lazily at check time."""
    __tablename__ = "ais_rate_buckets"
    __table_args__ = (
        UniqueConstraint("api_key_id", "bucket", name="uq_rate_bucket_key_class"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    api_key_id = Column(Integer, nullable=False, index=True)
    bucket = Column(String(10), nullable=False)   # "read" | "write"
    tokens = Column(Integer, nullable=False)
    last_refill = Column(DateTime, nullable=False, index=True)


class CartSession(Base):
    """
    Durable cart/checkout session addressed by an opaque token.
    cart_data holds {"items": {key: line}, "coupons": [codes]};
    customer_data holds the buyer context.
    """
    __tablename__ = "ais_cart_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cart_token = Column(String(64), nullable=False, unique=True, index=True)
    api_key_id = Column(Integer, nullable=False, default=0)   # 0 = anonymous
    cart_data = Column(JSON, nullable=False, default=dict)
    customer_data = Column(JSON, nullable=False, default=dict)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


# ============================================================================
# Reference commerce engine catalog
# ============================================================================

class Product(Base):
    """Catalog product; a variation is a Product row whose parent_id is set."""
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_category_status", "category", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    parent_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    sku = Column(String(100), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, default="")
    short_description = Column(Text, default="")
    category = Column(String(100), index=True)
    price_cents = Column(Integer, nullable=False, default=0)
    regular_price_cents = Column(Integer, nullable=True)
    stock_quantity = Column(Integer, nullable=True)   # NULL = stock not managed
    status = Column(String(20), nullable=False, default="publish")
    is_virtual = Column(Boolean, nullable=False, default=False)
    weight_lbs = Column(Float, nullable=True)
    attributes = Column(JSON, nullable=False, default=dict)  # variation option values
    tags = Column(JSON, nullable=False, default=list)
    image_url = Column(String(512))
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ProductAttribute(Base):
    """Global attribute (e.g. Size); its terms are the values variations use under `slug`."""
    __tablename__ = "product_attributes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    type = Column(String(20), nullable=False, default="select")
    order_by = Column(String(20), nullable=False, default="menu_order")


class ProductReview(Base):
    __tablename__ = "product_reviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    reviewer = Column(String(100), nullable=False)
    rating = Column(Integer, nullable=False)   # 1-5
    review = Column(Text, default="")
    verified = Column(Boolean, nullable=False, default=False)
    approved = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Coupon(Base):
    __tablename__ = "coupons"

    code = Column(String(50), primary_key=True)   # stored upper-case
    discount_type = Column(String(20), nullable=False)   # percent | fixed_cart | free_shipping
    amount = Column(Float, nullable=False, default=0.0)   # pct for percent, dollars for fixed_cart
    minimum_cents = Column(Integer, nullable=False, default=0)
    description = Column(String(255), default="")
    expires_at = Column(DateTime, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)


class PaymentGateway(Base):
    __tablename__ = "payment_gateways"

    id = Column(String(50), primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(String(255), default="")
    enabled = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)


class ShippingZone(Base):
    """Countries (and optionally states) the store ships to."""
    __tablename__ = "shipping_zones"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    country = Column(String(2), nullable=False, index=True)
    state = Column(String(10), nullable=True)   # NULL = whole country


class Customer(Base):
    """Registered customer; orders are linked by billing email at creation."""
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)   # stored lower-case
    username = Column(String(100), default="")
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    billing = Column(JSON, nullable=False, default=dict)
    shipping = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_key = Column(String(64), nullable=False, unique=True)
    idempotency_key = Column(String(64), nullable=True, unique=True)   # checkout session token
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending")
    currency = Column(String(3), nullable=False, default="USD")
    subtotal_cents = Column(Integer, nullable=False, default=0)
    discount_cents = Column(Integer, nullable=False, default=0)
    shipping_cents = Column(Integer, nullable=False, default=0)
    tax_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)
    payment_method = Column(String(50), default="")
    payment_method_title = Column(String(100), default="")
    shipping_method = Column(String(50), default="")
    billing = Column(JSON, nullable=False, default=dict)
    shipping = Column(JSON, nullable=False, default=dict)
    coupons = Column(JSON, nullable=False, default=list)
    customer_note = Column(Text, default="")
    created_via = Column(String(20), default="rest")
    # [{provider, tracking_number, tracking_link, date_shipped}]
    tracking = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    paid_at = Column(DateTime, nullable=True)

    lines = relationship("OrderLine", back_populates="order", cascade="all, delete-orphan")
    notes = relationship("OrderNote", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderNote.id")


class OrderLine(Base):
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, nullable=False)
    variation_id = Column(Integer, nullable=False, default=0)
    name = Column(String(255), nullable=False)
    sku = Column(String(100))
    quantity = Column(Integer, nullable=False)
    subtotal_cents = Column(Integer, nullable=False)
    total_cents = Column(Integer, nullable=False)
    tax_cents = Column(Integer, nullable=False, default=0)

    order = relationship("Order", back_populates="lines")


class OrderNote(Base):
    __tablename__ = "order_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    customer_note = Column(Boolean, nullable=False, default=True)   # visible to the customer
    created_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="notes")
