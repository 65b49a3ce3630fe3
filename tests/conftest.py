"""Pytest configuration for the AI shopping gateway tests."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from ai_shopping.auth import CredentialTier, create_key
from ai_shopping.config import Settings
from ai_shopping.database import init_db, make_engine, make_session_factory, utcnow
from ai_shopping.main import create_app
from ai_shopping.models import (
    Coupon, Customer, PaymentGateway, Product, ProductAttribute, ProductReview, ShippingZone,
)

PREFIX = "/ai-shopping/v1"

BILLING = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address_1": "1 Market St",
    "city": "San Francisco",
    "state": "CA",
    "postcode": "94105",
    "country": "US",
    "email": "ada@example.com",
}


# ---------------------------------------------------------------------------
# Catalog seed
#   42  Wireless Mouse         $29.99  stock 100
#   43  Mechanical Keyboard    $89.99  stock 2
#   44  Hoodie (variable)      variations 45 (M, in stock) and 46 (L, sold out)
#   47  Field Guide e-book     $15.00  virtual, stock not managed
#   48  Prototype Lamp         draft, not visible
#
# Attribute 1 (Size), three reviews (one unapproved) and customer 1, whose
# email matches BILLING so orders placed with it link to the account.
# ---------------------------------------------------------------------------

def seed_catalog(db) -> None:
    db.add_all([
        Product(id=42, sku="MOUSE-42", name="Wireless Mouse", description="Quiet 2.4GHz wireless mouse",
                category="Electronics", price_cents=2999, stock_quantity=100, weight_lbs=0.5,
                tags=["wireless", "office"]),
        Product(id=43, sku="KB-43", name="Mechanical Keyboard", description="Tenkeyless, brown switches",
                category="Electronics", price_cents=8999, regular_price_cents=9999, stock_quantity=2,
                weight_lbs=2.0, tags=["office"]),
        Product(id=44, sku="HOODIE", name="Hoodie", description="Heavyweight cotton hoodie",
                category="Apparel", price_cents=4500, tags=["cotton"]),
        Product(id=47, sku="EBOOK-47", name="Field Guide e-book", description="Digital download",
                category="Books", price_cents=1500, is_virtual=True),
        Product(id=48, sku="LAMP-48", name="Prototype Lamp", category="Home", price_cents=5000,
                status="draft", tags=["lighting"]),
    ])
    db.flush()
    db.add_all([
        Product(id=45, parent_id=44, sku="HOODIE-M", name="Hoodie - M", category="Apparel",
                price_cents=4500, stock_quantity=10, weight_lbs=1.5, attributes={"size": "M"}),
        Product(id=46, parent_id=44, sku="HOODIE-L", name="Hoodie - L", category="Apparel",
                price_cents=4800, stock_quantity=0, weight_lbs=1.6, attributes={"size": "L"}),
    ])
    db.add_all([
        Coupon(code="SAVE10", discount_type="percent", amount=10, description="10% off"),
        Coupon(code="FIVEOFF", discount_type="fixed_cart", amount=5.0, description="$5 off"),
        Coupon(code="FREESHIP", discount_type="free_shipping", amount=0, description="Free shipping"),
        Coupon(code="BIGSPEND", discount_type="percent", amount=20, minimum_cents=100000,
               description="20% off orders over $1000"),
        Coupon(code="EXPIRED", discount_type="percent", amount=50,
               expires_at=utcnow() - timedelta(days=1)),
    ])
    db.add_all([
        PaymentGateway(id="cod", title="Cash on delivery", sort_order=0),
        PaymentGateway(id="bacs", title="Direct bank transfer", sort_order=1),
        PaymentGateway(id="stripe", title="Credit card", sort_order=2),
        PaymentGateway(id="paypal", title="PayPal", enabled=False, sort_order=3),
    ])
    db.add(ShippingZone(name="United States", country="US"))
    db.add(ProductAttribute(id=1, name="Size", slug="size"))
    now = utcnow()
    db.add_all([
        ProductReview(product_id=42, reviewer="Grace", rating=5, review="Silent clicks.", verified=True,
                      created_at=now - timedelta(days=3)),
        ProductReview(product_id=42, reviewer="Alan", rating=3, review="Battery drains fast.",
                      created_at=now - timedelta(days=1)),
        ProductReview(product_id=43, reviewer="Spam Bot", rating=5, review="Buy followers!", approved=False,
                      created_at=now),
    ])
    db.add(Customer(
        id=1, email="ada@example.com", username="ada", first_name="Ada", last_name="Lovelace",
        billing=dict(BILLING, phone="555-0100"),
        shipping={k: v for k, v in BILLING.items() if k != "email"},
        created_at=now - timedelta(days=30),
    ))
    db.commit()


# ---------------------------------------------------------------------------
# Database, app and credentials
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """Fresh in-memory database per test, with the catalog seeded."""
    bind = make_engine("sqlite://")
    init_db(bind)
    factory = make_session_factory(bind)
    db = factory()
    seed_catalog(db)
    db.close()
    yield factory
    bind.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        rate_limit_read=60,
        rate_limit_write=30,
        engine_timeout_seconds=0,
        maintenance_interval_seconds=0,
        store_name="Test Store",
        store_url="https://shop.example.com",
        log_level="WARNING",
    )


@pytest.fixture
def app(settings, session_factory):
    return create_app(settings, session_factory=session_factory)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def keys(db):
    """Plaintext secret per tier."""
    secrets = {}
    for tier in CredentialTier:
        _, secret = create_key(db, f"{tier.value} agent", tier)
        secrets[tier.value] = secret
    return secrets


@pytest.fixture
def read_headers(keys):
    return {"Authorization": f"Bearer {keys['read']}"}


@pytest.fixture
def write_headers(keys):
    return {"Authorization": f"Bearer {keys['read_write']}"}


@pytest.fixture
def full_headers(keys):
    return {"Authorization": f"Bearer {keys['full']}"}


@pytest.fixture
def billing():
    return dict(BILLING)
