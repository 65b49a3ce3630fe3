"""
REST API tests via TestClient.

  Layer 1 - envelope and gate (auth, tiers, HTTPS, rate limits)
  Layer 2 - catalog
  Layer 3 - cart lifecycle
  Layer 4 - checkout and orders
  Layer 5 - store configuration and customer accounts
"""

import pytest
from fastapi.testclient import TestClient

from ai_shopping.auth import CredentialTier, create_key
from ai_shopping.main import create_app

PREFIX = "/ai-shopping/v1"


def _new_cart(client, headers) -> dict:
    response = client.post(f"{PREFIX}/cart", headers=headers)
    assert response.status_code == 201
    token = response.headers["X-Cart-Token"]
    return {**headers, "X-Cart-Token": token}


def _place_order(client, headers, billing, product_id=42, quantity=1) -> dict:
    cart = _new_cart(client, headers)
    client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": product_id, "quantity": quantity})
    client.put(f"{PREFIX}/checkout/billing-address", headers=cart, json=billing)
    response = client.post(f"{PREFIX}/checkout/order", headers=cart, json={"payment_method": "cod"})
    assert response.status_code == 201
    return response.json()["data"]


# ============================================================================
# Layer 1 - Envelope and gate
# ============================================================================

class TestEnvelope:
    def test_success_envelope(self, client, read_headers):
        response = client.get(f"{PREFIX}/store", headers=read_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["error"] is None
        assert body["data"]["name"] == "Test Store"
        assert set(body["meta"]) == {"protocol", "version", "store", "currency", "timestamp"}
        assert body["meta"]["protocol"] == "rest"
        assert body["meta"]["currency"] == "USD"
        assert response.headers["X-Commerce-Protocol"] == "rest"

    def test_error_envelope(self, client, read_headers):
        response = client.get(f"{PREFIX}/products/9999", headers=read_headers)
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["data"] is None
        assert body["error"] == {
            "code": "product_not_found",
            "message": "Product 9999 not found. Search products with GET /products.",
            "status": 404,
        }

    def test_rate_headers_on_success(self, client, read_headers):
        response = client.get(f"{PREFIX}/store", headers=read_headers)
        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "59"
        assert int(response.headers["X-RateLimit-Reset"]) > 0

    def test_request_validation_names_field(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        response = client.put(f"{PREFIX}/cart/items/abc", headers=cart, json={})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert "quantity" in error["message"]

    def test_public_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}


class TestGate:
    def test_missing_credentials(self, client):
        response = client.get(f"{PREFIX}/products")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "missing_credentials"

    def test_invalid_credentials(self, client):
        response = client.get(f"{PREFIX}/products", headers={"Authorization": "Bearer ais_nope"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "invalid_credentials"

    def test_read_key_cannot_write(self, client, read_headers):
        response = client.post(f"{PREFIX}/cart", headers=read_headers)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "insufficient_permissions"

    def test_read_write_and_full_keys_can_write(self, client, write_headers, full_headers):
        assert client.post(f"{PREFIX}/cart", headers=write_headers).status_code == 201
        assert client.post(f"{PREFIX}/cart", headers=full_headers).status_code == 201

    def test_https_required_when_http_disallowed(self, settings, session_factory, read_headers):
        settings.allow_http = False
        settings.trust_forwarded_proto = True
        app = create_app(settings, session_factory=session_factory)
        with TestClient(app) as client:
            plain = client.get(f"{PREFIX}/store", headers=read_headers)
            proxied = client.get(f"{PREFIX}/store", headers={**read_headers, "X-Forwarded-Proto": "https"})

        assert plain.status_code == 403
        assert plain.json()["error"]["code"] == "https_required"
        assert proxied.status_code == 200

    def test_forwarded_proto_ignored_unless_trusted(self, settings, session_factory, read_headers):
        settings.allow_http = False
        app = create_app(settings, session_factory=session_factory)
        with TestClient(app) as client:
            response = client.get(f"{PREFIX}/store", headers={**read_headers, "X-Forwarded-Proto": "https"})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "https_required"

    def test_forwarded_proto_only_from_listed_proxies(self, settings, session_factory, read_headers):
        settings.allow_http = False
        settings.trust_forwarded_proto = True
        settings.trusted_proxies = ["10.0.0.1"]
        app = create_app(settings, session_factory=session_factory)
        with TestClient(app) as client:
            response = client.get(f"{PREFIX}/store", headers={**read_headers, "X-Forwarded-Proto": "https"})

        # TestClient connects from "testclient", which is not a listed proxy
        assert response.status_code == 403

    def test_rate_limit_exceeded(self, client, db):
        _, secret = create_key(db, "tight", CredentialTier.READ, rate_limit_read=2)
        headers = {"Authorization": f"Bearer {secret}"}

        statuses = [client.get(f"{PREFIX}/store", headers=headers).status_code for _ in range(2)]
        denied = client.get(f"{PREFIX}/store", headers=headers)

        assert statuses == [200, 200]
        assert denied.status_code == 429
        assert denied.json()["error"]["code"] == "rate_limit_exceeded"
        assert denied.headers["X-RateLimit-Remaining"] == "0"
        assert 1 <= int(denied.headers["Retry-After"]) <= 60

    def test_unlimited_key_gets_no_rate_headers(self, settings, session_factory, read_headers):
        settings.rate_limit_read = 0
        app = create_app(settings, session_factory=session_factory)
        with TestClient(app) as client:
            response = client.get(f"{PREFIX}/store", headers=read_headers)
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


# ============================================================================
# Layer 2 - Catalog
# ============================================================================

class TestCatalog:
    def test_search_hides_variations_and_drafts(self, client, read_headers):
        data = client.get(f"{PREFIX}/products", headers=read_headers, params={"per_page": 50}).json()["data"]
        ids = [p["id"] for p in data["products"]]
        assert ids == [42, 43, 44, 47]
        assert data["total"] == 4

    def test_search_filters(self, client, read_headers):
        data = client.get(f"{PREFIX}/products", headers=read_headers,
                          params={"search": "keyboard"}).json()["data"]
        assert [p["sku"] for p in data["products"]] == ["KB-43"]

        data = client.get(f"{PREFIX}/products", headers=read_headers,
                          params={"category": "Electronics", "max_price": 50}).json()["data"]
        assert [p["id"] for p in data["products"]] == [42]

    def test_product_detail(self, client, read_headers):
        data = client.get(f"{PREFIX}/products/43", headers=read_headers).json()["data"]
        assert data["on_sale"] is True
        hoodie = client.get(f"{PREFIX}/products/44", headers=read_headers).json()["data"]
        assert hoodie["variation_ids"] == [45, 46]
        assert hoodie["purchasable"] is False

    def test_categories(self, client, read_headers):
        data = client.get(f"{PREFIX}/products/categories", headers=read_headers).json()["data"]
        assert {c["name"]: c["count"] for c in data["categories"]} == {"Apparel": 1, "Books": 1, "Electronics": 2}

    def test_variations(self, client, read_headers):
        response = client.get(f"{PREFIX}/products/44/variations", headers=read_headers)
        assert response.status_code == 200
        variations = response.json()["data"]["variations"]
        assert [v["id"] for v in variations] == [45, 46]
        assert [v["attributes"] for v in variations] == [{"size": "M"}, {"size": "L"}]
        assert [v["in_stock"] for v in variations] == [True, False]

    def test_variations_of_simple_product(self, client, read_headers):
        response = client.get(f"{PREFIX}/products/42/variations", headers=read_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "invalid_product"

        missing = client.get(f"{PREFIX}/products/999/variations", headers=read_headers)
        assert missing.json()["error"]["code"] == "product_not_found"

    def test_tags_count_published_products(self, client, read_headers):
        data = client.get(f"{PREFIX}/products/tags", headers=read_headers).json()["data"]
        assert data["tags"] == [
            {"name": "cotton", "slug": "cotton", "count": 1},
            {"name": "office", "slug": "office", "count": 2},
            {"name": "wireless", "slug": "wireless", "count": 1},
        ]

    def test_attributes_and_terms(self, client, read_headers):
        data = client.get(f"{PREFIX}/products/attributes", headers=read_headers).json()["data"]
        assert [(a["id"], a["slug"]) for a in data["attributes"]] == [(1, "size")]

        terms = client.get(f"{PREFIX}/products/attributes/1/terms", headers=read_headers).json()["data"]
        assert [(t["name"], t["count"]) for t in terms["terms"]] == [("L", 1), ("M", 1)]

        missing = client.get(f"{PREFIX}/products/attributes/9/terms", headers=read_headers)
        assert missing.status_code == 404
        error = missing.json()["error"]
        assert error["code"] == "attribute_not_found"
        assert "GET /products/attributes" in error["message"]

    def test_reviews_hide_unapproved(self, client, read_headers):
        data = client.get(f"{PREFIX}/products/reviews", headers=read_headers).json()["data"]
        assert [r["reviewer"] for r in data["reviews"]] == ["Alan", "Grace"]
        assert data["page"] == 1

        keyboard = client.get(f"{PREFIX}/products/reviews", headers=read_headers,
                              params={"product_id": 43}).json()["data"]
        assert keyboard["reviews"] == []

        five_star = client.get(f"{PREFIX}/products/reviews", headers=read_headers,
                               params={"product_id": 42, "rating": 5}).json()["data"]
        assert [(r["reviewer"], r["verified"]) for r in five_star["reviews"]] == [("Grace", True)]

    def test_review_rating_out_of_range(self, client, read_headers):
        response = client.get(f"{PREFIX}/products/reviews", headers=read_headers, params={"rating": 6})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_rating"


# ============================================================================
# Layer 3 - Cart lifecycle
# ============================================================================

class TestCart:
    def test_add_then_update_round_trip(self, client, write_headers):
        cart = _new_cart(client, write_headers)

        added = client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42, "quantity": 2})
        assert added.status_code == 201
        key = added.json()["data"]["item_key"]

        updated = client.put(f"{PREFIX}/cart/items/{key}", headers=cart, json={"quantity": 5})
        assert updated.status_code == 200

        data = client.get(f"{PREFIX}/cart", headers=cart).json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 5
        assert data["totals"]["subtotal_cents"] == 5 * 2999

    def test_adding_same_product_merges(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42, "quantity": 2})
        data = client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42, "quantity": 3}).json()["data"]
        assert len(data["items"]) == 1
        assert data["items"][0]["quantity"] == 5
        assert data["item_count"] == 5

    def test_remove_item(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        key = client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42}).json()["data"]["item_key"]
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 47})

        data = client.delete(f"{PREFIX}/cart/items/{key}", headers=cart).json()["data"]
        assert [item["product_id"] for item in data["items"]] == [47]

        again = client.delete(f"{PREFIX}/cart/items/{key}", headers=cart)
        assert again.status_code == 404
        assert again.json()["error"]["code"] == "item_not_found"

    def test_get_is_idempotent(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 43, "quantity": 1})
        client.post(f"{PREFIX}/cart/coupons", headers=cart, json={"code": "SAVE10"})

        first = client.get(f"{PREFIX}/cart", headers=cart).json()["data"]
        second = client.get(f"{PREFIX}/cart", headers=cart).json()["data"]
        assert first == second

    @pytest.mark.parametrize("body,code", [
        ({"product_id": 9999}, "product_not_found"),
        ({"product_id": 44}, "missing_variation"),
        ({"product_id": 44, "variation_id": 99}, "variation_not_found"),
        ({"product_id": 44, "variation_id": 46}, "out_of_stock"),
        ({"product_id": 43, "quantity": 3}, "out_of_stock"),
        ({"product_id": 42, "quantity": 0}, "invalid_quantity"),
        ({}, "missing_field"),
    ])
    def test_add_item_errors(self, client, write_headers, body, code):
        cart = _new_cart(client, write_headers)
        response = client.post(f"{PREFIX}/cart/items", headers=cart, json=body)
        assert response.status_code in (400, 404)
        assert response.json()["error"]["code"] == code

    def test_variation_line(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        data = client.post(f"{PREFIX}/cart/items", headers=cart,
                           json={"product_id": 44, "variation_id": 45}).json()["data"]
        line = data["items"][0]
        assert (line["product_id"], line["variation_id"], line["variation"]) == (44, 45, {"size": "M"})

    def test_update_to_zero_points_at_delete(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        key = client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42}).json()["data"]["item_key"]
        response = client.put(f"{PREFIX}/cart/items/{key}", headers=cart, json={"quantity": 0})
        assert response.status_code == 400
        assert f"DELETE /cart/items/{key}" in response.json()["error"]["message"]

    def test_missing_token(self, client, write_headers):
        response = client.get(f"{PREFIX}/cart", headers=write_headers)
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "missing_cart_token"
        assert "POST /cart" in error["message"]

    def test_token_via_query_parameter(self, client, write_headers):
        token = _new_cart(client, write_headers)["X-Cart-Token"]
        response = client.get(f"{PREFIX}/cart", headers=write_headers, params={"cart_token": token})
        assert response.status_code == 200
        assert response.json()["data"]["cart_token"] == token

    def test_coupons(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42, "quantity": 2})

        data = client.post(f"{PREFIX}/cart/coupons", headers=cart, json={"code": "save10"}).json()["data"]
        assert data["coupons"] == ["SAVE10"]
        assert data["totals"]["discount_cents"] == 600

        duplicate = client.post(f"{PREFIX}/cart/coupons", headers=cart, json={"code": "SAVE10"})
        assert duplicate.json()["error"]["code"] == "coupon_already_applied"

        unknown = client.post(f"{PREFIX}/cart/coupons", headers=cart, json={"code": "NOPE"})
        assert unknown.status_code == 404
        assert unknown.json()["error"]["code"] == "invalid_coupon"

        data = client.delete(f"{PREFIX}/cart/coupons/SAVE10", headers=cart).json()["data"]
        assert data["coupons"] == []
        assert data["totals"]["discount_cents"] == 0

    def test_delete_cart(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        assert client.delete(f"{PREFIX}/cart", headers=cart).status_code == 200
        response = client.get(f"{PREFIX}/cart", headers=cart)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "cart_not_found"


# ============================================================================
# Layer 4 - Checkout and orders
# ============================================================================

class TestCheckout:
    def test_validate_lists_what_is_missing(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        data = client.post(f"{PREFIX}/checkout/validate", headers=cart).json()["data"]
        assert data["valid"] is False
        assert any("empty" in e for e in data["errors"])
        assert any("Billing address" in e for e in data["errors"])
        assert any("Payment method" in e for e in data["errors"])

    def test_address_validation(self, client, write_headers, billing):
        cart = _new_cart(client, write_headers)
        no_country = client.put(f"{PREFIX}/checkout/billing-address", headers=cart,
                                json={"first_name": "Ada"})
        assert no_country.json()["error"]["code"] == "missing_country"

        bad_email = client.put(f"{PREFIX}/checkout/billing-address", headers=cart,
                               json={**billing, "email": "not-an-email"})
        assert bad_email.json()["error"]["code"] == "invalid_email"

    def test_shipping_and_payment_methods(self, client, write_headers, billing):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42})
        client.put(f"{PREFIX}/checkout/shipping-address", headers=cart, json=billing)

        methods = client.get(f"{PREFIX}/checkout/shipping-methods", headers=cart).json()["data"]
        assert [m["id"] for m in methods["shipping_methods"]] == [
            "flat_rate:standard", "flat_rate:express", "flat_rate:overnight"]

        data = client.put(f"{PREFIX}/checkout/shipping-method", headers=cart,
                          json={"shipping_method": "flat_rate:express"}).json()["data"]
        assert data["totals"]["shipping_cents"] == 599

        bad = client.put(f"{PREFIX}/checkout/shipping-method", headers=cart, json={"shipping_method": "drone"})
        assert bad.json()["error"]["code"] == "invalid_shipping_method"

        gateways = client.get(f"{PREFIX}/checkout/payment-methods", headers=cart).json()["data"]
        assert [g["id"] for g in gateways["payment_methods"]] == ["cod", "bacs", "stripe"]

        disabled = client.put(f"{PREFIX}/checkout/payment-method", headers=cart, json={"payment_method": "paypal"})
        assert disabled.json()["error"]["code"] == "invalid_payment_method"

    def test_no_shipping_methods_outside_zones(self, client, write_headers, billing):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42})
        client.put(f"{PREFIX}/checkout/shipping-address", headers=cart, json={**billing, "country": "FR"})
        methods = client.get(f"{PREFIX}/checkout/shipping-methods", headers=cart).json()["data"]
        assert methods["shipping_methods"] == []

    def test_place_order(self, client, write_headers, billing):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42, "quantity": 2})
        client.put(f"{PREFIX}/checkout/billing-address", headers=cart, json=billing)
        client.put(f"{PREFIX}/checkout/shipping-address", headers=cart, json=billing)
        client.put(f"{PREFIX}/checkout/payment-method", headers=cart, json={"payment_method": "cod"})

        check = client.post(f"{PREFIX}/checkout/validate", headers=cart).json()["data"]
        assert check["valid"] is True

        response = client.post(f"{PREFIX}/checkout/order", headers=cart, json={"customer_note": "Leave at door"})
        assert response.status_code == 201
        order = response.json()["data"]
        assert order["status"] == "processing"
        assert order["created_via"] == "rest"
        assert order["subtotal_cents"] == 5998
        assert order["tax_cents"] == 525
        assert order["total_cents"] == 5998 + 525
        assert order["payment_method_title"] == "Cash on delivery"
        assert order["customer_note"] == "Leave at door"

        assert client.get(f"{PREFIX}/cart", headers=cart).status_code == 404

        fetched = client.get(f"{PREFIX}/orders/{order['id']}", headers=write_headers).json()["data"]
        assert fetched["lines"][0]["quantity"] == 2

        stock = client.get(f"{PREFIX}/products/42", headers=write_headers).json()["data"]["stock_quantity"]
        assert stock == 98

    def test_card_order_waits_for_payment(self, client, write_headers, billing):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 47})
        client.put(f"{PREFIX}/checkout/billing-address", headers=cart, json=billing)
        order = client.post(f"{PREFIX}/checkout/order", headers=cart, json={"payment_method": "stripe"}).json()["data"]
        assert order["status"] == "pending"

    def test_order_requires_billing(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        client.post(f"{PREFIX}/cart/items", headers=cart, json={"product_id": 42})
        response = client.post(f"{PREFIX}/checkout/order", headers=cart)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "missing_billing"
        assert client.get(f"{PREFIX}/cart", headers=cart).status_code == 200

    def test_empty_cart_order(self, client, write_headers):
        cart = _new_cart(client, write_headers)
        response = client.post(f"{PREFIX}/checkout/order", headers=cart)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "empty_cart"

    def test_unknown_order(self, client, read_headers):
        response = client.get(f"{PREFIX}/orders/12345", headers=read_headers)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "order_not_found"


class TestOrderFollowUp:
    def test_tracking(self, client, write_headers, billing, db):
        from ai_shopping.models import Order

        order = _place_order(client, write_headers, billing)
        url = f"{PREFIX}/orders/{order['id']}/tracking"
        data = client.get(url, headers=write_headers).json()["data"]
        assert data == {"order_id": order["id"], "status": "processing", "tracking": []}

        row = db.get(Order, order["id"])
        row.tracking = [{"provider": "UPS", "tracking_number": "1Z999", "tracking_link": "",
                         "date_shipped": "2026-01-02"}]
        db.commit()
        data = client.get(url, headers=write_headers).json()["data"]
        assert data["tracking"][0]["tracking_number"] == "1Z999"

        missing = client.get(f"{PREFIX}/orders/999/tracking", headers=write_headers)
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "order_not_found"

    def test_add_note(self, client, write_headers, billing):
        order = _place_order(client, write_headers, billing)
        url = f"{PREFIX}/orders/{order['id']}/notes"

        response = client.post(url, headers=write_headers, json={"note": "Please gift wrap"})
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["message"] == "Note added to order."
        assert data["note"]["content"] == "Please gift wrap"

        fetched = client.get(f"{PREFIX}/orders/{order['id']}", headers=write_headers).json()["data"]
        assert [n["content"] for n in fetched["notes"]] == ["Please gift wrap"]
        assert fetched["notes"][0]["id"] == data["note_id"]

    def test_note_errors(self, client, write_headers, read_headers, billing):
        order = _place_order(client, write_headers, billing)
        url = f"{PREFIX}/orders/{order['id']}/notes"

        blank = client.post(url, headers=write_headers, json={"note": "   "})
        assert blank.status_code == 400
        assert blank.json()["error"]["code"] == "missing_note"

        assert client.post(url, headers=read_headers, json={"note": "hi"}).status_code == 403

        missing = client.post(f"{PREFIX}/orders/999/notes", headers=write_headers, json={"note": "hi"})
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "order_not_found"


# ============================================================================
# Layer 5 - Store configuration and customer accounts
# ============================================================================

class TestStoreConfiguration:
    def test_payment_gateways(self, client, read_headers):
        data = client.get(f"{PREFIX}/store/payment-gateways", headers=read_headers).json()["data"]
        assert [(g["id"], g["order"]) for g in data["payment_gateways"]] == [("cod", 0), ("bacs", 1), ("stripe", 2)]

    def test_shipping_zones(self, client, read_headers):
        zones = client.get(f"{PREFIX}/store/shipping-zones", headers=read_headers).json()["data"]["shipping_zones"]
        assert len(zones) == 1
        assert zones[0]["name"] == "United States"
        assert zones[0]["locations"] == [{"code": "US", "type": "country"}]
        assert [m["id"] for m in zones[0]["methods"]] == [
            "flat_rate:standard", "flat_rate:express", "flat_rate:overnight"]

    def test_tax_rates(self, client, read_headers):
        rates = client.get(f"{PREFIX}/store/tax-rates", headers=read_headers).json()["data"]["tax_rates"]
        assert len(rates) == 51
        by_state = {r["state"]: r for r in rates}
        assert by_state["CA"]["rate"] == 8.75
        assert by_state["CA"]["name"] == "CA Sales Tax"
        assert by_state["OR"]["rate"] == 0.0


class TestAccount:
    def test_profile(self, client, read_headers):
        response = client.get(f"{PREFIX}/account", headers=read_headers, params={"customer_id": 1})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "ada@example.com"
        assert data["username"] == "ada"
        assert data["orders_count"] == 0
        assert "billing" not in data

    def test_profile_errors(self, client, read_headers):
        missing = client.get(f"{PREFIX}/account", headers=read_headers)
        assert missing.status_code == 400
        assert missing.json()["error"]["code"] == "missing_customer_id"

        unknown = client.get(f"{PREFIX}/account", headers=read_headers, params={"customer_id": 77})
        assert unknown.status_code == 404
        assert unknown.json()["error"]["code"] == "customer_not_found"

    def test_orders_link_by_billing_email(self, client, write_headers, billing):
        order = _place_order(client, write_headers, billing, quantity=2)
        _place_order(client, write_headers, {**billing, "email": "someone@example.com"})

        data = client.get(f"{PREFIX}/account/orders", headers=write_headers,
                          params={"customer_id": 1}).json()["data"]
        assert [o["id"] for o in data["orders"]] == [order["id"]]
        assert data["orders"][0]["item_count"] == 2

        profile = client.get(f"{PREFIX}/account", headers=write_headers, params={"customer_id": 1}).json()["data"]
        assert profile["orders_count"] == 1
        assert profile["total_spent_cents"] == order["total_cents"]

    def test_addresses(self, client, read_headers):
        data = client.get(f"{PREFIX}/account/addresses", headers=read_headers,
                          params={"customer_id": 1}).json()["data"]
        assert data["billing"]["phone"] == "555-0100"
        assert data["billing"]["company"] == ""
        assert data["shipping"]["city"] == "San Francisco"
        assert "email" not in data["shipping"]
