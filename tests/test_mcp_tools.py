"""
MCP tool manifest and dispatch tests.

  Layer 1 - manifest
  Layer 2 - dispatch errors
  Layer 3 - full cart-to-order flow through tools
"""

from ai_shopping.mcp_tools import TOOLS

PREFIX = "/ai-shopping/v1"
MCP = f"{PREFIX}/mcp"


def _call(client, headers, tool, params=None):
    return client.post(f"{MCP}/tools/{tool}", headers=headers, json=params or {})


# ============================================================================
# Layer 1 - Manifest
# ============================================================================

class TestManifest:
    def test_lists_every_tool(self, client, read_headers):
        response = client.get(f"{MCP}/tools", headers=read_headers)
        assert response.status_code == 200
        assert response.headers["X-Commerce-Protocol"] == "mcp"
        tools = response.json()["data"]["tools"]
        assert [t["name"] for t in tools] == list(TOOLS)
        assert {"search_products", "create_cart", "add_to_cart", "place_order", "get_order"} <= set(TOOLS)
        assert {"get_product_variations", "get_order_tracking"} <= set(TOOLS)

    def test_each_tool_has_object_schema(self, client, read_headers):
        for tool in client.get(f"{MCP}/tools", headers=read_headers).json()["data"]["tools"]:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"
            assert set(tool["inputSchema"]["required"]) <= set(tool["inputSchema"]["properties"])


# ============================================================================
# Layer 2 - Dispatch errors
# ============================================================================

class TestDispatchErrors:
    def test_unknown_tool(self, client, read_headers):
        response = _call(client, read_headers, "nonexistent_tool")
        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "tool_not_found"
        assert "GET /mcp/tools" in error["message"]
        assert "nonexistent_tool" in error["message"]

    def test_unknown_tool_still_needs_credentials(self, client):
        assert _call(client, {}, "nonexistent_tool").status_code == 401

    def test_read_tools_work_with_read_key(self, client, read_headers):
        response = _call(client, read_headers, "search_products", {"query": "hoodie"})
        assert response.status_code == 200
        result = response.json()["data"]["result"]
        assert [p["id"] for p in result["products"]] == [44]

    def test_write_tools_need_write_tier(self, client, read_headers):
        response = _call(client, read_headers, "create_cart")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "insufficient_permissions"

    def test_missing_cart_token(self, client, write_headers):
        response = _call(client, write_headers, "add_to_cart", {"product_id": 42})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "missing_cart_token"
        assert "create_cart" in error["message"]

    def test_missing_required_field(self, client, write_headers):
        token = _call(client, write_headers, "create_cart").json()["data"]["result"]["cart_token"]
        response = _call(client, write_headers, "add_to_cart", {"cart_token": token})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "missing_field"
        assert "product_id" in error["message"]

    def test_expired_or_unknown_cart(self, client, read_headers):
        response = _call(client, read_headers, "get_cart", {"cart_token": "nope"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "cart_not_found"

    def test_bad_search_input(self, client, read_headers):
        response = _call(client, read_headers, "search_products", {"min_price": "cheap"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_min_price"

    def test_unknown_product(self, client, read_headers):
        response = _call(client, read_headers, "get_product", {"product_id": 9999})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "product_not_found"

    def test_variations_of_simple_product(self, client, read_headers):
        response = _call(client, read_headers, "get_product_variations", {"product_id": 42})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "invalid_product"


# ============================================================================
# Layer 3 - Cart to order
# ============================================================================

class TestToolFlow:
    def test_cart_to_order(self, client, write_headers, billing):
        cart = _call(client, write_headers, "create_cart").json()["data"]["result"]
        token = cart["cart_token"]

        added = _call(client, write_headers, "add_to_cart",
                      {"cart_token": token, "product_id": 42, "quantity": 2}).json()["data"]["result"]
        key = added["item_key"]
        assert added["items"][0]["quantity"] == 2

        updated = _call(client, write_headers, "update_cart_item",
                        {"cart_token": token, "item_key": key, "quantity": 5}).json()["data"]["result"]
        assert updated["items"][0]["quantity"] == 5

        coupon = _call(client, write_headers, "apply_coupon",
                       {"cart_token": token, "code": "FIVEOFF"}).json()["data"]["result"]
        assert coupon["totals"]["discount_cents"] == 500

        methods = _call(client, write_headers, "get_shipping_methods", {"cart_token": token}).json()
        assert len(methods["data"]["result"]["shipping_methods"]) == 3

        response = _call(client, write_headers, "place_order", {
            "cart_token": token,
            "billing_address": billing,
            "payment_method": "bacs",
        })
        assert response.status_code == 200
        order = response.json()["data"]["result"]
        assert order["status"] == "processing"
        assert order["created_via"] == "mcp"
        assert order["discount_cents"] == 500
        assert order["coupons"] == ["FIVEOFF"]

        fetched = _call(client, write_headers, "get_order", {"order_id": order["id"]}).json()["data"]["result"]
        assert fetched["id"] == order["id"]

        tracking = _call(client, write_headers, "get_order_tracking", {"order_id": order["id"]}).json()
        assert tracking["data"]["result"] == {"order_id": order["id"], "status": "processing", "tracking": []}

        gone = _call(client, write_headers, "get_cart", {"cart_token": token})
        assert gone.status_code == 404

    def test_place_order_requires_billing(self, client, write_headers):
        token = _call(client, write_headers, "create_cart").json()["data"]["result"]["cart_token"]
        _call(client, write_headers, "add_to_cart", {"cart_token": token, "product_id": 42})
        response = _call(client, write_headers, "place_order", {"cart_token": token})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "missing_field"
        assert "billing_address" in error["message"]

    def test_remove_from_cart(self, client, write_headers):
        token = _call(client, write_headers, "create_cart").json()["data"]["result"]["cart_token"]
        key = _call(client, write_headers, "add_to_cart",
                    {"cart_token": token, "product_id": 47}).json()["data"]["result"]["item_key"]
        result = _call(client, write_headers, "remove_from_cart",
                       {"cart_token": token, "item_key": key}).json()["data"]["result"]
        assert result["items"] == []

    def test_store_info_and_gateways(self, client, read_headers):
        info = _call(client, read_headers, "get_store_info").json()["data"]["result"]
        assert info["protocols"] == {"rest": True, "acp": True, "ucp": True, "mcp": True}
        gateways = _call(client, read_headers, "get_payment_gateways").json()["data"]["result"]
        assert [g["id"] for g in gateways["payment_gateways"]] == ["cod", "bacs", "stripe"]

    def test_pick_variation_then_add(self, client, write_headers):
        variations = _call(client, write_headers, "get_product_variations",
                           {"product_id": 44}).json()["data"]["result"]["variations"]
        in_stock = [v for v in variations if v["in_stock"]]
        assert [v["attributes"]["size"] for v in in_stock] == ["M"]

        token = _call(client, write_headers, "create_cart").json()["data"]["result"]["cart_token"]
        added = _call(client, write_headers, "add_to_cart",
                      {"cart_token": token, "product_id": 44, "variation_id": in_stock[0]["id"]})
        assert added.status_code == 200
        assert added.json()["data"]["result"]["items"][0]["variation_id"] == 45
