"""
MCP tool manifest and dispatch.

GET  /mcp/tools          → manifest: name, description, inputSchema per tool
POST /mcp/tools/{name}   → run one tool; the JSON body is its parameter bag

Each tool is a thin wrapper over CommerceService with its own operation
class, so read tools stay usable with read-tier keys. Tools keep no state of
their own; carts are addressed by the cart_token parameter.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from ai_shopping.auth import OperationClass
from ai_shopping.cart_session import CartState
from ai_shopping.database import get_db
from ai_shopping.dependencies import get_service
from ai_shopping.errors import MissingSessionToken, ToolNotFound, missing_field
from ai_shopping.gate import AccessContext, admit, require_read
from ai_shopping.responses import success
from ai_shopping.services import CommerceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mcp", tags=["MCP"])


@dataclass
class Tool:
    name: str
    description: str
    input_schema: Dict[str, Any]
    operation: OperationClass
    handler: Callable[[CommerceService, AccessContext, Dict[str, Any]], Any]

    def manifest(self) -> dict:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


def _schema(properties: Dict[str, Any], required: Optional[List[str]] = None) -> dict:
    return {"type": "object", "properties": properties, "required": required or []}


_CART_TOKEN = {"type": "string", "description": "Cart token returned by create_cart"}
_ADDRESS = {
    "type": "object",
    "description": "Address with first_name, last_name, address_1, city, state, postcode, country (required), email, phone",
    "properties": {
        "first_name": {"type": "string"},
        "last_name": {"type": "string"},
        "company": {"type": "string"},
        "address_1": {"type": "string"},
        "address_2": {"type": "string"},
        "city": {"type": "string"},
        "state": {"type": "string"},
        "postcode": {"type": "string"},
        "country": {"type": "string", "description": "2-letter ISO code"},
        "email": {"type": "string"},
        "phone": {"type": "string"},
    },
    "required": ["country"],
}


def _cart(service: CommerceService, params: Dict[str, Any]) -> CartState:
    token = params.get("cart_token")
    if not token:
        raise MissingSessionToken(
            "Missing required parameter 'cart_token'. Create a cart first with the create_cart tool."
        )
    return service.load(
        str(token),
        not_found_message="Cart not found or expired. Create a new cart with the create_cart tool.",
    )


def _required(params: Dict[str, Any], name: str, expected: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise missing_field(name, expected)
    return value


# ============================================================================
# Tool handlers
# ============================================================================

def _search_products(service, access, params):
    return service.search_products(
        params.get("query") or params.get("search") or "",
        params.get("category"),
        params.get("min_price"),
        params.get("max_price"),
        params.get("page") or 1,
        params.get("per_page") or 10,
    )


def _get_product(service, access, params):
    return service.get_product(_required(params, "product_id", "an integer product id")).to_dict()


def _get_product_variations(service, access, params):
    product_id = _required(params, "product_id", "an integer product id of a variable product")
    return {"variations": service.get_variations(product_id)}


def _list_categories(service, access, params):
    return {"categories": service.list_categories()}


def _get_store_info(service, access, params):
    return service.store_info()


def _create_cart(service, access, params):
    return service.cart_view(service.create_cart(access.credential.id))


def _get_cart(service, access, params):
    return service.cart_view(_cart(service, params))


def _add_to_cart(service, access, params):
    state = _cart(service, params)
    product_id = _required(params, "product_id", "an integer product id")
    state, line = service.add_item(state.token, product_id, params.get("quantity", 1),
                                   params.get("variation_id") or 0, params.get("variation"))
    view = service.cart_view(state)
    view["item_key"] = line.key
    return view


def _update_cart_item(service, access, params):
    state = _cart(service, params)
    key = _required(params, "item_key", "an item key from get_cart")
    quantity = _required(params, "quantity", "an integer >= 1")
    return service.cart_view(service.update_item(state.token, str(key), quantity))


def _remove_from_cart(service, access, params):
    state = _cart(service, params)
    key = _required(params, "item_key", "an item key from get_cart")
    return service.cart_view(service.remove_item(state.token, str(key)))


def _apply_coupon(service, access, params):
    state = _cart(service, params)
    code = _required(params, "code", "a coupon code string")
    return service.cart_view(service.apply_coupon(state.token, code))


def _get_shipping_methods(service, access, params):
    state = _cart(service, params)
    return {"shipping_methods": [rate.to_dict() for rate in service.shipping_methods(state)]}


def _get_payment_gateways(service, access, params):
    return {"payment_gateways": [g.to_dict() for g in service.payment_methods()]}


def _place_order(service, access, params):
    state = _cart(service, params)
    if not params.get("billing_address") and not state.buyer.get("billing_address"):
        raise missing_field("billing_address", "an address object with at least country, first_name, "
                                               "last_name and email")
    service.update_buyer(
        state,
        billing=params.get("billing_address"),
        shipping=params.get("shipping_address"),
        shipping_method=params.get("shipping_method"),
        payment_method=params.get("payment_method"),
    )
    order = service.place_order(state, "mcp", customer_note=params.get("customer_note") or "")
    return order.to_dict()


def _get_order(service, access, params):
    return service.get_order(_required(params, "order_id", "an integer order id")).to_dict()


def _get_order_tracking(service, access, params):
    return service.order_tracking(_required(params, "order_id", "an integer order id"))


# ============================================================================
# Registry
# ============================================================================

_READ = OperationClass.READ
_WRITE = OperationClass.WRITE

TOOLS: Dict[str, Tool] = {tool.name: tool for tool in [
    Tool("search_products", "Search the product catalog by keyword, category and price range (prices in dollars).",
         _schema({
             "query": {"type": "string", "description": "Search keywords"},
             "category": {"type": "string"},
             "min_price": {"type": "number"},
             "max_price": {"type": "number"},
             "page": {"type": "integer", "minimum": 1},
             "per_page": {"type": "integer", "minimum": 1, "maximum": 100},
         }), _READ, _search_products),
    Tool("get_product", "Get full details for one product, including variation ids and stock.",
         _schema({"product_id": {"type": "integer"}}, ["product_id"]), _READ, _get_product),
    Tool("get_product_variations", "List a variable product's variations with their options, prices and stock.",
         _schema({"product_id": {"type": "integer"}}, ["product_id"]), _READ, _get_product_variations),
    Tool("list_categories", "List product categories with product counts.",
         _schema({}), _READ, _list_categories),
    Tool("get_store_info", "Store name, currency, enabled protocols, rate limits and payment methods.",
         _schema({}), _READ, _get_store_info),
    Tool("create_cart", "Create a new cart. Returns the cart_token every other cart tool needs.",
         _schema({}), _WRITE, _create_cart),
    Tool("get_cart", "Get cart contents with freshly computed totals.",
         _schema({"cart_token": _CART_TOKEN}, ["cart_token"]), _READ, _get_cart),
    Tool("add_to_cart", "Add a product to the cart. Adding the same product again increases its quantity.",
         _schema({
             "cart_token": _CART_TOKEN,
             "product_id": {"type": "integer"},
             "quantity": {"type": "integer", "minimum": 1, "default": 1},
             "variation_id": {"type": "integer", "description": "Required for variable products"},
             "variation": {"type": "object", "description": "Chosen option values"},
         }, ["cart_token", "product_id"]), _WRITE, _add_to_cart),
    Tool("update_cart_item", "Change the quantity of a cart item (minimum 1; use remove_from_cart to delete).",
         _schema({
             "cart_token": _CART_TOKEN,
             "item_key": {"type": "string"},
             "quantity": {"type": "integer", "minimum": 1},
         }, ["cart_token", "item_key", "quantity"]), _WRITE, _update_cart_item),
    Tool("remove_from_cart", "Remove one item from the cart by its item_key.",
         _schema({"cart_token": _CART_TOKEN, "item_key": {"type": "string"}}, ["cart_token", "item_key"]),
         _WRITE, _remove_from_cart),
    Tool("apply_coupon", "Apply a coupon code to the cart.",
         _schema({"cart_token": _CART_TOKEN, "code": {"type": "string"}}, ["cart_token", "code"]),
         _WRITE, _apply_coupon),
    Tool("get_shipping_methods", "List shipping methods and costs for the cart's destination.",
         _schema({"cart_token": _CART_TOKEN}, ["cart_token"]), _READ, _get_shipping_methods),
    Tool("get_payment_gateways", "List enabled payment methods.",
         _schema({}), _READ, _get_payment_gateways),
    Tool("place_order", "Place the order for a cart. Needs items and a billing address; the cart is deleted "
                        "afterwards.",
         _schema({
             "cart_token": _CART_TOKEN,
             "billing_address": _ADDRESS,
             "shipping_address": _ADDRESS,
             "shipping_method": {"type": "string"},
             "payment_method": {"type": "string"},
             "customer_note": {"type": "string"},
         }, ["cart_token", "billing_address"]), _WRITE, _place_order),
    Tool("get_order", "Get an order's status, totals and lines.",
         _schema({"order_id": {"type": "integer"}}, ["order_id"]), _READ, _get_order),
    Tool("get_order_tracking", "Get shipment tracking (provider, number, link) for an order.",
         _schema({"order_id": {"type": "integer"}}, ["order_id"]), _READ, _get_order_tracking),
]}


def manifest() -> List[dict]:
    return [tool.manifest() for tool in TOOLS.values()]


# ============================================================================
# Routes
# ============================================================================

@router.get("/tools")
def mcp_list_tools(request: Request, access: AccessContext = Depends(require_read)):
    return success(request, {"tools": manifest()})


@router.post("/tools/{tool_name}")
def mcp_execute_tool(
    request: Request,
    tool_name: str,
    params: Optional[Dict[str, Any]] = Body(None),
    db: Session = Depends(get_db),
    service: CommerceService = Depends(get_service),
):
    """Gate with the tool's own operation class, then dispatch by name."""
    tool = TOOLS.get(tool_name)
    if tool is None:
        admit(request, db, OperationClass.READ)
        raise ToolNotFound(tool_name)

    access = admit(request, db, tool.operation)
    logger.debug("MCP tool %s by key id=%s", tool_name, access.credential.id)
    result = tool.handler(service, access, params or {})
    return success(request, {"tool": tool_name, "result": result})
