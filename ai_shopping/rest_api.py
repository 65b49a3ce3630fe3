"""
Plain REST API: products, cart, checkout, orders, store info and customer accounts.

Cart routes address the session through the X-Cart-Token header (fallback:
cart_token query parameter or body field).
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ai_shopping.cart_session import TOKEN_HEADER, token_from_request
from ai_shopping.gate import AccessContext, require_read, require_write
from ai_shopping.dependencies import get_service
from ai_shopping.responses import success
from ai_shopping.schemas import (
    AddItemRequest, AddressRequest, CartTokenBody, CouponRequest, OrderNoteRequest, PaymentMethodRequest,
    PlaceOrderRequest, ShippingMethodRequest, UpdateItemRequest,
)
from ai_shopping.services import CommerceService

router = APIRouter(tags=["rest"])


def _token(request: Request, body: Optional[CartTokenBody] = None) -> str:
    return token_from_request(request, body.cart_token if body is not None else None)


# ============================================================================
# Products
# ============================================================================

@router.get("/products")
def list_products(
    request: Request,
    search: str = "",
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.search_products(search, category, min_price, max_price, page, per_page))


@router.get("/products/categories")
def list_categories(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"categories": service.list_categories()})


@router.get("/products/tags")
def list_tags(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"tags": service.list_tags()})


@router.get("/products/attributes")
def list_attributes(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"attributes": service.list_attributes()})


@router.get("/products/attributes/{attribute_id}/terms")
def list_attribute_terms(
    request: Request,
    attribute_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"terms": service.attribute_terms(attribute_id)})


@router.get("/products/reviews")
def list_reviews(
    request: Request,
    product_id: Optional[int] = None,
    rating: Optional[int] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.list_reviews(product_id, rating, page, per_page))


@router.get("/products/{product_id}")
def get_product(
    request: Request,
    product_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.get_product(product_id).to_dict())


@router.get("/products/{product_id}/variations")
def get_product_variations(
    request: Request,
    product_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"variations": service.get_variations(product_id)})


# ============================================================================
# Cart
# ============================================================================

@router.post("/cart", status_code=201)
def create_cart(
    request: Request,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.create_cart(access.credential.id)
    return success(request, service.cart_view(state), status_code=201, headers={TOKEN_HEADER: state.token})


@router.get("/cart")
def get_cart(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.cart_view(service.load(_token(request))))


@router.delete("/cart")
def delete_cart(
    request: Request,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    token = _token(request)
    service.delete_cart(token)
    return success(request, {"deleted": True, "cart_token": token})


@router.post("/cart/items", status_code=201)
def add_cart_item(
    request: Request,
    body: AddItemRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state, line = service.add_item(_token(request, body), body.product_id, body.quantity,
                                   body.variation_id, body.variation)
    view = service.cart_view(state)
    view["item_key"] = line.key
    return success(request, view, status_code=201)


@router.put("/cart/items/{item_key}")
def update_cart_item(
    request: Request,
    item_key: str,
    body: UpdateItemRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.update_item(_token(request, body), item_key, body.quantity)
    return success(request, service.cart_view(state))


@router.delete("/cart/items/{item_key}")
def remove_cart_item(
    request: Request,
    item_key: str,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.remove_item(_token(request), item_key)
    return success(request, service.cart_view(state))


@router.post("/cart/coupons")
def apply_coupon(
    request: Request,
    body: CouponRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.apply_coupon(_token(request, body), body.code)
    return success(request, service.cart_view(state))


@router.delete("/cart/coupons/{code}")
def remove_coupon(
    request: Request,
    code: str,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.remove_coupon(_token(request), code)
    return success(request, service.cart_view(state))


# ============================================================================
# Checkout
# ============================================================================

@router.post("/checkout/calculate")
def calculate(
    request: Request,
    body: Optional[CartTokenBody] = None,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.cart_view(service.load(_token(request, body))))


@router.post("/checkout/validate")
def validate_checkout(
    request: Request,
    body: Optional[CartTokenBody] = None,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    state = service.load(_token(request, body))
    totals = service.price(state)
    errors = service.checkout_errors(state, totals)
    return success(request, {"valid": not errors, "errors": errors, "totals": totals.to_dict()["totals"]})


@router.put("/checkout/shipping-address")
def set_shipping_address(
    request: Request,
    body: AddressRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.set_address(_token(request, body), "shipping", body.address())
    return success(request, service.cart_view(state))


@router.put("/checkout/billing-address")
def set_billing_address(
    request: Request,
    body: AddressRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.set_address(_token(request, body), "billing", body.address())
    return success(request, service.cart_view(state))


@router.get("/checkout/shipping-methods")
def shipping_methods(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    state = service.load(_token(request))
    return success(request, {
        "shipping_methods": [rate.to_dict() for rate in service.shipping_methods(state)],
        "selected": state.buyer.get("shipping_method"),
    })


@router.put("/checkout/shipping-method")
def set_shipping_method(
    request: Request,
    body: ShippingMethodRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.set_shipping_method(_token(request, body), body.shipping_method)
    return success(request, service.cart_view(state))


@router.get("/checkout/payment-methods")
def payment_methods(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"payment_methods": [g.to_dict() for g in service.payment_methods()]})


@router.put("/checkout/payment-method")
def set_payment_method(
    request: Request,
    body: PaymentMethodRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = service.set_payment_method(_token(request, body), body.payment_method)
    return success(request, service.cart_view(state))


@router.post("/checkout/order", status_code=201)
def place_order(
    request: Request,
    body: Optional[PlaceOrderRequest] = None,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    body = body or PlaceOrderRequest()
    state = service.load(_token(request, body))
    order = service.place_order(state, "rest", body.payment_method, body.customer_note or "")
    return success(request, order.to_dict(), status_code=201)


# ============================================================================
# Orders and store
# ============================================================================

@router.get("/orders/{order_id}")
def get_order(
    request: Request,
    order_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.get_order(order_id).to_dict())


@router.get("/orders/{order_id}/tracking")
def get_order_tracking(
    request: Request,
    order_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.order_tracking(order_id))


@router.post("/orders/{order_id}/notes", status_code=201)
def add_order_note(
    request: Request,
    order_id: int,
    body: Optional[OrderNoteRequest] = None,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    result = service.add_order_note(order_id, body.note if body else None)
    return success(request, result, status_code=201)


@router.get("/store")
def store_info(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.store_info())


@router.get("/store/payment-gateways")
def store_payment_gateways(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    gateways = [dict(g.to_dict(), order=position) for position, g in enumerate(service.payment_methods())]
    return success(request, {"payment_gateways": gateways})


@router.get("/store/shipping-zones")
def store_shipping_zones(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"shipping_zones": service.shipping_zones()})


@router.get("/store/tax-rates")
def store_tax_rates(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"tax_rates": service.tax_rates()})


# ============================================================================
# Customer account
# ============================================================================

@router.get("/account")
def get_account(
    request: Request,
    customer_id: Optional[int] = None,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.account(customer_id))


@router.get("/account/orders")
def get_account_orders(
    request: Request,
    customer_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.account_orders(customer_id, page, per_page))


@router.get("/account/addresses")
def get_account_addresses(
    request: Request,
    customer_id: Optional[int] = None,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.account_addresses(customer_id))
