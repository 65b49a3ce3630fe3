"""
ACP (Agentic Commerce Protocol) endpoints.

Thin adapter over CommerceService: translates ACP request bodies into
service calls and projects the cart session onto the ACP checkout shape.

Session lifecycle: open → (update)* → complete | canceled
Completion requires items and a billing address; a payment method is
optional here (unlike UCP).
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from ai_shopping.acp_schemas import (
    ACP_STATUS_OPEN, ACPCanceledCheckout, ACPCheckoutSession, ACPCompleteRequest,
    ACPCompletedCheckout, ACPCreateRequest, ACPFeedItem, ACPFulfillmentOption, ACPItemRef,
    ACPLineItem, ACPMessage, ACPPaymentMethod, ACPTotals, ACPUpdateRequest,
)
from ai_shopping.cart_session import CartState
from ai_shopping.commerce_engine import ComputedTotals
from ai_shopping.dependencies import get_service
from ai_shopping.errors import CommerceError, NotFound, ValidationError
from ai_shopping.gate import AccessContext, require_read, require_write
from ai_shopping.logger import short_token
from ai_shopping.responses import success
from ai_shopping.services import CommerceService, clean_address

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/acp", tags=["ACP"])

CHECKOUT_NOT_FOUND = "Checkout session not found or expired. Create one with POST /acp/checkout."


# ============================================================================
# Internal Helpers
# ============================================================================

def _load(service: CommerceService, checkout_id: str) -> CartState:
    return service.load(checkout_id, not_found_message=CHECKOUT_NOT_FOUND, not_found_code="checkout_not_found")


def _refs(items: Optional[List[ACPItemRef]]) -> Optional[list]:
    return None if items is None else [item.model_dump() for item in items]


def _address(address) -> Optional[dict]:
    return address.model_dump(exclude_none=True) if address is not None else None


def _messages(totals: ComputedTotals) -> List[ACPMessage]:
    messages = [
        ACPMessage(code="item_unavailable",
                   message=f"Item {key} is no longer available and was left out of the totals.")
        for key in totals.dropped_items
    ]
    messages += [
        ACPMessage(code="coupon_ineligible", message=f"Coupon {code} does not apply to this checkout.")
        for code in totals.ineligible_coupons
    ]
    return messages


def _session_view(service: CommerceService, state: CartState) -> ACPCheckoutSession:
    totals = service.price(state)
    return ACPCheckoutSession(
        id=state.token,
        status=ACP_STATUS_OPEN,
        currency=totals.currency,
        line_items=[
            ACPLineItem(
                key=line.key,
                product_id=line.product_id,
                variation_id=line.variation_id,
                name=line.name,
                sku=line.sku,
                quantity=line.quantity,
                unit_amount=line.unit_price_cents,
                subtotal=line.subtotal_cents,
                discount=line.discount_cents,
                tax=line.tax_cents,
                total=line.total_cents,
            )
            for line in totals.items
        ],
        totals=ACPTotals(
            subtotal=totals.subtotal_cents,
            discount=totals.discount_cents,
            shipping=totals.shipping_cents,
            tax=totals.tax_cents,
            total=totals.total_cents,
            currency=totals.currency,
        ),
        coupons=totals.coupons,
        needs_shipping=totals.needs_shipping,
        billing_address=state.buyer.get("billing_address") or {},
        shipping_address=state.buyer.get("shipping_address") or {},
        shipping_method=totals.shipping_method or state.buyer.get("shipping_method"),
        payment_method=state.buyer.get("payment_method"),
        payment_methods=[ACPPaymentMethod(**g.to_dict()) for g in service.payment_methods()],
        fulfillment_options=[
            ACPFulfillmentOption(id=rate.id, label=rate.label, cost=rate.cost_cents)
            for rate in service.shipping_methods(state)
        ] if totals.needs_shipping else [],
        messages=_messages(totals),
        expires_at=state.expires_at.isoformat() + "Z" if state.expires_at else None,
    )


def _apply_update(service: CommerceService, state: CartState, body) -> None:
    """Apply every supplied field in memory, then persist once."""
    if body.items is not None:
        items = service.resolve_item_refs(_refs(body.items))
        if not items:
            raise ValidationError(
                "None of the items could be resolved to purchasable products. "
                "Check product_id/sku values with GET /acp/products.",
                "invalid_items",
            )
        state.replace_items(items)
    if body.discount_code:
        code = body.discount_code.strip().upper()
        if not service.engine.validate_coupon(code):
            raise NotFound(f"Coupon '{code}' does not exist or has expired.", "invalid_coupon")
        state.add_coupon(code)
    service.update_buyer(
        state,
        billing=_address(body.billing_address),
        shipping=_address(body.shipping_address),
        shipping_method=body.shipping_method,
        payment_method=body.payment_method,
    )


# ============================================================================
# Product feed
# ============================================================================

@router.get("/products")
def acp_product_feed(
    request: Request,
    search: str = "",
    category: Optional[str] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    """ACP product feed: purchasable catalog entries with availability."""
    result = service.search_products(search, category, page=page, per_page=per_page)
    store_url = service.settings.store_url.rstrip("/")
    feed = [
        ACPFeedItem(
            id=p["id"],
            title=p["name"],
            description=p["short_description"] or p["description"],
            sku=p["sku"],
            price=p["price_cents"],
            currency=service.settings.currency,
            availability="in_stock" if p["in_stock"] else "out_of_stock",
            inventory=p["stock_quantity"],
            category=p["category"],
            image_url=p["image_url"],
            product_url=f"{store_url}/product/{p['id']}",
            variation_ids=p["variation_ids"],
        ).model_dump()
        for p in result["products"]
    ]
    return success(request, {"products": feed, "total": result["total"], "page": result["page"],
                             "per_page": result["per_page"]})


# ============================================================================
# Checkout Session CRUD
# ============================================================================

@router.post("/checkout", status_code=201)
def acp_create_checkout(
    request: Request,
    body: ACPCreateRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    """
    POST /acp/checkout

    Resolves items by product_id or sku, creates the session and returns it
    with freshly computed totals. At least one item must resolve.
    """
    items = service.resolve_item_refs(_refs(body.items))
    if not items:
        raise ValidationError(
            "None of the items could be resolved to purchasable products. "
            "Check product_id/sku values with GET /acp/products.",
            "invalid_items",
        )
    # fail on bad addresses before anything is stored
    for kind, address in (("billing", body.billing_address), ("shipping", body.shipping_address)):
        if address is not None:
            clean_address(_address(address), kind)

    state = service.create_cart(access.credential.id)
    try:
        state.replace_items(items)
        _apply_update(service, state, body.model_copy(update={"items": None}))
    except CommerceError:
        service.delete_cart(state.token)
        raise

    logger.info("ACP checkout %s created with %d item(s)", short_token(state.token), len(items))
    view = _session_view(service, state)
    return success(request, view.model_dump(), status_code=201, headers={"X-Checkout-ID": state.token})


@router.get("/checkout/{checkout_id}")
def acp_get_checkout(
    request: Request,
    checkout_id: str,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    """Current session state; nothing is modified."""
    state = _load(service, checkout_id)
    return success(request, _session_view(service, state).model_dump())


@router.post("/checkout/{checkout_id}")
def acp_update_checkout(
    request: Request,
    checkout_id: str,
    body: ACPUpdateRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    """Partial update; unspecified fields are left untouched."""
    state = _load(service, checkout_id)
    _apply_update(service, state, body)
    return success(request, _session_view(service, state).model_dump())


@router.post("/checkout/{checkout_id}/complete")
def acp_complete_checkout(
    request: Request,
    checkout_id: str,
    body: Optional[ACPCompleteRequest] = None,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    """
    Place the order. Requires items and a billing address; the order is
    created as paid (processing) and the session is deleted.
    """
    body = body or ACPCompleteRequest()
    state = _load(service, checkout_id)
    order = service.place_order(state, "acp", body.payment_method, body.customer_note or "")
    result = ACPCompletedCheckout(
        id=checkout_id,
        order_id=order.id,
        order_status=order.status,
        total=order.total_cents,
        currency=order.currency,
    )
    return success(request, result.model_dump())


@router.delete("/checkout/{checkout_id}")
def acp_cancel_checkout(
    request: Request,
    checkout_id: str,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    """Cancel and delete the session; a second cancel answers checkout_not_found."""
    state = _load(service, checkout_id)
    service.delete_cart(state.token)
    return success(request, ACPCanceledCheckout(id=checkout_id).model_dump())
