"""
UCP (Universal Commerce Protocol) endpoints.

Discovery, capability negotiation, catalog and a checkout session whose
status is derived from its contents on every read. Completion is refused
unless the derived status is exactly ready_for_complete.
"""

import logging
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, Query, Request

from ai_shopping.cart_session import CartState
from ai_shopping.dependencies import get_service
from ai_shopping.errors import CommerceError, StateConflict
from ai_shopping.gate import AccessContext, require_read, require_write
from ai_shopping.logger import short_token
from ai_shopping.responses import success
from ai_shopping.services import CommerceService, clean_address
from ai_shopping.ucp_schemas import (
    MSG_ADD_ITEMS, MSG_BILLING_REQUIRED, MSG_PAYMENT_REQUIRED, MSG_READY,
    UCP_STATUS_INCOMPLETE, UCP_STATUS_READY, UCPCheckoutSession, UCPCompleteCheckoutRequest,
    UCPCompletedCheckout, UCPCreateCheckoutRequest, UCPLineItem, UCPMerchant, UCPMerchantProfile,
    UCPNegotiateRequest, UCPNegotiateResponse, UCPTotals, UCPUpdateCheckoutRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ucp", tags=["UCP"])
wellknown_router = APIRouter(tags=["UCP"])

CHECKOUT_NOT_FOUND = "Checkout session not found or expired. Create one with POST /ucp/checkout."


# ============================================================================
# Pure helpers
# ============================================================================

def derive_status(state: CartState) -> Tuple[str, List[str]]:
    """(status, guidance messages) from session contents alone."""
    messages = []
    if state.is_empty:
        messages.append(MSG_ADD_ITEMS)
    if not state.buyer.get("billing_address"):
        messages.append(MSG_BILLING_REQUIRED)
    if not state.buyer.get("payment_method"):
        messages.append(MSG_PAYMENT_REQUIRED)
    if messages:
        return UCP_STATUS_INCOMPLETE, messages
    return UCP_STATUS_READY, [MSG_READY]


def negotiate(merchant_capabilities: List[str], merchant_handlers: List[str],
              agent_capabilities: List[str], agent_handlers: List[str]) -> Tuple[List[str], List[str]]:
    """
    Capabilities: intersection, or every merchant capability when the
    intersection is empty. Payment handlers: strict intersection.
    """
    capabilities = [c for c in merchant_capabilities if c in agent_capabilities] or list(merchant_capabilities)
    handlers = [h for h in merchant_handlers if h in agent_handlers]
    return capabilities, handlers


def build_profile(service: CommerceService) -> UCPMerchantProfile:
    settings = service.settings
    return UCPMerchantProfile(
        merchant=UCPMerchant(
            name=settings.store_name,
            description=settings.store_description,
            url=settings.store_url,
            logo=settings.store_logo,
        ),
        api_base=settings.store_url.rstrip("/") + settings.api_prefix,
        capabilities=service.merchant_capabilities(),
        payment_handlers=[g.id for g in service.payment_methods()],
        currency=settings.currency,
        supported_locales=list(settings.supported_locales),
        extensions=service.engine.active_extensions(),
    )


def _load(service: CommerceService, checkout_id: str) -> CartState:
    return service.load(checkout_id, not_found_message=CHECKOUT_NOT_FOUND, not_found_code="checkout_not_found")


def _address(address) -> Optional[dict]:
    return address.model_dump(exclude_none=True) if address is not None else None


def _session_view(service: CommerceService, state: CartState) -> UCPCheckoutSession:
    status, messages = derive_status(state)
    totals = service.price(state)
    return UCPCheckoutSession(
        id=state.token,
        status=status,
        currency=totals.currency,
        line_items=[
            UCPLineItem(
                key=line.key,
                product_id=line.product_id,
                variation_id=line.variation_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price_cents,
                total=line.total_cents,
            )
            for line in totals.items
        ],
        totals=UCPTotals(
            subtotal=totals.subtotal_cents,
            discount=totals.discount_cents,
            shipping=totals.shipping_cents,
            tax=totals.tax_cents,
            total=totals.total_cents,
        ),
        coupons=totals.coupons,
        billing_address=state.buyer.get("billing_address") or {},
        shipping_address=state.buyer.get("shipping_address") or {},
        shipping_method=state.buyer.get("shipping_method"),
        payment_method=state.buyer.get("payment_method"),
        messages=messages,
        expires_at=state.expires_at.isoformat() + "Z" if state.expires_at else None,
    )


# ============================================================================
# Discovery and negotiation
# ============================================================================

@wellknown_router.get("/.well-known/ucp")
def ucp_well_known(request: Request, service: CommerceService = Depends(get_service)):
    """Public merchant profile for agent discovery."""
    return success(request, build_profile(service).model_dump())


@router.get("/profile")
def ucp_profile(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, build_profile(service).model_dump())


@router.post("/negotiate")
def ucp_negotiate(
    request: Request,
    body: UCPNegotiateRequest,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    profile = build_profile(service)
    capabilities, handlers = negotiate(profile.capabilities, profile.payment_handlers,
                                       body.capabilities, body.payment_handlers)
    result = UCPNegotiateResponse(
        negotiated_capabilities=capabilities,
        negotiated_payment_handlers=handlers,
        merchant_profile=profile,
    )
    return success(request, result.model_dump())


# ============================================================================
# Catalog
# ============================================================================

@router.get("/catalog/search")
def ucp_catalog_search(
    request: Request,
    q: str = "",
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.search_products(q, category, min_price, max_price, page, per_page))


@router.get("/catalog/categories")
def ucp_catalog_categories(
    request: Request,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, {"categories": service.list_categories()})


@router.get("/catalog/products/{product_id}")
def ucp_catalog_product(
    request: Request,
    product_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.get_product(product_id).to_dict())


# ============================================================================
# Checkout session
# ============================================================================

@router.post("/checkout", status_code=201)
def ucp_create_checkout(
    request: Request,
    body: UCPCreateCheckoutRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    """Create a session; items and buyer context are optional at this point."""
    items = service.resolve_item_refs([i.model_dump() for i in body.line_items]) if body.line_items else []
    for kind, address in (("billing", body.billing_address), ("shipping", body.shipping_address)):
        if address is not None:
            clean_address(_address(address), kind)

    state = service.create_cart(access.credential.id)
    try:
        state.replace_items(items)
        service.update_buyer(
            state,
            billing=_address(body.billing_address),
            shipping=_address(body.shipping_address),
            shipping_method=body.shipping_method,
            payment_method=body.payment_method,
        )
    except CommerceError:
        service.delete_cart(state.token)
        raise

    logger.info("UCP checkout %s created", short_token(state.token))
    return success(request, _session_view(service, state).model_dump(), status_code=201)


@router.get("/checkout/{checkout_id}")
def ucp_get_checkout(
    request: Request,
    checkout_id: str,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, _session_view(service, _load(service, checkout_id)).model_dump())


@router.patch("/checkout/{checkout_id}")
def ucp_update_checkout(
    request: Request,
    checkout_id: str,
    body: UCPUpdateCheckoutRequest,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = _load(service, checkout_id)
    service.update_buyer(
        state,
        billing=_address(body.billing_address),
        shipping=_address(body.shipping_address),
        shipping_method=body.shipping_method,
        payment_method=body.payment_method,
    )
    return success(request, _session_view(service, state).model_dump())


@router.post("/checkout/{checkout_id}/complete")
def ucp_complete_checkout(
    request: Request,
    checkout_id: str,
    body: Optional[UCPCompleteCheckoutRequest] = None,
    access: AccessContext = Depends(require_write),
    service: CommerceService = Depends(get_service),
):
    state = _load(service, checkout_id)
    status, messages = derive_status(state)
    if status != UCP_STATUS_READY:
        raise StateConflict(
            f"Checkout is not ready to complete (status: {status}). {' '.join(messages)}",
            "not_ready",
        )
    order = service.place_order(state, "ucp", customer_note=(body.customer_note if body else "") or "")
    result = UCPCompletedCheckout(
        id=checkout_id,
        order_id=order.id,
        order_status=order.status,
        total=order.total_cents,
        currency=order.currency,
    )
    return success(request, result.model_dump())


@router.get("/orders/{order_id}")
def ucp_get_order(
    request: Request,
    order_id: int,
    access: AccessContext = Depends(require_read),
    service: CommerceService = Depends(get_service),
):
    return success(request, service.get_order(order_id).to_dict())
