"""
Universal Commerce Protocol (UCP) Schemas.

Discovery and negotiation:
    GET  /.well-known/ucp      → merchant profile (public)
    POST /ucp/negotiate        → capability / payment handler agreement

Checkout session (status derived on every read, never stored):
    incomplete         : missing items, billing address or payment method
    ready_for_complete : all three present
    complete           : terminal, after /complete; the session is deleted
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from ai_shopping.acp_schemas import ACPAddress, ACPItemRef

UCP_VERSION = "1.0"

UCP_STATUS_INCOMPLETE = "incomplete"
UCP_STATUS_READY = "ready_for_complete"
UCP_STATUS_COMPLETE = "complete"

MSG_ADD_ITEMS = "Add items to continue."
MSG_BILLING_REQUIRED = "Billing address is required."
MSG_PAYMENT_REQUIRED = "Payment method is required."
MSG_READY = "Checkout is ready. Call /complete to place the order."

# Address and item references share the ACP shapes
UCPAddress = ACPAddress
UCPLineItemRef = ACPItemRef


# ============================================================================
# Discovery
# ============================================================================

class UCPMerchant(BaseModel):
    name: str
    description: str = ""
    url: str
    logo: str = ""


class UCPMerchantProfile(BaseModel):
    ucp_version: str = UCP_VERSION
    merchant: UCPMerchant
    api_base: str
    capabilities: List[str]
    payment_handlers: List[str]
    currency: str
    supported_locales: List[str] = Field(default_factory=list)
    extensions: List[str] = Field(default_factory=list)


class UCPNegotiateRequest(BaseModel):
    capabilities: List[str] = Field(default_factory=list, description="Capabilities the agent supports")
    payment_handlers: List[str] = Field(default_factory=list, description="Payment handlers the agent can use")


class UCPNegotiateResponse(BaseModel):
    ucp_version: str = UCP_VERSION
    negotiated_capabilities: List[str]
    negotiated_payment_handlers: List[str]
    merchant_profile: UCPMerchantProfile


# ============================================================================
# Checkout
# ============================================================================

class UCPCreateCheckoutRequest(BaseModel):
    line_items: List[UCPLineItemRef] = Field(default_factory=list)
    billing_address: Optional[UCPAddress] = None
    shipping_address: Optional[UCPAddress] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None


class UCPUpdateCheckoutRequest(BaseModel):
    """Partial buyer-context patch; omitted fields are unchanged."""
    billing_address: Optional[UCPAddress] = None
    shipping_address: Optional[UCPAddress] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None


class UCPCompleteCheckoutRequest(BaseModel):
    customer_note: Optional[str] = None


class UCPLineItem(BaseModel):
    key: str
    product_id: int
    variation_id: int = 0
    name: str
    quantity: int
    unit_price: int = Field(..., description="Cents")
    total: int = Field(..., description="Cents, after discount and tax")


class UCPTotals(BaseModel):
    subtotal: int
    discount: int = 0
    shipping: int = 0
    tax: int = 0
    total: int


class UCPCheckoutSession(BaseModel):
    id: str
    status: str
    currency: str
    line_items: List[UCPLineItem]
    totals: UCPTotals
    coupons: List[str] = Field(default_factory=list)
    billing_address: dict = Field(default_factory=dict)
    shipping_address: dict = Field(default_factory=dict)
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    messages: List[str] = Field(default_factory=list)
    expires_at: Optional[str] = None


class UCPCompletedCheckout(BaseModel):
    id: str
    status: str = UCP_STATUS_COMPLETE
    order_id: int
    order_status: str
    total: int
    currency: str
