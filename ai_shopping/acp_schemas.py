"""
Agentic Commerce Protocol (ACP) Schemas.

Agent checkout is a four-step flow over one checkout session:
    POST   /acp/checkout                  → create (open)
    GET    /acp/checkout/{id}             → read, totals recomputed
    POST   /acp/checkout/{id}             → update (partial)
    POST   /acp/checkout/{id}/complete    → place order (complete, terminal)
    DELETE /acp/checkout/{id}             → cancel (canceled, terminal)

The checkout id is the cart session token. Terminal states delete the
session, so later calls on the same id answer checkout_not_found.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

ACP_STATUS_OPEN = "open"
ACP_STATUS_COMPLETE = "complete"
ACP_STATUS_CANCELED = "canceled"


# ============================================================================
# Shared Sub-objects
# ============================================================================

class ACPAddress(BaseModel):
    """Billing or shipping address; country is required when an address is sent."""
    model_config = ConfigDict(extra="ignore")

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_1: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = Field(None, description="ISO 3166-1 alpha-2 country code")
    email: Optional[str] = None
    phone: Optional[str] = None


class ACPItemRef(BaseModel):
    """Reference to a product by id or SKU."""
    product_id: Optional[int] = Field(None, description="Product ID")
    sku: Optional[str] = Field(None, description="Product SKU (alternative to product_id)")
    variation_id: Optional[int] = Field(None, description="Variation ID for variable products")
    quantity: int = Field(1, description="Quantity", ge=1)


class ACPMessage(BaseModel):
    """Non-fatal issue surfaced in the session body (dropped item, ineligible coupon)."""
    code: str = Field(..., description="Machine-readable code")
    message: str = Field(..., description="Human-readable description")
    severity: str = Field("warning", description="error | warning | info")


# ============================================================================
# ACP Request Models
# ============================================================================

class ACPCreateRequest(BaseModel):
    """Request body for POST /acp/checkout."""
    items: Optional[List[ACPItemRef]] = Field(None, description="Products to purchase")
    billing_address: Optional[ACPAddress] = None
    shipping_address: Optional[ACPAddress] = None
    shipping_method: Optional[str] = Field(None, description="Shipping method id")
    payment_method: Optional[str] = Field(None, description="Payment gateway id")
    discount_code: Optional[str] = Field(None, description="Coupon code to apply")


class ACPUpdateRequest(BaseModel):
    """
    Request body for POST /acp/checkout/{id}. Only supplied fields change;
    items, when supplied, replace the whole list.
    """
    items: Optional[List[ACPItemRef]] = None
    billing_address: Optional[ACPAddress] = None
    shipping_address: Optional[ACPAddress] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    discount_code: Optional[str] = Field(None, description="One additional coupon code")


class ACPCompleteRequest(BaseModel):
    """Request body for POST /acp/checkout/{id}/complete."""
    payment_method: Optional[str] = Field(None, description="Overrides the session payment method")
    customer_note: Optional[str] = None


# ============================================================================
# ACP Response Models
# ============================================================================

class ACPLineItem(BaseModel):
    key: str
    product_id: int
    variation_id: int = 0
    name: str
    sku: Optional[str] = None
    quantity: int
    unit_amount: int = Field(..., description="Unit price in cents")
    subtotal: int
    discount: int = 0
    tax: int = 0
    total: int


class ACPTotals(BaseModel):
    subtotal: int
    discount: int = 0
    shipping: int = 0
    tax: int = 0
    total: int
    currency: str


class ACPPaymentMethod(BaseModel):
    id: str
    title: str
    description: str = ""


class ACPFulfillmentOption(BaseModel):
    id: str
    label: str
    cost: int = Field(..., description="Cost in cents")


class ACPCheckoutSession(BaseModel):
    id: str = Field(..., description="Checkout id (session token)")
    status: str = Field(ACP_STATUS_OPEN, description="open | complete | canceled")
    currency: str
    line_items: List[ACPLineItem]
    totals: ACPTotals
    coupons: List[str] = Field(default_factory=list)
    needs_shipping: bool = False
    billing_address: dict = Field(default_factory=dict)
    shipping_address: dict = Field(default_factory=dict)
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    payment_methods: List[ACPPaymentMethod] = Field(default_factory=list)
    fulfillment_options: List[ACPFulfillmentOption] = Field(default_factory=list)
    messages: List[ACPMessage] = Field(default_factory=list)
    expires_at: Optional[str] = None


class ACPCompletedCheckout(BaseModel):
    id: str
    status: str = ACP_STATUS_COMPLETE
    order_id: int
    order_status: str
    total: int = Field(..., description="Order total in cents")
    currency: str


class ACPCanceledCheckout(BaseModel):
    id: str
    status: str = ACP_STATUS_CANCELED


class ACPFeedItem(BaseModel):
    id: int
    title: str
    description: str = ""
    sku: Optional[str] = None
    price: int = Field(..., description="Price in cents")
    currency: str
    availability: str = Field(..., description="in_stock | out_of_stock")
    inventory: Optional[int] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    product_url: str
    variation_ids: List[int] = Field(default_factory=list)
