"""
Request models for the REST API.

Every cart/checkout body accepts an optional cart_token as the last-resort
fallback for clients that cannot send the X-Cart-Token header.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class CartTokenBody(BaseModel):
    cart_token: Optional[str] = Field(None, description="Fallback for the X-Cart-Token header")


class AddItemRequest(CartTokenBody):
    product_id: Optional[int] = Field(None, description="Product ID")
    quantity: int = Field(default=1, description="Quantity to add (>= 1)")
    variation_id: int = Field(default=0, description="Variation ID for variable products")
    variation: Dict[str, str] = Field(default_factory=dict, description="Chosen option values")


class UpdateItemRequest(CartTokenBody):
    quantity: int = Field(..., description="New quantity (>= 1); use DELETE to remove")


class CouponRequest(CartTokenBody):
    code: Optional[str] = Field(None, description="Coupon code")


class AddressRequest(CartTokenBody):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    address_1: Optional[str] = None
    address_2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = Field(None, description="2-letter ISO country code (required)")
    email: Optional[str] = None
    phone: Optional[str] = None

    def address(self) -> dict:
        return self.model_dump(exclude={"cart_token"}, exclude_none=True)


class ShippingMethodRequest(CartTokenBody):
    shipping_method: Optional[str] = Field(None, description="Shipping method id, e.g. flat_rate:express")


class PaymentMethodRequest(CartTokenBody):
    payment_method: Optional[str] = Field(None, description="Enabled payment gateway id")


class PlaceOrderRequest(CartTokenBody):
    payment_method: Optional[str] = Field(None, description="Overrides the payment method stored on the cart")
    customer_note: Optional[str] = Field(None, description="Note attached to the order")


class OrderNoteRequest(BaseModel):
    note: Optional[str] = Field(None, description="Note text shown to the customer")
