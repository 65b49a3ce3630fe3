"""
Coupon evaluation for the reference commerce engine.

Coupon types:
  percent       : percentage off the goods subtotal
  fixed_cart    : fixed dollar amount off, capped at the subtotal
  free_shipping : removes the shipping charge

A coupon may carry a minimum spend and an expiry. Codes are case-insensitive
and stored upper-case.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ai_shopping.models import Coupon

COUPON_TYPES = ("percent", "fixed_cart", "free_shipping")


@dataclass
class CouponResult:
    valid: bool
    code: str
    description: str
    discount_type: str
    discount_cents: int       # goods discount in cents (0 for free_shipping)
    free_shipping: bool = False
    error: Optional[str] = None


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_live(coupon: Optional[Coupon], now: datetime) -> bool:
    """Exists, enabled, not expired."""
    if coupon is None or not coupon.enabled:
        return False
    return coupon.expires_at is None or coupon.expires_at > now


def evaluate_coupon(coupon: Coupon, subtotal_cents: int, already_discounted_cents: int = 0) -> CouponResult:
    """
    Compute one coupon's effect on a cart.

    Args:
        coupon: Live coupon row.
        subtotal_cents: Goods subtotal before any discount.
        already_discounted_cents: Discount taken by earlier coupons; the
            running discount never exceeds the subtotal.

    Returns:
        CouponResult; valid=False with an error when the minimum spend is not met.
    """
    code = coupon.code

    if subtotal_cents < (coupon.minimum_cents or 0):
        min_dollars = coupon.minimum_cents / 100
        return CouponResult(
            valid=False,
            code=code,
            description=coupon.description or "",
            discount_type=coupon.discount_type,
            discount_cents=0,
            error=f"Order must be at least ${min_dollars:.2f} to use {code}.",
        )

    remaining = max(0, subtotal_cents - already_discounted_cents)
    free_shipping = False
    if coupon.discount_type == "percent":
        discount_cents = min(round(subtotal_cents * coupon.amount / 100), remaining)
    elif coupon.discount_type == "fixed_cart":
        discount_cents = min(round(coupon.amount * 100), remaining)
    elif coupon.discount_type == "free_shipping":
        discount_cents = 0
        free_shipping = True
    else:
        discount_cents = 0

    return CouponResult(
        valid=True,
        code=code,
        description=coupon.description or "",
        discount_type=coupon.discount_type,
        discount_cents=discount_cents,
        free_shipping=free_shipping,
    )
