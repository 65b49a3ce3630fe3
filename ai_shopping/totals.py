"""
Totals engine: re-prices a session's lines and buyer context on every read.

Lines whose product has disappeared, become unpurchasable or gone out of
stock are dropped from the pass (reported in dropped_items). Coupons the
engine no longer accepts are skipped (reported in ineligible_coupons). The
engine's price_cart runs exactly once per call.
"""

import logging
from typing import List, Tuple

from ai_shopping.cart_session import LineItem
from ai_shopping.commerce_engine import CommerceEngine, ComputedTotals, PricingContext, ResolvedLine

logger = logging.getLogger(__name__)


def buyer_context(buyer: dict) -> Tuple[dict, dict]:
    """(billing, shipping) address dicts from a stored buyer context."""
    return dict(buyer.get("billing_address") or {}), dict(buyer.get("shipping_address") or {})


class TotalsEngine:
    def __init__(self, engine: CommerceEngine):
        self.engine = engine

    def resolve_lines(self, items: List[LineItem]) -> Tuple[List[ResolvedLine], List[str]]:
        resolved: List[ResolvedLine] = []
        dropped: List[str] = []
        for item in items:
            product = self.engine.find_product(item.variation_id or item.product_id)
            if (
                product is None
                or not self.engine.is_purchasable(product)
                or not self.engine.is_in_stock(product, item.quantity)
            ):
                dropped.append(item.key)
                continue
            resolved.append(ResolvedLine(
                key=item.key,
                product=product,
                quantity=item.quantity,
                product_id=item.product_id,
                variation_id=item.variation_id,
                variation=dict(item.variation),
            ))
        if dropped:
            logger.info("Dropped %d unpriceable line(s) from pricing", len(dropped))
        return resolved, dropped

    def pricing_context(self, items: List[LineItem], buyer: dict, coupons: List[str]) -> Tuple[PricingContext, List[str], List[str]]:
        lines, dropped = self.resolve_lines(items)
        eligible: List[str] = []
        ineligible: List[str] = []
        for code in coupons:
            (eligible if self.engine.validate_coupon(code) else ineligible).append(code)
        billing, shipping = buyer_context(buyer)
        context = PricingContext(
            lines=lines,
            billing=billing,
            shipping=shipping,
            shipping_method=buyer.get("shipping_method"),
            coupons=eligible,
        )
        return context, dropped, ineligible

    def price_session(self, items: List[LineItem], buyer: dict, coupons: List[str]) -> ComputedTotals:
        context, dropped, ineligible = self.pricing_context(items, buyer, coupons)
        totals = self.engine.price_cart(context)
        totals.dropped_items = dropped + [k for k in totals.dropped_items if k not in dropped]
        totals.ineligible_coupons = ineligible + [c for c in totals.ineligible_coupons if c not in ineligible]
        totals.needs_shipping = any(line.needs_shipping for line in totals.items)
        return totals
