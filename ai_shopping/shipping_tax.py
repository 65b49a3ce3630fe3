"""
US 50-state (+ DC) sales tax rates and shipping cost tables for the
reference commerce engine.

Tax rates are approximate combined state + average local rates.
Destinations outside the US are not taxed.

Shipping methods (flat_rate:<tier>):
  standard  : free (0¢)
  express   : $5.99 (599¢)
  overnight : $14.99 (1499¢)

Per-unit weight surcharge on non-standard tiers:
  0–5 lbs    → none
  5–20 lbs   → +$2.00 (200¢)
  20+ lbs    → +$5.00 (500¢)
"""

from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Tuple


# ─── 50-State + DC tax rates ─────────────────────────────────────────────────
# Format: { "STATE_CODE": rate_pct }

STATE_TAX: Dict[str, float] = {
    "AL": 9.24, "AK": 1.76, "AZ": 8.37, "AR": 9.47, "CA": 8.75,
    "CO": 7.77, "CT": 6.35, "DE": 0.00, "FL": 7.01, "GA": 7.37,
    "HI": 4.44, "ID": 6.02, "IL": 8.85, "IN": 7.00, "IA": 6.94,
    "KS": 8.68, "KY": 6.00, "LA": 9.56, "ME": 5.50, "MD": 6.00,
    "MA": 6.25, "MI": 6.00, "MN": 7.46, "MS": 7.07, "MO": 8.28,
    "MT": 0.00, "NE": 6.94, "NV": 8.23, "NH": 0.00, "NJ": 6.60,
    "NM": 7.84, "NY": 8.52, "NC": 6.99, "ND": 6.96, "OH": 7.22,
    "OK": 8.95, "OR": 0.00, "PA": 6.34, "RI": 7.00, "SC": 7.44,
    "SD": 6.40, "TN": 9.55, "TX": 8.19, "UT": 7.19, "VT": 6.24,
    "VA": 5.65, "WA": 9.38, "WV": 6.52, "WI": 5.42, "WY": 5.44,
    "DC": 6.00,
}

# method id -> (label, base cents)
SHIPPING_METHODS: Dict[str, Tuple[str, int]] = {
    "flat_rate:standard": ("Standard Shipping", 0),
    "flat_rate:express": ("Express Shipping", 599),
    "flat_rate:overnight": ("Overnight Shipping", 1499),
}
DEFAULT_SHIPPING_METHOD = "flat_rate:standard"

# Weight-tier surcharges in cents (added on top of base, per unit)
_WEIGHT_SURCHARGE = {
    "light": 0,      # 0–5 lbs
    "medium": 200,   # 5–20 lbs
    "heavy": 500,    # 20+ lbs
}


def tax_rate_pct(country: Optional[str], state: Optional[str]) -> float:
    """Sales tax rate for a destination; 0 outside the US or for unknown states."""
    if (country or "").upper() != "US":
        return 0.0
    return STATE_TAX.get((state or "").upper().strip(), 0.0)


def _weight_tier(weight_lbs: Optional[float]) -> str:
    if weight_lbs is None or weight_lbs <= 5:
        return "light"
    if weight_lbs <= 20:
        return "medium"
    return "heavy"


def shipping_cost(method_id: str, parcels: Iterable[Tuple[Optional[float], int]]) -> int:
    """
    Shipping charge in cents.

    Args:
        method_id: one of SHIPPING_METHODS
        parcels: (weight_lbs, quantity) for each line that ships
    """
    if method_id not in SHIPPING_METHODS:
        raise ValueError(f"Unknown shipping method: {method_id!r}")
    _, base = SHIPPING_METHODS[method_id]
    if method_id == DEFAULT_SHIPPING_METHOD:
        return base
    surcharge = sum(_WEIGHT_SURCHARGE[_weight_tier(weight)] * qty for weight, qty in parcels)
    return base + surcharge


def allocate(amount_cents: int, weights: List[int]) -> List[int]:
    """Split amount_cents across lines in proportion to weights; shares sum exactly."""
    total = sum(weights)
    if not weights or total <= 0 or amount_cents <= 0:
        return [0] * len(weights)
    shares = [amount_cents * w // total for w in weights]
    leftover = amount_cents - sum(shares)
    # hand the rounding remainder to the largest lines first
    for i in sorted(range(len(weights)), key=lambda i: weights[i], reverse=True)[:leftover]:
        shares[i] += 1
    return shares
