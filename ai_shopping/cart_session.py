"""
Token-addressed cart/checkout session store.

A session is one CartSession row:
    cart_data      {"items": {line_key: line}, "coupons": [code, ...]}
    customer_data  buyer context (billing/shipping address, shipping_method,
                   payment_method)

Every write (cart or buyer context) slides the expiry window forward from the
time of the write. Expired rows are invisible to load() and removed by
sweep_expired().
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fastapi import Request
from sqlalchemy import delete
from sqlalchemy.orm import Session

from ai_shopping.auth import random_string
from ai_shopping.database import utcnow
from ai_shopping.errors import MissingSessionToken, NotFound
from ai_shopping.logger import short_token
from ai_shopping.models import CartSession

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 48
TOKEN_HEADER = "X-Cart-Token"
TOKEN_PARAM = "cart_token"
DEFAULT_TTL_SECONDS = 86400

CART_NOT_FOUND = "Cart session not found or expired. Create a new cart with POST /cart."


def line_item_key(product_id: int, variation_id: int = 0, options: Optional[dict] = None) -> str:
    """Stable key for a product + variation + option set."""
    raw = f"{int(product_id)}-{int(variation_id or 0)}-{json.dumps(options or {}, sort_keys=True)}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


@dataclass
class LineItem:
    key: str
    product_id: int
    variation_id: int = 0
    variation: Dict[str, str] = field(default_factory=dict)
    quantity: int = 1

    @classmethod
    def build(cls, product_id: int, quantity: int = 1, variation_id: int = 0,
              variation: Optional[dict] = None) -> "LineItem":
        variation = dict(variation or {})
        return cls(
            key=line_item_key(product_id, variation_id, variation),
            product_id=int(product_id),
            variation_id=int(variation_id or 0),
            variation=variation,
            quantity=int(quantity),
        )

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "variation": self.variation,
            "quantity": self.quantity,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            key=data["key"],
            product_id=int(data["product_id"]),
            variation_id=int(data.get("variation_id") or 0),
            variation=dict(data.get("variation") or {}),
            quantity=int(data.get("quantity", 1)),
        )


@dataclass
class CartState:
    """In-memory view of a loaded session."""

    token: str
    owner_id: int
    items: Dict[str, LineItem]
    coupons: List[str]
    buyer: dict
    expires_at: datetime
    created_at: Optional[datetime] = None

    def add_item(self, item: LineItem) -> LineItem:
        """Merge by key: an existing line gains quantity instead of duplicating."""
        existing = self.items.get(item.key)
        if existing is not None:
            existing.quantity += item.quantity
            return existing
        self.items[item.key] = item
        return item

    def replace_items(self, items: List[LineItem]) -> None:
        self.items = {}
        for item in items:
            self.add_item(item)

    def add_coupon(self, code: str) -> bool:
        """False when the code is already applied."""
        code = code.strip().upper()
        if code in self.coupons:
            return False
        self.coupons.append(code)
        return True

    @property
    def line_items(self) -> List[LineItem]:
        return list(self.items.values())

    @property
    def is_empty(self) -> bool:
        return not self.items


class CartSessionStore:
    """
    Durable session store. The clock is injectable so expiry can be tested
    without waiting.
    """

    def __init__(self, db: Session, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock

    def create(self, owner_id: int = 0) -> str:
        now = self.clock()
        token = random_string(TOKEN_LENGTH)
        self.db.add(CartSession(
            cart_token=token,
            api_key_id=owner_id or 0,
            cart_data={"items": {}, "coupons": []},
            customer_data={},
            expires_at=now + self.ttl,
            created_at=now,
            updated_at=now,
        ))
        self.db.commit()
        logger.debug("Created cart session %s", short_token(token))
        return token

    def _row(self, token: str) -> Optional[CartSession]:
        if not token:
            return None
        return (
            self.db.query(CartSession)
            .filter(CartSession.cart_token == token, CartSession.expires_at > self.clock())
            .first()
        )

    def load(self, token: str, not_found_message: str = CART_NOT_FOUND,
             not_found_code: str = "cart_not_found") -> CartState:
        """Raises NotFound for unknown and expired tokens alike."""
        row = self._row(token)
        if row is None:
            raise NotFound(not_found_message, not_found_code)
        cart = row.cart_data or {}
        return CartState(
            token=row.cart_token,
            owner_id=row.api_key_id,
            items={k: LineItem.from_dict(v) for k, v in (cart.get("items") or {}).items()},
            coupons=list(cart.get("coupons") or []),
            buyer=dict(row.customer_data or {}),
            expires_at=row.expires_at,
            created_at=row.created_at,
        )

    def save(self, token: str, items: List[LineItem], coupons: List[str]) -> None:
        row = self._require_row(token)
        row.cart_data = {
            "items": {item.key: item.to_dict() for item in items},
            "coupons": list(dict.fromkeys(coupons)),
        }
        self._touch(row)
        self.db.commit()

    def save_buyer_context(self, token: str, buyer: dict) -> None:
        row = self._require_row(token)
        row.customer_data = dict(buyer)
        self._touch(row)
        self.db.commit()

    def save_state(self, state: CartState) -> None:
        """Persist items, coupons and buyer context together."""
        row = self._require_row(state.token)
        row.cart_data = {
            "items": {item.key: item.to_dict() for item in state.line_items},
            "coupons": list(dict.fromkeys(state.coupons)),
        }
        row.customer_data = dict(state.buyer)
        self._touch(row)
        self.db.commit()
        state.expires_at = row.expires_at

    def delete(self, token: str) -> None:
        """Idempotent; unknown tokens are ignored."""
        self.db.execute(delete(CartSession).where(CartSession.cart_token == token))
        self.db.commit()

    def sweep_expired(self) -> int:
        """Remove rows already past expiry. Returns rows removed."""
        result = self.db.execute(delete(CartSession).where(CartSession.expires_at <= self.clock()))
        self.db.commit()
        return result.rowcount or 0

    def _require_row(self, token: str) -> CartSession:
        row = self._row(token)
        if row is None:
            raise NotFound(CART_NOT_FOUND, "cart_not_found")
        return row

    def _touch(self, row: CartSession) -> None:
        now = self.clock()
        row.updated_at = now
        row.expires_at = now + self.ttl


def token_from_request(request: Request, body_token: Optional[str] = None) -> str:
    """
    Session token from the X-Cart-Token header, else the cart_token query
    parameter, else a cart_token body field.
    """
    token = request.headers.get(TOKEN_HEADER) or request.query_params.get(TOKEN_PARAM) or body_token
    if not token:
        raise MissingSessionToken()
    return token.strip()
