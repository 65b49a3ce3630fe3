"""
Per-credential token-bucket rate limiting.

Two independent buckets per credential (read / write). Refill is lazy:
every check adds ``whole elapsed minutes × limit`` tokens, capped at the
limit. A limit of 0 means unlimited.

Bucket writes use a compare-and-swap UPDATE (WHERE tokens/last_refill still
hold the values we read) so two concurrent requests cannot both spend the
same token; a lost race re-reads and retries.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ai_shopping.auth import Credential, OperationClass
from ai_shopping.config import Settings
from ai_shopping.database import utcnow
from ai_shopping.models import RateBucket

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
_MAX_ATTEMPTS = 5


@dataclass
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int   # unix epoch seconds

    def headers(self, now: Optional[datetime] = None) -> dict:
        """X-RateLimit-* headers (plus Retry-After when denied); none when unlimited."""
        if self.limit == 0:
            return {}
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.allowed:
            current = int(_epoch(now or utcnow()))
            headers["Retry-After"] = str(max(1, self.reset_at - current))
        return headers


def _epoch(moment: datetime) -> float:
    # naive UTC -> epoch seconds
    return (moment - datetime(1970, 1, 1)).total_seconds()


def resolve_limit(credential: Credential, operation: OperationClass, settings: Settings) -> int:
    override = credential.rate_override(operation)
    if override > 0:
        return override
    return settings.rate_limit_for(operation.value)


class RateLimiter:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def check(
        self,
        credential: Credential,
        operation: OperationClass,
        now: Optional[datetime] = None,
    ) -> RateDecision:
        limit = resolve_limit(credential, operation, self.settings)
        if limit == 0:
            return RateDecision(allowed=True, limit=0, remaining=0, reset_at=0)

        now = now or utcnow()
        for _ in range(_MAX_ATTEMPTS):
            decision = self._attempt(credential.id, operation.value, limit, now)
            if decision is not None:
                if not decision.allowed:
                    logger.info("Rate limit hit: key id=%s bucket=%s", credential.id, operation.value)
                return decision

        # persistent contention on one bucket; treat as exhausted for this window
        logger.warning("Rate bucket contention: key id=%s bucket=%s", credential.id, operation.value)
        return RateDecision(
            allowed=False, limit=limit, remaining=0,
            reset_at=int(_epoch(now)) + WINDOW_SECONDS,
        )

    def _attempt(self, key_id: int, bucket: str, limit: int, now: datetime) -> Optional[RateDecision]:
        """One read-compute-swap round; None means another writer won the race."""
        row = (
            self.db.query(RateBucket)
            .filter(RateBucket.api_key_id == key_id, RateBucket.bucket == bucket)
            .first()
        )

        if row is None:
            # first request seeds the bucket already charged for itself
            self.db.add(RateBucket(api_key_id=key_id, bucket=bucket, tokens=limit - 1, last_refill=now))
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                return None
            return RateDecision(
                allowed=True, limit=limit, remaining=limit - 1,
                reset_at=int(_epoch(now)) + WINDOW_SECONDS,
            )

        seen_tokens = row.tokens
        seen_refill = row.last_refill

        elapsed_minutes = int(max(0.0, (now - seen_refill).total_seconds()) // WINDOW_SECONDS)
        tokens = min(limit, seen_tokens + elapsed_minutes * limit)
        last_refill = now if elapsed_minutes > 0 else seen_refill

        if tokens <= 0:
            return RateDecision(
                allowed=False, limit=limit, remaining=0,
                reset_at=int(_epoch(seen_refill)) + WINDOW_SECONDS,
            )

        result = self.db.execute(
            update(RateBucket)
            .where(
                RateBucket.id == row.id,
                RateBucket.tokens == seen_tokens,
                RateBucket.last_refill == seen_refill,
            )
            .values(tokens=tokens - 1, last_refill=last_refill)
        )
        self.db.commit()
        if result.rowcount != 1:
            return None

        return RateDecision(
            allowed=True, limit=limit, remaining=tokens - 1,
            reset_at=int(_epoch(now)) + WINDOW_SECONDS,
        )


def purge_idle_buckets(db: Session, idle_seconds: int = 86400, now: Optional[datetime] = None) -> int:
    """Delete buckets not refilled within idle_seconds. Returns rows removed."""
    cutoff = (now or utcnow()) - timedelta(seconds=idle_seconds)
    result = db.execute(delete(RateBucket).where(RateBucket.last_refill < cutoff))
    db.commit()
    return result.rowcount or 0
