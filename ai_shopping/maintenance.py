"""
Periodic housekeeping, run outside the request path.

- expired cart/checkout sessions are deleted
- rate buckets not refilled for AIS_BUCKET_IDLE_SECONDS are deleted
"""

import asyncio
import logging
from typing import Dict, Optional

from sqlalchemy.orm import sessionmaker

from ai_shopping.cart_session import CartSessionStore
from ai_shopping.config import Settings, get_settings
from ai_shopping.rate_limiter import purge_idle_buckets

logger = logging.getLogger(__name__)


def run_sweeps(session_factory: sessionmaker, settings: Optional[Settings] = None) -> Dict[str, int]:
    """One sweep pass. Returns rows removed per table."""
    settings = settings or get_settings()
    db = session_factory()
    try:
        sessions = CartSessionStore(db, settings.cart_ttl_seconds).sweep_expired()
        buckets = purge_idle_buckets(db, settings.bucket_idle_seconds)
    finally:
        db.close()
    if sessions or buckets:
        logger.info("Maintenance removed %d expired session(s), %d idle rate bucket(s)", sessions, buckets)
    return {"sessions": sessions, "rate_buckets": buckets}


async def maintenance_loop(session_factory: sessionmaker, settings: Settings) -> None:
    """Sweep every maintenance_interval_seconds until cancelled."""
    interval = settings.maintenance_interval_seconds
    logger.info("Maintenance loop started (every %ss)", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(run_sweeps, session_factory, settings)
        except Exception:
            # keep the loop alive; the next pass retries
            logger.exception("Maintenance sweep failed")
