"""
Access gate run in front of every protected route:

    transport check → authenticate → authorize tier → rate limit

The rate decision is stored on request.state so the envelope can attach
X-RateLimit-* headers to whatever the handler returns.
"""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ai_shopping.auth import Credential, OperationClass, authenticate, authorize, bearer_secret
from ai_shopping.config import Settings
from ai_shopping.database import get_db
from ai_shopping.errors import Forbidden, RateLimited
from ai_shopping.rate_limiter import RateDecision, RateLimiter
from ai_shopping.responses import request_settings

logger = logging.getLogger(__name__)


@dataclass
class AccessContext:
    credential: Credential
    decision: RateDecision
    operation: OperationClass


def is_secure(request: Request, settings: Settings) -> bool:
    if request.url.scheme == "https":
        return True
    if not settings.trust_forwarded_proto:
        return False
    peer = request.client.host if request.client else ""
    if settings.trusted_proxies and peer not in settings.trusted_proxies:
        return False
    forwarded = request.headers.get("X-Forwarded-Proto", "")
    return forwarded.split(",")[0].strip().lower() == "https"


def admit(request: Request, db: Session, operation: OperationClass) -> AccessContext:
    settings = request_settings(request)

    if not settings.allow_http and not is_secure(request, settings):
        raise Forbidden("HTTPS is required. Resend the request over https://.", "https_required")

    credential = authenticate(db, bearer_secret(request.headers.get("Authorization")))
    authorize(credential, operation)

    decision = RateLimiter(db, settings).check(credential, operation)
    request.state.rate_decision = decision
    request.state.credential = credential
    if not decision.allowed:
        raise RateLimited(
            f"Rate limit of {decision.limit} {operation.value} requests per minute exceeded. "
            f"Retry after the time in the Retry-After header.",
            decision,
        )
    return AccessContext(credential=credential, decision=decision, operation=operation)


def require(operation: OperationClass):
    """FastAPI dependency factory gating a route on an operation class."""

    def dependency(request: Request, db: Session = Depends(get_db)) -> AccessContext:
        return admit(request, db, operation)

    dependency.__name__ = f"require_{operation.value}"
    return dependency


require_read = require(OperationClass.READ)
require_write = require(OperationClass.WRITE)
