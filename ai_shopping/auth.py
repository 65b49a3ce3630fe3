"""
API key authentication and tier authorization.

Key format: ``ais_<48 alphanumeric chars>``. Only the SHA-256 hex digest of
the secret is stored; the plaintext is returned once, from create_key().

Tiers:
    read       : read operations only
    read_write : read and write operations
    full       : read and write operations
"""

import hashlib
import logging
import secrets
import string
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ai_shopping.database import utcnow
from ai_shopping.errors import Forbidden, NotFound, Unauthenticated, ValidationError
from ai_shopping.models import ApiKey

logger = logging.getLogger(__name__)

KEY_PREFIX = "ais_"
SECRET_LENGTH = 48
_ALPHANUMERIC = string.ascii_letters + string.digits


class OperationClass(str, Enum):
    READ = "read"
    WRITE = "write"


class CredentialTier(str, Enum):
    READ = "read"
    READ_WRITE = "read_write"
    FULL = "full"

    def authorizes(self, required: OperationClass) -> bool:
        if required == OperationClass.READ:
            return True
        return self in (CredentialTier.READ_WRITE, CredentialTier.FULL)

    @classmethod
    def parse(cls, value: str) -> "CredentialTier":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(t.value for t in cls)
            raise ValidationError(f"Invalid tier '{value}': expected one of {allowed}.", "invalid_tier")


class Credential(BaseModel):
    """Authenticated caller, handed to the rate limiter and handlers."""

    id: int
    label: str
    tier: CredentialTier
    rate_limit_read: int = 0
    rate_limit_write: int = 0

    def rate_override(self, operation: OperationClass) -> int:
        if operation == OperationClass.WRITE:
            return self.rate_limit_write
        return self.rate_limit_read


def random_string(length: int) -> str:
    """Cryptographically random alphanumeric string."""
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def bearer_secret(authorization: Optional[str]) -> Optional[str]:
    """Extract the secret from an ``Authorization: Bearer <secret>`` header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


def _to_credential(row: ApiKey) -> Credential:
    return Credential(
        id=row.id,
        label=row.label,
        tier=CredentialTier(row.tier),
        rate_limit_read=row.rate_limit_read or 0,
        rate_limit_write=row.rate_limit_write or 0,
    )


# ============================================================================
# Key management (operator actions)
# ============================================================================

def create_key(
    db: Session,
    label: str,
    tier: CredentialTier = CredentialTier.READ,
    rate_limit_read: int = 0,
    rate_limit_write: int = 0,
) -> Tuple[Credential, str]:
    """
    Create a credential and return it with the plaintext secret.
    The secret cannot be recovered afterwards.
    """
    if not label or not label.strip():
        raise ValidationError("Missing required field 'label': expected a non-empty string.", "missing_field")
    if rate_limit_read < 0 or rate_limit_write < 0:
        raise ValidationError("Rate limits must be >= 0 (0 = use the default).", "invalid_rate_limit")

    secret = KEY_PREFIX + random_string(SECRET_LENGTH)
    row = ApiKey(
        label=label.strip(),
        key_hash=hash_secret(secret),
        tier=CredentialTier(tier).value,
        rate_limit_read=rate_limit_read,
        rate_limit_write=rate_limit_write,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Created API key id=%s label=%s tier=%s", row.id, row.label, row.tier)
    return _to_credential(row), secret


def list_keys(db: Session) -> List[dict]:
    rows = db.query(ApiKey).order_by(ApiKey.id).all()
    return [
        {
            "id": row.id,
            "label": row.label,
            "tier": row.tier,
            "rate_limit_read": row.rate_limit_read,
            "rate_limit_write": row.rate_limit_write,
            "revoked": row.revoked,
            "last_used_at": row.last_used_at.isoformat() if row.last_used_at else None,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]


def revoke_key(db: Session, key_id: int) -> None:
    row = db.get(ApiKey, key_id)
    if row is None:
        raise NotFound(f"API key {key_id} not found.", "key_not_found")
    row.revoked = True
    db.commit()
    logger.info("Revoked API key id=%s", key_id)


def delete_key(db: Session, key_id: int) -> None:
    row = db.get(ApiKey, key_id)
    if row is None:
        raise NotFound(f"API key {key_id} not found.", "key_not_found")
    db.delete(row)
    db.commit()
    logger.info("Deleted API key id=%s", key_id)


# ============================================================================
# Request-time checks
# ============================================================================

def authenticate(db: Session, secret: Optional[str]) -> Credential:
    """Resolve a bearer secret to its credential or raise Unauthenticated."""
    if not secret:
        raise Unauthenticated(
            "Missing API key. Send it as 'Authorization: Bearer <key>'.", "missing_credentials"
        )

    row = db.query(ApiKey).filter(ApiKey.key_hash == hash_secret(secret)).first()
    if row is None or row.revoked:
        logger.warning("Rejected API key (%s)", "revoked" if row is not None else "unknown")
        raise Unauthenticated("Invalid or revoked API key.", "invalid_credentials")

    credential = _to_credential(row)

    # last-used is best-effort; a failed write must not fail the request
    try:
        row.last_used_at = utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not update last_used_at for key id=%s: %s", credential.id, exc)

    return credential


def authorize(credential: Credential, operation: OperationClass) -> None:
    """Raise Forbidden unless the credential's tier covers the operation class."""
    if credential.tier.authorizes(operation):
        return
    required = CredentialTier.READ_WRITE.value if operation == OperationClass.WRITE else CredentialTier.READ.value
    raise Forbidden(
        f"This API key has '{credential.tier.value}' permissions; "
        f"'{required}' or higher is required for {operation.value} operations.",
        "insufficient_permissions",
    )
