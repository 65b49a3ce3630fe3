"""
Domain error taxonomy.

Every failure a handler can report is a CommerceError subclass carrying an
HTTP status, a stable snake_case code and an actionable message. The
exception handlers in responses.py turn these into the error envelope.
"""

from typing import Optional


class CommerceError(Exception):
    status_code = 500
    default_code = "internal_error"
    retryable = False

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status": self.status_code}


class Unauthenticated(CommerceError):
    status_code = 401
    default_code = "invalid_credentials"


class Forbidden(CommerceError):
    status_code = 403
    default_code = "insufficient_permissions"


class RateLimited(CommerceError):
    status_code = 429
    default_code = "rate_limit_exceeded"

    def __init__(self, message: str, decision=None, code: Optional[str] = None):
        super().__init__(message, code)
        self.decision = decision


class ValidationError(CommerceError):
    status_code = 400
    default_code = "validation_error"


class MissingSessionToken(ValidationError):
    default_code = "missing_cart_token"

    def __init__(self, message: str = "Missing X-Cart-Token header. Create a cart first with POST /cart.",
                 code: Optional[str] = None):
        super().__init__(message, code)


class EmptyCart(ValidationError):
    default_code = "empty_cart"

    def __init__(self, message: str = "Cart is empty. Add items before placing an order.",
                 code: Optional[str] = None):
        super().__init__(message, code)


class NotFound(CommerceError):
    status_code = 404
    default_code = "not_found"


class ToolNotFound(NotFound):
    default_code = "tool_not_found"

    def __init__(self, tool_name: str):
        super().__init__(
            f'MCP tool "{tool_name}" not found. Use GET /mcp/tools to see available tools.'
        )
        self.tool_name = tool_name


class StateConflict(CommerceError):
    status_code = 400
    default_code = "state_conflict"


class UpstreamFailure(CommerceError):
    status_code = 503
    default_code = "upstream_failure"
    retryable = True


def missing_field(field: str, expected: str) -> ValidationError:
    """ValidationError naming the field and the shape it should have."""
    return ValidationError(f"Missing required field '{field}': expected {expected}.", "missing_field")
