"""
Uniform response envelope shared by every protocol.

    {"success": true,  "data": {...}, "error": null, "meta": {...}}
    {"success": false, "data": null,  "error": {"code", "message", "status"}, "meta": {...}}

meta = {protocol, version, store, currency, timestamp}. Rate-limit headers
from the access gate are attached to successes and errors alike.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ai_shopping.config import Settings, get_settings
from ai_shopping.errors import CommerceError, RateLimited

logger = logging.getLogger(__name__)

PROTOCOLS = ("acp", "ucp", "mcp")


def request_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def protocol_for_path(path: str) -> str:
    """rest | acp | ucp | mcp, from the route path."""
    if path.startswith("/.well-known/ucp"):
        return "ucp"
    for protocol in PROTOCOLS:
        if f"/{protocol}/" in path or path.endswith(f"/{protocol}"):
            return protocol
    return "rest"


def build_meta(request: Request) -> dict:
    settings = request_settings(request)
    return {
        "protocol": protocol_for_path(request.url.path),
        "version": settings.version,
        "store": settings.store_name,
        "currency": settings.currency,
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


def rate_headers(request: Request) -> dict:
    decision = getattr(request.state, "rate_decision", None)
    return decision.headers() if decision is not None else {}


def success(request: Request, data: Any, status_code: int = 200, headers: Optional[dict] = None) -> JSONResponse:
    all_headers = rate_headers(request)
    all_headers.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content={
            "success": True,
            "data": jsonable_encoder(data),
            "error": None,
            "meta": build_meta(request),
        },
        headers=all_headers,
    )


def failure(request: Request, status_code: int, code: str, message: str,
            headers: Optional[dict] = None) -> JSONResponse:
    all_headers = rate_headers(request)
    all_headers.update(headers or {})
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": {"code": code, "message": message, "status": status_code},
            "meta": build_meta(request),
        },
        headers=all_headers,
    )


# ============================================================================
# Exception handlers
# ============================================================================

async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimited) and exc.decision is not None:
        headers = exc.decision.headers()
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return failure(request, exc.status_code, exc.code, exc.message, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    field = ".".join(loc) or "body"
    message = f"Invalid field '{field}': {first.get('msg', 'invalid value')}."
    if len(errors) > 1:
        message += f" ({len(errors) - 1} more problem(s) in the request.)"
    return failure(request, 400, "validation_error", message)


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "not_found" if exc.status_code == 404 else "http_error"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed."
    if exc.status_code == 404:
        message = f"No route for {request.method} {request.url.path}."
    return failure(request, exc.status_code, code, message, getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return failure(request, 500, "internal_error", "Internal server error.")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommerceError, commerce_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
