"""
AI Shopping Gateway - FastAPI application

Serves one commerce backend to AI agents over four surfaces:
    {prefix}/...        plain REST (products, cart, checkout, orders)
    {prefix}/acp/...    Agentic Commerce Protocol
    {prefix}/ucp/...    Universal Commerce Protocol (+ /.well-known/ucp)
    {prefix}/mcp/...    MCP tool manifest and dispatch

All endpoints answer with the standard response envelope.
"""

import asyncio
import logging
import time as _time
from contextlib import asynccontextmanager
from typing import Callable, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from ai_shopping import __version__
from ai_shopping.acp_endpoints import router as acp_router
from ai_shopping.commerce_engine import CommerceEngine
from ai_shopping.config import Settings, get_settings
from ai_shopping.database import SessionLocal, init_db, make_engine, make_session_factory
from ai_shopping.logger import set_level
from ai_shopping.maintenance import maintenance_loop
from ai_shopping.mcp_tools import router as mcp_router
from ai_shopping.remote_engine import RemoteCommerceEngine
from ai_shopping.responses import install_error_handlers, protocol_for_path
from ai_shopping.rest_api import router as rest_router
from ai_shopping.ucp_endpoints import router as ucp_router, wellknown_router

logger = logging.getLogger("ai_shopping.main")

EXPOSED_HEADERS = [
    "X-Cart-Token", "X-Checkout-ID", "X-Commerce-Protocol",
    "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After",
]


class LatencyLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        if request.method == "OPTIONS":
            return await call_next(request)
        t0 = _time.perf_counter()
        response = await call_next(request)
        duration_ms = round((_time.perf_counter() - t0) * 1000, 1)
        logger.info("%s %s -> %d  %.1fms", request.method, request.url.path, response.status_code, duration_ms)
        return response


class ProtocolHeaderMiddleware(BaseHTTPMiddleware):
    """Add X-Commerce-Protocol header so agents can detect which protocol handled the request."""
    async def dispatch(self, request: StarletteRequest, call_next) -> StarletteResponse:
        response = await call_next(request)
        response.headers["X-Commerce-Protocol"] = protocol_for_path(request.url.path)
        return response


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    engine: Optional[CommerceEngine] = None,
    engine_factory: Optional[Callable] = None,
) -> FastAPI:
    """
    Build the gateway app.

    Args:
        settings: defaults to the process-wide settings (env + YAML)
        session_factory: SQLAlchemy sessionmaker; built from settings.database_url when omitted
        engine: a shared CommerceEngine; a RemoteCommerceEngine is built when AIS_ENGINE_URL is set
        engine_factory: callable(session_factory, settings) -> CommerceEngine, built per request
    """
    if settings is None:
        settings = get_settings()
    if session_factory is None:
        if settings is get_settings():
            session_factory = SessionLocal
        else:
            session_factory = make_session_factory(make_engine(settings.database_url))
    if engine is None and engine_factory is None and settings.engine_url:
        engine = RemoteCommerceEngine(settings.engine_url, settings.engine_api_key,
                                      settings.engine_timeout_seconds)

    set_level(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Create tables if they don't exist
        init_db(bind=session_factory.kw.get("bind"))

        enabled = [name for name, on in settings.enabled_protocols().items() if on]
        logger.info(
            "AI shopping gateway %s starting: prefix=%s protocols=rest,%s engine=%s",
            settings.version, settings.api_prefix, ",".join(enabled),
            "remote" if settings.engine_url else "sql",
        )
        if not settings.allow_http:
            logger.info("Plain-HTTP requests are refused (AIS_ALLOW_HTTP=false)")

        task = None
        if settings.maintenance_interval_seconds > 0:
            task = asyncio.create_task(maintenance_loop(session_factory, settings))

        yield

        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if isinstance(engine, RemoteCommerceEngine):
            engine.close()

    app = FastAPI(
        title="AI Shopping Gateway",
        description="Commerce API for AI agents: REST, ACP, UCP and MCP over one store",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.engine = engine
    app.state.engine_factory = engine_factory

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )
    app.add_middleware(LatencyLoggingMiddleware)
    app.add_middleware(ProtocolHeaderMiddleware)

    install_error_handlers(app)

    prefix = settings.api_prefix.rstrip("/")
    app.include_router(rest_router, prefix=prefix)
    if settings.enable_acp:
        app.include_router(acp_router, prefix=prefix)
    if settings.enable_ucp:
        app.include_router(ucp_router, prefix=prefix)
        app.include_router(wellknown_router)
    if settings.enable_mcp:
        app.include_router(mcp_router, prefix=prefix)

    @app.get("/")
    def root():
        """Root endpoint - basic health check."""
        return {
            "service": settings.store_name,
            "version": settings.version,
            "status": "operational",
            "api_base": prefix,
        }

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("ai_shopping.main:app", host="0.0.0.0", port=8000, reload=False)
