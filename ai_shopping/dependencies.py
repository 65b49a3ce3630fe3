"""FastAPI dependencies that assemble the per-request service stack."""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from ai_shopping.commerce_engine import BoundedEngine, CommerceEngine
from ai_shopping.database import SessionLocal, get_db
from ai_shopping.responses import request_settings
from ai_shopping.services import CommerceService
from ai_shopping.sql_engine import SQLCommerceEngine


def get_engine(request: Request, db: Session = Depends(get_db)) -> CommerceEngine:
    """
    The configured engine wrapped in the timeout bound. app.state.engine
    (remote client) wins over the bundled SQL engine; app.state.engine_factory
    lets callers build one per request from (session_factory, settings).

    Bounded calls run on worker threads that can outlive the request, so a
    bounded SQL engine opens its own session per call instead of using `db`.
    """
    settings = request_settings(request)
    state = request.app.state
    session_factory = getattr(state, "session_factory", None) or SessionLocal
    factory = getattr(state, "engine_factory", None)
    if factory is not None:
        inner = factory(session_factory, settings)
    elif getattr(state, "engine", None) is not None:
        inner = state.engine
    elif settings.engine_timeout_seconds > 0:
        inner = SQLCommerceEngine(session_factory=session_factory, currency=settings.currency)
    else:
        inner = SQLCommerceEngine(db, currency=settings.currency)
    return BoundedEngine(inner, timeout=settings.engine_timeout_seconds)


def get_service(
    request: Request,
    db: Session = Depends(get_db),
    engine: CommerceEngine = Depends(get_engine),
) -> CommerceService:
    return CommerceService(db, request_settings(request), engine)
