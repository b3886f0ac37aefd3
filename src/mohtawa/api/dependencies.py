"""Common FastAPI dependencies for the Mohtawa API."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

from mohtawa.services.context import AppContext
from mohtawa.workflows.engine import ExecutionEngine

__all__ = [
    "api_key_header",
    "get_ctx",
    "get_engine",
    "get_user_id",
    "verify_api_key",
]


def get_ctx(request: Request) -> AppContext:
    """Return the AppContext built by the lifespan (or injected by ``create_app``)."""
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Application context not ready")
    return ctx


def get_engine(request: Request) -> ExecutionEngine:
    """Return the process-wide engine so in-process runs stay supervised."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = ExecutionEngine(get_ctx(request))
        request.app.state.engine = engine
    return engine


def get_user_id(x_user_id: str = Header(..., alias="X-User-ID", max_length=128)) -> str:
    """Caller identity; projects and runs are scoped to it."""
    return x_user_id


# API key verification (shared)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(request: Request, api_key: str = Security(api_key_header)) -> str:
    """Verify API key authentication for all endpoints."""
    if api_key is None:
        raise HTTPException(status_code=401, detail="Missing API key")
    if api_key != get_ctx(request).settings.api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key
