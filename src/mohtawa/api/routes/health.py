"""Health check endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from sqlalchemy import text

from mohtawa.api.schemas import HealthResponse
from mohtawa.app_version import get_app_version
from mohtawa.observability.logging import get_logger

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> dict[str, Any]:
    """Liveness probe; reports database and encoder state without failing."""
    payload: dict[str, Any] = {"status": "healthy", "version": get_app_version()}
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        payload["status"] = "starting"
        return payload

    database_ready = True
    try:
        async with ctx.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("health_database_unreachable", exc_info=True)
        database_ready = False

    payload.update(
        database_ready=database_ready,
        encoder_available=ctx.encoder.is_available(),
        job_dispatcher=ctx.settings.job_dispatcher,
        storage_backend=ctx.settings.storage_backend,
    )
    if not database_ready:
        payload["status"] = "degraded"
    return payload
