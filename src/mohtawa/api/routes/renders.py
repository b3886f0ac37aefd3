"""Render job status endpoint."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from mohtawa.api.dependencies import get_ctx, get_user_id
from mohtawa.api.schemas import ErrorResponse, RenderStatusResponse
from mohtawa.services.context import AppContext

router = APIRouter(tags=["Renders"])


@router.get(
    "/{job_id}",
    response_model=RenderStatusResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_render_status(
    job_id: str,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, Any]:
    try:
        jid = UUID(job_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid job_id") from exc
    status = await ctx.render_queue.status(jid, user_id=user_id)
    return status.to_dict()
