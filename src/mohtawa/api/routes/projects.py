"""Video project endpoints: EDL editing, draft renders and live previews."""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from mohtawa.api.dependencies import get_ctx, get_user_id
from mohtawa.api.schemas import (
    EdlResponse,
    ErrorResponse,
    ExportPreviewResponse,
    ProjectResponse,
    RenderSubmissionResponse,
    UpdateEdlRequest,
    UpdateEdlResponse,
)
from mohtawa.edl.schema import dump_edl
from mohtawa.services import projects as project_service
from mohtawa.services.context import AppContext

router = APIRouter(tags=["Projects"])


def _project_uuid(project_id: str) -> UUID:
    try:
        return UUID(project_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid project_id") from exc


@router.get(
    "/{project_id}/edl",
    response_model=EdlResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_edl(
    project_id: str,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, Any]:
    edl = await project_service.get_edl(ctx, _project_uuid(project_id), user_id)
    return {"projectId": project_id, "edl": dump_edl(edl)}


@router.put(
    "/{project_id}/edl",
    response_model=UpdateEdlResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def put_edl(
    project_id: str,
    body: UpdateEdlRequest,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, Any]:
    edl_url = await project_service.update_edl(ctx, _project_uuid(project_id), user_id, body.edl)
    return {"projectId": project_id, "edlUrl": edl_url}


@router.post(
    "/{project_id}/render-draft",
    response_model=RenderSubmissionResponse,
    responses={404: {"model": ErrorResponse}},
)
async def render_draft(
    project_id: str,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Any:
    """Queue (or run inline) a draft render of the project's current EDL."""
    submission = await project_service.render_draft(ctx, _project_uuid(project_id), user_id)
    if submission.status == "queued":
        return JSONResponse(status_code=202, content=submission.to_dict())
    return submission.to_dict()


@router.get("/{project_id}/export-preview", response_model=ExportPreviewResponse)
async def export_preview(
    project_id: str,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, Any]:
    """Progress and latest preview frame of an in-process render."""
    pid = _project_uuid(project_id)
    await project_service.get_project(ctx, pid, user_id)
    return ctx.render_queue.export_preview(pid)


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_project(
    project_id: str,
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, Any]:
    """Project detail; clients poll ``draftVideoUrl`` after a draft render."""
    project = await project_service.get_project(ctx, _project_uuid(project_id), user_id)
    return {
        "id": str(project.id),
        "edlUrl": project.edl_url,
        "draftVideoUrl": project.draft_video_url,
        "status": project.status,
        "createdAt": project.created_at,
        "updatedAt": project.updated_at,
    }
