"""Video project services: read/update the EDL and trigger draft re-renders."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from mohtawa.edl.schema import EDL, validate_edl
from mohtawa.errors import NotFoundError
from mohtawa.observability.logging import get_logger
from mohtawa.services.media import load_edl, store_edl
from mohtawa.services.render_queue import RenderSubmission
from mohtawa.storage.models import VideoProject
from mohtawa.storage.repositories import VideoProjectRepository

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

logger = get_logger(__name__)


async def get_project(ctx: "AppContext", project_id: UUID, user_id: str) -> VideoProject:
    async with ctx.session_factory() as session:
        project = await VideoProjectRepository(session).get_for_user_async(project_id, user_id)
    if project is None:
        raise NotFoundError("Project not found")
    return project


async def get_edl(ctx: "AppContext", project_id: UUID, user_id: str) -> EDL:
    """Load the project's EDL; stored documents are re-validated on read."""
    project = await get_project(ctx, project_id, user_id)
    return await load_edl(ctx.fetcher, str(project.edl_url))


async def update_edl(ctx: "AppContext", project_id: UUID, user_id: str, edl: Any) -> str:
    """Validate ``edl``, upload it and repoint the project. Returns the new EDL URL."""
    await get_project(ctx, project_id, user_id)
    validated = validate_edl(edl)
    stored = await store_edl(ctx.blob_store, user_id, validated, "edl_updated")
    async with ctx.session_factory() as session:
        await VideoProjectRepository(session).update_async(project_id, edl_url=stored.url)
        await session.commit()
    logger.info("project_edl_updated", project_id=str(project_id), edl_url=stored.url)
    return stored.url


async def render_draft(ctx: "AppContext", project_id: UUID, user_id: str) -> RenderSubmission:
    return await ctx.render_queue.submit_render(project_id, user_id)
