"""Draft re-render dispatch: durable ``render.draft`` jobs or in-process renders.

``settings.job_dispatcher`` picks the mode:

- ``db``: enqueue a job for the render worker pool; the worker reports
  progress into ``Job.progress`` and uploads preview frames to the blob store.
- ``inprocess``: render immediately and stream progress plus base64 preview
  frames into the injected preview store, keyed by project id.

Either way the mp4 is uploaded under the ``draft`` suffix and the project's
``draft_video_url`` is repointed.
"""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional
from uuid import UUID

from mohtawa.errors import NotFoundError, PermissionDeniedError
from mohtawa.observability.logging import get_logger
from mohtawa.services.media import fetch_optional, load_edl, render_with_fallback, store_video
from mohtawa.storage.models import JobStatus
from mohtawa.storage.object_store import RENDERS_PREFIX
from mohtawa.storage.repositories import JobRepository, VideoProjectRepository
from mohtawa.workers.job_types import JOB_RENDER_DRAFT

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

logger = get_logger(__name__)

__all__ = ["RenderJobStatus", "RenderQueue", "RenderSubmission", "preview_key_for"]

PREVIEW_URL_TTL_SECONDS = 60
OUTPUT_URL_TTL_SECONDS = 3600


def preview_key_for(job_id: str) -> str:
    return f"{RENDERS_PREFIX}/{job_id}/preview/latest.jpg"


@dataclass
class RenderSubmission:
    status: str
    job_id: Optional[str] = None
    draft_video_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status}
        if self.job_id:
            data["jobId"] = self.job_id
        if self.draft_video_url:
            data["draftVideoUrl"] = self.draft_video_url
        return data


@dataclass
class RenderJobStatus:
    status: str
    progress: float = 0.0
    preview_image_url: Optional[str] = None
    output_video_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "progress": self.progress,
            "previewImageUrl": self.preview_image_url,
            "outputVideoUrl": self.output_video_url,
            "error": self.error,
        }


_JOB_STATE = {
    JobStatus.SUCCEEDED.value: "done",
    JobStatus.FAILED.value: "failed",
}


class RenderQueue:
    """Submit draft renders and report on their progress."""

    def __init__(self, ctx: "AppContext") -> None:
        self.ctx = ctx

    async def submit_render(self, project_id: UUID, user_id: str) -> RenderSubmission:
        async with self.ctx.session_factory() as session:
            project = await VideoProjectRepository(session).get_for_user_async(project_id, user_id)
            if project is None:
                raise NotFoundError("Project not found")

            if self.ctx.settings.job_dispatcher == "db":
                job = await JobRepository(session).enqueue_async(
                    JOB_RENDER_DRAFT,
                    payload={"project_id": str(project_id), "user_id": user_id},
                    idempotency_key=f"draft-{project_id}-{int(time.time() * 1000)}",
                    max_attempts=self.ctx.settings.render_job_max_attempts,
                )
                await session.commit()
                logger.info("render_enqueued", project_id=str(project_id), job_id=str(job.id))
                return RenderSubmission(status="queued", job_id=str(job.id))

        draft_url = await self.render_project(project_id, user_id)
        return RenderSubmission(status="completed", draft_video_url=draft_url)

    async def process_render_job(self, job_id: UUID, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Worker entry point for ``render.draft`` jobs."""
        draft_url = await self.render_project(
            UUID(str(payload["project_id"])),
            str(payload["user_id"]),
            job_id=job_id,
        )
        return {"draftVideoUrl": draft_url}

    async def render_project(
        self,
        project_id: UUID,
        user_id: str,
        *,
        job_id: UUID | None = None,
    ) -> str:
        """Render the project's current EDL as a draft and return the new draft URL."""
        ctx = self.ctx
        preview_key_name = str(project_id)
        sync_preview = job_id is None

        async with ctx.session_factory() as session:
            project = await VideoProjectRepository(session).get_for_user_async(project_id, user_id)
            if project is None:
                raise NotFoundError("Project not found or access denied")
            edl_url = str(project.edl_url)

        if sync_preview:
            ctx.preview_store.set(
                preview_key_name, progress=0.0, preview_base64=None, status="rendering", terminal=False
            )

        try:
            edl = await load_edl(ctx.fetcher, edl_url)
            voiceover = await fetch_optional(ctx.fetcher, edl.audio.voiceover_url)

            if job_id is not None:
                on_progress, on_preview = self._job_callbacks(job_id)
            else:
                on_progress, on_preview = self._preview_store_callbacks(preview_key_name)

            data, _ = await render_with_fallback(
                ctx.orchestrator,
                edl,
                voiceover=voiceover,
                is_draft=True,
                on_progress=on_progress,
                on_preview_frame=on_preview,
                project_id=str(project_id),
            )
            stored = await store_video(ctx.blob_store, user_id, data, "draft")

            async with ctx.session_factory() as session:
                await VideoProjectRepository(session).update_async(
                    project_id, draft_video_url=stored.url
                )
                if job_id is not None:
                    await JobRepository(session).set_progress_async(
                        job_id, {"percent": 1.0, "previewKey": preview_key_for(str(job_id))}
                    )
                await session.commit()
        except Exception:
            if sync_preview:
                ctx.preview_store.set(preview_key_name, status="failed", terminal=True)
            raise

        if sync_preview:
            ctx.preview_store.set(preview_key_name, progress=1.0, status="done", terminal=True)
        logger.info("draft_rendered", project_id=str(project_id), draft_video_url=stored.url)
        return stored.url

    def _job_callbacks(self, job_id: UUID):
        ctx = self.ctx
        preview_key = preview_key_for(str(job_id))

        async def _on_progress(percent: float, current_sec: float) -> None:
            async with ctx.session_factory() as session:
                await JobRepository(session).set_progress_async(
                    job_id,
                    {"percent": percent, "currentTimeSec": current_sec, "previewKey": preview_key},
                )
                await session.commit()

        async def _on_preview(jpeg: bytes) -> None:
            await ctx.blob_store.put(preview_key, jpeg, "image/jpeg")

        return _on_progress, _on_preview

    def _preview_store_callbacks(self, project_key: str):
        store = self.ctx.preview_store

        async def _on_progress(percent: float, current_sec: float) -> None:
            store.set(project_key, progress=percent)

        async def _on_preview(jpeg: bytes) -> None:
            store.set(project_key, preview_base64=base64.b64encode(jpeg).decode("ascii"))

        return _on_progress, _on_preview

    async def status(self, job_id: UUID, user_id: str | None = None) -> RenderJobStatus:
        ctx = self.ctx
        async with ctx.session_factory() as session:
            job = await JobRepository(session).get_async(job_id)
            if job is None or job.job_type != JOB_RENDER_DRAFT:
                raise NotFoundError("Render job not found")
            payload = dict(job.payload or {})
            if user_id is not None and payload.get("user_id") != user_id:
                raise PermissionDeniedError("Access denied to this render job")
            state = _JOB_STATE.get(str(job.status), "rendering")
            progress = dict(job.progress or {})
            error = job.last_error if state == "failed" else None

            draft_url: str | None = None
            if state == "done":
                project = await VideoProjectRepository(session).get_async(
                    UUID(str(payload["project_id"]))
                )
                draft_url = project.draft_video_url if project is not None else None

        percent = progress.get("percent")
        result = RenderJobStatus(
            status=state,
            progress=float(percent) if isinstance(percent, (int, float)) else 0.0,
            error=error,
        )

        preview_key = progress.get("previewKey")
        if preview_key:
            try:
                result.preview_image_url = await ctx.blob_store.presign(
                    str(preview_key), PREVIEW_URL_TTL_SECONDS
                )
            except Exception:
                logger.debug("render_preview_presign_failed", job_id=str(job_id), exc_info=True)

        if draft_url:
            key = ctx.blob_store.key_from_url(draft_url)
            if key is not None:
                result.output_video_url = await ctx.blob_store.presign(key, OUTPUT_URL_TTL_SECONDS)
            elif draft_url.startswith(("http://", "https://")):
                result.output_video_url = draft_url
        return result

    def export_preview(self, project_id: UUID | str) -> Dict[str, Any]:
        """Current in-process preview for ``project_id``; terminal entries are cleared on read."""
        key = str(project_id)
        entry = self.ctx.preview_store.get(key)
        if entry is None:
            return {"progress": 0.0, "previewImageUrl": None, "status": None}
        if entry.terminal:
            self.ctx.preview_store.clear(key)
        return {
            "progress": entry.progress,
            "previewImageUrl": entry.preview_image_url,
            "status": entry.status,
        }
