"""Video steps: automated edit, final render and the placeholder fallback."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path
from typing import Any, List, Mapping
from uuid import UUID

from mohtawa.errors import ValidationError
from mohtawa.executors.base import StepContext, StepResult
from mohtawa.observability.logging import get_logger
from mohtawa.services.media import (
    fetch_optional,
    load_edl,
    render_with_fallback,
    store_edl,
    store_video,
)
from mohtawa.storage.assets import AssetFetchError
from mohtawa.storage.models import ProjectStatus
from mohtawa.storage.repositories import VideoProjectRepository
from mohtawa.video.autoedit import (
    DEFAULT_MAX_CLIP_SEC,
    DEFAULT_MIN_CLIP_SEC,
    ClipInput,
    build_edl,
)
from mohtawa.video.encoder import Encoder
from mohtawa.workflows.resolve import resolve_input_deep

logger = get_logger(__name__)

DEFAULT_VOICEOVER_DURATION_SEC = 30.0


def _parse_clips(raw: Any) -> List[ClipInput]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return []
    if raw is None:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    clips = [ClipInput.from_raw(item) for item in raw]
    return [c for c in clips if c is not None]


def _number(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


async def probe_voiceover_duration(encoder: Encoder, audio: bytes | None, url: str) -> float:
    """Voiceover length from ffprobe; 30 s when the audio is missing or unreadable."""
    if not audio:
        return DEFAULT_VOICEOVER_DURATION_SEC
    ext = "mp3" if ".mp3" in url.lower() else "mp4"
    with tempfile.TemporaryDirectory(prefix="mohtawa-vo-probe-", ignore_cleanup_errors=True) as tmp:
        path = Path(tmp) / f"voice.{ext}"
        path.write_bytes(audio)
        seconds = await encoder.probe_duration(path)
    return seconds if seconds > 0 else DEFAULT_VOICEOVER_DURATION_SEC


async def run_auto_edit(ctx: StepContext) -> StepResult:
    if not ctx.user_id:
        return StepResult.failed("User context missing for video.auto_edit.")
    app = ctx.app
    config = ctx.config

    clips_raw = resolve_input_deep(ctx.input_data, "clips")
    clips = _parse_clips(clips_raw) if isinstance(clips_raw, list) else []
    if not clips and config.get("clips"):
        clips = _parse_clips(config.get("clips"))

    voiceover_url = str(
        resolve_input_deep(ctx.input_data, "voiceoverUrl", "audioUrl")
        or config.get("voiceoverUrl")
        or ""
    ).strip()
    captions_url = resolve_input_deep(ctx.input_data, "captionsSrtUrl") or config.get(
        "captionsSrtUrl"
    )

    if not voiceover_url:
        return StepResult.failed(
            "Voiceover is required. Connect a voice.tts step or set voiceoverUrl in this step's config."
        )
    if not clips:
        return StepResult.failed("At least one clip with url is required.")

    seed = config.get("seed")
    music_url = config.get("musicUrl") if config.get("enableMusic") else None

    voiceover = await fetch_optional(app.fetcher, voiceover_url)
    duration = await probe_voiceover_duration(app.encoder, voiceover, voiceover_url)
    edl = build_edl(
        clips=clips,
        voiceover_duration_sec=duration,
        voiceover_url=voiceover_url,
        aspect_ratio=str(config.get("aspectRatio") or "9:16"),
        min_clip_sec=_number(config.get("minClipSec"), DEFAULT_MIN_CLIP_SEC),
        max_clip_sec=_number(config.get("maxClipSec"), DEFAULT_MAX_CLIP_SEC),
        music_url=str(music_url) if music_url else None,
        seed=int(seed) if isinstance(seed, (int, float)) and not isinstance(seed, bool) else None,
        hook_text=config.get("hookText") or None,
    )

    edl_obj = await store_edl(app.blob_store, ctx.user_id, edl, "edl")
    draft, _ = await render_with_fallback(
        app.orchestrator,
        edl,
        voiceover=voiceover,
        is_draft=True,
        step_id=ctx.step_id,
    )
    draft_obj = await store_video(app.blob_store, ctx.user_id, draft, "draft")

    async with app.session_factory() as session:
        project = await VideoProjectRepository(session).create_async(
            user_id=ctx.user_id,
            edl_url=edl_obj.url,
            draft_video_url=draft_obj.url,
        )
        await session.commit()
        project_id = str(project.id)

    output = {
        "projectId": project_id,
        "edlUrl": edl_obj.url,
        "edlKey": edl_obj.key,
        "draftVideoUrl": draft_obj.url,
        "voiceoverUrl": voiceover_url,
        "voiceoverDurationSec": duration,
    }
    if captions_url:
        output["captionsSrtUrl"] = captions_url
    return StepResult.ok(output)


async def run_render_final(ctx: StepContext) -> StepResult:
    if not ctx.user_id:
        return StepResult.failed("User context missing for video.render_final.")
    app = ctx.app

    project_id = resolve_input_deep(ctx.input_data, "projectId")
    approved_url = resolve_input_deep(ctx.input_data, "approvedEdlUrl")
    if not approved_url:
        return StepResult.failed("approvedEdlUrl is required (from approval gate).")

    try:
        edl = await load_edl(app.fetcher, str(approved_url))
    except AssetFetchError as exc:
        return StepResult.failed(f"Failed to load EDL from {str(approved_url)[:50]}: {exc}")
    except ValidationError as exc:
        return StepResult.failed(str(exc))

    voiceover_url = resolve_input_deep(ctx.input_data, "voiceoverUrl") or edl.audio.voiceover_url
    voiceover = await fetch_optional(app.fetcher, voiceover_url)
    data, _ = await render_with_fallback(
        app.orchestrator,
        edl,
        voiceover=voiceover,
        is_draft=False,
        step_id=ctx.step_id,
    )
    stored = await store_video(app.blob_store, ctx.user_id, data, "final")

    if project_id:
        await _mark_project_final(ctx, str(project_id), stored.url)

    return StepResult.ok(
        {
            "projectId": project_id,
            "finalVideoUrl": stored.url,
            "finalVideoKey": stored.key,
        }
    )


async def _mark_project_final(ctx: StepContext, project_id: str, url: str) -> None:
    try:
        pid = UUID(project_id)
    except ValueError:
        return
    async with ctx.app.session_factory() as session:
        await VideoProjectRepository(session).update_async(
            pid, final_video_url=url, status=ProjectStatus.FINAL.value
        )
        await session.commit()


def _placeholder(config: Mapping[str, Any]) -> StepResult:
    return StepResult.ok(
        {
            "videoUrl": "[placeholder] Video rendering not connected for this step type",
            "resolution": config.get("resolution") or "1080p",
            "format": config.get("format") or "MP4",
        }
    )


async def run_video(ctx: StepContext) -> StepResult:
    if ctx.step_type == "video.auto_edit":
        return await run_auto_edit(ctx)
    if ctx.step_type == "video.render_final":
        return await run_render_final(ctx)
    return _placeholder(ctx.config)
