"""Shared media helpers: load/store EDLs and render with placeholder fallback."""

from __future__ import annotations

import json
from typing import Any

from mohtawa.edl.schema import EDL, edl_to_json, parse_edl_safe, validate_edl
from mohtawa.errors import ValidationError
from mohtawa.observability.logging import get_logger
from mohtawa.storage.assets import AssetFetcher
from mohtawa.storage.object_store import (
    VIDEO_PREFIX,
    BlobStore,
    StoredObject,
    generate_storage_key,
)
from mohtawa.video.render import (
    PreviewCallback,
    ProgressCallback,
    RenderOrchestrator,
    RenderResult,
)

logger = get_logger(__name__)

__all__ = [
    "fetch_optional",
    "load_edl",
    "render_with_fallback",
    "store_edl",
    "store_video",
]


async def load_edl(fetcher: AssetFetcher, url: str) -> EDL:
    """Fetch and validate the EDL stored at ``url``."""
    raw = await fetcher.fetch(url)
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Invalid EDL: not JSON ({exc})") from exc
    parsed = parse_edl_safe(data)
    if not parsed.success or parsed.edl is None:
        raise ValidationError(f"Invalid EDL: {parsed.error}")
    return parsed.edl


async def store_edl(store: BlobStore, user_id: str, edl: EDL | Any, suffix: str) -> StoredObject:
    """Validate ``edl`` and upload it as JSON under ``video-assets``."""
    validated = edl if isinstance(edl, EDL) else validate_edl(edl)
    key = generate_storage_key(user_id, suffix, "json", prefix=VIDEO_PREFIX)
    return await store.put(key, edl_to_json(validated), "application/json")


async def store_video(store: BlobStore, user_id: str, data: bytes, suffix: str) -> StoredObject:
    key = generate_storage_key(user_id, suffix, "mp4", prefix=VIDEO_PREFIX)
    return await store.put(key, data, "video/mp4")


async def fetch_optional(fetcher: AssetFetcher, url: str | None) -> bytes | None:
    """Fetch ``url`` or return None; a missing voiceover still renders."""
    if not url:
        return None
    try:
        return await fetcher.fetch(url)
    except Exception:
        logger.info("optional_asset_unavailable", url=url, exc_info=True)
        return None


async def render_with_fallback(
    orchestrator: RenderOrchestrator,
    edl: EDL,
    *,
    voiceover: bytes | None,
    is_draft: bool,
    on_progress: ProgressCallback | None = None,
    on_preview_frame: PreviewCallback | None = None,
    **log_context: Any,
) -> tuple[bytes, RenderResult]:
    """Render ``edl``; on failure return the placeholder buffer instead."""
    result = await orchestrator.render(
        edl,
        voiceover=voiceover,
        is_draft=is_draft,
        on_progress=on_progress,
        on_preview_frame=on_preview_frame,
    )
    if not result.success and result.failure is not None:
        logger.warning(
            "render_failed",
            kind=result.failure.kind.value,
            stage=result.failure.stage,
            error=result.failure.message,
            is_draft=is_draft,
            **log_context,
        )
    return result.bytes_or_placeholder(), result
