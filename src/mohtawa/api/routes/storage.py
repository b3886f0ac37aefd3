"""Short-lived playback URLs for the caller's own stored media."""

from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends, Query

from mohtawa.api.dependencies import get_ctx, get_user_id
from mohtawa.api.schemas import ErrorResponse, PlayUrlResponse
from mohtawa.errors import PermissionDeniedError, ValidationError
from mohtawa.observability.logging import get_logger
from mohtawa.services.context import AppContext
from mohtawa.storage.object_store import VIDEO_PREFIX, VOICE_OUTPUT_PREFIX

logger = get_logger(__name__)

router = APIRouter(tags=["Storage"])


def is_playable_key(key: str, user_id: str) -> bool:
    """Keys must live under the caller's voice-output or video-assets folder."""
    if ".." in key.split("/"):
        return False
    return any(
        key.startswith(f"{prefix}/{user_id}/") for prefix in (VOICE_OUTPUT_PREFIX, VIDEO_PREFIX)
    )


@router.get(
    "/play",
    response_model=PlayUrlResponse,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
async def play(
    key: str = Query(..., max_length=1024),
    user_id: str = Depends(get_user_id),
    ctx: AppContext = Depends(get_ctx),
) -> Dict[str, str]:
    key = key.strip()
    if not key:
        raise ValidationError("Query parameter key is required")
    if not is_playable_key(key, user_id):
        logger.warning("storage_play_denied", user_id=user_id, key=key)
        raise PermissionDeniedError("Access denied to this resource")
    url = await ctx.blob_store.presign(key, ctx.settings.presign_default_seconds)
    return {"url": url}
