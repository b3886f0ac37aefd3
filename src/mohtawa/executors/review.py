"""Review steps: ``review.approval_gate`` pauses a run for a human decision."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import UUID

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.observability.logging import get_logger
from mohtawa.storage.repositories import ReviewSessionRepository
from mohtawa.workflows.resolve import resolve_input_deep

logger = get_logger(__name__)

MODE_AUTO_APPROVE = "auto_approve"
MODE_MANUAL = "manual_review"
MODE_MANUAL_WITH_TIMEOUT = "manual_with_timeout"


def _as_uuid(value: object) -> UUID | None:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


async def run_approval_gate(ctx: StepContext) -> StepResult:
    if not ctx.user_id:
        return StepResult.failed("User context missing for review.approval_gate.")

    project_id = resolve_input_deep(ctx.input_data, "projectId")
    draft_url = resolve_input_deep(ctx.input_data, "draftVideoUrl")
    edl_url = resolve_input_deep(ctx.input_data, "edlUrl")
    if not project_id or not edl_url:
        return StepResult.failed("projectId and edlUrl are required (from upstream video.auto_edit).")

    mode = str(ctx.config.get("mode") or MODE_AUTO_APPROVE)
    if mode == MODE_AUTO_APPROVE:
        return StepResult.ok(
            {"projectId": project_id, "draftVideoUrl": draft_url, "approvedEdlUrl": edl_url}
        )

    if ctx.run_id is None:
        return StepResult.failed("Execution context missing; cannot create review session.")

    expires_at = None
    timeout = ctx.config.get("autoApproveAfterSec")
    if mode == MODE_MANUAL_WITH_TIMEOUT and isinstance(timeout, (int, float)):
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=float(timeout))

    async with ctx.app.session_factory() as session:
        review = await ReviewSessionRepository(session).upsert_pending_async(
            run_id=ctx.run_id,
            step_id=ctx.step_id,
            user_id=ctx.user_id,
            project_id=_as_uuid(project_id),
            expires_at=expires_at,
        )
        await session.commit()
        review_id = str(review.id)

    logger.info(
        "review_requested",
        run_id=str(ctx.run_id),
        step_id=ctx.step_id,
        review_session_id=review_id,
        expires_at=expires_at.isoformat() if expires_at else None,
    )
    return StepResult.paused(
        {
            "projectId": project_id,
            "draftVideoUrl": draft_url,
            "edlUrl": edl_url,
            "approvedEdlUrl": edl_url,
            "reviewSessionId": review_id,
        },
        review_id,
    )


async def run_review(ctx: StepContext) -> StepResult:
    if ctx.step_type == "review.approval_gate":
        return await run_approval_gate(ctx)
    return StepResult.ok({"result": ctx.input_data})
