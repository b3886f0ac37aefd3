"""Job handlers for the durable worker queue."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict
from uuid import UUID

from mohtawa.errors import NotFoundError
from mohtawa.observability.logging import get_logger
from mohtawa.workers.exceptions import JobReschedule
from mohtawa.workers.job_types import JOB_RENDER_DRAFT, JOB_RUN_EXECUTE

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

logger = get_logger(__name__)

RUN_NOT_VISIBLE_RETRY_SECONDS = 1.0


def _as_uuid(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    return UUID(str(value))


async def handle_job(
    ctx: "AppContext",
    *,
    job_type: str,
    job_id: UUID,
    payload: Dict[str, Any],
) -> Dict[str, Any] | None:
    """Execute the job payload; the return value is stored as the job result."""
    if job_type == JOB_RUN_EXECUTE:
        from mohtawa.workflows.engine import ExecutionEngine

        raw_run_id = payload.get("run_id")
        if not raw_run_id:
            raise ValueError("run.execute requires run_id")
        run_id = _as_uuid(raw_run_id)
        start_index = int(payload.get("start_index") or 0)
        try:
            await ExecutionEngine(ctx).run_from(run_id, start_index)
        except NotFoundError as exc:
            raise JobReschedule(
                retry_delay_seconds=RUN_NOT_VISIBLE_RETRY_SECONDS,
                reason=f"run_not_visible:{run_id}",
            ) from exc
        return {"run_id": str(run_id), "start_index": start_index}

    if job_type == JOB_RENDER_DRAFT:
        return await ctx.render_queue.process_render_job(job_id, payload)

    raise ValueError(f"Unknown job_type: {job_type}")
