"""Workflow run endpoints.

Runs execute in-process (default) or via the DB job queue when
``JOB_DISPATCHER=db``; either way ``POST`` returns before the run finishes and
clients poll ``GET /v1/runs/{run_id}``.
"""

from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from mohtawa.api.dependencies import get_engine, get_user_id
from mohtawa.api.schemas import (
    ErrorResponse,
    ExecuteStepRequest,
    ReviewRequest,
    RunSnapshotResponse,
    RunStartedResponse,
    StartRunRequest,
)
from mohtawa.observability.logging import get_logger
from mohtawa.workflows.engine import ExecutionEngine, RunHandle

logger = get_logger(__name__)

router = APIRouter(tags=["Runs"])


def _parse_uuid(value: str, name: str = "run_id") -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def _started(handle: RunHandle) -> Dict[str, Any]:
    return {
        "runId": str(handle.run_id),
        "status": "queued" if handle.job_id is not None else "running",
        "jobId": str(handle.job_id) if handle.job_id is not None else None,
    }


@router.post(
    "",
    status_code=202,
    response_model=RunStartedResponse,
    responses={400: {"model": ErrorResponse}},
)
async def start_run(
    body: StartRunRequest,
    user_id: str = Depends(get_user_id),
    engine: ExecutionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Create a run for the graph and start executing it in the background."""
    handle = await engine.execute(body.graph, user_id=user_id, workflow_id=body.workflow_id)
    return _started(handle)


@router.get(
    "/{run_id}",
    response_model=RunSnapshotResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(
    run_id: str,
    user_id: str = Depends(get_user_id),
    engine: ExecutionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    snapshot = await engine.poll(_parse_uuid(run_id), user_id=user_id)
    return snapshot.to_dict()


@router.post(
    "/{run_id}/rerun",
    status_code=202,
    response_model=RunStartedResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def rerun_from_failed(
    run_id: str,
    user_id: str = Depends(get_user_id),
    engine: ExecutionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Start a new run that resumes from the failed step of ``run_id``."""
    handle = await engine.rerun_from_failed(_parse_uuid(run_id), user_id=user_id)
    return _started(handle)


@router.post(
    "/{run_id}/steps/{step_id}/review",
    status_code=202,
    response_model=RunStartedResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def resolve_review(
    run_id: str,
    step_id: str,
    body: ReviewRequest,
    user_id: str = Depends(get_user_id),
    engine: ExecutionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Approve or replace the EDL at a paused review gate and resume the run."""
    handle = await engine.resolve_review(
        _parse_uuid(run_id),
        step_id,
        body.action,
        body.approved_edl,
        user_id=user_id,
    )
    return _started(handle)


@router.post("/steps/{step_id}/execute", responses={404: {"model": ErrorResponse}})
async def execute_single_step(
    step_id: str,
    body: ExecuteStepRequest,
    user_id: str = Depends(get_user_id),
    engine: ExecutionEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Run one step against a prior run's outputs; nothing is persisted."""
    prior = _parse_uuid(body.prior_run_id, "priorRunId") if body.prior_run_id else None
    log = await engine.execute_single_step(body.graph, step_id, user_id, prior_run_id=prior)
    return log.to_dict()
