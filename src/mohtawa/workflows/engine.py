"""Step scheduler: turns a workflow graph into a persisted, sequential run.

A run is one ordered pass over the enabled steps. Every step transition is
written to the Run row before the next step starts, so ``poll`` always sees
the latest state. Runs may stop early in two ways: a step error fails the run,
and a manual review gate parks it in ``waiting_review`` until
:meth:`ExecutionEngine.resolve_review` resumes it.

Usage:
    engine = ExecutionEngine(ctx)
    handle = await engine.execute(graph, user_id="u1", workflow_id="wf1")
    await handle.wait()
    snapshot = await engine.poll(handle.run_id)
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional
from uuid import UUID

import structlog

from mohtawa.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)
from mohtawa.executors import StepContext, StepResult, dispatch_step
from mohtawa.observability.logging import get_logger
from mohtawa.services.media import store_edl
from mohtawa.storage.models import ReviewStatus, Run, RunStatus
from mohtawa.storage.repositories import (
    JobRepository,
    ReviewSessionRepository,
    RunRepository,
    VideoProjectRepository,
)
from mohtawa.workers.job_types import JOB_RUN_EXECUTE, idempotency_run_execute
from mohtawa.workflows.graph import CyclicGraphError, WorkflowGraph, topological_order
from mohtawa.workflows.state import RunSnapshot, StepLog, StepStatus, utc_iso

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

logger = get_logger(__name__)

__all__ = ["ExecutionEngine", "RunHandle", "collect_inputs"]

REVIEW_ACTIONS = ("approve", "edit")


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _coerce_graph(graph: WorkflowGraph | Mapping[str, Any]) -> WorkflowGraph:
    return graph if isinstance(graph, WorkflowGraph) else WorkflowGraph.from_dict(graph)


def collect_inputs(
    graph: WorkflowGraph, step_id: str, outputs: Mapping[str, Dict[str, Any]]
) -> Dict[str, Any]:
    """Upstream outputs keyed by the edge's source handle (``output`` when unset)."""
    data: Dict[str, Any] = {}
    for edge in graph.incoming(step_id):
        upstream = outputs.get(edge.source)
        if upstream is not None:
            data[edge.source_handle or "output"] = upstream
    return data


@dataclass
class RunHandle:
    """Reference to a started run.

    In-process runs carry the supervising task; durable runs carry the job id.
    """

    run_id: UUID
    task: Optional["asyncio.Task[None]"] = None
    job_id: Optional[UUID] = None

    async def wait(self) -> None:
        """Wait for an in-process run; re-raises anything the run loop raised."""
        if self.task is not None:
            await self.task


class ExecutionEngine:
    def __init__(self, ctx: "AppContext") -> None:
        self.ctx = ctx
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------ start

    async def execute(
        self,
        graph: WorkflowGraph | Mapping[str, Any],
        user_id: str,
        workflow_id: str,
    ) -> RunHandle:
        """Persist a new RUNNING run and start it; returns without waiting."""
        graph = _coerce_graph(graph)
        order, excluded = topological_order(graph)
        if excluded:
            raise CyclicGraphError(excluded)
        if not order:
            raise WorkflowError("Workflow has no steps to execute", status_code=400)

        steps = [
            StepLog(step_id=s.id, type=s.type, category=s.category, title=s.title).to_dict()
            for s in order
        ]
        async with self.ctx.session_factory() as session:
            run = await RunRepository(session).create_async(
                workflow_id=workflow_id,
                graph=graph.to_dict(),
                steps=steps,
                user_id=user_id,
            )
            run_id = run.id
            job_id = await self._maybe_enqueue(session, run_id, 0)
            await session.commit()

        logger.info("run_started", run_id=str(run_id), workflow_id=workflow_id, steps=len(steps))
        if job_id is not None:
            return RunHandle(run_id=run_id, job_id=job_id)
        return self._spawn(run_id, 0)

    async def _maybe_enqueue(self, session: Any, run_id: UUID, start_index: int) -> UUID | None:
        if self.ctx.settings.job_dispatcher != "db":
            return None
        job = await JobRepository(session).enqueue_async(
            JOB_RUN_EXECUTE,
            payload={"run_id": str(run_id), "start_index": start_index},
            idempotency_key=idempotency_run_execute(run_id, start_index),
            max_attempts=self.ctx.settings.execution_job_max_attempts,
        )
        return job.id

    async def _continue(self, run_id: UUID, start_index: int) -> RunHandle:
        if self.ctx.settings.job_dispatcher == "db":
            async with self.ctx.session_factory() as session:
                try:
                    job_id = await self._maybe_enqueue(session, run_id, start_index)
                except ValueError:
                    await session.rollback()
                    logger.info("run_resume_already_enqueued", run_id=str(run_id))
                    return RunHandle(run_id=run_id)
                await session.commit()
            return RunHandle(run_id=run_id, job_id=job_id)
        return self._spawn(run_id, start_index)

    def _spawn(self, run_id: UUID, start_index: int) -> RunHandle:
        task = asyncio.create_task(self.run_from(run_id, start_index), name=f"run-{run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return RunHandle(run_id=run_id, task=task)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("run_task_crashed", task=task.get_name(), exc_info=exc)

    async def shutdown(self) -> None:
        """Cancel in-process runs still executing (process shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------- loop

    async def _persist(self, run_id: UUID, logs: List[StepLog], **fields: Any) -> None:
        async with self.ctx.session_factory() as session:
            await RunRepository(session).save_steps_async(
                run_id, [log.to_dict() for log in logs], **fields
            )
            await session.commit()

    async def run_from(self, run_id: UUID, start_index: int = 0) -> None:
        """Execute steps ``start_index..`` of a persisted run, in order."""
        async with self.ctx.session_factory() as session:
            run = await RunRepository(session).get_async(run_id)
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        if run.status != RunStatus.RUNNING.value:
            logger.info("run_not_running", run_id=str(run_id), status=run.status)
            return

        graph = WorkflowGraph.from_dict(run.graph or {})
        logs = [StepLog.from_dict(raw) for raw in run.steps or []]
        outputs: Dict[str, Dict[str, Any]] = {
            log.step_id: log.output for log in logs[:start_index] if log.output is not None
        }

        with structlog.contextvars.bound_contextvars(run_id=str(run_id)):
            try:
                await self._loop(run, graph, logs, outputs, start_index)
            except Exception as exc:
                logger.error("run_crashed", exc_info=True)
                await self._persist(
                    run_id,
                    logs,
                    status=RunStatus.FAILED,
                    error=f"{type(exc).__name__}: {exc}",
                    completed_at=_now(),
                )
                raise

    async def _loop(
        self,
        run: Run,
        graph: WorkflowGraph,
        logs: List[StepLog],
        outputs: Dict[str, Dict[str, Any]],
        start_index: int,
    ) -> None:
        run_id = run.id
        for index in range(start_index, len(logs)):
            log = logs[index]
            step = graph.get_step(log.step_id)
            if step is None:
                raise WorkflowError(f"Step {log.step_id} missing from the run graph")

            log.status = StepStatus.RUNNING.value
            log.started_at = utc_iso()
            log.input = collect_inputs(graph, step.id, outputs)
            await self._persist(run_id, logs)

            started = time.monotonic()
            result: StepResult = await dispatch_step(
                StepContext(
                    app=self.ctx,
                    step_id=step.id,
                    step_type=step.type,
                    category=step.category,
                    config=dict(step.config),
                    input_data=log.input,
                    user_id=run.user_id,
                    run_id=run_id,
                )
            )
            log.duration_ms = int((time.monotonic() - started) * 1000)
            log.completed_at = utc_iso()

            if result.pause_for_review:
                log.status = StepStatus.WAITING_REVIEW.value
                log.output = result.output
                log.review_session_id = result.review_session_id
                await self._persist(run_id, logs, status=RunStatus.WAITING_FOR_REVIEW)
                logger.info("run_waiting_review", step_id=step.id)
                return

            if result.is_error:
                log.status = StepStatus.ERROR.value
                log.error = result.error
                log.error_stack = result.error_stack
                await self._persist(
                    run_id,
                    logs,
                    status=RunStatus.FAILED,
                    error=result.error,
                    completed_at=_now(),
                )
                logger.warning("step_failed", step_id=step.id, error=result.error)
                return

            log.status = StepStatus.SUCCESS.value
            log.output = result.output
            outputs[step.id] = result.output
            await self._persist(run_id, logs)
            logger.info("step_succeeded", step_id=step.id, duration_ms=log.duration_ms)

        await self._persist(run_id, logs, status=RunStatus.COMPLETED, completed_at=_now())
        logger.info("run_completed", steps=len(logs))

    # ------------------------------------------------------------------ query

    async def poll(self, run_id: UUID, user_id: str | None = None) -> RunSnapshot:
        async with self.ctx.session_factory() as session:
            run = await RunRepository(session).get_async(run_id)
        self._check_access(run, run_id, user_id)
        assert run is not None
        return RunSnapshot(
            run_id=str(run.id),
            status=str(run.status),
            steps=list(run.steps or []),
            error=run.error,
        )

    @staticmethod
    def _check_access(run: Run | None, run_id: UUID, user_id: str | None) -> None:
        if run is None:
            raise NotFoundError(f"Run {run_id} not found")
        if user_id is not None and run.user_id not in (None, user_id):
            raise PermissionDeniedError("Access denied")

    # ----------------------------------------------------------------- review

    async def resolve_review(
        self,
        run_id: UUID,
        step_id: str,
        action: str,
        edited_edl: Any = None,
        *,
        user_id: str | None = None,
    ) -> RunHandle:
        """Approve (or replace) the EDL at a paused gate and resume the run."""
        if action not in REVIEW_ACTIONS:
            raise ValidationError(f"Unknown review action: {action}")

        async with self.ctx.session_factory() as session:
            runs = RunRepository(session)
            reviews = ReviewSessionRepository(session)
            run = await runs.get_for_update_async(run_id)
            self._check_access(run, run_id, user_id)
            assert run is not None
            if run.status != RunStatus.WAITING_FOR_REVIEW.value:
                raise ConflictError("Run is not waiting for review.")

            review = await reviews.get_by_step_async(run_id, step_id)
            if review is None or review.status != ReviewStatus.PENDING.value:
                raise NotFoundError("Review session not found or already resolved.")

            logs = [StepLog.from_dict(raw) for raw in run.steps or []]
            index = next((i for i, log in enumerate(logs) if log.step_id == step_id), -1)
            if index < 0:
                raise ValidationError("Step not found in run logs.")
            output = logs[index].output
            if not output:
                raise ValidationError("Step has no output.")

            if not await reviews.resolve_async(review, action=action):
                raise ConflictError("Review session already resolved.")

            if action == "approve":
                approved_url = str(output.get("edlUrl") or output.get("approvedEdlUrl") or "")
                if not approved_url:
                    raise ValidationError("No EDL URL to approve.")
            else:
                if edited_edl is None:
                    raise ValidationError("approvedEdl is required for edit.")
                owner = run.user_id or user_id or "anonymous"
                stored = await store_edl(self.ctx.blob_store, owner, edited_edl, "edl_approved")
                approved_url = stored.url
                if review.project_id is not None:
                    await VideoProjectRepository(session).update_async(
                        review.project_id, edl_url=approved_url
                    )

            logs[index].output = {**output, "approvedEdlUrl": approved_url}
            logs[index].status = StepStatus.SUCCESS.value
            await runs.save_steps_async(
                run_id, [log.to_dict() for log in logs], status=RunStatus.RUNNING
            )
            await session.commit()

        logger.info("review_resolved", run_id=str(run_id), step_id=step_id, action=action)
        return await self._continue(run_id, index + 1)

    async def expire_reviews(self, now: datetime | None = None) -> List[RunHandle]:
        """Auto-approve pending reviews whose deadline has passed."""
        now = now or datetime.now(timezone.utc)
        async with self.ctx.session_factory() as session:
            expired = [
                (r.run_id, r.step_id)
                for r in await ReviewSessionRepository(session).list_expired_async(now)
            ]

        handles: List[RunHandle] = []
        for run_id, step_id in expired:
            try:
                handles.append(await self.resolve_review(run_id, step_id, "approve"))
            except DomainError as exc:
                logger.warning(
                    "review_expire_skipped", run_id=str(run_id), step_id=step_id, error=str(exc)
                )
        if handles:
            logger.info("reviews_auto_approved", count=len(handles))
        return handles

    # ------------------------------------------------------------------ rerun

    async def rerun_from_failed(self, run_id: UUID, *, user_id: str | None = None) -> RunHandle:
        """Start a new run that keeps the steps before the failed one and retries from it."""
        async with self.ctx.session_factory() as session:
            runs = RunRepository(session)
            source = await runs.get_async(run_id)
            self._check_access(source, run_id, user_id)
            assert source is not None
            if source.status != RunStatus.FAILED.value:
                raise ConflictError("Only failed runs can be rerun from the failed step.")

            logs = [StepLog.from_dict(raw) for raw in source.steps or []]
            failed_index = next(
                (i for i, log in enumerate(logs) if log.status == StepStatus.ERROR.value), -1
            )
            if failed_index < 0:
                raise ValidationError("No failed step found in this run.")

            fresh = logs[:failed_index] + [
                StepLog(step_id=log.step_id, type=log.type, category=log.category, title=log.title)
                for log in logs[failed_index:]
            ]
            new_run = await runs.create_async(
                workflow_id=source.workflow_id,
                graph=dict(source.graph or {}),
                steps=[log.to_dict() for log in fresh],
                user_id=source.user_id,
                source_run_id=source.id,
            )
            new_run_id = new_run.id
            job_id = await self._maybe_enqueue(session, new_run_id, failed_index)
            await session.commit()

        logger.info(
            "run_rerun_started",
            run_id=str(new_run_id),
            source_run_id=str(run_id),
            start_index=failed_index,
        )
        if job_id is not None:
            return RunHandle(run_id=new_run_id, job_id=job_id)
        return self._spawn(new_run_id, failed_index)

    # ------------------------------------------------------------ single step

    async def execute_single_step(
        self,
        graph: WorkflowGraph | Mapping[str, Any],
        step_id: str,
        user_id: str,
        prior_run_id: UUID | None = None,
    ) -> StepLog:
        """Run one step using a prior run's successful outputs as inputs; nothing is persisted."""
        graph = _coerce_graph(graph)
        step = graph.get_step(step_id)
        if step is None:
            raise NotFoundError("Step not found")
        if step.disabled:
            raise ValidationError("Step is disabled")

        outputs: Dict[str, Dict[str, Any]] = {}
        if prior_run_id is not None:
            async with self.ctx.session_factory() as session:
                prior = await RunRepository(session).get_async(prior_run_id)
            if prior is not None and prior.user_id in (None, user_id):
                for raw in prior.steps or []:
                    log = StepLog.from_dict(raw)
                    if log.status == StepStatus.SUCCESS.value and log.output is not None:
                        outputs[log.step_id] = log.output

        log = StepLog(step_id=step.id, type=step.type, category=step.category, title=step.title)
        log.input = collect_inputs(graph, step.id, outputs)
        log.started_at = utc_iso()
        started = time.monotonic()
        result = await dispatch_step(
            StepContext(
                app=self.ctx,
                step_id=step.id,
                step_type=step.type,
                category=step.category,
                config=dict(step.config),
                input_data=log.input,
                user_id=user_id,
            )
        )
        log.duration_ms = int((time.monotonic() - started) * 1000)
        log.completed_at = utc_iso()
        if result.pause_for_review:
            log.status = StepStatus.WAITING_REVIEW.value
            log.output = result.output
            log.review_session_id = result.review_session_id
        elif result.is_error:
            log.status = StepStatus.ERROR.value
            log.error = result.error
            log.error_stack = result.error_stack
        else:
            log.status = StepStatus.SUCCESS.value
            log.output = result.output
        return log
