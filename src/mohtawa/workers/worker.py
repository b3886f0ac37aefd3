"""Database-backed worker loop."""

from __future__ import annotations

import asyncio
import os
import socket
from typing import TYPE_CHECKING
from uuid import UUID

import anyio

from mohtawa.observability.logging import get_logger
from mohtawa.storage.models import Job, JobStatus
from mohtawa.storage.repositories import JobRepository
from mohtawa.workers.exceptions import JobReschedule
from mohtawa.workers.handlers import handle_job
from mohtawa.workers.job_types import QUEUE_EXECUTION, QueueSpec, queue_spec

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

logger = get_logger(__name__)


def _default_worker_id() -> str:
    host = socket.gethostname()
    pid = os.getpid()
    return f"{host}:{pid}"


async def _lease_heartbeat(
    ctx: "AppContext",
    job_id: UUID,
    worker_id: str,
    lease_seconds: float,
    stop_event: anyio.Event,
) -> None:
    """Periodically extend the lease for a running job.

    Uses a separate DB session so the job's own writes are never committed by
    the heartbeat.
    """
    interval_seconds = max(1.0, min(float(lease_seconds) / 3.0, 30.0))
    while True:
        with anyio.move_on_after(interval_seconds):
            await stop_event.wait()
        if stop_event.is_set():
            return
        try:
            async with ctx.session_factory() as hb_session:
                await JobRepository(hb_session).touch_lease_async(
                    job_id,
                    worker_id=worker_id,
                    lease_seconds=float(lease_seconds),
                )
                await hb_session.commit()
        except Exception:
            logger.warning("job_lease_renew_failed", job_id=str(job_id), exc_info=True)


async def _process_one_job(
    ctx: "AppContext",
    job_id: UUID,
    worker_id: str,
    spec: QueueSpec,
    *,
    lease_seconds: float,
) -> None:
    """Execute one claimed job and mark it succeeded, rescheduled or failed."""
    async with ctx.session_factory() as session:
        job = await session.get(Job, job_id)
        if job is None:
            return
        job_type = str(job.job_type)
        payload = dict(job.payload or {})
        attempts = int(job.attempts or 0)
        max_attempts = int(job.max_attempts or 0)

    stop_event = anyio.Event()
    handler_exc: Exception | None = None
    result = None
    async with anyio.create_task_group() as tg:
        tg.start_soon(_lease_heartbeat, ctx, job_id, worker_id, float(lease_seconds), stop_event)
        try:
            result = await handle_job(ctx, job_type=job_type, job_id=job_id, payload=payload)
        except Exception as exc:
            handler_exc = exc
        finally:
            stop_event.set()

    async with ctx.session_factory() as session:
        job_repo = JobRepository(session)

        if handler_exc is None:
            await job_repo.mark_succeeded_async(job_id, result=result)
            await session.commit()
            logger.info("job_succeeded", job_id=str(job_id), job_type=job_type)
            return

        # Rescheduled: expected control flow, no stacktrace.
        if isinstance(handler_exc, JobReschedule):
            status = await job_repo.mark_failed_async(
                job_id,
                error=str(handler_exc.reason),
                retry_delay_seconds=float(handler_exc.retry_delay_seconds),
            )
            await session.commit()
            if status == JobStatus.FAILED:
                logger.warning(
                    "job_reschedule_exhausted",
                    job_id=str(job_id),
                    job_type=job_type,
                    attempts=attempts,
                    max_attempts=max_attempts,
                    error=str(handler_exc.reason),
                )
            else:
                logger.info(
                    "job_rescheduled",
                    job_id=str(job_id),
                    job_type=job_type,
                    retry_delay_seconds=float(handler_exc.retry_delay_seconds),
                    reason=str(handler_exc.reason),
                )
            return

        delay = spec.retry_delay(attempts)
        status = await job_repo.mark_failed_async(
            job_id, error=str(handler_exc), retry_delay_seconds=delay
        )
        await session.commit()
        logger.warning(
            "job_failed",
            job_id=str(job_id),
            job_type=job_type,
            attempts=attempts,
            max_attempts=max_attempts,
            final=status == JobStatus.FAILED,
            retry_delay_seconds=delay,
            error=str(handler_exc),
            exc_info=handler_exc,
        )


async def run_worker(
    ctx: "AppContext",
    *,
    queue: str = QUEUE_EXECUTION,
    once: bool = False,
) -> None:
    """Run the worker event loop for one queue.

    Args:
        ctx: Application context (settings, sessions, render stack)
        queue: ``execution`` (workflow runs) or ``render`` (draft renders)
        once: If true, process at most one job and exit (useful for tests/ops).
    """
    settings = ctx.settings
    spec = queue_spec(queue, settings)
    worker_id = settings.worker_id or _default_worker_id()
    concurrency = max(1, int(spec.concurrency or 1))
    lease_seconds = float(settings.job_lease_seconds)
    poll_interval = float(settings.job_poll_interval_seconds)

    logger.info(
        "worker_start",
        worker_id=worker_id,
        queue=spec.name,
        concurrency=concurrency,
        lease_seconds=lease_seconds,
        poll_interval=poll_interval,
    )

    limiter = anyio.Semaphore(concurrency)

    async def _claim_job() -> UUID | None:
        try:
            async with ctx.session_factory() as session:
                job = await JobRepository(session).claim_next_async(
                    worker_id=worker_id,
                    job_types=spec.job_types,
                    lease_seconds=lease_seconds,
                )
                await session.commit()
                return job.id if job else None
        except Exception:
            logger.warning("job_claim_failed", exc_info=True)
            return None

    async def _run_claimed(jid: UUID) -> None:
        try:
            await _process_one_job(ctx, jid, worker_id, spec, lease_seconds=lease_seconds)
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                raise
            logger.error("job_unhandled_exception", job_id=str(jid), exc_info=True)
            try:
                async with ctx.session_factory() as session:
                    await JobRepository(session).mark_failed_async(
                        jid, error=str(exc), retry_delay_seconds=spec.retry_base_seconds
                    )
                    await session.commit()
            except Exception:
                logger.error(
                    "job_unhandled_exception_mark_failed_failed",
                    job_id=str(jid),
                    exc_info=True,
                )
        finally:
            limiter.release()

    if once:
        jid = await _claim_job()
        if jid is None:
            return
        await _process_one_job(ctx, jid, worker_id, spec, lease_seconds=lease_seconds)
        return

    async with anyio.create_task_group() as tg:
        while True:
            await limiter.acquire()
            jid = await _claim_job()
            if jid is None:
                limiter.release()
                await anyio.sleep(poll_interval)
                continue
            tg.start_soon(_run_claimed, jid)
