"""Data access repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified

from mohtawa.observability.logging import get_logger
from mohtawa.storage.models import (
    Job,
    JobStatus,
    ProjectStatus,
    ReviewSession,
    ReviewStatus,
    Run,
    RunStatus,
    VideoProject,
)

logger = get_logger(__name__)

__all__ = [
    "RunRepository",
    "ReviewSessionRepository",
    "VideoProjectRepository",
    "JobRepository",
]


def _utc_now_naive() -> datetime:
    # Keep timestamps tz-naive to match the DB convention in models.py
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None) if dt.tzinfo else dt


class RunRepository:
    """Repository for Run persistence."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        *,
        workflow_id: str,
        graph: Dict[str, Any],
        steps: List[Dict[str, Any]],
        user_id: str | None = None,
        status: RunStatus = RunStatus.RUNNING,
        source_run_id: UUID | None = None,
    ) -> Run:
        run = Run(
            workflow_id=workflow_id,
            user_id=user_id,
            graph=graph,
            steps=steps,
            status=status.value,
            source_run_id=source_run_id,
            started_at=_utc_now_naive(),
        )
        self.session.add(run)
        await self.session.flush()
        logger.info("run_created", run_id=str(run.id), workflow_id=workflow_id)
        return run

    async def get_async(self, run_id: UUID) -> Optional[Run]:
        result = await self.session.execute(select(Run).where(Run.id == run_id))
        return result.scalar_one_or_none()

    async def get_for_update_async(self, run_id: UUID) -> Optional[Run]:
        stmt = select(Run).where(Run.id == run_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_async(self, run_id: UUID, **kwargs: Any) -> Optional[Run]:
        run = await self.get_async(run_id)
        if run is None:
            return None

        for key, value in kwargs.items():
            if hasattr(run, key):
                if key == "status":
                    value = self._normalize_status(value)
                setattr(run, key, value)
                if key in {"steps", "graph"}:
                    flag_modified(run, key)

        await self.session.flush()
        return run

    async def save_steps_async(
        self,
        run_id: UUID,
        steps: List[Dict[str, Any]],
        **fields: Any,
    ) -> Optional[Run]:
        """Persist the StepLog list (and optional status/error fields) in one flush."""
        return await self.update_async(run_id, steps=steps, **fields)

    async def list_by_status_async(self, status: RunStatus, limit: int = 100) -> Sequence[Run]:
        stmt = (
            select(Run)
            .where(Run.status == status.value)
            .order_by(Run.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    @staticmethod
    def _normalize_status(value: Any) -> str:
        if isinstance(value, RunStatus):
            return value.value
        return str(RunStatus(str(value)).value)


class ReviewSessionRepository:
    """Repository for review checkpoints keyed by (run_id, step_id)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_async(self, session_id: UUID) -> Optional[ReviewSession]:
        result = await self.session.execute(
            select(ReviewSession).where(ReviewSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_by_step_async(self, run_id: UUID, step_id: str) -> Optional[ReviewSession]:
        stmt = select(ReviewSession).where(
            ReviewSession.run_id == run_id,
            ReviewSession.step_id == step_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_pending_async(
        self,
        *,
        run_id: UUID,
        step_id: str,
        user_id: str | None,
        project_id: UUID | None,
        expires_at: datetime | None = None,
    ) -> ReviewSession:
        """Create or reset the pending review for ``(run_id, step_id)``.

        Calling this twice for the same key updates the existing row.
        """
        existing = await self.get_by_step_async(run_id, step_id)
        if existing is not None:
            existing.status = ReviewStatus.PENDING.value
            existing.user_id = user_id
            existing.project_id = project_id
            existing.expires_at = _naive(expires_at) if expires_at else None
            existing.action = None
            existing.resolved_at = None
            await self.session.flush()
            return existing

        review = ReviewSession(
            run_id=run_id,
            step_id=step_id,
            user_id=user_id,
            project_id=project_id,
            status=ReviewStatus.PENDING.value,
            expires_at=_naive(expires_at) if expires_at else None,
        )
        self.session.add(review)
        await self.session.flush()
        logger.info("review_session_created", run_id=str(run_id), step_id=step_id)
        return review

    async def resolve_async(self, review: ReviewSession, *, action: str) -> bool:
        """Claim a pending review. Returns False when another caller resolved it first."""
        upd = (
            update(ReviewSession)
            .where(
                ReviewSession.id == review.id,
                ReviewSession.status == ReviewStatus.PENDING.value,
            )
            .values(
                status=ReviewStatus.RESOLVED.value,
                action=action,
                resolved_at=_utc_now_naive(),
            )
        )
        res = await self.session.execute(upd)
        if not getattr(res, "rowcount", 0):
            return False
        await self.session.refresh(review)
        return True

    async def list_expired_async(self, now: datetime) -> Sequence[ReviewSession]:
        stmt = (
            select(ReviewSession)
            .where(
                ReviewSession.status == ReviewStatus.PENDING.value,
                ReviewSession.expires_at.is_not(None),
                ReviewSession.expires_at <= _naive(now),
            )
            .order_by(ReviewSession.expires_at.asc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class VideoProjectRepository:
    """Repository for auto-edited video projects."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_async(
        self,
        *,
        user_id: str,
        edl_url: str,
        draft_video_url: str | None = None,
        status: ProjectStatus = ProjectStatus.DRAFT,
    ) -> VideoProject:
        project = VideoProject(
            user_id=user_id,
            edl_url=edl_url,
            draft_video_url=draft_video_url,
            status=status.value,
        )
        self.session.add(project)
        await self.session.flush()
        logger.info("video_project_created", project_id=str(project.id), user_id=user_id)
        return project

    async def get_async(self, project_id: UUID) -> Optional[VideoProject]:
        result = await self.session.execute(
            select(VideoProject).where(VideoProject.id == project_id)
        )
        return result.scalar_one_or_none()

    async def get_for_user_async(self, project_id: UUID, user_id: str) -> Optional[VideoProject]:
        stmt = select(VideoProject).where(
            VideoProject.id == project_id,
            VideoProject.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_async(self, project_id: UUID, **kwargs: Any) -> Optional[VideoProject]:
        project = await self.get_async(project_id)
        if project is None:
            return None
        for key, value in kwargs.items():
            if hasattr(project, key):
                setattr(project, key, value)
        project.updated_at = _utc_now_naive()
        await self.session.flush()
        return project


class JobRepository:
    """Repository for durable job queue operations.

    The job queue is Postgres-first (FOR UPDATE SKIP LOCKED), with a portable
    fallback for SQLite used in tests.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _dialect_name(self) -> str:
        bind = getattr(self.session, "bind", None)
        if bind is None and hasattr(self.session, "get_bind"):
            try:
                bind = self.session.get_bind()
            except Exception:
                bind = None
        if bind is None:
            return "unknown"
        if hasattr(bind, "dialect"):
            return str(bind.dialect.name)
        if hasattr(bind, "sync_engine") and hasattr(bind.sync_engine, "dialect"):
            return str(bind.sync_engine.dialect.name)
        return "unknown"

    async def enqueue_async(
        self,
        job_type: str,
        *,
        payload: Dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        max_attempts: int = 2,
        available_at: datetime | None = None,
    ) -> Job:
        job = Job(
            job_type=job_type,
            payload=payload or {},
            idempotency_key=idempotency_key,
            status=JobStatus.PENDING.value,
            max_attempts=max_attempts,
            available_at=available_at or _utc_now_naive(),
        )
        self.session.add(job)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # Re-raise with a stable error for callers to treat as "already enqueued".
            raise ValueError("job_already_enqueued") from exc
        return job

    async def get_async(self, job_id: UUID) -> Job | None:
        return await self.session.get(Job, job_id, populate_existing=True)

    async def claim_next_async(
        self,
        *,
        worker_id: str,
        job_types: Sequence[str] | None = None,
        lease_seconds: float = 60.0,
    ) -> Job | None:
        """Claim the next available job, optionally restricted to ``job_types``.

        Uses SKIP LOCKED on Postgres; falls back to optimistic claim on SQLite.
        """
        now = _utc_now_naive()
        lease_expires_at = now + timedelta(seconds=float(lease_seconds))

        eligible = or_(
            and_(
                Job.status == JobStatus.PENDING.value,
                Job.available_at <= now,
                or_(Job.lease_expires_at.is_(None), Job.lease_expires_at <= now),
            ),
            and_(Job.status == JobStatus.RUNNING.value, Job.lease_expires_at <= now),
        )
        if job_types:
            eligible = and_(eligible, Job.job_type.in_(list(job_types)))

        if self._dialect_name() == "postgresql":
            stmt = (
                select(Job)
                .where(eligible)
                .order_by(Job.available_at.asc(), Job.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            result = await self.session.execute(stmt)
            job = result.scalar_one_or_none()
            if job is None:
                return None
            job.status = JobStatus.RUNNING.value
            job.claimed_by = worker_id
            job.lease_expires_at = lease_expires_at
            job.attempts = int(job.attempts or 0) + 1
            await self.session.flush()
            return job

        # Portable fallback: select then conditionally update.
        stmt = (
            select(Job.id)
            .where(eligible)
            .order_by(Job.available_at.asc(), Job.created_at.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        job_id = result.scalar_one_or_none()
        if job_id is None:
            return None

        upd = (
            update(Job)
            .where(Job.id == job_id, eligible)
            .values(
                status=JobStatus.RUNNING.value,
                claimed_by=worker_id,
                lease_expires_at=lease_expires_at,
                attempts=Job.attempts + 1,
            )
        )
        res = await self.session.execute(upd)
        if not getattr(res, "rowcount", 0):
            return None
        return await self.session.get(Job, job_id, populate_existing=True)

    async def touch_lease_async(
        self,
        job_id: UUID,
        *,
        worker_id: str,
        lease_seconds: float = 60.0,
    ) -> None:
        now = _utc_now_naive()
        upd = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status == JobStatus.RUNNING.value,
                Job.claimed_by == worker_id,
            )
            .values(lease_expires_at=now + timedelta(seconds=float(lease_seconds)), updated_at=now)
        )
        await self.session.execute(upd)
        await self.session.flush()

    async def set_progress_async(self, job_id: UUID, progress: Dict[str, Any]) -> None:
        upd = (
            update(Job)
            .where(Job.id == job_id)
            .values(progress=dict(progress), updated_at=_utc_now_naive())
        )
        await self.session.execute(upd)
        await self.session.flush()

    async def mark_succeeded_async(
        self, job_id: UUID, *, result: Dict[str, Any] | None = None
    ) -> None:
        upd = (
            update(Job)
            .where(Job.id == job_id)
            .values(
                status=JobStatus.SUCCEEDED.value,
                result=result,
                lease_expires_at=None,
                claimed_by=None,
                updated_at=_utc_now_naive(),
            )
        )
        await self.session.execute(upd)
        await self.session.flush()

    async def mark_failed_async(
        self,
        job_id: UUID,
        *,
        error: str,
        retry_delay_seconds: float = 5.0,
    ) -> JobStatus:
        """Mark job failed; reschedule after ``retry_delay_seconds`` if attempts remain.

        Returns the resulting JobStatus.
        """
        job = await self.session.get(Job, job_id)
        if job is None:
            return JobStatus.FAILED

        job.last_error = error
        job.lease_expires_at = None
        job.claimed_by = None

        if int(job.attempts or 0) >= int(job.max_attempts or 0):
            job.status = JobStatus.FAILED.value
            await self.session.flush()
            return JobStatus.FAILED

        job.status = JobStatus.PENDING.value
        job.available_at = _utc_now_naive() + timedelta(seconds=float(retry_delay_seconds))
        await self.session.flush()
        return JobStatus.PENDING
