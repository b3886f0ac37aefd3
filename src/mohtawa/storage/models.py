"""SQLAlchemy database models for Mohtawa."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import uuid
from typing import Any
from uuid import UUID

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Text,
    JSON,
    ForeignKey,
    Index,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base, relationship


def _utc_now() -> datetime:
    """Return a tz-naive UTC timestamp for TIMESTAMP WITHOUT TIME ZONE columns.

    Using tz-aware values with asyncpg against TIMESTAMP WITHOUT TIME ZONE columns
    triggers "can't subtract offset-naive and offset-aware datetimes", so we keep
    these fields naive and treat them as UTC by convention.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GUID(TypeDecorator[UUID]):
    """Platform-independent GUID type.

    Uses PostgreSQL's UUID type when available, otherwise stores as String(36).
    This enables unit tests with SQLite while using native UUIDs in production PostgreSQL.
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect: Any) -> Any:
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        else:
            return dialect.type_descriptor(String(36))

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        elif dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(value)
        else:
            return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value: Any, dialect: Any) -> UUID | None:
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


Base = declarative_base()

__all__ = [
    "Base",
    "GUID",
    "Run",
    "RunStatus",
    "ReviewSession",
    "ReviewStatus",
    "VideoProject",
    "ProjectStatus",
    "Job",
    "JobStatus",
]


class RunStatus(str, Enum):
    """Lifecycle of one execution of a workflow graph."""

    RUNNING = "running"
    WAITING_FOR_REVIEW = "waiting_review"
    COMPLETED = "completed"
    FAILED = "failed"


class Run(Base):
    """One execution of a workflow graph.

    ``steps`` holds the ordered StepLog list as JSON and is rewritten after every
    step transition, so a poller only ever needs this row.
    """

    __tablename__ = "runs"
    __table_args__ = (Index("ix_runs_status_updated_at", "status", "updated_at"),)

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    workflow_id = Column(String(128), nullable=False)
    user_id = Column(String(128), nullable=True)
    status = Column(String(32), nullable=False, default=RunStatus.RUNNING.value)
    graph = Column(JSON, nullable=False, default=dict)
    steps = Column(JSON, nullable=False, default=list)
    error = Column(Text, nullable=True)
    source_run_id = Column(GUID(), nullable=True)

    started_at = Column(DateTime, default=_utc_now)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    review_sessions = relationship(
        "ReviewSession", back_populates="run", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Run id={self.id} workflow={self.workflow_id} status={self.status}>"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ReviewSession(Base):
    """A pending human checkpoint raised by a manual review gate."""

    __tablename__ = "review_sessions"
    __table_args__ = (
        UniqueConstraint("run_id", "step_id", name="ux_review_sessions_run_step"),
        Index("ix_review_sessions_status_expires_at", "status", "expires_at"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    run_id = Column(GUID(), ForeignKey("runs.id"), nullable=False)
    step_id = Column(String(128), nullable=False)
    user_id = Column(String(128), nullable=True)
    project_id = Column(GUID(), nullable=True)
    status = Column(String(32), nullable=False, default=ReviewStatus.PENDING.value)
    action = Column(String(32), nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    resolved_at = Column(DateTime, nullable=True)

    run = relationship("Run", back_populates="review_sessions")

    def __repr__(self) -> str:
        return f"<ReviewSession run={self.run_id} step={self.step_id} status={self.status}>"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    FINAL = "final"


class VideoProject(Base):
    """Auto-edited video project; points at the current EDL and rendered outputs."""

    __tablename__ = "video_projects"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False)
    edl_url = Column(Text, nullable=False)
    draft_video_url = Column(Text, nullable=True)
    final_video_url = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default=ProjectStatus.DRAFT.value)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return f"<VideoProject id={self.id} status={self.status}>"


class JobStatus(str, Enum):
    """Job queue status for worker dispatch."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Job(Base):
    """Durable job queue entry.

    - API enqueues jobs
    - workers claim jobs (FOR UPDATE SKIP LOCKED) with a lease
    - jobs are retried up to max_attempts
    - long jobs publish progress into ``progress`` for pollers
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_status_available_at", "status", "available_at"),
        Index("ix_jobs_lease_expires_at", "lease_expires_at"),
        Index("ux_jobs_type_idempotency", "job_type", "idempotency_key", unique=True),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    job_type = Column(String(80), nullable=False)
    idempotency_key = Column(String(160), nullable=True)

    payload = Column(JSON, default=dict)
    progress = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)

    status = Column(String(32), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=2)

    available_at = Column(DateTime, default=_utc_now, nullable=False)
    claimed_by = Column(String(128), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utc_now)
    updated_at = Column(DateTime, default=_utc_now, onupdate=_utc_now)

    def __repr__(self) -> str:
        return (
            f"<Job id={self.id} type={self.job_type} status={self.status} "
            f"attempts={self.attempts}/{self.max_attempts}>"
        )
