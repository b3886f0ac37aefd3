"""Persistence: SQLAlchemy models and repositories, blob storage, asset fetch."""

from mohtawa.storage.models import (
    Base,
    Job,
    JobStatus,
    ProjectStatus,
    ReviewSession,
    ReviewStatus,
    Run,
    RunStatus,
    VideoProject,
)
from mohtawa.storage.repositories import (
    JobRepository,
    ReviewSessionRepository,
    RunRepository,
    VideoProjectRepository,
)

__all__ = [
    "Base",
    "Job",
    "JobStatus",
    "ProjectStatus",
    "ReviewSession",
    "ReviewStatus",
    "Run",
    "RunStatus",
    "VideoProject",
    "JobRepository",
    "ReviewSessionRepository",
    "RunRepository",
    "VideoProjectRepository",
]
