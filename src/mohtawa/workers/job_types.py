"""Job type constants, queue definitions and idempotency helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple
from uuid import UUID

JOB_RUN_EXECUTE = "run.execute"
JOB_RENDER_DRAFT = "render.draft"

QUEUE_EXECUTION = "execution"
QUEUE_RENDER = "render"


@dataclass(frozen=True)
class QueueSpec:
    name: str
    job_types: Tuple[str, ...]
    concurrency: int
    max_attempts: int
    retry_base_seconds: float

    def retry_delay(self, attempts: int) -> float:
        """Exponential backoff: ``base * 2**(attempts-1)``."""
        return self.retry_base_seconds * (2 ** max(0, int(attempts) - 1))


def queue_spec(name: str, settings: Any) -> QueueSpec:
    if name == QUEUE_EXECUTION:
        return QueueSpec(
            name=QUEUE_EXECUTION,
            job_types=(JOB_RUN_EXECUTE,),
            concurrency=settings.execution_worker_concurrency,
            max_attempts=settings.execution_job_max_attempts,
            retry_base_seconds=settings.execution_retry_base_seconds,
        )
    if name == QUEUE_RENDER:
        return QueueSpec(
            name=QUEUE_RENDER,
            job_types=(JOB_RENDER_DRAFT,),
            concurrency=settings.render_worker_concurrency,
            max_attempts=settings.render_job_max_attempts,
            retry_base_seconds=settings.render_retry_base_seconds,
        )
    raise ValueError(f"Unknown queue: {name}")


def queue_for_job_type(job_type: str) -> str:
    return QUEUE_RENDER if job_type == JOB_RENDER_DRAFT else QUEUE_EXECUTION


def idempotency_run_execute(run_id: UUID, start_index: int = 0) -> str:
    return f"run_execute:{run_id}:{start_index}"
