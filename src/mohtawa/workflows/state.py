"""Run and step state types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class StepStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    WAITING_REVIEW = "waiting_review"


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StepLog:
    """Per-step execution record, persisted as JSON on the Run row.

    Uses string types for JSON serialization compatibility.
    """

    step_id: str
    type: str
    category: str
    title: Optional[str] = None
    status: str = StepStatus.IDLE.value
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: Optional[int] = None
    input: Optional[Dict[str, Any]] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_stack: Optional[str] = None
    review_session_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepId": self.step_id,
            "type": self.type,
            "category": self.category,
            "title": self.title,
            "status": self.status,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "errorStack": self.error_stack,
            "reviewSessionId": self.review_session_id,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "StepLog":
        return cls(
            step_id=str(raw.get("stepId") or ""),
            type=str(raw.get("type") or ""),
            category=str(raw.get("category") or ""),
            title=raw.get("title"),
            status=str(raw.get("status") or StepStatus.IDLE.value),
            started_at=raw.get("startedAt"),
            completed_at=raw.get("completedAt"),
            duration_ms=raw.get("durationMs"),
            input=raw.get("input"),
            output=raw.get("output"),
            error=raw.get("error"),
            error_stack=raw.get("errorStack"),
            review_session_id=raw.get("reviewSessionId"),
        )


@dataclass
class RunSnapshot:
    """Poll view of a run."""

    run_id: str
    status: str
    steps: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {"completed", "failed"}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"runId": self.run_id, "status": self.status, "steps": self.steps}
        if self.error:
            data["error"] = self.error
        return data
