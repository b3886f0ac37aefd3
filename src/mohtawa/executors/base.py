"""Step executor types.

Every step category maps to one async handler taking a :class:`StepContext`
and returning a :class:`StepResult`. Handlers report failures as results;
exceptions escaping a handler are converted by the dispatcher.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

if TYPE_CHECKING:
    from mohtawa.services.context import AppContext

__all__ = [
    "StepCategory",
    "StepContext",
    "StepHandler",
    "StepResult",
]


class StepCategory(str, Enum):
    TRIGGER = "trigger"
    AI = "ai"
    VOICE = "voice"
    VIDEO = "video"
    REVIEW = "review"
    SOCIAL = "social"
    LOGIC = "logic"
    UTILITY = "utility"


@dataclass
class StepContext:
    """Everything a handler may read while executing one step.

    Attributes:
        app: Shared application context (storage, encoder, settings)
        step_id: Id of the step being executed
        step_type: Step type within its category, e.g. ``video.auto_edit``
        category: Raw category string from the graph
        config: Step configuration map
        input_data: Upstream outputs keyed by source handle (``output`` by default)
        user_id: Owner of the run
        run_id: Run id; None for single-step test executions
    """

    app: "AppContext"
    step_id: str
    step_type: str
    category: str
    config: Dict[str, Any] = field(default_factory=dict)
    input_data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    run_id: Optional[UUID] = None


@dataclass
class StepResult:
    """Outcome of a step: success output, error, or a pause for human review."""

    output: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_stack: Optional[str] = None
    pause_for_review: bool = False
    review_session_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def ok(cls, output: Dict[str, Any]) -> "StepResult":
        return cls(output=output)

    @classmethod
    def failed(cls, error: str, error_stack: str | None = None) -> "StepResult":
        return cls(error=error, error_stack=error_stack)

    @classmethod
    def paused(cls, output: Dict[str, Any], review_session_id: str) -> "StepResult":
        return cls(output=output, pause_for_review=True, review_session_id=review_session_id)


StepHandler = Callable[[StepContext], Awaitable[StepResult]]
