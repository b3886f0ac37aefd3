"""Step executors, one handler per step category."""

from mohtawa.executors.base import StepCategory, StepContext, StepHandler, StepResult
from mohtawa.executors.dispatch import CATEGORY_HANDLERS, dispatch_step

__all__ = [
    "CATEGORY_HANDLERS",
    "StepCategory",
    "StepContext",
    "StepHandler",
    "StepResult",
    "dispatch_step",
]
