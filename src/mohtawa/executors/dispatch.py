"""Route a step to its category handler."""

from __future__ import annotations

import traceback
from typing import Dict

from mohtawa.executors.ai import run_ai
from mohtawa.executors.base import StepCategory, StepContext, StepHandler, StepResult
from mohtawa.executors.basic import run_social, run_trigger
from mohtawa.executors.logic import run_logic
from mohtawa.executors.review import run_review
from mohtawa.executors.utility import run_utility
from mohtawa.executors.video import run_video
from mohtawa.executors.voice import run_voice
from mohtawa.observability.logging import get_logger

logger = get_logger(__name__)

CATEGORY_HANDLERS: Dict[StepCategory, StepHandler] = {
    StepCategory.TRIGGER: run_trigger,
    StepCategory.AI: run_ai,
    StepCategory.VOICE: run_voice,
    StepCategory.VIDEO: run_video,
    StepCategory.REVIEW: run_review,
    StepCategory.SOCIAL: run_social,
    StepCategory.LOGIC: run_logic,
    StepCategory.UTILITY: run_utility,
}


async def dispatch_step(ctx: StepContext) -> StepResult:
    """Run the handler for ``ctx.category``; never raises."""
    try:
        category = StepCategory(ctx.category)
    except ValueError:
        return StepResult.failed(f"Unknown step category: {ctx.category!r}")

    handler = CATEGORY_HANDLERS[category]
    try:
        return await handler(ctx)
    except Exception as exc:
        logger.warning(
            "step_handler_raised",
            step_id=ctx.step_id,
            category=category.value,
            step_type=ctx.step_type,
            exc_info=True,
        )
        return StepResult.failed(str(exc) or type(exc).__name__, traceback.format_exc())
