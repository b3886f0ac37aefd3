"""Trigger and social steps."""

from __future__ import annotations

import time

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.workflows.state import utc_iso


async def run_trigger(ctx: StepContext) -> StepResult:
    return StepResult.ok({"triggered": True, "type": ctx.step_type, "timestamp": utc_iso()})


async def run_social(ctx: StepContext) -> StepResult:
    """Simulated publish; no platform credentials are wired in."""
    platform = ctx.step_type.replace("-publisher", "")
    return StepResult.ok(
        {
            "published": False,
            "platform": platform,
            "note": f"Publishing to {platform} requires platform credentials and an OAuth flow.",
            "simulatedPostId": f"post_{int(time.time() * 1000)}",
        }
    )
