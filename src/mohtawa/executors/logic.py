"""Logic steps: if-else, delay, loop, merge."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.workflows.state import utc_iso

MAX_DELAY_SECONDS = 300.0
DEFAULT_DELAY_SECONDS = 5.0

_MISSING = object()


def _to_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


def _as_text(value: Any) -> str:
    if value is None or value is _MISSING:
        return "None"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _find_field(input_data: Mapping[str, Any], name: str) -> Any:
    for upstream in input_data.values():
        if isinstance(upstream, Mapping) and name in upstream:
            return upstream[name]
    return input_data.get(name, _MISSING)


def evaluate_condition(config: Mapping[str, Any], input_data: Mapping[str, Any]) -> Dict[str, Any]:
    """Evaluate a field check (or the presence of upstream data) and pick a branch."""
    condition_type = str(config.get("conditionType") or "expression")
    condition = str(config.get("condition") or "")
    field_name = str(config.get("field") or "")
    operator = str(config.get("operator") or "equals")
    compare = config.get("compareValue")

    if condition_type == "field_check" and field_name:
        value = _find_field(input_data, field_name)
        present = value is not _MISSING and value is not None
        if operator == "equals":
            result = _as_text(value) == _as_text(compare)
        elif operator == "not_equals":
            result = _as_text(value) != _as_text(compare)
        elif operator == "contains":
            result = _as_text(compare) in _as_text(value)
        elif operator == "greater_than":
            result = _to_number(value) > _to_number(compare)
        elif operator == "less_than":
            result = _to_number(value) < _to_number(compare)
        elif operator == "exists":
            result = present
        elif operator == "is_empty":
            result = not present or not value or not str(value).strip()
        else:
            # is_truthy and unknown operators
            result = present and bool(value)
    elif condition:
        result = bool(input_data) and condition != "false"
    else:
        result = bool(input_data)

    return {
        "condition": condition or f"{field_name} {operator} {compare}",
        "result": result,
        "branch": "true" if result else "false",
        "evaluatedInput": dict(input_data),
    }


async def execute_delay(config: Mapping[str, Any]) -> Dict[str, Any]:
    raw = config.get("duration")
    seconds = _to_number(raw) if raw not in (None, "", 0) else DEFAULT_DELAY_SECONDS
    if seconds != seconds or seconds < 0:
        seconds = DEFAULT_DELAY_SECONDS
    seconds = min(seconds, MAX_DELAY_SECONDS)
    started_at = utc_iso()
    await asyncio.sleep(seconds)
    return {
        "delayed": True,
        "durationSeconds": seconds,
        "startedAt": started_at,
        "completedAt": utc_iso(),
    }


async def run_logic(ctx: StepContext) -> StepResult:
    step_type = ctx.step_type
    if step_type == "if-else":
        return StepResult.ok(evaluate_condition(ctx.config, ctx.input_data))
    if step_type == "delay":
        return StepResult.ok(await execute_delay(ctx.config))
    if step_type == "loop":
        return StepResult.ok({"iterations": 1, "completed": True, "items": ctx.input_data})
    if step_type == "merge":
        return StepResult.ok({"merged": True, **ctx.input_data})
    return StepResult.ok({"result": "logic processed"})
