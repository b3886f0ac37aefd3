"""Shared CLI helpers (Rich formatting and context lifecycle)."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Iterable, Mapping, TypeVar

import anyio
import click
from rich.console import Console
from rich.table import Table

from mohtawa.errors import DomainError
from mohtawa.storage.models import RunStatus
from mohtawa.workflows.state import StepStatus

console = Console()

T = TypeVar("T")


def format_status(status: str) -> str:
    """Return colorized status string for terminal output."""
    colors = {
        RunStatus.RUNNING.value: "cyan",
        RunStatus.WAITING_FOR_REVIEW.value: "yellow",
        RunStatus.COMPLETED.value: "green",
        RunStatus.FAILED.value: "red",
        StepStatus.IDLE.value: "grey62",
        StepStatus.SUCCESS.value: "green",
        StepStatus.ERROR.value: "red",
    }
    color = colors.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def render_steps_table(steps: Iterable[Mapping[str, Any]], *, title: str = "Steps") -> None:
    """Render the step logs of a run."""
    table = Table(title=title, show_lines=False)
    table.add_column("#", style="white")
    table.add_column("Step", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status", style="bold")
    table.add_column("ms", justify="right")
    table.add_column("Error", style="red")

    for index, step in enumerate(steps):
        duration = step.get("durationMs")
        table.add_row(
            str(index),
            str(step.get("title") or step.get("stepId") or ""),
            str(step.get("type") or ""),
            format_status(str(step.get("status") or "")),
            str(duration) if duration is not None else "-",
            str(step.get("error") or ""),
        )

    console.print(table)


def run_with_context(fn: Callable[[Any], Awaitable[T]]) -> T:
    """Build an AppContext, run ``fn(ctx)`` on an event loop and close the context.

    Domain errors become ``click.ClickException`` so they print without a traceback.
    """
    from mohtawa.services.context import build_context, close_context

    async def _run() -> T:
        ctx = await build_context()
        try:
            return await fn(ctx)
        finally:
            await close_context(ctx)

    try:
        return anyio.run(_run)
    except DomainError as exc:
        raise click.ClickException(str(exc)) from exc
