"""Review CLI commands."""

from __future__ import annotations

from typing import Any

import click

from mohtawa.cli.ui import console, run_with_context


@click.group()
def reviews() -> None:
    """Manual review sessions."""


@reviews.command("expire")
def reviews_expire() -> None:
    """Auto-approve pending reviews whose timeout has passed."""
    from mohtawa.workflows.engine import ExecutionEngine

    async def _run(ctx) -> Any:
        handles = await ExecutionEngine(ctx).expire_reviews()
        for handle in handles:
            await handle.wait()
        return handles

    handles = run_with_context(_run)
    if not handles:
        console.print("No expired reviews.")
        return
    for handle in handles:
        console.print(f"Auto-approved review on run {handle.run_id}")


def register(cli: click.Group) -> None:
    cli.add_command(reviews)
