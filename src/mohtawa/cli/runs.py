"""Runs CLI commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from uuid import UUID

import click
from rich.panel import Panel

from mohtawa.cli.ui import console, format_status, render_steps_table, run_with_context


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise click.BadParameter(f"not a UUID: {value}") from exc


def _print_snapshot(snapshot: Any) -> None:
    console.print(
        Panel.fit(
            f"[bold]Run[/bold] {snapshot.run_id}\n"
            f"[bold]Status[/bold] {format_status(snapshot.status)}"
            + (f"\n[bold]Error[/bold] {snapshot.error}" if snapshot.error else ""),
        )
    )
    render_steps_table(snapshot.steps)


async def _finish(engine: Any, handle: Any) -> Any:
    # In-process runs die with the event loop, so wait for them here.
    await handle.wait()
    return await engine.poll(handle.run_id)


@click.group()
def runs() -> None:
    """Start and inspect workflow runs."""


@runs.command("start")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--user-id", default="cli", show_default=True)
@click.option("--workflow-id", default=None, help="Defaults to the file stem")
def runs_start(path: str, user_id: str, workflow_id: str | None) -> None:
    """Start a run from a workflow graph JSON file."""
    from mohtawa.workflows.engine import ExecutionEngine

    try:
        graph = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path}: invalid JSON ({exc})") from exc

    async def _run(ctx) -> Any:
        engine = ExecutionEngine(ctx)
        handle = await engine.execute(
            graph, user_id=user_id, workflow_id=workflow_id or Path(path).stem
        )
        if handle.job_id is not None:
            console.print(f"Queued run {handle.run_id} as job {handle.job_id}")
        return await _finish(engine, handle)

    _print_snapshot(run_with_context(_run))


@runs.command("status")
@click.argument("run_id")
def runs_status(run_id: str) -> None:
    """Show the status and step logs of a run."""
    from mohtawa.workflows.engine import ExecutionEngine

    rid = _parse_uuid(run_id)

    async def _run(ctx) -> Any:
        return await ExecutionEngine(ctx).poll(rid)

    _print_snapshot(run_with_context(_run))


@runs.command("rerun")
@click.argument("run_id")
def runs_rerun(run_id: str) -> None:
    """Start a new run from the failed step of a failed run."""
    from mohtawa.workflows.engine import ExecutionEngine

    rid = _parse_uuid(run_id)

    async def _run(ctx) -> Any:
        engine = ExecutionEngine(ctx)
        handle = await engine.rerun_from_failed(rid)
        return await _finish(engine, handle)

    _print_snapshot(run_with_context(_run))


@runs.command("review")
@click.argument("run_id")
@click.argument("step_id")
@click.option(
    "--action",
    type=click.Choice(["approve", "edit"]),
    default="approve",
    show_default=True,
)
@click.option(
    "--edl",
    "edl_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Replacement EDL JSON (required for --action edit)",
)
def runs_review(run_id: str, step_id: str, action: str, edl_path: str | None) -> None:
    """Resolve a paused review gate and resume the run."""
    from mohtawa.workflows.engine import ExecutionEngine

    rid = _parse_uuid(run_id)
    if action == "edit" and not edl_path:
        raise click.UsageError("--edl is required with --action edit")
    edited = json.loads(Path(edl_path).read_text(encoding="utf-8")) if edl_path else None

    async def _run(ctx) -> Any:
        engine = ExecutionEngine(ctx)
        handle = await engine.resolve_review(rid, step_id, action, edited)
        return await _finish(engine, handle)

    _print_snapshot(run_with_context(_run))


def register(cli: click.Group) -> None:
    cli.add_command(runs)
