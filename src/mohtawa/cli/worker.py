"""Worker CLI commands."""

from __future__ import annotations

import click

from mohtawa.cli.ui import run_with_context
from mohtawa.workers.job_types import QUEUE_EXECUTION, QUEUE_RENDER


@click.group()
def worker() -> None:
    """Worker processes (database job queue)."""


@worker.command("run")
@click.option(
    "--queue",
    type=click.Choice([QUEUE_EXECUTION, QUEUE_RENDER]),
    default=QUEUE_EXECUTION,
    show_default=True,
    help="Queue to consume",
)
@click.option("--once", is_flag=True, help="Process at most one job and exit")
def worker_run(queue: str, once: bool) -> None:
    """Run a worker loop that claims jobs from the database."""
    from mohtawa.workers.worker import run_worker

    async def _run(ctx) -> None:
        await run_worker(ctx, queue=queue, once=once)

    try:
        run_with_context(_run)
    except click.ClickException:
        raise
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def register(cli: click.Group) -> None:
    cli.add_command(worker)
