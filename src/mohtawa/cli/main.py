"""Mohtawa command-line interface.

The CLI is organized into submodules under ``mohtawa.cli.*``; each exposes a
``register(cli)`` hook.
"""

from __future__ import annotations

import click

from mohtawa.app_version import get_app_version
from mohtawa.observability import init_observability


@click.group()
@click.version_option(version=get_app_version(), prog_name="mohtawa")
def cli() -> None:
    """Mohtawa - workflow runs, EDL tooling and render workers."""
    init_observability()


def _register_commands() -> None:
    from mohtawa.cli import edl, reviews, runs, serve, worker

    edl.register(cli)
    reviews.register(cli)
    runs.register(cli)
    serve.register(cli)
    worker.register(cli)


_register_commands()


if __name__ == "__main__":
    cli()
