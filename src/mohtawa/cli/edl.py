"""EDL CLI commands: validation and offline timeline planning."""

from __future__ import annotations

import json
from pathlib import Path

import click

from mohtawa.cli.ui import console
from mohtawa.edl.schema import dump_edl, parse_edl_safe
from mohtawa.video.autoedit import (
    DEFAULT_MAX_CLIP_SEC,
    DEFAULT_MIN_CLIP_SEC,
    ClipInput,
    build_edl,
)


def _read_json(path: str) -> object:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{path}: invalid JSON ({exc})") from exc


@click.group()
def edl() -> None:
    """Edit Decision List tools."""


@edl.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def edl_validate(path: str) -> None:
    """Validate an EDL JSON file."""
    result = parse_edl_safe(_read_json(path))
    if not result.success or result.edl is None:
        console.print(f"[red]invalid[/red] {result.error}")
        raise SystemExit(1)
    edl_obj = result.edl
    console.print(
        f"[green]valid[/green] {len(edl_obj.timeline)} clips, "
        f"{edl_obj.duration:.2f}s, {edl_obj.output.width}x{edl_obj.output.height}"
    )


@edl.command("plan")
@click.option("--clips", "clips_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--voiceover-duration", type=float, required=True, help="Voiceover length (seconds)")
@click.option("--voiceover-url", default="local://voiceover.mp3", show_default=True)
@click.option("--seed", type=int, default=None, help="Shuffle seed (input order when omitted)")
@click.option("--aspect-ratio", default="9:16", show_default=True)
@click.option("--min-clip", type=float, default=DEFAULT_MIN_CLIP_SEC, show_default=True)
@click.option("--max-clip", type=float, default=DEFAULT_MAX_CLIP_SEC, show_default=True)
@click.option("--hook-text", default=None)
def edl_plan(
    clips_path: str,
    voiceover_duration: float,
    voiceover_url: str,
    seed: int | None,
    aspect_ratio: str,
    min_clip: float,
    max_clip: float,
    hook_text: str | None,
) -> None:
    """Plan a timeline for a clip list and print the resulting EDL."""
    raw = _read_json(clips_path)
    items = raw if isinstance(raw, list) else [raw]
    clips = [c for c in (ClipInput.from_raw(item) for item in items) if c is not None]
    if not clips:
        raise click.ClickException("No clips with a url found")
    planned = build_edl(
        clips=clips,
        voiceover_duration_sec=voiceover_duration,
        voiceover_url=voiceover_url,
        aspect_ratio=aspect_ratio,
        min_clip_sec=min_clip,
        max_clip_sec=max_clip,
        seed=seed,
        hook_text=hook_text,
    )
    click.echo(json.dumps(dump_edl(planned), indent=2))


def register(cli: click.Group) -> None:
    cli.add_command(edl)
