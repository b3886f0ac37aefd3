"""Auto-edit planner: pick and trim clips to cover a voiceover, then build an EDL.

Pure functions; no encoder or storage access.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Sequence

from mohtawa.edl.schema import (
    EDL,
    EDLAudio,
    EDLOutput,
    TextOverlay,
    TimelineClip,
)

AspectRatio = Literal["9:16", "1:1", "16:9"]

ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    "9:16": (1080, 1920),
    "1:1": (1080, 1080),
    "16:9": (1920, 1080),
}

DEFAULT_MIN_CLIP_SEC = 1.5
DEFAULT_MAX_CLIP_SEC = 3.5
HOOK_OVERLAY_SEC = 1.5
DEFAULT_MUSIC_GAIN_DB = -18.0


@dataclass(frozen=True)
class ClipInput:
    url: str
    duration_sec: float | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_raw(cls, raw: Any) -> "ClipInput | None":
        """Accept a bare URL or a mapping with ``url``/``clipUrl`` and ``durationSec``."""
        if isinstance(raw, str):
            return cls(url=raw) if raw else None
        if not isinstance(raw, Mapping):
            return None
        url = raw.get("url") or raw.get("clipUrl") or raw.get("sourceUrl")
        if not url:
            return None
        duration = raw.get("durationSec", raw.get("duration"))
        try:
            duration_sec = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            duration_sec = None
        tags = tuple(str(t) for t in raw.get("tags") or ())
        return cls(url=str(url), duration_sec=duration_sec, tags=tags)


def seeded_random(seed: int) -> Callable[[], float]:
    """Linear congruential generator; same seed, same sequence."""
    state = int(seed)

    def _next() -> float:
        nonlocal state
        state = (state * 9301 + 49297) % 233280
        return state / 233280

    return _next


def _shuffle(items: list[Any], rng: Callable[[], float]) -> None:
    for i in range(len(items) - 1, 0, -1):
        j = math.floor(rng() * (i + 1))
        items[i], items[j] = items[j], items[i]


def plan_timeline(
    clips: Sequence[ClipInput],
    target_duration_sec: float,
    min_clip_sec: float = DEFAULT_MIN_CLIP_SEC,
    max_clip_sec: float = DEFAULT_MAX_CLIP_SEC,
    seed: int | None = None,
) -> list[TimelineClip]:
    """Cover ``target_duration_sec`` with clips taken round-robin.

    Each segment lasts ``min(max, max(min, known_duration or max), remaining)``
    and starts where the previous one ended. Clips are shuffled only when a
    seed is given; without one the input order is kept.
    """
    if not clips or target_duration_sec <= 0:
        return []

    order = list(clips)
    if seed is not None:
        _shuffle(order, seeded_random(seed))

    timeline: list[TimelineClip] = []
    timeline_sec = 0.0
    index = 0
    while timeline_sec < target_duration_sec:
        clip = order[index % len(order)]
        duration = clip.duration_sec if clip.duration_sec is not None else max_clip_sec
        take = min(max_clip_sec, max(min_clip_sec, duration), target_duration_sec - timeline_sec)
        if take <= 0:
            break
        timeline.append(
            TimelineClip(clip_url=clip.url, in_sec=0, out_sec=take, start_sec=timeline_sec)
        )
        timeline_sec += take
        index += 1

    return timeline


def build_edl(
    *,
    clips: Sequence[ClipInput],
    voiceover_duration_sec: float,
    voiceover_url: str,
    aspect_ratio: str = "9:16",
    min_clip_sec: float = DEFAULT_MIN_CLIP_SEC,
    max_clip_sec: float = DEFAULT_MAX_CLIP_SEC,
    music_url: str | None = None,
    seed: int | None = None,
    hook_text: str | None = None,
) -> EDL:
    """Plan a timeline for the voiceover and wrap it in a complete EDL."""
    width, height = ASPECT_RATIOS.get(aspect_ratio, ASPECT_RATIOS["9:16"])
    timeline = plan_timeline(clips, voiceover_duration_sec, min_clip_sec, max_clip_sec, seed)

    overlays: list[TextOverlay] = []
    if hook_text and hook_text.strip():
        overlays.append(
            TextOverlay(
                text=hook_text.strip(),
                start_sec=0,
                end_sec=HOOK_OVERLAY_SEC,
                position="bottom",
            )
        )

    audio = EDLAudio(voiceover_url=voiceover_url, voice_gain_db=0)
    if music_url:
        audio.music_url = music_url
        audio.music_gain_db = DEFAULT_MUSIC_GAIN_DB

    return EDL(
        timeline=timeline,
        overlays=overlays,
        audio=audio,
        output=EDLOutput(width=width, height=height, fps=30),
    )
