"""Unit tests for the auto-edit planner."""

from __future__ import annotations

import pytest

from mohtawa.video.autoedit import (
    ASPECT_RATIOS,
    DEFAULT_MUSIC_GAIN_DB,
    ClipInput,
    build_edl,
    plan_timeline,
    seeded_random,
)
from mohtawa.edl.schema import dump_edl, validate_edl


def _clips(*urls: str) -> list[ClipInput]:
    return [ClipInput(url=u) for u in urls]


def test_clip_input_from_raw_variants() -> None:
    assert ClipInput.from_raw("https://x/a.mp4") == ClipInput(url="https://x/a.mp4")
    assert ClipInput.from_raw({"clipUrl": "u", "durationSec": "2.5"}).duration_sec == 2.5
    assert ClipInput.from_raw({"url": "u", "duration": "nope"}).duration_sec is None
    assert ClipInput.from_raw({"durationSec": 3}) is None
    assert ClipInput.from_raw("") is None
    assert ClipInput.from_raw(42) is None


def test_plan_timeline_empty_inputs_yield_empty_timeline() -> None:
    assert plan_timeline([], 10) == []
    assert plan_timeline(_clips("a"), 0) == []
    assert plan_timeline(_clips("a"), -3) == []


def test_plan_timeline_covers_target_exactly_and_contiguously() -> None:
    timeline = plan_timeline(_clips("a", "b", "c"), 10.0, 1.5, 3.5)

    assert sum(c.out_sec - c.in_sec for c in timeline) == pytest.approx(10.0)
    expected = 0.0
    for clip in timeline:
        assert clip.start_sec == pytest.approx(expected)
        assert clip.in_sec == 0
        expected += clip.out_sec
    # 3.5 + 3.5 + 3.0
    assert [c.out_sec for c in timeline] == pytest.approx([3.5, 3.5, 3.0])


def test_plan_timeline_without_seed_keeps_input_order_round_robin() -> None:
    timeline = plan_timeline(_clips("a", "b"), 12.0, 1.0, 3.0)

    assert [c.clip_url for c in timeline] == ["a", "b", "a", "b"]


def test_plan_timeline_respects_known_clip_duration_within_bounds() -> None:
    clips = [ClipInput(url="short", duration_sec=0.5), ClipInput(url="mid", duration_sec=2.0)]

    timeline = plan_timeline(clips, 3.5, 1.5, 3.5)

    assert [c.out_sec for c in timeline] == pytest.approx([1.5, 2.0])


def test_plan_timeline_same_seed_same_plan_and_differs_from_unseeded() -> None:
    clips = _clips("a", "b", "c", "d", "e")

    first = plan_timeline(clips, 20.0, seed=7)
    second = plan_timeline(clips, 20.0, seed=7)
    unseeded = plan_timeline(clips, 20.0)

    assert [c.clip_url for c in first] == [c.clip_url for c in second]
    assert sorted({c.clip_url for c in first}) == ["a", "b", "c", "d", "e"]
    assert [c.clip_url for c in unseeded[:5]] == ["a", "b", "c", "d", "e"]
    assert [c.clip_url for c in first[:5]] != [c.clip_url for c in unseeded[:5]]


def test_seeded_random_is_deterministic_and_in_unit_interval() -> None:
    a, b = seeded_random(42), seeded_random(42)
    values = [a() for _ in range(20)]

    assert values == [b() for _ in range(20)]
    assert all(0 <= v < 1 for v in values)


def test_build_edl_is_valid_and_applies_aspect_hook_and_music() -> None:
    edl = build_edl(
        clips=_clips("https://x/a.mp4", "https://x/b.mp4"),
        voiceover_duration_sec=6.0,
        voiceover_url="local://vo.mp3",
        aspect_ratio="16:9",
        music_url="local://music.mp3",
        hook_text="  Watch this  ",
    )

    assert (edl.output.width, edl.output.height) == ASPECT_RATIOS["16:9"]
    assert edl.duration == pytest.approx(6.0)
    assert edl.overlays[0].text == "Watch this"
    assert edl.overlays[0].end_sec == pytest.approx(1.5)
    assert edl.audio.music_url == "local://music.mp3"
    assert edl.audio.music_gain_db == DEFAULT_MUSIC_GAIN_DB
    assert validate_edl(dump_edl(edl)) == edl


def test_build_edl_unknown_aspect_falls_back_to_vertical_and_skips_blank_hook() -> None:
    edl = build_edl(
        clips=_clips("a"),
        voiceover_duration_sec=2.0,
        voiceover_url="local://vo.mp3",
        aspect_ratio="4:3",
        hook_text="   ",
    )

    assert (edl.output.width, edl.output.height) == (1080, 1920)
    assert edl.overlays == []
    assert edl.audio.music_url is None
