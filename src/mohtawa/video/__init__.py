"""Video planning, captioning and rendering."""

from mohtawa.video.autoedit import ClipInput, build_edl, plan_timeline
from mohtawa.video.encoder import Encoder, EncoderErrorKind, EncoderResult, FFmpegEncoder
from mohtawa.video.render import (
    RenderFailure,
    RenderFailureKind,
    RenderOrchestrator,
    RenderResult,
    placeholder_video,
)
from mohtawa.video.subtitles import build_ass_subtitles

__all__ = [
    "ClipInput",
    "Encoder",
    "EncoderErrorKind",
    "EncoderResult",
    "FFmpegEncoder",
    "RenderFailure",
    "RenderFailureKind",
    "RenderOrchestrator",
    "RenderResult",
    "build_ass_subtitles",
    "build_edl",
    "placeholder_video",
    "plan_timeline",
]
