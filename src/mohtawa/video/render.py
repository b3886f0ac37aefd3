"""Render an EDL into an MP4 by driving the encoder through a staged pipeline.

Stages: fetch clips, trim each segment, concat in timeline order, apply the
video filter chain, then mux audio. Every failure comes back as a
``RenderResult`` with a ``RenderFailure``; callers decide whether to substitute
``placeholder_video()``.
"""

from __future__ import annotations

import asyncio
import hashlib
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from mohtawa.edl.schema import EDL, EDLColor, TimelineClip
from mohtawa.observability.logging import get_logger
from mohtawa.video.encoder import Encoder, EncoderResult
from mohtawa.video.subtitles import build_ass_subtitles

logger = get_logger(__name__)

__all__ = [
    "PLACEHOLDER_VIDEO",
    "RenderFailure",
    "RenderFailureKind",
    "RenderOrchestrator",
    "RenderResult",
    "audio_volumes",
    "build_color_filter",
    "build_video_filter",
    "placeholder_video",
]

AssetFetch = Callable[[str], Awaitable[bytes]]
ProgressCallback = Callable[[float, float], Awaitable[None]]
PreviewCallback = Callable[[bytes], Awaitable[None]]

PLACEHOLDER_VIDEO = bytes(512)
DRAFT_BITRATE = "4M"
FINAL_BITRATE = "10M"
MIN_SEGMENT_SEC = 0.04
PREVIEW_SPACING_SEC = 0.8
TEMP_PREFIX = "mohtawa-render-"


def placeholder_video() -> bytes:
    """Fixed stand-in buffer used when a render could not produce real output."""
    return PLACEHOLDER_VIDEO


class RenderFailureKind(str, Enum):
    ENCODER_MISSING = "encoder_missing"
    NO_FETCHER = "no_fetcher"
    EMPTY_TIMELINE = "empty_timeline"
    FETCH_FAILED = "fetch_failed"
    ENCODER_FAILED = "encoder_failed"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class RenderFailure:
    kind: RenderFailureKind
    message: str
    stage: str | None = None


@dataclass
class RenderResult:
    """Result of a render: encoded bytes or the reason there are none."""

    success: bool
    data: Optional[bytes] = None
    failure: Optional[RenderFailure] = None
    duration_sec: float = 0.0

    @classmethod
    def ok(cls, data: bytes, duration_sec: float = 0.0) -> "RenderResult":
        return cls(success=True, data=data, duration_sec=duration_sec)

    @classmethod
    def failed(
        cls, kind: RenderFailureKind, message: str, stage: str | None = None
    ) -> "RenderResult":
        return cls(success=False, failure=RenderFailure(kind=kind, message=message, stage=stage))

    def bytes_or_placeholder(self) -> bytes:
        if self.success and self.data is not None:
            return self.data
        return placeholder_video()


class _StageError(Exception):
    def __init__(self, kind: RenderFailureKind, stage: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.stage = stage


def _num(value: float) -> str:
    """Compact decimal for encoder arguments (no exponent, no trailing zeros)."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return text if text not in {"", "-0"} else "0"


def build_color_filter(color: EDLColor | None) -> str:
    """``eq=`` filter for the non-neutral color components, or ``""``."""
    if color is None or color.is_neutral:
        return ""
    parts: list[str] = []
    if color.saturation != 1:
        parts.append(f"saturation={_num(color.saturation)}")
    if color.contrast != 1:
        parts.append(f"contrast={_num(color.contrast)}")
    if color.vibrance != 1:
        parts.append(f"brightness={_num((color.vibrance - 1) * 0.1)}")
    return f"eq={':'.join(parts)}" if parts else ""


def build_video_filter(edl: EDL, ass_path: Path | None = None) -> str:
    width, height = edl.output.width, edl.output.height
    vf = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
    )
    color = build_color_filter(edl.color)
    if color:
        vf = f"{vf},{color}"
    if ass_path is not None:
        vf = f"{vf},ass='{ass_path.as_posix()}'"
    return vf


def audio_volumes(edl: EDL) -> tuple[float, float]:
    """(voice, music) linear volumes; explicit volume beats gain in dB."""
    audio = edl.audio
    if audio.voice_volume is not None:
        voice = audio.voice_volume
    elif audio.voice_gain_db is not None:
        voice = 10 ** (audio.voice_gain_db / 20)
    else:
        voice = 1.0
    if audio.music_volume is not None:
        music = audio.music_volume
    elif audio.music_gain_db is not None:
        music = 10 ** (audio.music_gain_db / 20)
    else:
        music = 0.5
    return voice, music


def _clip_filename(url: str) -> str:
    ext = "webm" if ".webm" in url.lower() else "mp4"
    return f"clip_{hashlib.sha1(url.encode('utf-8')).hexdigest()[:12]}.{ext}"


class RenderOrchestrator:
    """Turn an EDL into encoded video bytes.

    Usage:
        orchestrator = RenderOrchestrator(FFmpegEncoder(), fetcher.fetch)
        result = await orchestrator.render(edl, voiceover=vo_bytes, is_draft=True)
        video = result.bytes_or_placeholder()
    """

    def __init__(
        self,
        encoder: Encoder,
        fetch_asset: AssetFetch | None,
        *,
        preview_spacing_sec: float = PREVIEW_SPACING_SEC,
    ) -> None:
        self.encoder = encoder
        self.fetch_asset = fetch_asset
        self.preview_spacing_sec = preview_spacing_sec

    async def render(
        self,
        edl: EDL,
        *,
        voiceover: bytes | None = None,
        is_draft: bool = True,
        on_progress: ProgressCallback | None = None,
        on_preview_frame: PreviewCallback | None = None,
    ) -> RenderResult:
        if not self.encoder.is_available():
            return self._fail(RenderFailureKind.ENCODER_MISSING, "encoder binary not available")
        if self.fetch_asset is None:
            return self._fail(RenderFailureKind.NO_FETCHER, "no asset fetcher configured")
        if not edl.timeline:
            return self._fail(RenderFailureKind.EMPTY_TIMELINE, "timeline is empty")

        started = time.monotonic()
        try:
            with tempfile.TemporaryDirectory(
                prefix=TEMP_PREFIX, ignore_cleanup_errors=True
            ) as tmp:
                data, duration = await self._run_pipeline(
                    edl,
                    Path(tmp),
                    voiceover=voiceover,
                    is_draft=is_draft,
                    on_progress=on_progress,
                    on_preview_frame=on_preview_frame,
                )
        except _StageError as exc:
            return self._fail(exc.kind, str(exc), stage=exc.stage)
        except Exception as exc:
            logger.error("render_unexpected_error", exc_info=True)
            return self._fail(RenderFailureKind.UNEXPECTED, f"{type(exc).__name__}: {exc}")

        logger.info(
            "render_succeeded",
            segments=len(edl.timeline),
            is_draft=is_draft,
            size=len(data),
            elapsed_sec=round(time.monotonic() - started, 2),
        )
        return RenderResult.ok(data, duration_sec=duration)

    @staticmethod
    def _fail(kind: RenderFailureKind, message: str, stage: str | None = None) -> RenderResult:
        logger.warning("render_pipeline_failed", kind=kind.value, stage=stage, error=message)
        return RenderResult.failed(kind, message, stage=stage)

    async def _encode(self, stage: str, args: list[str], cwd: Path) -> None:
        result = await self.encoder.run(args, cwd=cwd)
        self._check(stage, result)

    @staticmethod
    def _check(stage: str, result: EncoderResult) -> None:
        if not result.success:
            raise _StageError(
                RenderFailureKind.ENCODER_FAILED, stage, result.error or "encoder failed"
            )

    async def _fetch_clips(self, timeline: list[TimelineClip], tmp: Path) -> dict[str, Path]:
        assert self.fetch_asset is not None
        paths: dict[str, Path] = {}
        for clip in timeline:
            if clip.clip_url in paths:
                continue
            try:
                data = await self.fetch_asset(clip.clip_url)
            except Exception as exc:
                raise _StageError(
                    RenderFailureKind.FETCH_FAILED, "fetch", f"{clip.clip_url}: {exc}"
                ) from exc
            path = tmp / _clip_filename(clip.clip_url)
            await asyncio.to_thread(path.write_bytes, data)
            paths[clip.clip_url] = path
        return paths

    async def _fetch_music(self, edl: EDL) -> bytes | None:
        audio = edl.audio
        if not (audio.music_enabled and audio.music_url):
            return None
        assert self.fetch_asset is not None
        try:
            data = await self.fetch_asset(audio.music_url)
        except Exception:
            logger.info("render_music_unavailable", music_url=audio.music_url, exc_info=True)
            return None
        return data or None

    async def _run_pipeline(
        self,
        edl: EDL,
        tmp: Path,
        *,
        voiceover: bytes | None,
        is_draft: bool,
        on_progress: ProgressCallback | None,
        on_preview_frame: PreviewCallback | None,
    ) -> tuple[bytes, float]:
        timeline = sorted(edl.timeline, key=lambda clip: clip.start_sec)
        bitrate = DRAFT_BITRATE if is_draft else FINAL_BITRATE

        clip_paths = await self._fetch_clips(timeline, tmp)

        for index, clip in enumerate(timeline):
            await self._encode(
                "trim",
                [
                    "-ss",
                    _num(clip.in_sec),
                    "-i",
                    str(clip_paths[clip.clip_url]),
                    "-t",
                    _num(max(MIN_SEGMENT_SEC, clip.out_sec - clip.in_sec)),
                    "-c:v",
                    "libx264",
                    "-preset",
                    "fast",
                    "-pix_fmt",
                    "yuv420p",
                    "-an",
                    f"part_{index}.mp4",
                ],
                tmp,
            )

        concat_list = tmp / "concat.txt"
        concat_list.write_text(
            "\n".join(f"file 'part_{index}.mp4'" for index in range(len(timeline))),
            encoding="utf-8",
        )
        video_only = tmp / "video_only.mp4"
        await self._encode(
            "concat",
            ["-f", "concat", "-safe", "0", "-i", concat_list.name, "-c", "copy", video_only.name],
            tmp,
        )

        ass_path: Path | None = None
        ass = build_ass_subtitles(edl)
        if ass:
            ass_path = tmp / "subs.ass"
            ass_path.write_text(ass, encoding="utf-8")
        vf = build_video_filter(edl, ass_path)

        duration = await self.encoder.probe_duration(video_only)
        output = tmp / "render.mp4"
        args = self._mux_args(edl, tmp, video_only, vf, bitrate, voiceover, await self._fetch_music(edl))
        args.append(output.name)

        if duration > 0 and on_progress is not None and on_preview_frame is not None:
            await self._mux_with_progress(
                args, tmp, duration, video_only, vf, on_progress, on_preview_frame
            )
        else:
            await self._encode("mux", args, tmp)

        return await asyncio.to_thread(output.read_bytes), duration

    @staticmethod
    def _mux_args(
        edl: EDL,
        tmp: Path,
        video_only: Path,
        vf: str,
        bitrate: str,
        voiceover: bytes | None,
        music: bytes | None,
    ) -> list[str]:
        voice_vol, music_vol = audio_volumes(edl)
        video_codec = ["-c:v", "libx264", "-preset", "fast", "-b:v", bitrate, "-pix_fmt", "yuv420p"]
        audio_codec = ["-c:a", "aac", "-b:a", "128k"]

        voice_path = music_path = None
        if voiceover:
            voice_path = tmp / "voiceover.mp3"
            voice_path.write_bytes(voiceover)
        if music:
            music_path = tmp / "music.mp3"
            music_path.write_bytes(music)

        if voice_path and music_path:
            return [
                "-i", video_only.name,
                "-i", voice_path.name,
                "-i", music_path.name,
                "-vf", vf,
                *video_codec,
                "-filter_complex",
                f"[1:a]volume={_num(voice_vol)}[vo];[2:a]volume={_num(music_vol)}[mu];"
                "[vo][mu]amix=inputs=2:duration=shortest[a]",
                "-map", "0:v",
                "-map", "[a]",
                *audio_codec,
                "-shortest",
            ]
        if voice_path or music_path:
            source = voice_path or music_path
            volume = voice_vol if voice_path else music_vol
            assert source is not None
            return [
                "-i", video_only.name,
                "-i", source.name,
                "-vf", vf,
                *video_codec,
                *audio_codec,
                "-filter:a", f"volume={_num(volume)}",
                "-map", "0:v",
                "-map", "1:a",
                "-shortest",
            ]
        return ["-i", video_only.name, "-vf", vf, *video_codec, "-an"]

    async def _mux_with_progress(
        self,
        args: list[str],
        tmp: Path,
        duration: float,
        video_only: Path,
        vf: str,
        on_progress: ProgressCallback,
        on_preview_frame: PreviewCallback,
    ) -> None:
        previews: set[asyncio.Task[None]] = set()
        last_preview = -1.0

        async def _preview(at: float) -> None:
            try:
                frame = await self.encoder.extract_frame(video_only, at, vf, cwd=tmp)
                if frame.success and frame.stdout:
                    await on_preview_frame(frame.stdout)
            except Exception:
                logger.debug("render_preview_failed", at=at, exc_info=True)

        async def _on_time(current: float) -> None:
            nonlocal last_preview
            try:
                await on_progress(min(1.0, current / duration), current)
            except Exception:
                logger.debug("render_progress_callback_failed", exc_info=True)
            if current - last_preview >= self.preview_spacing_sec:
                last_preview = current
                task = asyncio.ensure_future(_preview(current))
                previews.add(task)
                task.add_done_callback(previews.discard)

        try:
            result = await self.encoder.run_with_progress(args, cwd=tmp, on_time=_on_time)
        finally:
            # Frames read from the scratch dir; let them finish before it is removed.
            if previews:
                await asyncio.gather(*previews, return_exceptions=True)
        self._check("mux", result)
