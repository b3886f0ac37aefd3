"""Encoder port: the only place that spawns ffmpeg/ffprobe.

The render orchestrator talks to an ``Encoder``; tests substitute a fake that
records invocations and writes output files.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Protocol, Sequence, runtime_checkable

from mohtawa.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "Encoder",
    "EncoderErrorKind",
    "EncoderResult",
    "FFmpegEncoder",
    "TimeCallback",
]

TimeCallback = Callable[[float], Awaitable[None]]

_OUT_TIME_RE = re.compile(r"out_time_ms=(\d+)")
_STDERR_TAIL = 500


class EncoderErrorKind(str, Enum):
    MISSING = "missing"
    NONZERO_EXIT = "nonzero_exit"
    TIMEOUT = "timeout"
    SPAWN_FAILED = "spawn_failed"


@dataclass
class EncoderResult:
    """Outcome of one encoder invocation."""

    success: bool
    stdout: bytes = b""
    returncode: int | None = None
    kind: EncoderErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls, stdout: bytes = b"", returncode: int = 0) -> "EncoderResult":
        return cls(success=True, stdout=stdout, returncode=returncode)

    @classmethod
    def failed(
        cls,
        kind: EncoderErrorKind,
        error: str,
        returncode: int | None = None,
    ) -> "EncoderResult":
        return cls(success=False, kind=kind, error=error, returncode=returncode)


@runtime_checkable
class Encoder(Protocol):
    def is_available(self) -> bool: ...

    async def run(self, args: Sequence[str], *, cwd: Path) -> EncoderResult: ...

    async def run_with_progress(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        on_time: TimeCallback,
    ) -> EncoderResult: ...

    async def extract_frame(
        self,
        video_path: Path,
        time_sec: float,
        vf: str | None,
        *,
        cwd: Path,
    ) -> EncoderResult: ...

    async def probe_duration(self, path: Path) -> float: ...


def parse_out_time(chunk: str) -> float | None:
    """Return the last ``out_time_ms`` value in ``chunk`` as seconds."""
    matches = _OUT_TIME_RE.findall(chunk)
    if not matches:
        return None
    return int(matches[-1]) / 1_000_000


class FFmpegEncoder:
    """Encoder backed by the ffmpeg/ffprobe binaries on PATH.

    Every invocation is bounded by ``timeout_seconds``; on timeout the process
    is killed and a ``TIMEOUT`` result is returned.
    """

    def __init__(
        self,
        *,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        timeout_seconds: float = 600.0,
    ) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout_seconds = float(timeout_seconds)

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_bin) is not None

    async def _spawn(
        self, argv: Sequence[str], cwd: Path | None
    ) -> asyncio.subprocess.Process | EncoderResult:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd else None,
            )
        except FileNotFoundError:
            return EncoderResult.failed(EncoderErrorKind.MISSING, f"{argv[0]} not found on PATH")
        except OSError as exc:
            return EncoderResult.failed(EncoderErrorKind.SPAWN_FAILED, str(exc))

    async def _communicate(
        self, argv: Sequence[str], cwd: Path | None, timeout: float
    ) -> EncoderResult:
        proc = await self._spawn(argv, cwd)
        if isinstance(proc, EncoderResult):
            return proc
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            return EncoderResult.failed(
                EncoderErrorKind.TIMEOUT, f"{Path(argv[0]).name} timed out after {timeout:g}s"
            )
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:]
            return EncoderResult.failed(
                EncoderErrorKind.NONZERO_EXIT,
                f"{Path(argv[0]).name} exited {proc.returncode}: {tail}",
                returncode=proc.returncode,
            )
        return EncoderResult.ok(stdout, returncode=0)

    async def run(self, args: Sequence[str], *, cwd: Path) -> EncoderResult:
        return await self._communicate([self.ffmpeg_bin, "-y", *args], cwd, self.timeout_seconds)

    async def run_with_progress(
        self,
        args: Sequence[str],
        *,
        cwd: Path,
        on_time: TimeCallback,
    ) -> EncoderResult:
        """Run ffmpeg with ``-progress pipe:1`` and report output time as it advances."""
        args = list(args)
        argv = [self.ffmpeg_bin, "-y", *args[:-1], "-progress", "pipe:1", "-nostats", args[-1]]
        proc = await self._spawn(argv, cwd)
        if isinstance(proc, EncoderResult):
            return proc

        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.ensure_future(proc.stderr.read())

        async def _pump_until_exit() -> None:
            async for raw_line in proc.stdout:
                seconds = parse_out_time(raw_line.decode("utf-8", errors="replace"))
                if seconds is not None:
                    await on_time(seconds)
            await proc.wait()

        # One deadline covers both the progress stream and the exit.
        try:
            await asyncio.wait_for(_pump_until_exit(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            await _kill(proc)
            stderr_task.cancel()
            return EncoderResult.failed(
                EncoderErrorKind.TIMEOUT, f"ffmpeg timed out after {self.timeout_seconds:g}s"
            )
        stderr = await stderr_task
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:]
            return EncoderResult.failed(
                EncoderErrorKind.NONZERO_EXIT,
                f"ffmpeg exited {proc.returncode}: {tail}",
                returncode=proc.returncode,
            )
        return EncoderResult.ok()

    async def extract_frame(
        self,
        video_path: Path,
        time_sec: float,
        vf: str | None,
        *,
        cwd: Path,
    ) -> EncoderResult:
        args = ["-ss", f"{time_sec:.3f}", "-i", str(video_path)]
        if vf:
            args += ["-vf", vf]
        args += ["-vframes", "1", "-f", "mjpeg", "pipe:1"]
        return await self._communicate([self.ffmpeg_bin, "-y", *args], cwd, 30.0)

    async def probe_duration(self, path: Path) -> float:
        """Container duration in seconds; 0 when ffprobe fails."""
        result = await self._communicate(
            [
                self.ffprobe_bin,
                "-v",
                "error",
                "-show_entries",
                "format=duration",
                "-of",
                "default=noprint_wrappers=1:nokey=1",
                str(path),
            ],
            None,
            30.0,
        )
        if not result.success:
            logger.debug("probe_failed", path=str(path), error=result.error)
            return 0.0
        try:
            seconds = float(result.stdout.decode("utf-8", errors="replace").strip())
        except ValueError:
            return 0.0
        return seconds if seconds > 0 else 0.0


async def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await proc.wait()
    except Exception:  # pragma: no cover - best-effort reap
        logger.debug("encoder_reap_failed", exc_info=True)
