"""FFmpegEncoder progress runs against a scripted subprocess."""

from __future__ import annotations

import asyncio
from pathlib import Path

from mohtawa.video.encoder import EncoderErrorKind, FFmpegEncoder, parse_out_time


class _Stderr:
    async def read(self) -> bytes:
        return b""


class _ScriptedProcess:
    """Emits one progress line after ``line_delay`` and exits after ``exit_delay``."""

    def __init__(self, *, line_delay: float, exit_delay: float, returncode: int = 0) -> None:
        self.line_delay = line_delay
        self.exit_delay = exit_delay
        self.exit_code = returncode
        self.returncode: int | None = None
        self.killed = False
        self.stdout = self._lines()
        self.stderr = _Stderr()

    async def _lines(self):
        await asyncio.sleep(self.line_delay)
        yield b"out_time_ms=1500000\n"

    async def wait(self) -> int:
        if not self.killed:
            await asyncio.sleep(self.exit_delay)
        self.returncode = -9 if self.killed else self.exit_code
        return self.returncode

    def kill(self) -> None:
        self.killed = True


def _encoder(monkeypatch, proc: _ScriptedProcess, timeout: float) -> FFmpegEncoder:
    encoder = FFmpegEncoder(timeout_seconds=timeout)

    async def fake_spawn(argv, cwd):
        return proc

    monkeypatch.setattr(encoder, "_spawn", fake_spawn)
    return encoder


def test_parse_out_time_uses_last_value() -> None:
    assert parse_out_time("out_time_ms=1000000\nout_time_ms=2500000\n") == 2.5
    assert parse_out_time("progress=continue\n") is None


async def test_progress_run_reports_time_and_succeeds(monkeypatch, tmp_path: Path) -> None:
    proc = _ScriptedProcess(line_delay=0.01, exit_delay=0.01)
    encoder = _encoder(monkeypatch, proc, timeout=5.0)
    seen: list[float] = []

    async def on_time(seconds: float) -> None:
        seen.append(seconds)

    result = await encoder.run_with_progress(["-i", "in.mp4", "out.mp4"], cwd=tmp_path, on_time=on_time)

    assert result.success
    assert seen == [1.5]
    assert not proc.killed


async def test_progress_run_timeout_covers_stream_and_exit_together(
    monkeypatch, tmp_path: Path
) -> None:
    # Each phase alone fits in the timeout; together they do not.
    proc = _ScriptedProcess(line_delay=0.15, exit_delay=0.15)
    encoder = _encoder(monkeypatch, proc, timeout=0.25)

    async def on_time(seconds: float) -> None:
        return None

    result = await encoder.run_with_progress(["-i", "in.mp4", "out.mp4"], cwd=tmp_path, on_time=on_time)

    assert not result.success
    assert result.kind == EncoderErrorKind.TIMEOUT
    assert proc.killed


async def test_progress_run_reports_nonzero_exit(monkeypatch, tmp_path: Path) -> None:
    proc = _ScriptedProcess(line_delay=0.0, exit_delay=0.0, returncode=1)
    encoder = _encoder(monkeypatch, proc, timeout=5.0)

    async def on_time(seconds: float) -> None:
        return None

    result = await encoder.run_with_progress(["-i", "in.mp4", "out.mp4"], cwd=tmp_path, on_time=on_time)

    assert not result.success
    assert result.kind == EncoderErrorKind.NONZERO_EXIT
    assert result.returncode == 1
