"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path
from typing import Any, Sequence

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")

    # These MUST override any developer shell/.env values to keep the test run deterministic.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["JOB_DISPATCHER"] = "inprocess"
    os.environ["STORAGE_BACKEND"] = "local"
    os.environ["API_KEY"] = "test-api-key"
    os.environ["OPENAI_API_KEY"] = ""
    os.environ["ANTHROPIC_API_KEY"] = ""
    os.environ["ELEVENLABS_API_KEY"] = ""
    os.environ["AZURE_SPEECH_KEY"] = ""


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit the public internet.

    Allowlist only:
    - ASGI test host ("test") used with httpx.ASGITransport
    - localhost/loopback for local services

    Clients built on ``httpx.MockTransport`` never reach the network, so
    provider tests pass a transport and are unaffected.
    """

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1", "0.0.0.0"}

    async def _async_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        transport = getattr(self, "_transport", None)
        if isinstance(transport, httpx.MockTransport):
            return await _orig_async_request(self, method, url, *args, **kwargs)
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_request(self, method, url, *args, **kwargs)

    def _sync_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return _orig_sync_request(self, method, url, *args, **kwargs)

    _orig_async_request = httpx.AsyncClient.request
    _orig_sync_request = httpx.Client.request
    monkeypatch.setattr(httpx.AsyncClient, "request", _async_guard, raising=True)
    monkeypatch.setattr(httpx.Client, "request", _sync_guard, raising=True)

    yield


@pytest.fixture(autouse=True)
def reset_settings():
    """Drop cached settings so env changes made by a test do not leak."""
    from mohtawa.config.settings import reset_settings_cache

    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio tests on asyncio (SQLAlchemy/asyncio-based stack)."""
    return "asyncio"


FAKE_JPEG = b"\xff\xd8\xff\xe0fake-frame\xff\xd9"


class FakeEncoder:
    """Encoder double: records invocations and writes a small output file.

    The last positional argument of each ``run`` call is treated as the output
    file name, mirroring how the render pipeline builds its ffmpeg arguments.
    """

    def __init__(
        self,
        *,
        available: bool = True,
        duration: float = 10.0,
        fail_stage_after: int | None = None,
        progress_points: Sequence[float] = (2.5, 5.0, 7.5, 10.0),
    ) -> None:
        self.available = available
        self.duration = duration
        self.fail_stage_after = fail_stage_after
        self.progress_points = list(progress_points)
        self.calls: list[list[str]] = []
        self.cwds: list[Path] = []
        self.frames: list[float] = []
        self.probed: list[Path] = []

    def is_available(self) -> bool:
        return self.available

    def _result(self, args: Sequence[str], cwd: Path):
        from mohtawa.video.encoder import EncoderErrorKind, EncoderResult

        self.calls.append(list(args))
        self.cwds.append(Path(cwd))
        if self.fail_stage_after is not None and len(self.calls) > self.fail_stage_after:
            return EncoderResult.failed(EncoderErrorKind.NONZERO_EXIT, "ffmpeg exited 1", returncode=1)
        (Path(cwd) / args[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42" + args[-1].encode())
        return EncoderResult.ok()

    async def run(self, args: Sequence[str], *, cwd: Path):
        return self._result(args, cwd)

    async def run_with_progress(self, args: Sequence[str], *, cwd: Path, on_time):
        for point in self.progress_points:
            await on_time(point)
        return self._result(args, cwd)

    async def extract_frame(self, video_path: Path, time_sec: float, vf: str | None, *, cwd: Path):
        from mohtawa.video.encoder import EncoderResult

        self.frames.append(time_sec)
        return EncoderResult.ok(stdout=FAKE_JPEG)

    async def probe_duration(self, path: Path) -> float:
        self.probed.append(Path(path))
        return self.duration


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def blob_store(tmp_path):
    from mohtawa.storage.object_store import LocalBlobStore

    return LocalBlobStore(tmp_path / "blobs")


def make_settings(tmp_path: Path, **overrides: Any):
    from mohtawa.config.settings import Settings

    values: dict[str, Any] = {
        "environment": "test",
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        "storage_backend": "local",
        "local_storage_dir": str(tmp_path / "blobs"),
        "api_key": "test-api-key",
        "job_dispatcher": "inprocess",
        "job_lease_seconds": 30.0,
        "job_poll_interval_seconds": 0.01,
        "execution_retry_base_seconds": 0.0,
        "render_retry_base_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_factory(tmp_path):
    def _make(**overrides: Any):
        return make_settings(tmp_path, **overrides)

    return _make


@pytest.fixture
def http_transport():
    """MockTransport returning a tiny payload for any asset URL."""

    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"asset:" + str(request.url).encode())

    return httpx.MockTransport(_handler)


@pytest.fixture
async def app_context(tmp_path, fake_encoder, blob_store, http_transport):
    """AppContext on a temp SQLite file, local blob store and fake encoder."""
    from mohtawa.services.context import build_context, close_context

    ctx = await build_context(
        make_settings(tmp_path),
        encoder=fake_encoder,
        blob_store=blob_store,
        http_transport=http_transport,
    )
    yield ctx
    await close_context(ctx)


@pytest.fixture
async def db_context(tmp_path, fake_encoder, blob_store, http_transport):
    """Same as ``app_context`` but dispatching through the durable job queue."""
    from mohtawa.services.context import build_context, close_context

    ctx = await build_context(
        make_settings(tmp_path, job_dispatcher="db"),
        encoder=fake_encoder,
        blob_store=blob_store,
        http_transport=http_transport,
    )
    yield ctx
    await close_context(ctx)


@pytest.fixture
def session_factory(app_context):
    return app_context.session_factory


@pytest.fixture
def api_headers() -> dict[str, str]:
    """Default API headers for authenticated endpoints."""
    return {"X-API-Key": "test-api-key", "X-User-ID": "user-1"}


@pytest.fixture
async def async_client(app_context):
    """httpx AsyncClient wired to the FastAPI app around ``app_context``."""
    from httpx import ASGITransport, AsyncClient

    from mohtawa.api.server import create_app

    app = create_app(app_context)
    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
