"""Application context shared by the engine, executors, render queue and worker.

Built once per process (API lifespan, CLI command or worker) by
:func:`build_context`; nothing in the package holds module-level handles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mohtawa.config.settings import Settings, get_settings
from mohtawa.observability.logging import get_logger
from mohtawa.services.preview_store import InMemoryPreviewStore, PreviewStore
from mohtawa.storage.assets import AssetFetcher
from mohtawa.storage.database import (
    create_engine_for_url,
    create_session_factory,
    dispose_engine,
    init_db,
)
from mohtawa.storage.object_store import BlobStore, build_blob_store
from mohtawa.video.encoder import Encoder, FFmpegEncoder
from mohtawa.video.render import RenderOrchestrator

if TYPE_CHECKING:
    from mohtawa.services.render_queue import RenderQueue

logger = get_logger(__name__)

__all__ = ["AppContext", "build_context", "close_context"]


@dataclass
class AppContext:
    """Process-wide collaborators.

    Attributes:
        settings: Resolved configuration
        engine: Async SQLAlchemy engine
        session_factory: Session factory bound to ``engine``
        blob_store: Object storage backend for EDLs, renders and voice output
        fetcher: Loads referenced assets from the store or over HTTP
        encoder: ffmpeg/ffprobe port
        orchestrator: EDL renderer built on ``encoder`` and ``fetcher``
        preview_store: Live preview entries for in-process renders
        http_transport: Optional httpx transport for outbound provider calls
    """

    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    blob_store: BlobStore
    fetcher: AssetFetcher
    encoder: Encoder
    orchestrator: RenderOrchestrator
    preview_store: PreviewStore
    http_transport: Optional[httpx.AsyncBaseTransport] = None
    _render_queue: Optional["RenderQueue"] = field(default=None, repr=False)

    @property
    def render_queue(self) -> "RenderQueue":
        if self._render_queue is None:
            from mohtawa.services.render_queue import RenderQueue

            self._render_queue = RenderQueue(self)
        return self._render_queue


async def build_context(
    settings: Settings | None = None,
    *,
    encoder: Encoder | None = None,
    blob_store: BlobStore | None = None,
    preview_store: PreviewStore | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    create_tables: bool = True,
    **engine_kwargs: Any,
) -> AppContext:
    """Wire the database, storage and media collaborators from ``settings``."""
    settings = settings or get_settings()
    engine = create_engine_for_url(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        **engine_kwargs,
    )
    if create_tables:
        await init_db(engine)

    store = blob_store or build_blob_store(settings)
    fetcher = AssetFetcher(
        store,
        timeout_seconds=settings.asset_fetch_timeout_seconds,
        transport=http_transport,
    )
    encoder = encoder or FFmpegEncoder(
        ffmpeg_bin=settings.ffmpeg_bin,
        ffprobe_bin=settings.ffprobe_bin,
        timeout_seconds=settings.encoder_timeout_seconds,
    )
    ctx = AppContext(
        settings=settings,
        engine=engine,
        session_factory=create_session_factory(engine),
        blob_store=store,
        fetcher=fetcher,
        encoder=encoder,
        orchestrator=RenderOrchestrator(encoder, fetcher),
        preview_store=preview_store or InMemoryPreviewStore(),
        http_transport=http_transport,
    )
    logger.info(
        "context_built",
        storage_backend=settings.storage_backend,
        job_dispatcher=settings.job_dispatcher,
        encoder_available=encoder.is_available(),
    )
    return ctx


async def close_context(ctx: AppContext) -> None:
    await dispose_engine(ctx.engine)
