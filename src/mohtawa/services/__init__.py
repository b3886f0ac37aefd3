"""Business logic services.

These services span storage, rendering and dispatch: the shared application
context, the draft render queue, project EDL operations and live previews.
"""

from mohtawa.services.context import AppContext, build_context, close_context
from mohtawa.services.preview_store import InMemoryPreviewStore, PreviewEntry, PreviewStore
from mohtawa.services.render_queue import RenderJobStatus, RenderQueue, RenderSubmission

__all__ = [
    "AppContext",
    "build_context",
    "close_context",
    "InMemoryPreviewStore",
    "PreviewEntry",
    "PreviewStore",
    "RenderJobStatus",
    "RenderQueue",
    "RenderSubmission",
]
