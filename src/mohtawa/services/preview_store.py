"""Live export-preview entries for in-process draft renders, keyed by project id."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol

__all__ = ["InMemoryPreviewStore", "PreviewEntry", "PreviewStore"]


@dataclass(frozen=True)
class PreviewEntry:
    progress: float = 0.0
    preview_base64: Optional[str] = None
    status: str = "rendering"
    terminal: bool = False

    @property
    def preview_image_url(self) -> Optional[str]:
        if self.preview_base64 is None:
            return None
        return f"data:image/jpeg;base64,{self.preview_base64}"


class PreviewStore(Protocol):
    def set(self, project_id: str, **fields: object) -> PreviewEntry: ...

    def get(self, project_id: str) -> Optional[PreviewEntry]: ...

    def clear(self, project_id: str) -> None: ...


class InMemoryPreviewStore:
    """Process-local store; updates merge into the existing entry."""

    def __init__(self) -> None:
        self._entries: Dict[str, PreviewEntry] = {}
        self._lock = threading.Lock()

    def set(self, project_id: str, **fields: object) -> PreviewEntry:
        with self._lock:
            current = self._entries.get(project_id) or PreviewEntry()
            entry = replace(current, **fields)  # type: ignore[arg-type]
            self._entries[project_id] = entry
            return entry

    def get(self, project_id: str) -> Optional[PreviewEntry]:
        with self._lock:
            return self._entries.get(project_id)

    def clear(self, project_id: str) -> None:
        with self._lock:
            self._entries.pop(project_id, None)
