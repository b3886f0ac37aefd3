"""Path helpers for locating repo resources.

Modules live under ``src/`` for an editable install but ``pyproject.toml`` sits
at the repository root, so the version helper needs to find it when running
from a source checkout with ``PYTHONPATH=src``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def get_repo_root() -> Path:
    """Return the directory containing ``pyproject.toml`` (cwd if none is found)."""
    start = Path(__file__).resolve()
    for parent in (start, *start.parents):
        if (parent / "pyproject.toml").is_file():
            return parent
    return Path.cwd()
