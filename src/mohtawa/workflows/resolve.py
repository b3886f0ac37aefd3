"""Lookup helpers over step ``input_data``."""

from __future__ import annotations

from typing import Any, Mapping


def resolve_input_deep(input_data: Mapping[str, Any], *keys: str) -> Any:
    """Return the first non-None value stored under any of ``keys``.

    Searches depth-first through nested mappings so values wrapped by
    pass-through steps are still found. Each container is visited once.
    """
    visited: set[int] = set()

    def _search(obj: Any) -> Any:
        if isinstance(obj, Mapping):
            if id(obj) in visited:
                return None
            visited.add(id(obj))
            for key in keys:
                value = obj.get(key)
                if value is not None:
                    return value
            children = obj.values()
        elif isinstance(obj, (list, tuple)):
            if id(obj) in visited:
                return None
            visited.add(id(obj))
            children = obj
        else:
            return None
        for child in children:
            found = _search(child)
            if found is not None:
                return found
        return None

    return _search(input_data)
