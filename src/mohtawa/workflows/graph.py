"""Workflow graph model and deterministic step ordering."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from mohtawa.errors import ValidationError

__all__ = [
    "CyclicGraphError",
    "Edge",
    "GraphValidationError",
    "Step",
    "WorkflowGraph",
    "topological_order",
]


class GraphValidationError(ValidationError):
    error = "invalid_graph"


class CyclicGraphError(GraphValidationError):
    """Raised when enabled steps form a cycle; ``step_ids`` are the ones left unordered."""

    error = "cyclic_graph"

    def __init__(self, step_ids: Sequence[str]):
        self.step_ids = list(step_ids)
        super().__init__(f"Workflow graph contains a cycle through: {', '.join(self.step_ids)}")


@dataclass(frozen=True)
class Step:
    id: str
    category: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    disabled: bool = False
    title: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Step":
        """Accept the flat form and the editor's nested ``data.definition`` form."""
        data = raw.get("data") or {}
        definition = data.get("definition") or {}
        step_id = str(raw.get("id") or "")
        if not step_id:
            raise GraphValidationError("Every step needs an id")
        return cls(
            id=step_id,
            category=str(raw.get("category") or definition.get("category") or ""),
            type=str(definition.get("type") or raw.get("type") or ""),
            config=dict(raw.get("config") or data.get("config") or {}),
            disabled=bool(raw.get("disabled")) or data.get("status") == "disabled",
            title=raw.get("title") or definition.get("title"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "type": self.type,
            "config": dict(self.config),
            "disabled": self.disabled,
            "title": self.title,
        }


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Edge":
        return cls(
            source=str(raw.get("source") or ""),
            target=str(raw.get("target") or ""),
            source_handle=raw.get("source_handle", raw.get("sourceHandle")) or None,
            target_handle=raw.get("target_handle", raw.get("targetHandle")) or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "source_handle": self.source_handle,
            "target_handle": self.target_handle,
        }


@dataclass(frozen=True)
class WorkflowGraph:
    """Steps plus directed edges; edges are checked against step ids on construction."""

    steps: Tuple[Step, ...]
    edges: Tuple[Edge, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise GraphValidationError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
        for edge in self.edges:
            if edge.source not in seen or edge.target not in seen:
                raise GraphValidationError(
                    f"Edge {edge.source} -> {edge.target} references an unknown step"
                )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkflowGraph":
        steps = raw.get("steps", raw.get("nodes")) or []
        edges = raw.get("edges") or []
        if not isinstance(steps, list) or not isinstance(edges, list):
            raise GraphValidationError("steps and edges must be lists")
        return cls(
            steps=tuple(Step.from_dict(s) for s in steps),
            edges=tuple(Edge.from_dict(e) for e in edges),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [s.to_dict() for s in self.steps],
            "edges": [e.to_dict() for e in self.edges],
        }

    def get_step(self, step_id: str) -> Step | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def incoming(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == step_id]


def topological_order(graph: WorkflowGraph) -> tuple[list[Step], list[str]]:
    """Order enabled steps with Kahn's algorithm.

    Edges touching a disabled step are ignored. The ready queue is FIFO and
    seeded in declaration order, so ties resolve by declaration order.

    Returns ``(ordered_steps, excluded_ids)``; ``excluded_ids`` is non-empty
    only when enabled steps form a cycle.
    """
    active = [s for s in graph.steps if not s.disabled]
    active_ids = {s.id for s in active}
    by_id = {s.id: s for s in active}

    in_degree: Dict[str, int] = {s.id: 0 for s in active}
    adjacency: Dict[str, List[str]] = {s.id: [] for s in active}
    for edge in graph.edges:
        if edge.source not in active_ids or edge.target not in active_ids:
            continue
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    ready = deque(s.id for s in active if in_degree[s.id] == 0)
    ordered: list[Step] = []
    while ready:
        step_id = ready.popleft()
        ordered.append(by_id[step_id])
        for nxt in adjacency[step_id]:
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                ready.append(nxt)

    placed = {s.id for s in ordered}
    excluded = [s.id for s in active if s.id not in placed]
    return ordered, excluded
