"""Workflow graphs, run state and the execution engine.

- graph.py: step/edge model and deterministic ordering
- state.py: StepLog and RunSnapshot records persisted on the Run row
- resolve.py: lookups into upstream step outputs
- engine.py: ExecutionEngine (imported from the module directly, since the
  executors it drives import from this package)
"""

from mohtawa.workflows.graph import (
    CyclicGraphError,
    Edge,
    GraphValidationError,
    Step,
    WorkflowGraph,
    topological_order,
)
from mohtawa.workflows.resolve import resolve_input_deep
from mohtawa.workflows.state import RunSnapshot, StepLog, StepStatus

__all__ = [
    "CyclicGraphError",
    "Edge",
    "GraphValidationError",
    "RunSnapshot",
    "Step",
    "StepLog",
    "StepStatus",
    "WorkflowGraph",
    "resolve_input_deep",
    "topological_order",
]
