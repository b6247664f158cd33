"""LangGraph-based execution runtime for workflow plans.

The runtime drives a plan's conversation with the reasoning backend and
guarantees:

- status changes only follow the allowed plan transitions (``PlanStore``);
- a tool call touching approval-required fields never runs before the plan
  is persisted in ``checkpoint`` (``CheckpointGate``);
- at most one engine run per project writes at a time
  (``PartitionedExecutor``).

The main entry points are ``WorkflowEngine`` and ``WorkflowRunner``.
"""

from .checkpoint import CHECKPOINT_CANCELLED, CheckpointGate
from .engine import WorkflowEngine, seed_history
from .models import EngineDeps
from .partitions import PartitionedExecutor
from .runner import ExecutionNotFoundError, WorkflowRunner
from .store import PlanStore

__all__ = [
    "CHECKPOINT_CANCELLED",
    "CheckpointGate",
    "EngineDeps",
    "ExecutionNotFoundError",
    "PartitionedExecutor",
    "PlanStore",
    "WorkflowEngine",
    "WorkflowRunner",
    "seed_history",
]
