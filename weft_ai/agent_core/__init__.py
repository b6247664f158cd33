"""Workflow orchestration core: plans, turn loop, tool gating and persistence.

Design overview
---------------

- A ``WorkflowPlan`` is the durable record of one attempt to execute a task.
  Its status only follows the allowed transitions, and every write goes
  through ``runtime.PlanStore``.
- ``runtime.WorkflowEngine`` drives the conversation with a reasoning
  backend using LangGraph. Tool calls are resolved through
  ``tool_registry.ToolRegistry``; calls that touch approval-required fields
  suspend the plan at a persisted checkpoint instead of executing.
- ``runtime.WorkflowRunner`` queues engine runs per project so that one
  project's plans never write concurrently.

Typical usage
-------------

Most applications should build a runtime with ``factory.build_runtime`` and
call ``service.WorkflowService``:

1. ``generate_plan`` for a task.
2. ``resolve_checkpoint`` when the plan pauses for approval.
3. ``cancel`` to stop it, or ``resume_plan`` to continue a finished plan.
"""

from .schemas.domain import (
    AgentProfile,
    CheckpointAction,
    CheckpointDecision,
    PlanStatus,
    WorkflowLog,
    WorkflowPlan,
)
from .service import WorkflowService, WorkflowServiceDeps

__all__ = [
    "AgentProfile",
    "CheckpointAction",
    "CheckpointDecision",
    "PlanStatus",
    "WorkflowLog",
    "WorkflowPlan",
    "WorkflowService",
    "WorkflowServiceDeps",
]
