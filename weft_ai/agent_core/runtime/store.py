from __future__ import annotations

"""Guarded plan writes.

``PlanStore`` is the single place that changes a plan's status. Every
transition is checked against ``PlanStatus.can_transition_to`` before it is
written, every write is followed by a best-effort ``workflow_plan_updated``
notification, and every workflow log entry is mirrored to the Python logger.

Failing a plan also settles whatever it left open: a suspended assistant
turn gets answered in ``conversation_history`` (results that already ran are
kept, the rest are recorded as not executed) and unfinished steps are
marked ``failed``. A finished plan's history is all a later resume reads.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from weft_ai.core.errors import InvalidStateError

from ..notifications import NotificationSink, log_event, plan_updated_event, publish
from ..repos.interfaces import LogRepository, PlanRepository
from ..schemas.domain import (
    ConversationTurn,
    LogEventType,
    LogLevel,
    PlanStatus,
    PlanUpdate,
    StepStatus,
    WorkflowLog,
    WorkflowPlan,
    WorkflowStep,
    tool_result_block,
)

logger = logging.getLogger(__name__)

_PY_LEVELS = {LogLevel.info: logging.INFO, LogLevel.warn: logging.WARNING, LogLevel.error: logging.ERROR}
_OPEN_STEPS = (StepStatus.pending, StepStatus.running, StepStatus.awaiting_approval)


def settle_checkpoint(plan: WorkflowPlan, reason: str) -> Optional[List[ConversationTurn]]:
    """Answer the suspended assistant turn of ``plan`` in its history.

    Returns the new history, or None when there is no pending checkpoint to
    settle.
    """
    data = plan.checkpoint_data
    history = list(plan.conversation_history)
    if data is None or not history or history[-1].role != "assistant":
        return None
    cont = data.continuation
    blocks = list(cont.tool_results)
    blocks.append(tool_result_block(data.tool_call_id, f"Not executed: {reason}", is_error=True))
    for call in cont.remaining_calls:
        blocks.append(tool_result_block(call.id, f"Not executed: {reason}", is_error=True))
    answered = {b.get("tool_use_id") for b in blocks}
    for use in history[-1].tool_uses():
        if use["id"] not in answered:
            blocks.append(tool_result_block(use["id"], f"Not executed: {reason}", is_error=True))
    return history + [ConversationTurn(role="user", content=blocks)]


def close_open_steps(steps: List[WorkflowStep], reason: str) -> Optional[List[WorkflowStep]]:
    """Mark unfinished steps ``failed``; None when nothing was open."""
    if not any(s.status in _OPEN_STEPS for s in steps):
        return None
    closed = [s.model_copy() for s in steps]
    now = datetime.now(timezone.utc)
    for s in closed:
        if s.status in _OPEN_STEPS:
            s.status = StepStatus.failed
            s.completed_at = now
            s.error = s.error or reason
    return closed


class PlanStore:
    def __init__(self, *, plans: PlanRepository, logs: LogRepository, notifications: NotificationSink) -> None:
        self.plans = plans
        self.logs = logs
        self._notifications = notifications

    async def get(self, plan_id: str) -> Optional[WorkflowPlan]:
        return await self.plans.get(plan_id)

    async def require(self, plan_id: str) -> WorkflowPlan:
        plan = await self.plans.get(plan_id)
        if plan is None:
            raise InvalidStateError(f"Plan {plan_id} not found", code="NOT_FOUND")
        return plan

    async def update(self, plan: WorkflowPlan, **fields: Any) -> WorkflowPlan:
        """Write non-status fields."""
        if "status" in fields:
            raise ValueError("use transition() to change a plan's status")
        updated = await self.plans.update(plan.id, PlanUpdate(**fields))
        if updated is None:
            raise InvalidStateError(f"Plan {plan.id} not found", code="NOT_FOUND")
        return updated

    async def transition(self, plan: WorkflowPlan, target: PlanStatus, **fields: Any) -> WorkflowPlan:
        """
        Move a plan to ``target`` and write ``fields`` in the same update.

        Raises:
            InvalidStateError: The edge ``plan.status -> target`` is not allowed.
        """
        if not plan.status.can_transition_to(target):
            raise InvalidStateError(
                f"Illegal plan transition {plan.status.value} -> {target.value} for plan {plan.id}"
            )
        updated = await self.plans.update(plan.id, PlanUpdate(status=target, **fields))
        if updated is None:
            raise InvalidStateError(f"Plan {plan.id} not found", code="NOT_FOUND")
        logger.info("Plan %s: %s -> %s", plan.id, plan.status.value, target.value)
        await publish(self._notifications, updated.project_id, plan_updated_event(updated))
        return updated

    async def fail(self, plan: WorkflowPlan, error: str) -> WorkflowPlan:
        """Move a non-terminal plan to ``failed`` with ``result.error``; terminal plans are returned untouched."""
        if plan.status.is_terminal:
            return plan
        fields: Dict[str, Any] = {"checkpoint_data": None, "result": {"success": False, "error": error}}
        history = settle_checkpoint(plan, error)
        if history is not None:
            fields["conversation_history"] = history
        steps = close_open_steps(plan.steps, error)
        if steps is not None:
            fields["steps"] = steps
        updated = await self.transition(plan, PlanStatus.failed, **fields)
        await self.log(updated, LogLevel.error, error, metadata={"type": LogEventType.workflow_error.value})
        return updated

    async def log(
        self,
        plan: WorkflowPlan,
        level: LogLevel,
        message: str,
        *,
        step_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> WorkflowLog:
        entry = WorkflowLog(plan_id=plan.id, step_id=step_id, level=level, message=message, metadata=metadata)
        await self.logs.append(entry)
        logger.log(_PY_LEVELS[level], "[plan %s] %s", plan.id, message)
        await publish(self._notifications, plan.project_id, log_event(entry))
        return entry
