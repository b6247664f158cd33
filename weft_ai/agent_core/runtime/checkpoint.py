from __future__ import annotations

"""Checkpoint gate.

A checkpoint is a persisted continuation: when a gated tool call is
reached the engine stores the call, the approval-required fields it touches
and the loop position on ``WorkflowPlan.checkpoint_data``, moves the plan to
``checkpoint`` and ends the graph run. Nothing waits in memory; resuming is
a fresh engine run that reads the continuation back.
"""

import logging
from typing import List

from weft_ai.core.errors import InvalidStateError

from ..schemas.domain import (
    CheckpointData,
    LogEventType,
    LogLevel,
    PlanStatus,
    WorkflowPlan,
    WorkflowStep,
)
from .store import PlanStore

logger = logging.getLogger(__name__)

CHECKPOINT_CANCELLED = "Checkpoint cancelled by user"


class CheckpointGate:
    def __init__(self, store: PlanStore) -> None:
        self._store = store

    async def open(self, plan: WorkflowPlan, data: CheckpointData, steps: List[WorkflowStep]) -> WorkflowPlan:
        """Persist the pending approval and suspend the plan."""
        updated = await self._store.transition(
            plan,
            PlanStatus.checkpoint,
            checkpoint_data=data,
            steps=steps,
            current_step_index=max(len(steps) - 1, 0),
        )
        await self._store.log(
            updated,
            LogLevel.info,
            f"Waiting for approval: {data.tool_name}",
            step_id=data.step_id,
            metadata={
                "type": LogEventType.checkpoint.value,
                "server": data.server_name,
                "tool": data.server_tool_name,
                "args": data.arguments,
                "approval_required_fields": data.approval_required_fields,
            },
        )
        return updated

    def take(self, plan: WorkflowPlan) -> CheckpointData:
        """
        Return the continuation of a suspended plan.

        The plan may already read ``executing`` when the resolver flipped it
        optimistically; the continuation is still pending until ``close``.

        Raises:
            InvalidStateError: The plan has no pending checkpoint.
        """
        if plan.checkpoint_data is None or plan.status not in (PlanStatus.checkpoint, PlanStatus.executing):
            raise InvalidStateError(f"Plan {plan.id} has no pending checkpoint (status={plan.status.value})")
        return plan.checkpoint_data

    async def close(self, plan: WorkflowPlan) -> WorkflowPlan:
        """Clear the continuation and make sure the plan is ``executing``."""
        if plan.status == PlanStatus.checkpoint:
            return await self._store.transition(plan, PlanStatus.executing, checkpoint_data=None)
        return await self._store.update(plan, checkpoint_data=None)

    async def cancel(self, plan: WorkflowPlan) -> WorkflowPlan:
        """Resolve the checkpoint as cancelled: the plan fails and nothing else runs."""
        logger.info("Checkpoint on plan %s cancelled", plan.id)
        return await self._store.fail(plan, CHECKPOINT_CANCELLED)
