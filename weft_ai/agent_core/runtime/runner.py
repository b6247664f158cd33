from __future__ import annotations

"""Workflow control surface used by the service.

``WorkflowRunner`` maps the three workflow controls onto engine runs queued
on a ``PartitionedExecutor`` keyed by project, so at most one engine run per
project writes at a time.
"""

import asyncio
import logging
from typing import Any, Optional

from weft_ai.core.errors import WeftError

from ..repos.interfaces import PlanRepository
from ..schemas.domain import WorkflowEvent, WorkflowParams
from .engine import WorkflowEngine
from .partitions import PartitionedExecutor

logger = logging.getLogger(__name__)


class ExecutionNotFoundError(WeftError):
    default_code = "EXECUTION_NOT_FOUND"

    def __init__(self, plan_id: str) -> None:
        super().__init__(f"No running execution for plan {plan_id}")
        self.plan_id = plan_id


class WorkflowRunner:
    def __init__(
        self,
        *,
        engine: WorkflowEngine,
        plans: PlanRepository,
        executor: Optional[PartitionedExecutor] = None,
    ) -> None:
        self._engine = engine
        self._plans = plans
        self._executor = executor or PartitionedExecutor()

    @property
    def executor(self) -> PartitionedExecutor:
        return self._executor

    async def create(self, plan_id: str, params: WorkflowParams) -> asyncio.Future[Any]:
        """Queue the first run of a plan."""
        return self._executor.submit(params.project_id, plan_id, lambda: self._engine.start(params))

    async def send_event(self, plan_id: str, event: WorkflowEvent) -> asyncio.Future[Any]:
        """
        Deliver a checkpoint decision; the engine resumes from the persisted continuation.

        Raises:
            ExecutionNotFoundError: The plan does not exist.
        """
        plan = await self._plans.get(plan_id)
        if plan is None:
            raise ExecutionNotFoundError(plan_id)
        logger.debug("Delivering %s to plan %s", event.type, plan_id)
        return self._executor.submit(plan.project_id, plan_id, lambda: self._engine.resume(plan_id, event.payload))

    async def terminate(self, plan_id: str) -> None:
        """
        Cancel the plan's running and queued engine work.

        Raises:
            ExecutionNotFoundError: Nothing is running or queued for the plan.
        """
        if not self._executor.is_active(plan_id):
            raise ExecutionNotFoundError(plan_id)
        self._executor.cancel(plan_id)

    async def aclose(self) -> None:
        await self._executor.close()
