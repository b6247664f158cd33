from __future__ import annotations

"""Workflow control boundary.

``WorkflowService`` is what API handlers call. It validates each request
against the plan's persisted status, performs the synchronous part of the
operation and hands long-running work to the ``WorkflowRunner``.

Workflow
--------

- ``generate_plan``: create a ``planning`` plan, resolve the reasoning
  credential and queue the first engine run.
- ``resolve_checkpoint``: cancel the plan, or deliver an approve /
  request_changes decision and flip the plan back to ``executing``.
- ``cancel``: stop a running plan and mark it ``failed``.
- ``resume_plan``: start a **new** plan seeded with a finished plan's
  conversation and fresh user feedback.

Status rules are enforced here and again in ``PlanStore``, so a rejected
request never writes.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import SecretStr

from weft_ai.core.config import AnthropicConfig, settings
from weft_ai.core.errors import ConfigurationError, InputValidationError, InvalidStateError, TerminalError

from .credentials import MISSING_REASONING_KEY, resolve_reasoning_key
from .notifications import NotificationSink, NullNotificationSink
from .repos.interfaces import CredentialProvider, LogRepository, PlanRepository
from .runtime.checkpoint import CheckpointGate
from .runtime.runner import WorkflowRunner
from .runtime.store import PlanStore
from .schemas.domain import (
    AgentProfile,
    CheckpointAction,
    CheckpointDecision,
    LogEventType,
    LogLevel,
    PlanStatus,
    WorkflowEvent,
    WorkflowLog,
    WorkflowParams,
    WorkflowPlan,
)

logger = logging.getLogger(__name__)

CANCELLED_BY_USER = "Cancelled by user"


@dataclass(frozen=True)
class WorkflowServiceDeps:
    """Dependency bundle for ``WorkflowService``."""

    plans: PlanRepository
    logs: LogRepository
    runner: WorkflowRunner
    credentials: Optional[CredentialProvider] = None
    notifications: NotificationSink = field(default_factory=NullNotificationSink)
    anthropic: AnthropicConfig = field(default_factory=lambda: settings.anthropic)


class WorkflowService:
    def __init__(self, *, deps: WorkflowServiceDeps) -> None:
        self._deps = deps
        self._store = PlanStore(plans=deps.plans, logs=deps.logs, notifications=deps.notifications)
        self._gate = CheckpointGate(self._store)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def get_plan(self, plan_id: str) -> Optional[WorkflowPlan]:
        return await self._store.get(plan_id)

    async def list_logs(self, plan_id: str, *, limit: int = 100, offset: int = 0) -> List[WorkflowLog]:
        return await self._deps.logs.list(plan_id, limit=limit, offset=offset)

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    async def generate_plan(
        self,
        task_id: str,
        project_id: str,
        task_description: str,
        agent: Optional[AgentProfile] = None,
        *,
        custom_system_prompt: Optional[str] = None,
        model: Optional[str] = None,
    ) -> WorkflowPlan:
        """
        Create a plan for a task and queue its execution.

        Raises:
            InputValidationError: The task description is blank.
            ConfigurationError: No reasoning credential is configured
                (``code="NO_ANTHROPIC"``); the plan is persisted as ``failed``.
            TerminalError: The runner refused to start the plan; the plan is
                persisted as ``failed``.
        """
        if not task_description or not task_description.strip():
            raise InputValidationError("Task description must not be empty", code="NO_TASK")
        plan = await self._deps.plans.create(WorkflowPlan(task_id=task_id, project_id=project_id))
        logger.info("Created plan %s for task %s", plan.id, task_id)

        if agent is not None:
            custom_system_prompt = custom_system_prompt or agent.system_prompt
            model = model or agent.model
        return await self._launch(
            plan,
            WorkflowParams(
                plan_id=plan.id,
                task_id=task_id,
                project_id=project_id,
                task_description=task_description,
                custom_system_prompt=custom_system_prompt,
                model=model,
            ),
        )

    async def resolve_checkpoint(
        self,
        plan_id: str,
        action: CheckpointAction,
        data: Optional[Dict[str, Any]] = None,
        feedback: Optional[str] = None,
    ) -> WorkflowPlan:
        """
        Resolve the pending checkpoint of a plan.

        ``cancel`` (and its alias ``reject``) fails the plan immediately and
        the reasoning backend is never invoked again. ``approve`` and
        ``request_changes`` are delivered to the runner; the plan is moved
        back to ``executing`` even when delivery fails.

        Raises:
            InvalidStateError: The plan does not exist or is not in ``checkpoint``.
        """
        plan = await self._store.require(plan_id)
        if plan.status != PlanStatus.checkpoint:
            raise InvalidStateError(
                f"Plan {plan_id} is not waiting at a checkpoint (status={plan.status.value})",
                code="INVALID_STATUS",
            )
        if action.is_cancellation:
            return await self._gate.cancel(plan)

        # Flipped before delivery; the continuation stays on the plan until the engine takes it.
        updated = await self._store.transition(plan, PlanStatus.executing)
        decision = CheckpointDecision(action=action, data=data, feedback=feedback)
        try:
            await self._deps.runner.send_event(plan_id, WorkflowEvent(payload=decision))
        except Exception as e:
            logger.error("Failed to deliver checkpoint decision for plan %s: %s", plan_id, e)
        return updated

    async def cancel(self, plan_id: str) -> WorkflowPlan:
        """
        Cancel an ``executing`` or ``checkpoint`` plan.

        Raises:
            InvalidStateError: The plan does not exist or is not active.
        """
        plan = await self._store.require(plan_id)
        if not plan.status.is_active:
            raise InvalidStateError(
                f"Plan {plan_id} cannot be cancelled (status={plan.status.value})", code="INVALID_STATUS"
            )
        try:
            await self._deps.runner.terminate(plan_id)
        except Exception as e:
            logger.warning("Failed to terminate execution of plan %s: %s", plan_id, e)

        current = await self._store.require(plan_id)
        if current.status.is_terminal:
            # The run finished while it was being terminated.
            logger.info("Plan %s already %s; cancel is a no-op", plan_id, current.status.value)
            return current
        return await self._store.fail(current, CANCELLED_BY_USER)

    async def resume_plan(self, plan_id: str, feedback: str) -> WorkflowPlan:
        """
        Continue a finished plan's conversation in a new plan.

        The previous plan is never modified.

        Raises:
            InvalidStateError: The plan does not exist or has not finished.
            InputValidationError: The plan has no conversation history, or the
                feedback is blank.
        """
        previous = await self._store.require(plan_id)
        if not previous.status.is_terminal:
            raise InvalidStateError(
                f"Only completed or failed plans can be resumed (status={previous.status.value})",
                code="INVALID_STATUS",
            )
        if not previous.conversation_history:
            raise InputValidationError(f"Plan {plan_id} has no conversation history", code="NO_HISTORY")
        if not feedback or not feedback.strip():
            raise InputValidationError("Feedback must not be empty", code="NO_FEEDBACK")

        plan = await self._deps.plans.create(WorkflowPlan(task_id=previous.task_id, project_id=previous.project_id))
        logger.info("Resuming plan %s as %s", plan_id, plan.id)
        return await self._launch(
            plan,
            WorkflowParams(
                plan_id=plan.id,
                task_id=plan.task_id,
                project_id=plan.project_id,
                task_description=feedback,
                conversation_history=list(previous.conversation_history),
                resume_feedback=feedback.strip(),
            ),
        )

    async def _launch(self, plan: WorkflowPlan, params: WorkflowParams) -> WorkflowPlan:
        api_key = await resolve_reasoning_key(
            plan.project_id, config=self._deps.anthropic, credentials=self._deps.credentials
        )
        if not api_key:
            await self._store.fail(plan, MISSING_REASONING_KEY)
            raise ConfigurationError(MISSING_REASONING_KEY, code="NO_ANTHROPIC")

        params = params.model_copy(update={"api_key": SecretStr(api_key)})
        try:
            await self._deps.runner.create(plan.id, params)
        except Exception as e:
            logger.error("Failed to start plan %s: %s", plan.id, e)
            await self._store.fail(plan, f"Failed to start workflow: {e}")
            raise TerminalError(f"Failed to start workflow: {e}") from e
        await self._store.log(
            plan, LogLevel.info, "Workflow queued", metadata={"type": LogEventType.agent_turn.value}
        )
        return plan
