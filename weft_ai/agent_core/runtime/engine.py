from __future__ import annotations

"""LangGraph workflow engine.

``WorkflowEngine`` drives one plan's multi-turn conversation with a
reasoning backend, dispatching the tool calls the model requests.

Execution model
---------------

- The engine runs a LangGraph state machine over a mutable ``_GraphState``.
- ``reason`` sends the conversation and tool definitions to the backend and
  appends the assistant message. A message without tool calls completes the
  plan.
- ``dispatch`` answers the assistant's tool calls in order. Ungated calls go
  straight to the tool protocol client; results (including tool errors) are
  collected into the next user message and the loop returns to ``reason``.

Checkpoints
-----------

When a call touches approval-required fields the engine persists a
``CheckpointData`` continuation (the gated call, the results produced so
far, the remaining calls and the turn index), moves the plan to
``checkpoint`` and ends the graph. ``resume`` applies the user's decision to
that continuation and re-enters the graph at ``dispatch``.

Failure
-------

Backend failures, malformed tool schemas and an exhausted turn budget end
the plan as ``failed`` with ``result.error``. Nothing escapes ``start`` or
``resume``; they always return the latest persisted plan. Before each node
the plan is re-read, and a plan that is no longer ``executing`` (cancelled
underneath the run) stops the graph without further writes.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from langgraph.graph import END, START, StateGraph

from weft_ai.core.errors import ConfigurationError, InvalidStateError, TerminalError
from weft_ai.core.monitoring import workflow_span

from ..credentials import MISSING_REASONING_KEY, resolve_reasoning_key
from ..schemas.domain import (
    CheckpointAction,
    CheckpointData,
    CheckpointDecision,
    Continuation,
    ConversationTurn,
    LogEventType,
    LogLevel,
    PendingToolCall,
    PlanStatus,
    StepStatus,
    StepType,
    WorkflowParams,
    WorkflowPlan,
    WorkflowStep,
    text_block,
    tool_result_block,
)
from ..tool_registry import RegisteredTool
from .checkpoint import CheckpointGate
from .models import EngineDeps, _GraphState, _RunContext
from .store import PlanStore

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are an autonomous agent working on a task for the user. Use the available tools when they help. "
    "When the task is done, reply with a concise summary of what you did and stop calling tools."
)
RESULT_PREVIEW_CHARS = 500


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _user_turn(blocks: List[Dict[str, Any]]) -> ConversationTurn:
    # tool_result blocks must precede any text in a user message
    ordered = [b for b in blocks if b.get("type") == "tool_result"] + [
        b for b in blocks if b.get("type") != "tool_result"
    ]
    return ConversationTurn(role="user", content=ordered)


def seed_history(history: List[ConversationTurn], feedback: str) -> List[ConversationTurn]:
    """Continue a finished conversation with user feedback.

    Tool calls left unanswered by the previous run are closed with error
    results so the transcript stays valid. When the history already ends with
    a user message (tool results settled when the plan failed), the feedback
    joins that message.
    """
    seeded = list(history)
    blocks: List[Dict[str, Any]] = []
    if seeded and seeded[-1].role == "user":
        blocks = seeded.pop().blocks()
    elif seeded and seeded[-1].role == "assistant":
        for use in seeded[-1].tool_uses():
            blocks.append(tool_result_block(use["id"], "This tool call was not completed.", is_error=True))
    blocks.append(text_block(feedback))
    seeded.append(_user_turn(blocks))
    return seeded


class WorkflowEngine:
    """Run and resume workflow plans."""

    def __init__(self, *, deps: EngineDeps) -> None:
        self._deps = deps
        self._store = PlanStore(plans=deps.plans, logs=deps.logs, notifications=deps.notifications)
        self._gate = CheckpointGate(self._store)
        self._contexts: Dict[str, _RunContext] = {}
        self._graph = self._build_graph()

    @property
    def store(self) -> PlanStore:
        return self._store

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        g: StateGraph = StateGraph(_GraphState)
        g.add_node("reason", self._node_reason)
        g.add_node("dispatch", self._node_dispatch)
        g.add_node("pause_for_approval", self._node_pause_for_approval)
        g.add_node("finish", self._node_finish)

        g.add_conditional_edges(START, self._route_entry, {"reason": "reason", "dispatch": "dispatch"})
        g.add_conditional_edges("reason", self._route_after_reason, {"dispatch": "dispatch", "finish": "finish"})
        g.add_conditional_edges(
            "dispatch",
            self._route_after_dispatch,
            {"pause": "pause_for_approval", "finish": "finish", "continue": "reason"},
        )
        g.add_edge("pause_for_approval", END)
        g.add_edge("finish", END)
        return g.compile()

    def _recursion_limit(self) -> int:
        return self._deps.max_turns * 2 + 10

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def start(self, params: WorkflowParams) -> Optional[WorkflowPlan]:
        """Move a ``planning`` plan to ``executing`` and run the turn loop."""
        plan_id = params.plan_id
        try:
            plan = await self._store.require(plan_id)
            if plan.status != PlanStatus.planning:
                logger.warning("Plan %s not started: status is %s", plan_id, plan.status.value)
                return plan

            api_key = params.api_key.get_secret_value() if params.api_key is not None else None
            if not api_key:
                raise ConfigurationError(MISSING_REASONING_KEY, code="NO_ANTHROPIC")

            if params.conversation_history:
                history = seed_history(list(params.conversation_history), params.resume_feedback or "")
            else:
                history = [ConversationTurn(role="user", content=params.task_description)]

            system_prompt = params.custom_system_prompt or self._deps.system_prompt or DEFAULT_SYSTEM_PROMPT
            self._contexts[plan_id] = _RunContext(
                backend=self._deps.backend_factory(api_key, params.model),
                catalog=await self._deps.tools.load(plan.project_id),
            )
            plan = await self._store.transition(plan, PlanStatus.executing, conversation_history=history)
            await self._store.log(
                plan, LogLevel.info, "Workflow started", metadata={"type": LogEventType.agent_turn.value}
            )

            state: _GraphState = {
                "plan_id": plan_id,
                "project_id": plan.project_id,
                "turn": 0,
                "history": [t.model_dump(mode="json") for t in history],
                "pending_calls": [],
                "tool_results": [],
                "system_prompt": system_prompt,
                "model": params.model,
            }
            await self._graph.ainvoke(state, config={"recursion_limit": self._recursion_limit()})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Plan %s failed to run: %s", plan_id, e, exc_info=not isinstance(e, ConfigurationError))
            await self._fail(plan_id, str(e))
        finally:
            self._contexts.pop(plan_id, None)
        return await self._store.get(plan_id)

    async def resume(self, plan_id: str, decision: CheckpointDecision) -> Optional[WorkflowPlan]:
        """Apply a checkpoint decision to the persisted continuation and continue."""
        try:
            plan = await self._store.require(plan_id)
            if plan.status.is_terminal:
                logger.info("Plan %s is %s; dropping checkpoint decision", plan_id, plan.status.value)
                return plan
            try:
                data = self._gate.take(plan)
            except InvalidStateError as e:
                logger.warning("Dropping checkpoint decision for plan %s: %s", plan_id, e.message)
                return plan
            if decision.action.is_cancellation:
                return await self._gate.cancel(plan)

            api_key = await resolve_reasoning_key(
                plan.project_id, config=self._deps.anthropic, credentials=self._deps.credentials
            )
            if not api_key:
                raise ConfigurationError(MISSING_REASONING_KEY, code="NO_ANTHROPIC")

            cont = data.continuation
            ctx = _RunContext(
                backend=self._deps.backend_factory(api_key, cont.model),
                catalog=await self._deps.tools.load(plan.project_id),
            )
            self._contexts[plan_id] = ctx
            plan = await self._gate.close(plan)
            await self._store.log(
                plan,
                LogLevel.info,
                f"Checkpoint resolved: {decision.action.value}",
                step_id=data.step_id,
                metadata={
                    "type": LogEventType.checkpoint.value,
                    "action": decision.action.value,
                    "tool": data.server_tool_name,
                },
            )

            blocks = list(cont.tool_results)
            blocks.append(await self._apply_decision(plan, ctx, data, decision))
            if decision.feedback and decision.action == CheckpointAction.approve:
                blocks.append(text_block(f"User feedback: {decision.feedback}"))

            state: _GraphState = {
                "plan_id": plan_id,
                "project_id": plan.project_id,
                "turn": cont.turn,
                "history": [t.model_dump(mode="json") for t in plan.conversation_history],
                "pending_calls": [c.model_dump(mode="json") for c in cont.remaining_calls],
                "tool_results": blocks,
                "system_prompt": cont.system_prompt or self._deps.system_prompt or DEFAULT_SYSTEM_PROMPT,
                "model": cont.model,
                "_resume": True,
            }
            await self._graph.ainvoke(state, config={"recursion_limit": self._recursion_limit()})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Plan %s failed to resume: %s", plan_id, e, exc_info=True)
            await self._fail(plan_id, str(e))
        finally:
            self._contexts.pop(plan_id, None)
        return await self._store.get(plan_id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _fail(self, plan_id: str, error: str) -> None:
        plan = await self._store.get(plan_id)
        if plan is not None:
            await self._store.fail(plan, error)

    async def _active_plan(self, state: _GraphState) -> Optional[WorkflowPlan]:
        plan = await self._store.get(state["plan_id"])
        if plan is None or plan.status != PlanStatus.executing:
            logger.info("Plan %s is no longer executing; stopping run", state["plan_id"])
            state["_stopped"] = True
            return None
        return plan

    async def _apply_decision(
        self,
        plan: WorkflowPlan,
        ctx: _RunContext,
        data: CheckpointData,
        decision: CheckpointDecision,
    ) -> Dict[str, Any]:
        """Turn an approve/request_changes decision into the gated call's tool result."""
        if decision.action == CheckpointAction.request_changes:
            feedback = decision.feedback or "No details given."
            steps = list(plan.steps)
            for s in steps:
                if s.id == data.step_id:
                    s.status = StepStatus.failed
                    s.completed_at = _utc_now()
                    s.error = "Changes requested"
            await self._store.update(plan, steps=steps)
            return tool_result_block(
                data.tool_call_id,
                f"The user did not approve this call and requested changes: {feedback}",
                is_error=True,
            )

        tool = ctx.catalog.get(data.tool_name)
        if tool is None:
            return tool_result_block(data.tool_call_id, f"Tool no longer available: {data.tool_name}", is_error=True)
        call = PendingToolCall(
            id=data.tool_call_id,
            name=data.tool_name,
            arguments={**data.arguments, **(decision.data or {})},
        )
        block, _ = await self._execute_tool(plan, ctx, tool, call, step_id=data.step_id)
        return block

    async def _execute_tool(
        self,
        plan: WorkflowPlan,
        ctx: _RunContext,
        tool: RegisteredTool,
        call: PendingToolCall,
        *,
        step_id: Optional[str] = None,
    ) -> tuple[Dict[str, Any], WorkflowPlan]:
        steps = list(plan.steps)
        step = next((s for s in steps if s.id == step_id), None) if step_id else None
        if step is None:
            step = WorkflowStep(
                name=call.name,
                type=StepType.tool_call,
                server=tool.server.name,
                tool_name=tool.schema.name,
            )
            steps.append(step)
        step.status = StepStatus.running
        step.started_at = _utc_now()
        plan = await self._store.update(plan, steps=steps, current_step_index=steps.index(step))
        await self._store.log(
            plan,
            LogLevel.info,
            f"Calling {tool.server.name}.{tool.schema.name}",
            step_id=step.id,
            metadata={
                "type": LogEventType.tool_call.value,
                "server": tool.server.name,
                "tool": tool.schema.name,
                "args": call.arguments,
            },
        )

        started = time.monotonic()
        with workflow_span("workflow.tool_call", plan_id=plan.id, tool=call.name):
            result = await self._deps.tools.call(ctx.catalog, tool, call.arguments)
        duration_ms = int((time.monotonic() - started) * 1000)
        text = result.text()

        steps = list(plan.steps)
        for s in steps:
            if s.id == step.id:
                s.status = StepStatus.failed if result.is_error else StepStatus.completed
                s.completed_at = _utc_now()
                s.duration_ms = duration_ms
                s.result = None if result.is_error else text[:RESULT_PREVIEW_CHARS]
                s.error = text[:RESULT_PREVIEW_CHARS] if result.is_error else None
        plan = await self._store.update(plan, steps=steps)
        await self._store.log(
            plan,
            LogLevel.warn if result.is_error else LogLevel.info,
            f"{tool.server.name}.{tool.schema.name} {'failed' if result.is_error else 'completed'} in {duration_ms}ms",
            step_id=step.id,
            metadata={
                "type": LogEventType.tool_result.value,
                "server": tool.server.name,
                "tool": tool.schema.name,
                "duration_ms": duration_ms,
                "result_preview": text[:RESULT_PREVIEW_CHARS],
            },
        )
        return tool_result_block(call.id, text, is_error=result.is_error), plan

    # ------------------------------------------------------------------
    # graph nodes
    # ------------------------------------------------------------------

    async def _node_reason(self, state: _GraphState) -> _GraphState:
        """Ask the backend for the next assistant message."""
        state["_resume"] = False
        plan = await self._active_plan(state)
        if plan is None:
            return state
        ctx = self._contexts[state["plan_id"]]
        try:
            if state["turn"] >= self._deps.max_turns:
                raise TerminalError(f"Turn budget exhausted after {self._deps.max_turns} turns")
            tools = ctx.catalog.definitions()
            history = [ConversationTurn.model_validate(t) for t in state["history"]]
            with workflow_span("workflow.turn", plan_id=plan.id, turn=state["turn"]):
                try:
                    response = await ctx.backend.respond(
                        system_prompt=state["system_prompt"], history=history, tools=tools
                    )
                except Exception as e:
                    raise TerminalError(f"Reasoning backend failed: {e}") from e
        except TerminalError as e:
            state["_finished"] = True
            state["_terminal_status"] = PlanStatus.failed.value
            state["_error"] = e.message
            return state

        turn = response.to_turn()
        state["history"].append(turn.model_dump(mode="json"))
        state["turn"] += 1
        plan = await self._store.update(plan, conversation_history=history + [turn])
        await self._store.log(
            plan,
            LogLevel.info,
            f"Turn {state['turn']}: {len(response.tool_calls)} tool call(s)",
            metadata={
                "type": LogEventType.agent_turn.value,
                "turn_index": state["turn"],
                "text": response.text[:RESULT_PREVIEW_CHARS],
            },
        )

        if not response.tool_calls:
            state["_finished"] = True
            state["_terminal_status"] = PlanStatus.completed.value
            state["_result"] = {"success": True, "summary": response.text}
            return state
        state["pending_calls"] = [c.model_dump(mode="json") for c in response.tool_calls]
        state["tool_results"] = []
        return state

    async def _node_dispatch(self, state: _GraphState) -> _GraphState:
        """Answer pending tool calls until one needs approval or all are done."""
        plan = await self._active_plan(state)
        if plan is None:
            return state
        ctx = self._contexts[state["plan_id"]]

        while state["pending_calls"]:
            call = PendingToolCall.model_validate(state["pending_calls"][0])
            decision = ctx.catalog.gate(call.name, call.arguments)
            if decision is None:
                state["tool_results"].append(tool_result_block(call.id, f"Unknown tool: {call.name}", is_error=True))
                await self._store.log(
                    plan,
                    LogLevel.warn,
                    f"Model called unknown tool {call.name}",
                    metadata={"type": LogEventType.tool_call.value},
                )
            elif decision.requires_checkpoint:
                steps = list(plan.steps)
                step = WorkflowStep(
                    name=call.name,
                    type=StepType.checkpoint,
                    server=decision.tool.server.name,
                    tool_name=decision.tool.schema.name,
                    status=StepStatus.awaiting_approval,
                )
                steps.append(step)
                data = CheckpointData(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    server_id=decision.tool.server.id,
                    server_name=decision.tool.server.name,
                    server_tool_name=decision.tool.schema.name,
                    arguments=call.arguments,
                    approval_required_fields=decision.gated_fields,
                    step_id=step.id,
                    continuation=Continuation(
                        turn=state["turn"],
                        tool_results=list(state["tool_results"]),
                        remaining_calls=[PendingToolCall.model_validate(c) for c in state["pending_calls"][1:]],
                        system_prompt=state["system_prompt"],
                        model=state["model"],
                    ),
                )
                await self._gate.open(plan, data, steps)
                state["_checkpoint"] = True
                return state
            else:
                block, plan = await self._execute_tool(plan, ctx, decision.tool, call)
                state["tool_results"].append(block)
            state["pending_calls"] = state["pending_calls"][1:]

        if state["tool_results"]:
            turn = _user_turn(state["tool_results"])
            state["history"].append(turn.model_dump(mode="json"))
            await self._store.update(
                plan,
                conversation_history=[ConversationTurn.model_validate(t) for t in state["history"]],
            )
            state["tool_results"] = []
        state["_resume"] = False
        return state

    async def _node_pause_for_approval(self, state: _GraphState) -> _GraphState:
        """Pause node.

        The graph transitions to END after this node; the continuation is
        already persisted on the plan.
        """
        return state

    async def _node_finish(self, state: _GraphState) -> _GraphState:
        """Write the terminal status, unless the plan was stopped underneath the run."""
        if state.get("_stopped"):
            return state
        plan = await self._store.require(state["plan_id"])
        if plan.status.is_terminal:
            return state
        if state.get("_terminal_status") == PlanStatus.completed.value:
            result = dict(state.get("_result") or {"success": True})
            plan = await self._store.transition(
                plan,
                PlanStatus.completed,
                summary=result.get("summary"),
                result=result,
                checkpoint_data=None,
            )
            await self._store.log(
                plan,
                LogLevel.info,
                "Workflow completed",
                metadata={"type": LogEventType.workflow_complete.value, "turns": state["turn"]},
            )
        else:
            await self._store.fail(plan, state.get("_error") or "Workflow failed")
        return state

    # ------------------------------------------------------------------
    # routing
    # ------------------------------------------------------------------

    def _route_entry(self, state: _GraphState) -> str:
        return "dispatch" if state.get("_resume") else "reason"

    def _route_after_reason(self, state: _GraphState) -> str:
        if state.get("_finished") or state.get("_stopped"):
            return "finish"
        return "dispatch"

    def _route_after_dispatch(self, state: _GraphState) -> str:
        """Route to pause/finish/continue after dispatching tool calls."""
        if state.get("_checkpoint"):
            return "pause"
        if state.get("_finished") or state.get("_stopped"):
            return "finish"
        return "continue"
