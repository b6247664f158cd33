from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest
from pydantic import SecretStr

from weft_ai.agent_core.credentials import MISSING_REASONING_KEY
from weft_ai.agent_core.reasoning.base import ReasoningResponse
from weft_ai.agent_core.runtime.checkpoint import CHECKPOINT_CANCELLED
from weft_ai.agent_core.runtime.engine import seed_history
from weft_ai.agent_core.schemas.domain import (
    CheckpointAction,
    CheckpointDecision,
    ConversationTurn,
    PlanStatus,
    PlanUpdate,
    StepStatus,
    StepType,
    WorkflowParams,
    WorkflowPlan,
    text_block,
    tool_use_block,
)


def _params(plan: WorkflowPlan, **overrides: Any) -> WorkflowParams:
    data: Dict[str, Any] = dict(
        plan_id=plan.id,
        task_id=plan.task_id,
        project_id=plan.project_id,
        task_description="Deploy the billing service",
        api_key=SecretStr("sk-test"),
    )
    data.update(overrides)
    return WorkflowParams(**data)


def _blocks(turn: Dict[str, Any]) -> List[Dict[str, Any]]:
    content = turn["content"]
    return [{"type": "text", "text": content}] if isinstance(content, str) else content


@pytest.mark.asyncio
async def test_start_completes_when_model_returns_no_tool_calls(harness) -> None:
    plan = await harness.new_plan()
    harness.script(ReasoningResponse(text="All done."))

    out = await harness.engine.start(_params(plan))

    assert out is not None
    assert out.status == PlanStatus.completed
    assert out.result == {"success": True, "summary": "All done."}
    assert out.summary == "All done."
    assert harness.plans.statuses(plan.id) == ["planning", "executing", "completed"]
    assert [t.role for t in out.conversation_history] == ["user", "assistant"]
    assert "workflow_complete" in harness.logs.types(plan.id)
    assert harness.backend_keys == [("sk-test", None)]


@pytest.mark.asyncio
async def test_ungated_tool_call_runs_and_result_feeds_next_turn(harness, make_call) -> None:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(tool_calls=[make_call("Ops__echo", {"text": "hi"}, call_id="c1")]),
        ReasoningResponse(text="Echoed."),
    )

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.completed
    assert harness.ops.calls == [("echo", {"text": "hi"})]
    second_call_history = harness.backend.calls[1]["history"]
    last_user = _blocks(second_call_history[-1])
    assert last_user[0]["type"] == "tool_result"
    assert last_user[0]["tool_use_id"] == "c1"
    assert last_user[0]["is_error"] is False
    assert "echo: hi" in last_user[0]["content"]
    assert [s.status for s in out.steps] == [StepStatus.completed]
    assert {"tool_call", "tool_result"} <= set(harness.logs.types(plan.id))
    assert harness.backend.calls[0]["tools"] == ["Ops__echo", "Ops__deploy"]


@pytest.mark.asyncio
async def test_gated_call_suspends_before_reaching_the_tool(harness, make_call) -> None:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(
            tool_calls=[
                make_call("Ops__echo", {"text": "first"}, call_id="c1"),
                make_call("Ops__deploy", {"service": "billing", "target": "staging"}, call_id="c2"),
                make_call("Ops__echo", {"text": "after"}, call_id="c3"),
            ]
        ),
    )

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.checkpoint
    assert harness.ops.calls == [("echo", {"text": "first"})]
    data = out.checkpoint_data
    assert data is not None
    assert data.tool_call_id == "c2"
    assert data.tool_name == "Ops__deploy"
    assert data.server_tool_name == "deploy"
    assert data.approval_required_fields == ["target"]
    assert [c.id for c in data.continuation.remaining_calls] == ["c3"]
    assert [b["tool_use_id"] for b in data.continuation.tool_results] == ["c1"]
    assert out.steps[-1].status == StepStatus.awaiting_approval
    assert harness.logs.types(plan.id)[-1] == "checkpoint"


@pytest.mark.asyncio
async def test_call_without_gated_fields_is_not_suspended(harness, make_call) -> None:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(tool_calls=[make_call("Ops__deploy", {"service": "billing"})]),
        ReasoningResponse(text="ok"),
    )

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.completed
    assert harness.ops.calls == [("deploy", {"service": "billing"})]


async def _suspend(harness, make_call) -> WorkflowPlan:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(
            text="Deploying.",
            tool_calls=[
                make_call("Ops__deploy", {"service": "billing", "target": "staging"}, call_id="c1"),
                make_call("Ops__echo", {"text": "after"}, call_id="c2"),
            ],
        ),
    )
    out = await harness.engine.start(_params(plan))
    assert out.status == PlanStatus.checkpoint
    return out


@pytest.mark.asyncio
async def test_resume_approve_runs_call_with_merged_data(harness, make_call) -> None:
    plan = await _suspend(harness, make_call)
    harness.script(ReasoningResponse(text="Deployed to prod."))

    out = await harness.engine.resume(
        plan.id,
        CheckpointDecision(action=CheckpointAction.approve, data={"target": "prod"}, feedback="ship it"),
    )

    assert out.status == PlanStatus.completed
    assert out.checkpoint_data is None
    assert harness.ops.calls == [
        ("deploy", {"service": "billing", "target": "prod"}),
        ("echo", {"text": "after"}),
    ]
    user_turn = _blocks(harness.backend.calls[1]["history"][-1])
    assert [b["type"] for b in user_turn] == ["tool_result", "tool_result", "text"]
    assert [b["tool_use_id"] for b in user_turn[:2]] == ["c1", "c2"]
    assert "ship it" in user_turn[2]["text"]
    assert out.steps[0].status == StepStatus.completed
    assert harness.plans.statuses(plan.id) == ["planning", "executing", "checkpoint", "executing", "completed"]


@pytest.mark.asyncio
async def test_resume_request_changes_skips_call_and_reports_feedback(harness, make_call) -> None:
    plan = await _suspend(harness, make_call)
    harness.script(ReasoningResponse(text="Understood, not deploying."))

    out = await harness.engine.resume(
        plan.id,
        CheckpointDecision(action=CheckpointAction.request_changes, feedback="use canary first"),
    )

    assert out.status == PlanStatus.completed
    assert harness.ops.calls == [("echo", {"text": "after"})]
    first = _blocks(harness.backend.calls[1]["history"][-1])[0]
    assert first["tool_use_id"] == "c1"
    assert first["is_error"] is True
    assert "use canary first" in first["content"]
    assert out.steps[0].status == StepStatus.failed


@pytest.mark.asyncio
@pytest.mark.parametrize("action", [CheckpointAction.cancel, CheckpointAction.reject])
async def test_resume_cancel_fails_plan_without_invoking_backend(harness, make_call, action) -> None:
    plan = await _suspend(harness, make_call)
    calls_before = len(harness.backend.calls)

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=action))

    assert out.status == PlanStatus.failed
    assert out.result == {"success": False, "error": CHECKPOINT_CANCELLED}
    assert len(harness.backend.calls) == calls_before
    assert harness.ops.calls == []


@pytest.mark.asyncio
async def test_resume_on_terminal_plan_does_not_write(harness) -> None:
    plan = await harness.new_plan(status=PlanStatus.failed, result={"success": False, "error": "Cancelled by user"})
    before = harness.plans.rows[plan.id].copy()

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=CheckpointAction.approve))

    assert out.status == PlanStatus.failed
    assert harness.plans.rows[plan.id] == before
    assert harness.backend.calls == []


@pytest.mark.asyncio
async def test_duplicate_decision_does_not_fail_running_plan(harness, make_call) -> None:
    plan = await _suspend(harness, make_call)
    await harness.plans.update(plan.id, PlanUpdate(status=PlanStatus.executing, checkpoint_data=None))

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=CheckpointAction.approve))

    assert out.status == PlanStatus.executing
    assert harness.ops.calls == []


@pytest.mark.asyncio
async def test_backend_failure_fails_plan_with_error(harness) -> None:
    plan = await harness.new_plan()
    harness.script(RuntimeError("model overloaded"))

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.failed
    assert out.result["success"] is False
    assert "model overloaded" in out.result["error"]
    assert harness.logs.types(plan.id)[-1] == "workflow_error"


@pytest.mark.asyncio
async def test_exhausted_turn_budget_fails_plan(harness_factory, make_call) -> None:
    harness = harness_factory(max_turns=2)
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(tool_calls=[make_call("Ops__echo", {"text": "1"})]),
        ReasoningResponse(tool_calls=[make_call("Ops__echo", {"text": "2"})]),
    )

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.failed
    assert "Turn budget exhausted" in out.result["error"]
    assert len(harness.backend.calls) == 2


@pytest.mark.asyncio
async def test_unknown_tool_is_answered_with_error_result(harness, make_call) -> None:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(tool_calls=[make_call("Nope__missing", {}, call_id="c1")]),
        ReasoningResponse(text="Gave up on that tool."),
    )

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.completed
    result = _blocks(harness.backend.calls[1]["history"][-1])[0]
    assert result["is_error"] is True
    assert "Unknown tool" in result["content"]


@pytest.mark.asyncio
async def test_malformed_tool_schema_fails_plan(harness) -> None:
    harness.servers.tools["srv-ops"][0].input_schema = {"type": "string"}
    plan = await harness.new_plan()
    harness.script(ReasoningResponse(text="unused"))

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.failed
    assert "Malformed tool schema" in out.result["error"]
    assert harness.backend.calls == []


@pytest.mark.asyncio
async def test_start_without_api_key_fails_plan(harness) -> None:
    plan = await harness.new_plan()

    out = await harness.engine.start(_params(plan, api_key=None))

    assert out.status == PlanStatus.failed
    assert out.result == {"success": False, "error": MISSING_REASONING_KEY}
    assert harness.plans.statuses(plan.id) == ["planning", "failed"]


@pytest.mark.asyncio
async def test_start_ignores_plan_that_is_not_planning(harness) -> None:
    plan = await harness.new_plan(status=PlanStatus.completed)

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.completed
    assert harness.backend.calls == []


@pytest.mark.asyncio
async def test_run_stops_when_plan_is_cancelled_underneath(harness, make_call) -> None:
    plan = await harness.new_plan()

    class _CancellingBackend:
        calls: List[Any] = []

        async def respond(self, **kwargs: Any) -> ReasoningResponse:
            await harness.plans.update(
                plan.id,
                PlanUpdate(status=PlanStatus.failed, result={"success": False, "error": "Cancelled by user"}),
            )
            return ReasoningResponse(tool_calls=[make_call("Ops__echo", {"text": "late"})])

    harness.backend = _CancellingBackend()

    out = await harness.engine.start(_params(plan))

    assert out.status == PlanStatus.failed
    assert out.result == {"success": False, "error": "Cancelled by user"}
    assert harness.ops.calls == []


@pytest.mark.asyncio
async def test_start_with_seed_history_appends_feedback(harness) -> None:
    history = [
        ConversationTurn(role="user", content="Deploy billing"),
        ConversationTurn(role="assistant", content=[text_block("Deploying"), tool_use_block("c9", "Ops__deploy", {})]),
    ]
    plan = await harness.new_plan()
    harness.script(ReasoningResponse(text="Trying again."))

    out = await harness.engine.start(
        _params(plan, conversation_history=history, resume_feedback="Please deploy to staging instead")
    )

    assert out.status == PlanStatus.completed
    sent = harness.backend.calls[0]["history"]
    assert len(sent) == 3
    closing = _blocks(sent[-1])
    assert closing[0] == {
        "type": "tool_result",
        "tool_use_id": "c9",
        "content": "This tool call was not completed.",
        "is_error": True,
    }
    assert closing[1] == {"type": "text", "text": "Please deploy to staging instead"}


def test_seed_history_without_dangling_tool_use() -> None:
    history = [
        ConversationTurn(role="user", content="hi"),
        ConversationTurn(role="assistant", content="hello"),
    ]

    seeded = seed_history(history, "more please")

    assert len(seeded) == 3
    assert seeded[-1].role == "user"
    assert seeded[-1].content == [{"type": "text", "text": "more please"}]
    assert len(history) == 2


@pytest.mark.asyncio
async def test_cancelled_checkpoint_keeps_results_that_already_ran(harness, make_call) -> None:
    plan = await harness.new_plan()
    harness.script(
        ReasoningResponse(
            tool_calls=[
                make_call("Ops__echo", {"text": "side effect"}, call_id="c1"),
                make_call("Ops__deploy", {"service": "billing", "target": "prod"}, call_id="c2"),
                make_call("Ops__echo", {"text": "later"}, call_id="c3"),
            ]
        ),
    )
    await harness.engine.start(_params(plan))
    assert harness.ops.calls == [("echo", {"text": "side effect"})]

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=CheckpointAction.cancel))

    assert out.status == PlanStatus.failed
    assert out.checkpoint_data is None
    settled = out.conversation_history[-1]
    assert settled.role == "user"
    by_id = {b["tool_use_id"]: b for b in settled.blocks()}
    assert by_id["c1"]["is_error"] is False
    assert by_id["c1"]["content"] == "echo: side effect"
    assert by_id["c2"]["is_error"] is True
    assert by_id["c3"]["is_error"] is True
    assert CHECKPOINT_CANCELLED in by_id["c2"]["content"]

    seeded = seed_history(out.conversation_history, "try again")

    assert len(seeded) == len(out.conversation_history)
    blocks = seeded[-1].blocks()
    assert blocks[0] == {"type": "tool_result", "tool_use_id": "c1", "content": "echo: side effect", "is_error": False}
    assert blocks[-1] == {"type": "text", "text": "try again"}


@pytest.mark.asyncio
async def test_failing_a_plan_closes_open_steps(harness, make_call) -> None:
    plan = await _suspend(harness, make_call)
    assert plan.steps[-1].type == StepType.checkpoint

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=CheckpointAction.cancel))

    assert [s.status for s in out.steps] == [StepStatus.failed]
    assert out.steps[0].error == CHECKPOINT_CANCELLED
    assert out.steps[0].completed_at is not None
    assert harness.logs.types(plan.id)[-1] == "workflow_error"


@pytest.mark.asyncio
async def test_resume_failure_after_optimistic_flip_settles_history(harness_factory, make_call) -> None:
    harness = harness_factory(api_key=None)
    plan = await _suspend(harness, make_call)
    await harness.plans.update(plan.id, PlanUpdate(status=PlanStatus.executing))

    out = await harness.engine.resume(plan.id, CheckpointDecision(action=CheckpointAction.approve))

    assert out.status == PlanStatus.failed
    assert out.result == {"success": False, "error": MISSING_REASONING_KEY}
    settled = out.conversation_history[-1]
    assert settled.role == "user"
    assert [b["tool_use_id"] for b in settled.blocks()] == ["c1", "c2"]
    assert harness.ops.calls == []
