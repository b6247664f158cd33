from __future__ import annotations

import asyncio
from typing import List

import pytest

from weft_ai.agent_core.runtime.partitions import PartitionedExecutor
from weft_ai.agent_core.runtime.runner import ExecutionNotFoundError, WorkflowRunner
from weft_ai.agent_core.schemas.domain import CheckpointAction, CheckpointDecision, PlanStatus, WorkflowEvent


@pytest.mark.asyncio
async def test_jobs_in_one_partition_run_serially_in_order() -> None:
    executor = PartitionedExecutor()
    events: List[str] = []

    def job(name: str):
        async def run() -> str:
            events.append(f"{name}:start")
            await asyncio.sleep(0.01)
            events.append(f"{name}:end")
            return name

        return run

    f1 = executor.submit("proj-1", "a", job("a"))
    f2 = executor.submit("proj-1", "b", job("b"))

    assert await f1 == "a"
    assert await f2 == "b"
    assert events == ["a:start", "a:end", "b:start", "b:end"]
    await executor.close()


@pytest.mark.asyncio
async def test_partitions_run_concurrently() -> None:
    executor = PartitionedExecutor()
    started = asyncio.Event()
    release = asyncio.Event()

    async def blocker() -> None:
        started.set()
        await release.wait()

    async def other() -> str:
        await started.wait()
        release.set()
        return "done"

    f1 = executor.submit("proj-1", "a", blocker)
    f2 = executor.submit("proj-2", "b", other)

    assert await asyncio.wait_for(f2, timeout=1) == "done"
    await asyncio.wait_for(f1, timeout=1)
    await executor.close()


@pytest.mark.asyncio
async def test_cancel_running_job_keeps_partition_alive() -> None:
    executor = PartitionedExecutor()
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(3600)

    async def quick() -> int:
        return 42

    f1 = executor.submit("proj-1", "a", forever)
    f2 = executor.submit("proj-1", "b", quick)
    await started.wait()

    assert executor.is_active("a")
    assert executor.cancel("a") is True
    with pytest.raises(asyncio.CancelledError):
        await f1
    assert await f2 == 42
    assert not executor.is_active("a")
    await executor.close()


@pytest.mark.asyncio
async def test_cancel_skips_queued_job() -> None:
    executor = PartitionedExecutor()
    release = asyncio.Event()
    ran: List[str] = []

    async def blocker() -> None:
        await release.wait()

    async def queued() -> None:
        ran.append("queued")

    executor.submit("proj-1", "a", blocker)
    f2 = executor.submit("proj-1", "b", queued)

    assert executor.cancel("b") is True
    release.set()
    await executor.drain()

    assert f2.cancelled()
    assert ran == []
    await executor.close()


@pytest.mark.asyncio
async def test_cancel_unknown_job_returns_false() -> None:
    executor = PartitionedExecutor()
    assert executor.cancel("missing") is False
    await executor.close()


@pytest.mark.asyncio
async def test_failed_job_sets_future_exception_and_worker_continues() -> None:
    executor = PartitionedExecutor()

    async def boom() -> None:
        raise ValueError("boom")

    async def ok() -> str:
        return "ok"

    f1 = executor.submit("proj-1", "a", boom)
    f2 = executor.submit("proj-1", "b", ok)

    with pytest.raises(ValueError):
        await f1
    assert await f2 == "ok"
    await executor.close()


@pytest.mark.asyncio
async def test_submit_after_close_raises() -> None:
    executor = PartitionedExecutor()
    await executor.close()

    async def noop() -> None:
        return None

    with pytest.raises(RuntimeError):
        executor.submit("proj-1", "a", noop)


@pytest.mark.asyncio
async def test_runner_terminate_without_execution_raises(harness) -> None:
    runner = WorkflowRunner(engine=harness.engine, plans=harness.plans)

    with pytest.raises(ExecutionNotFoundError) as exc:
        await runner.terminate("plan-x")

    assert exc.value.plan_id == "plan-x"
    assert exc.value.code == "EXECUTION_NOT_FOUND"
    await runner.aclose()


@pytest.mark.asyncio
async def test_runner_send_event_for_unknown_plan_raises(harness) -> None:
    runner = WorkflowRunner(engine=harness.engine, plans=harness.plans)
    event = WorkflowEvent(payload=CheckpointDecision(action=CheckpointAction.approve))

    with pytest.raises(ExecutionNotFoundError):
        await runner.send_event("plan-x", event)
    await runner.aclose()


@pytest.mark.asyncio
async def test_runner_create_runs_engine_start(harness) -> None:
    from weft_ai.agent_core.reasoning.base import ReasoningResponse
    from weft_ai.agent_core.schemas.domain import WorkflowParams

    runner = WorkflowRunner(engine=harness.engine, plans=harness.plans)
    harness.script(ReasoningResponse(text="All good."))
    plan = await harness.new_plan()

    future = await runner.create(
        plan.id,
        WorkflowParams(
            plan_id=plan.id,
            task_id=plan.task_id,
            project_id=plan.project_id,
            task_description="Check",
            api_key="sk-test",
        ),
    )
    out = await future

    assert out.status == PlanStatus.completed
    await runner.aclose()


@pytest.mark.asyncio
async def test_runner_terminate_cancels_running_job_once(harness) -> None:
    runner = WorkflowRunner(engine=harness.engine, plans=harness.plans)
    started = asyncio.Event()

    async def long_run() -> None:
        started.set()
        await asyncio.sleep(10)

    future = runner.executor.submit("proj-1", "plan-1", long_run)
    await started.wait()

    await runner.terminate("plan-1")

    with pytest.raises(asyncio.CancelledError):
        await future
    with pytest.raises(ExecutionNotFoundError):
        await runner.terminate("plan-1")
    await runner.aclose()
