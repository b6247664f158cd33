from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

import pytest

from weft_ai.agent_core.notifications import RecordingNotificationSink
from weft_ai.agent_core.reasoning.base import ReasoningResponse
from weft_ai.agent_core.runtime.engine import WorkflowEngine
from weft_ai.agent_core.runtime.models import EngineDeps
from weft_ai.agent_core.schemas.domain import (
    ConversationTurn,
    PendingAuthorization,
    PendingToolCall,
    PlanUpdate,
    WorkflowLog,
    WorkflowPlan,
)
from weft_ai.agent_core.tool_registry import ToolRegistry
from weft_ai.core.config import AnthropicConfig
from weft_ai.mcp_client.client_async import AsyncMcpClient
from weft_ai.mcp_client.hosted.base import HostedToolServer
from weft_ai.mcp_client.models import MCPToolCallResult
from weft_ai.mcp_client.schemas.core import McpTool, ToolSchema, ToolServerConfig, TransportKind
from weft_ai.mcp_client.strategy.hosted import HostedMcpStrategy


class _PlansRepo:
    """Stores plans as JSON so every read returns a fresh copy, like a database."""

    def __init__(self) -> None:
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.status_history: List[Tuple[str, str]] = []

    async def create(self, plan: WorkflowPlan) -> WorkflowPlan:
        self.rows[plan.id] = plan.model_dump(mode="json")
        self.status_history.append((plan.id, plan.status.value))
        return plan

    async def get(self, plan_id: str) -> Optional[WorkflowPlan]:
        row = self.rows.get(plan_id)
        return WorkflowPlan.model_validate(row) if row is not None else None

    async def update(self, plan_id: str, patch: PlanUpdate) -> Optional[WorkflowPlan]:
        row = self.rows.get(plan_id)
        if row is None:
            return None
        for name, value in patch.model_dump(mode="json", include=patch.model_fields_set).items():
            row[name] = value
            if name == "status":
                self.status_history.append((plan_id, value))
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        return WorkflowPlan.model_validate(row)

    async def list_for_task(self, task_id: str, limit: int = 20) -> List[WorkflowPlan]:
        plans = [WorkflowPlan.model_validate(r) for r in self.rows.values() if r["task_id"] == task_id]
        return sorted(plans, key=lambda p: p.created_at, reverse=True)[:limit]

    def statuses(self, plan_id: str) -> List[str]:
        return [s for pid, s in self.status_history if pid == plan_id]


class _LogsRepo:
    def __init__(self) -> None:
        self.entries: List[WorkflowLog] = []

    async def append(self, log: WorkflowLog) -> None:
        self.entries.append(log)

    async def list(self, plan_id: str, *, limit: int = 100, offset: int = 0) -> List[WorkflowLog]:
        return [e for e in self.entries if e.plan_id == plan_id][offset : offset + limit]

    def types(self, plan_id: str) -> List[Optional[str]]:
        return [(e.metadata or {}).get("type") for e in self.entries if e.plan_id == plan_id]


class _ServersRepo:
    def __init__(self) -> None:
        self.servers: Dict[str, ToolServerConfig] = {}
        self.tools: Dict[str, List[ToolSchema]] = {}
        self.cache_writes: List[str] = []

    async def get(self, server_id: str) -> Optional[ToolServerConfig]:
        s = self.servers.get(server_id)
        return s.model_copy() if s is not None else None

    async def list_for_project(self, project_id: str, *, enabled_only: bool = True) -> List[ToolServerConfig]:
        return [
            s.model_copy()
            for s in self.servers.values()
            if s.project_id == project_id and (s.enabled or not enabled_only)
        ]

    async def create(self, server: ToolServerConfig) -> ToolServerConfig:
        self.servers[server.id] = server
        return server

    async def update(self, server_id: str, **changes: Any) -> Optional[ToolServerConfig]:
        s = self.servers.get(server_id)
        if s is None:
            return None
        updated = s.model_copy(update=changes)
        self.servers[server_id] = updated
        return updated

    async def get_tools(self, server_id: str) -> List[ToolSchema]:
        return [t.model_copy(deep=True) for t in self.tools.get(server_id, [])]

    async def cache_tools(self, server_id: str, tools: List[ToolSchema]) -> None:
        self.cache_writes.append(server_id)
        self.tools[server_id] = [t.model_copy(deep=True) for t in tools]


class _Credentials:
    def __init__(self) -> None:
        self.by_type: Dict[Tuple[str, str], str] = {}
        self.by_id: Dict[str, str] = {}
        self.created: List[Dict[str, Any]] = []

    async def get_value(self, project_id: str, credential_type: str) -> Optional[str]:
        return self.by_type.get((project_id, credential_type))

    async def get_value_by_id(self, project_id: str, credential_id: str) -> Optional[str]:
        return self.by_id.get(credential_id)

    async def create(
        self,
        project_id: str,
        *,
        credential_type: str,
        name: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        cid = str(uuid4())
        self.by_id[cid] = value
        self.by_type[(project_id, credential_type)] = value
        self.created.append(
            {"id": cid, "project_id": project_id, "type": credential_type, "name": name, "metadata": metadata}
        )
        return cid


class _PendingRepo:
    def __init__(self) -> None:
        self.by_state: Dict[str, PendingAuthorization] = {}

    async def create(self, pending: PendingAuthorization) -> None:
        self.by_state[pending.state] = pending

    async def pop(self, state: str) -> Optional[PendingAuthorization]:
        return self.by_state.pop(state, None)

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        expired = [k for k, p in self.by_state.items() if p.is_expired(now)]
        for k in expired:
            del self.by_state[k]
        return len(expired)


class _ScriptedBackend:
    """Reasoning backend returning scripted responses in order."""

    def __init__(self, script: Sequence[Union[ReasoningResponse, Exception]]) -> None:
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def respond(self, *, system_prompt: str, history: Sequence[ConversationTurn], tools: Sequence[Dict[str, Any]]):
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "history": [t.model_dump(mode="json") for t in history],
                "tools": [t["name"] for t in tools],
            }
        )
        if not self.script:
            raise AssertionError("backend called more often than scripted")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class _OpsServer(HostedToolServer):
    """Hosted server with one free tool and one approval-gated tool."""

    name = "Ops"

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def get_tools(self) -> List[McpTool]:
        return [
            McpTool(
                name="echo",
                description="Echo text back",
                input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
            ),
            McpTool(
                name="deploy",
                description="Deploy a service",
                input_schema={
                    "type": "object",
                    "properties": {"service": {"type": "string"}, "target": {"type": "string"}},
                },
                approval_required_fields=["target"],
            ),
        ]

    async def call_tool(self, name: str, args: Dict[str, Any]) -> MCPToolCallResult:
        self.calls.append((name, dict(args)))
        if name == "echo":
            return MCPToolCallResult.from_json(f"echo: {args.get('text', '')}")
        if name == "deploy":
            return MCPToolCallResult.from_json({"deployed": args.get("service"), "target": args.get("target")})
        return self.error_content(f"Unknown tool: {name}")


def tool_call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> PendingToolCall:
    return PendingToolCall(id=call_id or f"toolu_{uuid4().hex[:8]}", name=name, arguments=arguments or {})


class _Harness:
    """An engine wired to in-memory repositories and the hosted ``Ops`` server."""

    def __init__(self, *, max_turns: int = 50, api_key: Optional[str] = "sk-test") -> None:
        self.plans = _PlansRepo()
        self.logs = _LogsRepo()
        self.servers = _ServersRepo()
        self.credentials = _Credentials()
        self.pending = _PendingRepo()
        self.notifications = RecordingNotificationSink()
        self.ops = _OpsServer()
        self.server = ToolServerConfig(id="srv-ops", project_id="proj-1", name="Ops", transport=TransportKind.hosted)
        self.servers.servers[self.server.id] = self.server
        # Pre-cached so the injected instance is never reset by a reconnect.
        self.servers.tools[self.server.id] = [ToolSchema.from_tool(self.server.id, t) for t in self.ops.get_tools()]
        self.client = AsyncMcpClient(strategies=[HostedMcpStrategy(instances={self.server.id: self.ops})])
        self.registry = ToolRegistry(servers=self.servers, client=self.client, credentials=self.credentials)
        self.backend = _ScriptedBackend([])
        self.backend_keys: List[Tuple[str, Optional[str]]] = []
        self.engine = WorkflowEngine(
            deps=EngineDeps(
                plans=self.plans,
                logs=self.logs,
                tools=self.registry,
                backend_factory=self._make_backend,
                notifications=self.notifications,
                credentials=self.credentials,
                anthropic=AnthropicConfig(api_key=api_key),
                max_turns=max_turns,
            )
        )

    def _make_backend(self, api_key: str, model: Optional[str]) -> _ScriptedBackend:
        self.backend_keys.append((api_key, model))
        return self.backend

    def script(self, *items: Union[ReasoningResponse, Exception]) -> None:
        self.backend.script.extend(items)

    async def new_plan(self, **fields: Any) -> WorkflowPlan:
        plan = WorkflowPlan(task_id=fields.pop("task_id", "task-1"), project_id=fields.pop("project_id", "proj-1"), **fields)
        return await self.plans.create(plan)


@pytest.fixture
def harness_factory() -> Callable[..., _Harness]:
    return _Harness


@pytest.fixture
def harness() -> _Harness:
    return _Harness()


@pytest.fixture
def make_call() -> Callable[..., PendingToolCall]:
    return tool_call
