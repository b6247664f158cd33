from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Optional, Union
from uuid import uuid4

from pydantic import Field, SecretStr

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PlanStatus(str, Enum):
    planning = "planning"
    executing = "executing"
    checkpoint = "checkpoint"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.completed, PlanStatus.failed)

    @property
    def is_active(self) -> bool:
        return self in (PlanStatus.executing, PlanStatus.checkpoint)

    def can_transition_to(self, target: "PlanStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


# planning -> failed only covers runs that never start (missing credential,
# start rejected by the runner).
_ALLOWED_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.planning: frozenset({PlanStatus.executing, PlanStatus.failed}),
    PlanStatus.executing: frozenset({PlanStatus.checkpoint, PlanStatus.completed, PlanStatus.failed}),
    PlanStatus.checkpoint: frozenset({PlanStatus.executing, PlanStatus.failed}),
    PlanStatus.completed: frozenset(),
    PlanStatus.failed: frozenset(),
}


class StepType(str, Enum):
    tool_call = "tool_call"
    # a tool call that waited for approval
    checkpoint = "checkpoint"


class StepStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    awaiting_approval = "awaiting_approval"


class LogLevel(str, Enum):
    info = "info"
    warn = "warn"
    error = "error"


class LogEventType(str, Enum):
    tool_call = "tool_call"
    tool_result = "tool_result"
    checkpoint = "checkpoint"
    workflow_complete = "workflow_complete"
    workflow_error = "workflow_error"
    agent_turn = "agent_turn"


class CheckpointAction(str, Enum):
    approve = "approve"
    request_changes = "request_changes"
    # legacy alias of ``cancel``
    reject = "reject"
    cancel = "cancel"

    @property
    def is_cancellation(self) -> bool:
        return self in (CheckpointAction.cancel, CheckpointAction.reject)


class CredentialType(str, Enum):
    anthropic_api_key = "anthropic_api_key"
    api_key = "api_key"
    github_oauth = "github_oauth"
    google_oauth = "google_oauth"
    mcp_oauth = "mcp_oauth"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


def text_block(text: str) -> Dict[str, Any]:
    return {"type": "text", "text": text}


def tool_use_block(tool_use_id: str, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "tool_use", "id": tool_use_id, "name": name, "input": dict(arguments)}


def tool_result_block(tool_use_id: str, content: str, *, is_error: bool = False) -> Dict[str, Any]:
    return {"type": "tool_result", "tool_use_id": tool_use_id, "content": content, "is_error": is_error}


class ConversationTurn(BaseSchema):
    """One message of the model conversation.

    ``content`` is either plain text or a list of content blocks
    (``text``, ``tool_use``, ``tool_result``).
    """

    role: Literal["user", "assistant"]
    content: Union[str, List[Dict[str, Any]]]

    def blocks(self) -> List[Dict[str, Any]]:
        if isinstance(self.content, str):
            return [text_block(self.content)]
        return list(self.content)

    def tool_uses(self) -> List[Dict[str, Any]]:
        return [b for b in self.blocks() if b.get("type") == "tool_use"]

    def text(self) -> str:
        return "\n".join(str(b.get("text") or "") for b in self.blocks() if b.get("type") == "text").strip()


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class WorkflowStep(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    type: StepType = StepType.tool_call
    server: Optional[str] = None
    tool_name: Optional[str] = None
    status: StepStatus = StepStatus.pending
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    result: Optional[str] = None
    error: Optional[str] = None


class PendingToolCall(BaseSchema):
    """A tool call requested by the model and not yet answered."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Continuation(BaseSchema):
    """Where the turn loop stood when it suspended at a checkpoint.

    ``tool_results`` are the results already produced for the current
    assistant message; ``remaining_calls`` are the calls after the gated one.
    """

    turn: int = 0
    tool_results: List[Dict[str, Any]] = Field(default_factory=list)
    remaining_calls: List[PendingToolCall] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    model: Optional[str] = None


class CheckpointData(BaseSchema):
    """A pending approval request persisted on the plan."""

    tool_call_id: str
    tool_name: str = Field(..., description="Qualified tool name as seen by the model")
    server_id: str
    server_name: str
    server_tool_name: str = Field(..., description="Tool name on the server")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    approval_required_fields: List[str] = Field(default_factory=list)
    step_id: Optional[str] = None
    requested_at: datetime = Field(default_factory=_utc_now)
    continuation: Continuation = Field(default_factory=Continuation)


class CheckpointDecision(BaseSchema):
    action: CheckpointAction
    data: Optional[Dict[str, Any]] = None
    feedback: Optional[str] = None


class WorkflowPlan(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    task_id: str
    project_id: str
    status: PlanStatus = PlanStatus.planning
    summary: Optional[str] = None
    steps: List[WorkflowStep] = Field(default_factory=list)
    current_step_index: int = 0
    checkpoint_data: Optional[CheckpointData] = None
    result: Optional[Dict[str, Any]] = None
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class PlanUpdate(BaseSchema):
    """Partial update of a plan. Only fields explicitly set are written."""

    status: Optional[PlanStatus] = None
    summary: Optional[str] = None
    steps: Optional[List[WorkflowStep]] = None
    current_step_index: Optional[int] = None
    checkpoint_data: Optional[CheckpointData] = None
    result: Optional[Dict[str, Any]] = None
    conversation_history: Optional[List[ConversationTurn]] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class WorkflowLog(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    plan_id: str
    step_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utc_now)
    level: LogLevel = LogLevel.info
    message: str
    metadata: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Execution control
# ---------------------------------------------------------------------------


class WorkflowParams(BaseSchema):
    """Everything the turn loop needs to start a plan."""

    plan_id: str
    task_id: str
    project_id: str
    task_description: str
    api_key: Optional[SecretStr] = None
    custom_system_prompt: Optional[str] = None
    model: Optional[str] = None
    conversation_history: Optional[List[ConversationTurn]] = None
    resume_feedback: Optional[str] = None


class AgentProfile(BaseSchema):
    """Optional agent configuration a plan is generated for."""

    name: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None


class WorkflowEvent(BaseSchema):
    type: Literal["checkpoint-approval"] = "checkpoint-approval"
    payload: CheckpointDecision


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


OAUTH_PENDING_TTL = timedelta(minutes=10)


class PendingAuthorization(BaseSchema):
    """An OAuth authorization in flight. Consumed exactly once."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    server_id: Optional[str] = None
    provider: str
    state: str = Field(..., description="Random nonce embedded in the signed state token")
    code_verifier: str
    redirect_uri: str
    resource: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)
    client_id: Optional[str] = None
    authorize_endpoint: Optional[str] = None
    token_endpoint: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    expires_at: datetime = Field(default_factory=lambda: _utc_now() + OAUTH_PENDING_TTL)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or _utc_now()
        expires = self.expires_at if self.expires_at.tzinfo else self.expires_at.replace(tzinfo=timezone.utc)
        return now >= expires
