from __future__ import annotations

"""Runtime dependency bundle and LangGraph state types.

- ``EngineDeps`` collects the repositories and collaborators the engine
  needs.
- ``_GraphState`` is the mutable state passed between LangGraph nodes. It
  only holds JSON-compatible values; the parts needed after a suspension are
  copied into ``CheckpointData.continuation``.
"""

from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    List,
    NotRequired,
    Optional,
    Required,
    TypedDict,
)

from weft_ai.core.config import AnthropicConfig, settings

from ..notifications import NotificationSink, NullNotificationSink
from ..reasoning.base import BackendFactory, ReasoningBackend
from ..repos import CredentialProvider, LogRepository, PlanRepository
from ..tool_registry import ToolCatalog, ToolRegistry


@dataclass(frozen=True)
class EngineDeps:
    """Dependency bundle for ``WorkflowEngine``.

    - persistence repositories (plans, logs)
    - the tool registry used to resolve and gate tool calls
    - a factory building a reasoning backend from an API key
    """

    plans: PlanRepository
    logs: LogRepository
    tools: ToolRegistry
    backend_factory: BackendFactory

    notifications: NotificationSink = field(default_factory=NullNotificationSink)
    credentials: Optional[CredentialProvider] = None
    anthropic: AnthropicConfig = field(default_factory=lambda: settings.anthropic)
    max_turns: int = 50
    system_prompt: Optional[str] = None


@dataclass
class _RunContext:
    """Per-run objects that must not live in graph state."""

    backend: ReasoningBackend
    catalog: ToolCatalog


class _GraphState(TypedDict):
    """Mutable LangGraph state for one engine run.

    Required keys:

    - ``plan_id`` / ``project_id``: the plan being driven.
    - ``turn``: number of reasoning turns taken so far.
    - ``history``: conversation turns as JSON dicts.
    - ``pending_calls``: tool calls of the last assistant message not yet
      answered.
    - ``tool_results``: content blocks collected for the next user message.
    - ``system_prompt`` / ``model``: reasoning configuration for this run.

    Optional keys:

    - ``_resume``: the run starts from a resolved checkpoint.
    - ``_checkpoint``: set when a gated call suspended the run.
    - ``_finished`` / ``_terminal_status`` / ``_result`` / ``_error``: used
      to terminate the graph.
    - ``_stopped``: the plan stopped being ``executing`` underneath the run
      (e.g. it was cancelled); the graph ends without writing.
    """

    plan_id: Required[str]
    project_id: Required[str]
    turn: Required[int]
    history: Required[List[Dict[str, Any]]]
    pending_calls: Required[List[Dict[str, Any]]]
    tool_results: Required[List[Dict[str, Any]]]
    system_prompt: Required[str]
    model: Required[Optional[str]]
    _resume: NotRequired[bool]
    _checkpoint: NotRequired[bool]
    _finished: NotRequired[bool]
    _terminal_status: NotRequired[str]
    _result: NotRequired[Dict[str, Any]]
    _error: NotRequired[str]
    _stopped: NotRequired[bool]
