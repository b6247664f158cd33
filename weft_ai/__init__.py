"""Weft-AI.

This package contains the orchestration core that turns a natural-language
task into a persisted, resumable, tool-using LLM conversation.

High-level architecture
-----------------------

The codebase is organized around two major concepts:

- **Workflow plans**: one plan per task run. A plan moves through
  ``planning -> executing -> (checkpoint <-> executing) -> completed|failed``
  and carries the full conversation history so it can be resumed after a
  pause, a crash, or a terminal state.
- **Tool servers**: hosted (in-process) or remote (JSON-RPC over HTTP) MCP
  servers whose tools the model may call. Tools may declare
  ``approval_required_fields``; calls touching those fields pause the plan at
  a human checkpoint.

Core subpackages
----------------

- ``weft_ai.agent_core``:

  - Domain schemas for plans, logs, tool servers and checkpoints.
  - A LangGraph-based turn loop with checkpoint pause/resume.
  - The tool registry and approval gating.
  - Repository interfaces and SQL implementations for persistence.

- ``weft_ai.mcp_client``:

  - JSON-RPC wire models, hosted and remote strategies, event-stream framing.

- ``weft_ai.oauth``:

  - Signed state, PKCE and the authorization bootstrap for remote servers.

Typical workflow
----------------

Most integrations should use ``weft_ai.agent_core.service.WorkflowService``:

1. Generate a plan for a task; the turn loop starts in the background.
2. If a tool call touches approval-required fields the plan pauses at a
   checkpoint.
3. Resolve the checkpoint (approve, request changes, or cancel).
4. Once terminal, a plan can be resumed with feedback into a new plan.
"""
