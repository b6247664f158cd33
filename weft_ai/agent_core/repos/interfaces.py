from __future__ import annotations

"""Repository interface contracts.

The runtime depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak SQLAlchemy sessions/transactions; every
  method is its own unit of work and is durable when it returns.
- The log repository is append-only.
- Plan updates are partial: only fields explicitly set on ``PlanUpdate`` are
  written. ``conversation_history`` is only ever extended by the engine.

Credentials and notifications are owned by other systems; the core only
sees the narrow Protocols below.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from weft_ai.mcp_client.schemas.core import ToolSchema, ToolServerConfig

from ..schemas.domain import (
    PendingAuthorization,
    PlanUpdate,
    WorkflowLog,
    WorkflowPlan,
)


class PlanRepository(Protocol):
    """Persist and query workflow plans."""

    async def create(self, plan: WorkflowPlan) -> WorkflowPlan:
        """
        Insert a new plan.

        Args:
            plan: The initial plan state to persist.

        Returns:
            The persisted plan.
        """
        ...

    async def get(self, plan_id: str) -> Optional[WorkflowPlan]:
        """
        Retrieve a plan by its ID.

        Args:
            plan_id: The plan identifier.

        Returns:
            The WorkflowPlan if found, else None.
        """
        ...

    async def update(self, plan_id: str, patch: PlanUpdate) -> Optional[WorkflowPlan]:
        """
        Apply a partial update and bump ``updated_at``.

        Args:
            plan_id: The plan to update.
            patch: Fields to write; unset fields are left untouched.

        Returns:
            The updated plan, or None when the plan does not exist.
        """
        ...

    async def list_for_task(self, task_id: str, limit: int = 20) -> List[WorkflowPlan]:
        """
        List plans for a task, newest first.

        Args:
            task_id: The task identifier.
            limit: Max number of plans to return.
        """
        ...


class LogRepository(Protocol):
    """Append-only log of workflow activity."""

    async def append(self, log: WorkflowLog) -> None:
        """
        Append a log entry.

        Args:
            log: The entry to persist.
        """
        ...

    async def list(self, plan_id: str, *, limit: int = 100, offset: int = 0) -> List[WorkflowLog]:
        """
        List log entries for a plan ordered by timestamp.

        Args:
            plan_id: The plan identifier.
            limit: Max number of entries.
            offset: Number of entries to skip.
        """
        ...


class ToolServerRepository(Protocol):
    """Configured tool servers and their cached tool schemas."""

    async def get(self, server_id: str) -> Optional[ToolServerConfig]: ...

    async def list_for_project(self, project_id: str, *, enabled_only: bool = True) -> List[ToolServerConfig]: ...

    async def create(self, server: ToolServerConfig) -> ToolServerConfig: ...

    async def update(self, server_id: str, **changes: Any) -> Optional[ToolServerConfig]:
        """
        Update server fields (``status``, ``credential_ref``, ``auth_type``...).

        Returns:
            The updated server, or None when it does not exist.
        """
        ...

    async def get_tools(self, server_id: str) -> List[ToolSchema]:
        """Return the cached tool schemas for a server (empty when never listed)."""
        ...

    async def cache_tools(self, server_id: str, tools: List[ToolSchema]) -> None:
        """Replace the cached tool schemas for a server."""
        ...


class PendingAuthorizationRepository(Protocol):
    """Single-use OAuth authorization records."""

    async def create(self, pending: PendingAuthorization) -> None: ...

    async def pop(self, state: str) -> Optional[PendingAuthorization]:
        """
        Atomically fetch and delete the record for a state nonce.

        Returns:
            The record, or None when it was never created or already consumed.
        """
        ...

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        """Delete expired records and return how many were removed."""
        ...


class CredentialProvider(Protocol):
    """Read/write access to the external encrypted credential store."""

    async def get_value(self, project_id: str, credential_type: str) -> Optional[str]:
        """
        Decrypted value of the project's credential of a type, if any.
        """
        ...

    async def get_value_by_id(self, project_id: str, credential_id: str) -> Optional[str]: ...

    async def create(
        self,
        project_id: str,
        *,
        credential_type: str,
        name: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Store a new credential.

        Returns:
            The new credential id.
        """
        ...
