"""Outbound notifications for connected clients.

The fan-out transport (WebSockets, SSE, queues) is owned elsewhere; the
core publishes plain JSON events and never waits on delivery. ``publish``
swallows and logs sink failures so a broken subscriber cannot affect a plan.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Protocol, Tuple

from .schemas.domain import WorkflowLog, WorkflowPlan

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def publish(self, project_id: str, event: Dict[str, Any]) -> None: ...


class NullNotificationSink:
    """Sink that drops every event."""

    async def publish(self, project_id: str, event: Dict[str, Any]) -> None:
        return None


class RecordingNotificationSink:
    """Sink that keeps events in memory; handy for tests and local runs."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    async def publish(self, project_id: str, event: Dict[str, Any]) -> None:
        self.events.append((project_id, event))


def plan_updated_event(plan: WorkflowPlan) -> Dict[str, Any]:
    return {"type": "workflow_plan_updated", "plan": plan.to_json_dict()}


def log_event(log: WorkflowLog) -> Dict[str, Any]:
    return {"type": "workflow_log", "log": log.to_json_dict()}


async def publish(sink: NotificationSink, project_id: str, event: Dict[str, Any]) -> None:
    """Publish best-effort."""
    try:
        await sink.publish(project_id, event)
    except Exception:
        logger.warning("Notification %s for project %s failed", event.get("type"), project_id, exc_info=True)
