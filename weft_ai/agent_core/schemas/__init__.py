from .domain import (
    AgentProfile,
    CheckpointAction,
    CheckpointData,
    CheckpointDecision,
    Continuation,
    ConversationTurn,
    CredentialType,
    LogEventType,
    LogLevel,
    PendingAuthorization,
    PendingToolCall,
    PlanStatus,
    PlanUpdate,
    StepStatus,
    StepType,
    WorkflowEvent,
    WorkflowLog,
    WorkflowParams,
    WorkflowPlan,
    WorkflowStep,
)

__all__ = [
    "AgentProfile",
    "CheckpointAction",
    "CheckpointData",
    "CheckpointDecision",
    "Continuation",
    "ConversationTurn",
    "CredentialType",
    "LogEventType",
    "LogLevel",
    "PendingAuthorization",
    "PendingToolCall",
    "PlanStatus",
    "PlanUpdate",
    "StepStatus",
    "StepType",
    "WorkflowEvent",
    "WorkflowLog",
    "WorkflowParams",
    "WorkflowPlan",
    "WorkflowStep",
]
