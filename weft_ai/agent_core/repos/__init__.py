from .interfaces import (
    CredentialProvider,
    LogRepository,
    PendingAuthorizationRepository,
    PlanRepository,
    ToolServerRepository,
)

__all__ = [
    "CredentialProvider",
    "LogRepository",
    "PendingAuthorizationRepository",
    "PlanRepository",
    "ToolServerRepository",
]
