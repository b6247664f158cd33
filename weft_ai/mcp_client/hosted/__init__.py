"""Hosted (in-process) tool servers and their closed factory registry.

Hosted server kinds are a fixed set known at build time. Configuration
selects one by ``ToolServerConfig.hosted_kind``; an unknown kind fails at
lookup with ``ConfigurationError`` rather than at call time.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional

from weft_ai.core.errors import ConfigurationError

from .ask_user import AskUserServer
from .base import HostedToolServer


class HostedServerKind(str, Enum):
    ask_user = "ask_user"


HostedServerFactory = Callable[[Optional[str]], HostedToolServer]

HOSTED_SERVER_FACTORIES: Dict[HostedServerKind, HostedServerFactory] = {
    HostedServerKind.ask_user: lambda _credential: AskUserServer(),
}


def create_hosted_server(kind: Optional[str], credential: Optional[str] = None) -> HostedToolServer:
    """Instantiate the hosted server registered for ``kind``.

    Args:
        kind: A ``HostedServerKind`` value.
        credential: Optional secret handed to servers that need one.

    Raises:
        ConfigurationError: ``kind`` is missing or not a registered kind.
    """
    try:
        factory = HOSTED_SERVER_FACTORIES[HostedServerKind(kind)]
    except (ValueError, KeyError):
        raise ConfigurationError(f"Unsupported hosted server kind: {kind!r}", code="UNSUPPORTED_HOSTED_SERVER")
    return factory(credential)


__all__ = [
    "AskUserServer",
    "HOSTED_SERVER_FACTORIES",
    "HostedServerKind",
    "HostedToolServer",
    "create_hosted_server",
]
