"""Base class for in-process (hosted) tool servers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..models import MCPToolCallResult
from ..schemas.core import McpTool


class HostedToolServer(ABC):
    """A tool server that runs inside the orchestrator process.

    Subclasses expose ``get_tools`` and ``call_tool``; they never raise for
    tool-level failures and return ``error_content`` results instead.
    """

    name: str = ""
    description: str = ""

    @abstractmethod
    def get_tools(self) -> List[McpTool]: ...

    @abstractmethod
    async def call_tool(self, name: str, args: Dict[str, Any]) -> MCPToolCallResult: ...

    def error_content(self, message: str) -> MCPToolCallResult:
        return MCPToolCallResult.error_content(message)
