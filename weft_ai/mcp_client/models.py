from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .schemas.base import WireSchema
from .schemas.core import McpTool


class JSONRPCRequest(BaseModel):
    """JSON-RPC 2.0 request model. A request without ``id`` is a notification."""

    jsonrpc: str = "2.0"
    method: str
    params: Optional[Dict[str, Any]] = None
    id: Optional[int | str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class JSONRPCError(BaseModel):
    code: int
    message: str
    data: Optional[Any] = None


class JSONRPCResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = "2.0"
    result: Optional[Any] = None
    error: Optional[JSONRPCError] = None
    id: Optional[int | str] = None


class MCPContent(WireSchema):
    """One content item of a tool result (``text``, ``image``, ``resource``...)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str = "text"
    text: Optional[str] = None


class MCPToolCallResult(WireSchema):
    """The normalized result of calling a tool.

    Every tool failure (unknown tool, transport failure, protocol error,
    exception inside a hosted server) is represented as a result with
    ``is_error=True`` and a single text content item.
    """

    content: List[MCPContent] = Field(default_factory=list)
    is_error: bool = False
    structured_content: Optional[Dict[str, Any]] = None

    @classmethod
    def error_content(cls, message: str) -> "MCPToolCallResult":
        return cls(content=[MCPContent(type="text", text=message)], is_error=True)

    @classmethod
    def from_json(cls, payload: Any) -> "MCPToolCallResult":
        """Build a text result from any JSON-serializable payload."""
        text = payload if isinstance(payload, str) else json.dumps(payload, indent=2, default=str)
        structured = payload if isinstance(payload, dict) else None
        return cls(content=[MCPContent(type="text", text=text)], structured_content=structured)

    def text(self) -> str:
        """Concatenate text items; fall back to the structured payload."""
        parts = [c.text for c in self.content if c.type == "text" and c.text]
        if parts:
            return "\n".join(parts)
        if self.structured_content is not None:
            return json.dumps(self.structured_content, default=str)
        return ""


class ListToolsResult(WireSchema):
    tools: List[McpTool] = Field(default_factory=list)
    next_cursor: Optional[str] = None
