"""Reasoning backend contract.

The turn loop only needs one thing from an LLM: given the system prompt,
the conversation so far and the tool definitions, return the next assistant
message (text plus zero or more tool calls).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..schemas.domain import ConversationTurn, PendingToolCall, text_block, tool_use_block


@dataclass(frozen=True)
class ReasoningResponse:
    text: str = ""
    tool_calls: List[PendingToolCall] = field(default_factory=list)
    usage: Dict[str, int] = field(default_factory=dict)

    def to_turn(self) -> ConversationTurn:
        blocks: List[Dict[str, Any]] = []
        if self.text:
            blocks.append(text_block(self.text))
        for call in self.tool_calls:
            blocks.append(tool_use_block(call.id, call.name, call.arguments))
        if not blocks:
            blocks.append(text_block("(no response)"))
        return ConversationTurn(role="assistant", content=blocks)


class ReasoningBackend(Protocol):
    async def respond(
        self,
        *,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        tools: Sequence[Dict[str, Any]],
    ) -> ReasoningResponse: ...


# (api_key, model override) -> backend
BackendFactory = Callable[[str, Optional[str]], ReasoningBackend]
