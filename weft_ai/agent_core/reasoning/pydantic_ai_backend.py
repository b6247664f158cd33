"""Pydantic AI reasoning backend.

Translates the stored conversation (Anthropic-style content blocks) into
Pydantic AI messages, performs one direct model request, and translates the
model response back.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    ModelResponsePart,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from weft_ai.core.config import AnthropicConfig, settings

from ..schemas.domain import ConversationTurn, PendingToolCall
from .base import ReasoningBackend, ReasoningResponse

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


def _result_content(content: Any, *, is_error: bool = False) -> str:
    if isinstance(content, str):
        text = content
    elif isinstance(content, list):
        text = "\n".join(str(c.get("text", "")) if isinstance(c, dict) else str(c) for c in content)
    else:
        text = json.dumps(content, default=str)
    # ToolReturnPart has no error flag; failures are marked in the text
    if is_error and not text.startswith(ERROR_PREFIX):
        return ERROR_PREFIX + text
    return text


def to_model_messages(system_prompt: str, history: Sequence[ConversationTurn]) -> List[ModelMessage]:
    """Convert stored turns into Pydantic AI request/response messages."""
    messages: List[ModelMessage] = []
    tool_names: Dict[str, str] = {}
    for turn in history:
        if turn.role == "assistant":
            response_parts: List[ModelResponsePart] = []
            for block in turn.blocks():
                if block.get("type") == "text" and block.get("text"):
                    response_parts.append(TextPart(content=str(block["text"])))
                elif block.get("type") == "tool_use":
                    tool_names[block["id"]] = block["name"]
                    response_parts.append(
                        ToolCallPart(
                            tool_name=block["name"],
                            args=dict(block.get("input") or {}),
                            tool_call_id=block["id"],
                        )
                    )
            messages.append(ModelResponse(parts=response_parts))
            continue

        request_parts: List[ModelRequestPart] = []
        for block in turn.blocks():
            if block.get("type") == "tool_result":
                call_id = str(block.get("tool_use_id"))
                request_parts.append(
                    ToolReturnPart(
                        tool_name=tool_names.get(call_id, "unknown"),
                        content=_result_content(block.get("content"), is_error=bool(block.get("is_error"))),
                        tool_call_id=call_id,
                    )
                )
            elif block.get("type") == "text" and block.get("text"):
                request_parts.append(UserPromptPart(content=str(block["text"])))
        messages.append(ModelRequest(parts=request_parts))

    if system_prompt:
        first = next((m for m in messages if isinstance(m, ModelRequest)), None)
        if first is None:
            messages.insert(0, ModelRequest(parts=[SystemPromptPart(content=system_prompt)]))
        else:
            first.parts = [SystemPromptPart(content=system_prompt), *first.parts]
    return messages


def from_model_response(response: ModelResponse) -> ReasoningResponse:
    texts: List[str] = []
    calls: List[PendingToolCall] = []
    for part in response.parts:
        if isinstance(part, TextPart):
            texts.append(part.content)
        elif isinstance(part, ToolCallPart):
            calls.append(PendingToolCall(id=part.tool_call_id, name=part.tool_name, arguments=part.args_as_dict()))
    usage: Dict[str, int] = {}
    for attr in ("input_tokens", "output_tokens"):
        value = getattr(response.usage, attr, None)
        if isinstance(value, int):
            usage[attr] = value
    return ReasoningResponse(text="\n".join(t for t in texts if t).strip(), tool_calls=calls, usage=usage)


class PydanticAIReasoningBackend(ReasoningBackend):
    def __init__(self, model: Model, *, max_tokens: int = 4096) -> None:
        self._model = model
        self._max_tokens = max_tokens

    @classmethod
    def for_anthropic(
        cls,
        api_key: str,
        model_name: Optional[str] = None,
        *,
        config: Optional[AnthropicConfig] = None,
    ) -> "PydanticAIReasoningBackend":
        cfg = config or settings.anthropic
        name = model_name or cfg.model
        logger.debug(f"Creating Anthropic model: {name} with Pydantic AI")
        model = AnthropicModel(name, provider=AnthropicProvider(api_key=api_key))
        return cls(model, max_tokens=cfg.max_tokens)

    async def respond(
        self,
        *,
        system_prompt: str,
        history: Sequence[ConversationTurn],
        tools: Sequence[Dict[str, Any]],
    ) -> ReasoningResponse:
        params = ModelRequestParameters(
            function_tools=[
                ToolDefinition(
                    name=t["name"],
                    description=t.get("description") or "",
                    parameters_json_schema=t["input_schema"],
                )
                for t in tools
            ]
        )
        response = await model_request(
            self._model,
            to_model_messages(system_prompt, history),
            model_settings=ModelSettings(max_tokens=self._max_tokens),
            model_request_parameters=params,
        )
        return from_model_response(response)
