"""AskUser hosted server.

Lets the model ask the user structured multiple-choice questions. The
interaction itself happens through the checkpoint flow: ``askQuestions``
declares ``questions`` as approval-required, so the plan pauses and the
user's answers arrive as approval ``data`` merged into the arguments. When
the call then runs, the answers are echoed back to the model.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from ..models import MCPToolCallResult
from ..schemas.core import McpTool
from .base import HostedToolServer


class QuestionOption(BaseModel):
    label: str = Field(..., min_length=1, max_length=100, description="Short label for the option")
    description: Optional[str] = Field(
        default=None, max_length=500, description="Optional longer description of this option"
    )


class Question(BaseModel):
    question: str = Field(..., min_length=1, max_length=1000, description="The question text to display to the user")
    header: Optional[str] = Field(
        default=None, max_length=50, description='Short header/label for the question (e.g., "Priority")'
    )
    options: List[QuestionOption] = Field(
        ..., min_length=2, max_length=10, description="Array of options for the user to choose from"
    )
    multiSelect: bool = Field(default=False, description="Allow user to select multiple options")
    allowOther: bool = Field(default=True, description='Allow user to enter a custom "Other" response')


class AskQuestionsInput(BaseModel):
    questions: List[Question] = Field(..., min_length=1, max_length=4, description="Array of 1-4 questions to ask")
    answers: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Answers supplied by the user through checkpoint approval"
    )


class AskUserServer(HostedToolServer):
    name = "AskUser"
    description = "Ask users questions with structured options for gathering input, preferences, or decisions"

    def get_tools(self) -> List[McpTool]:
        schema = AskQuestionsInput.model_json_schema()
        schema.get("properties", {}).pop("answers", None)
        return [
            McpTool(
                name="askQuestions",
                description=(
                    "Ask the user one or more structured questions with multiple choice options. "
                    "Use this when you need user input, preferences, or decisions."
                ),
                input_schema=schema,
                approval_required_fields=["questions"],
            )
        ]

    async def call_tool(self, name: str, args: Dict[str, Any]) -> MCPToolCallResult:
        if name != "askQuestions":
            return self.error_content(f"Unknown tool: {name}")
        try:
            parsed = AskQuestionsInput.model_validate(args)
        except ValidationError as e:
            return self.error_content(f"Invalid arguments for askQuestions: {e.errors()[0]['msg']}")

        if parsed.answers:
            return MCPToolCallResult.from_json(
                {"success": True, "answers": parsed.answers, "questionsAsked": len(parsed.questions)}
            )
        return MCPToolCallResult.from_json(
            {
                "success": False,
                "message": "Questions require user interaction; no answers were provided.",
                "questions": [q.model_dump() for q in parsed.questions],
            }
        )
