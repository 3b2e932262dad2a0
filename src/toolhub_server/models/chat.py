"""Pydantic models for the chat API."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request body for POST /api/v1/chat and POST /api/v1/chat/stream."""

    prompt: str = Field(min_length=1, description="The user message to send")
    model: str | None = Field(
        default=None, description="Model identifier. Defaults to the configured model."
    )
    session_id: str | None = Field(
        default=None,
        description="Session whose memory is used. Generated when omitted.",
    )
    max_turns: int | None = Field(
        default=None, ge=1, le=50, description="Upper bound on model turns"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "prompt": "List the files in the project root",
                    "model": None,
                    "session_id": "a1b2c3d4e5",
                    "max_turns": 5,
                }
            ]
        }
    )


class ToolCallSummary(BaseModel):
    """One tool call made during a conversation, with its outcome."""

    id: str
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    iteration: int
    output: str | None = Field(default=None, description="Flattened output, truncated")
    error: str | None = Field(default=None, description="Set when the tool was missing or raised")
    is_error: bool = False


class ChatError(BaseModel):
    code: str
    message: str


class ChatResponse(BaseModel):
    """Response body for non-streaming chat endpoint.

    This is returned by POST /api/v1/chat after the whole conversation has
    run. A failed run still answers 200 with ``state`` set to ``failed``
    and ``error`` filled in, as the stream would report it.
    """

    session_id: str = Field(description="Session identifier")
    model: str = Field(description="Model that produced the answer")
    requested_model: str = Field(description="Model identifier the caller asked for")
    substituted: bool = False
    final: str = Field(default="", description="Last non-empty assistant text, truncated")
    turns: int = 0
    state: str = Field(description="Terminal state: done or failed")
    tool_calls: list[ToolCallSummary] = Field(default_factory=list)
    error: ChatError | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "session_id": "a1b2c3d4e5",
                "model": "claude-3-5-sonnet-latest",
                "requested_model": "claude-3-5-sonnet-latest",
                "substituted": False,
                "final": "The project root holds README.md and src/.",
                "turns": 2,
                "state": "done",
                "tool_calls": [
                    {
                        "id": "toolu_01",
                        "tool": "list_directory",
                        "args": {"path": "."},
                        "iteration": 1,
                        "output": "README.md\nsrc/",
                        "error": None,
                        "is_error": False,
                    }
                ],
                "error": None,
            }
        }
    )
