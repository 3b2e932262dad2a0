"""Structured progress events streamed by a conversation run.

Every event serializes to a JSON object with a ``type`` discriminator. A
stream carries at most one model_used event and always ends with one done
event.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class ModelUsedEvent(BaseModel):
    """Emitted once, after the first successful model call."""

    type: Literal["model_used"] = "model_used"
    model: str = Field(description="Model identifier in use")
    requested_model: str = Field(description="Model identifier the caller asked for")
    substituted: bool = Field(
        default=False, description="Whether a fallback model replaced the requested one"
    )


class ToolUseEvent(BaseModel):
    """Emitted before a requested tool runs."""

    type: Literal["tool_use"] = "tool_use"
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    id: str = Field(description="Correlation id of the tool-use block")
    iteration: int


class ToolResultEvent(BaseModel):
    """Emitted when a tool handler returns."""

    type: Literal["tool_result"] = "tool_result"
    tool: str
    id: str
    output: str = Field(description="Flattened tool output, truncated")
    is_error: bool = False
    iteration: int


class ToolErrorEvent(BaseModel):
    """Emitted when a tool is missing or its handler raises."""

    type: Literal["tool_error"] = "tool_error"
    tool: str
    id: str
    error: str
    iteration: int


class AssistantTextEvent(BaseModel):
    """A chunk of assistant text."""

    type: Literal["assistant_text"] = "assistant_text"
    text: str


class ErrorEvent(BaseModel):
    """An unrecoverable failure. A done event always follows."""

    type: Literal["error"] = "error"
    code: str = "conversation_error"
    message: str


class DoneEvent(BaseModel):
    """Terminal event of every conversation stream."""

    type: Literal["done"] = "done"
    final: str = Field(default="", description="Collected assistant text, truncated")
    model: str
    session_id: str
    turns: int = 0
    state: str = Field(description="Terminal state: done or failed")


ConversationEvent = (
    ModelUsedEvent
    | ToolUseEvent
    | ToolResultEvent
    | ToolErrorEvent
    | AssistantTextEvent
    | ErrorEvent
    | DoneEvent
)
