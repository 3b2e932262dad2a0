"""Data types for the tool registry.

This module defines the core data structures for registered tools, their
input schemas, and the usage log.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class ProviderKind(str, Enum):
    """Wire formats for tool descriptors sent to LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class ToolField:
    """A single input field of a tool."""

    type: str = "string"
    required: bool = True
    description: str = ""


@dataclass
class ToolDefinition:
    """A named, schema-typed operation with an async handler.

    Attributes:
        name: Registry key, unique across the registry
        description: Human-readable description shown to the model
        input_schema: Ordered mapping of field name to ToolField
        handler: Async callable receiving the argument dict
        origin: Marker of the owning server entry, if the tool was bridged
    """

    name: str
    description: str = ""
    input_schema: dict[str, ToolField] = field(default_factory=dict)
    handler: ToolHandler | None = None
    origin: str | None = None


@dataclass
class ToolUsageLogEntry:
    """One tool invocation, as recorded by the caller that ran the handler."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    started_at: str = ""
    finished_at: str = ""
    error: str | None = None
    summary: str = ""
