"""Tool registry, tool types and built-in tool sets."""

from toolhub_server.tools.filesystem import (
    REQUIRED_FILESYSTEM_TOOLS,
    build_filesystem_tools,
)
from toolhub_server.tools.forwarding import build_forwarding_handler
from toolhub_server.tools.registry import (
    ProviderToolSet,
    ToolRegistry,
    build_json_schema,
    fields_from_json_schema,
    sanitize_tool_name,
)
from toolhub_server.tools.results import (
    normalize_tool_result,
    result_to_text,
    text_result,
)
from toolhub_server.tools.types import (
    ProviderKind,
    ToolDefinition,
    ToolField,
    ToolHandler,
    ToolUsageLogEntry,
)

__all__ = [
    "REQUIRED_FILESYSTEM_TOOLS",
    "ProviderKind",
    "ProviderToolSet",
    "ToolDefinition",
    "ToolField",
    "ToolHandler",
    "ToolRegistry",
    "ToolUsageLogEntry",
    "build_filesystem_tools",
    "build_forwarding_handler",
    "build_json_schema",
    "fields_from_json_schema",
    "normalize_tool_result",
    "result_to_text",
    "sanitize_tool_name",
    "text_result",
]
