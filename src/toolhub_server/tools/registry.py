"""Process-wide registry of callable tools.

This module provides the ToolRegistry class which handles:
- Registering, replacing and removing tool definitions
- Pruning every tool bridged from a given server entry
- Translating input schemas into provider wire formats
- Mapping provider-sanitized tool names back to registry names
- Keeping the bounded, append-only tool usage log
"""

import logging
import re
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from toolhub_server.errors import ValidationError
from toolhub_server.tools.types import (
    ProviderKind,
    ToolDefinition,
    ToolField,
    ToolUsageLogEntry,
)

logger = logging.getLogger(__name__)

PRIMITIVE_TYPES = {"string": "string", "number": "number", "integer": "number", "boolean": "boolean"}

SANITIZED_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")
INVALID_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
MAX_SANITIZED_LENGTH = 128
SUFFIX_BASE_LENGTH = 120

DEFAULT_USAGE_LOG_LIMIT = 200
DEFAULT_USAGE_LOG_CAPACITY = 5000


def _coerce_field(value: Any) -> ToolField:
    if isinstance(value, ToolField):
        return value
    if isinstance(value, str):
        return ToolField(type=value)
    if isinstance(value, Mapping):
        return ToolField(
            type=str(value.get("type", "string")),
            required=bool(value.get("required", True)),
            description=str(value.get("description", "") or ""),
        )
    raise ValidationError(f"Invalid input field specification: {value!r}")


def _coerce_definition(definition: Any) -> ToolDefinition:
    if isinstance(definition, ToolDefinition):
        return definition
    if not isinstance(definition, Mapping):
        raise ValidationError("Invalid tool definition")

    name = definition.get("name")
    if not isinstance(name, str) or not name:
        raise ValidationError("Tool definition must include a string `name`")

    schema = definition.get("input_schema", definition.get("inputSchema")) or {}
    if not isinstance(schema, Mapping):
        raise ValidationError(f"Input schema of tool '{name}' must be a mapping")

    return ToolDefinition(
        name=name,
        description=str(definition.get("description", "") or ""),
        input_schema={key: _coerce_field(spec) for key, spec in schema.items()},
        handler=definition.get("handler"),
        origin=definition.get("origin"),
    )


def build_json_schema(input_schema: Mapping[str, ToolField]) -> dict[str, Any]:
    """Derive a JSON-schema object from an ordered field map.

    Args:
        input_schema: Mapping of field name to ToolField

    Returns:
        Object schema with properties and the list of required field names
    """
    properties: dict[str, Any] = {}
    required: list[str] = []

    for key, spec in input_schema.items():
        properties[key] = {
            "type": PRIMITIVE_TYPES.get(spec.type, "string"),
            "description": spec.description,
        }
        if spec.required:
            required.append(key)

    return {"type": "object", "properties": properties, "required": required}


def fields_from_json_schema(schema: Any) -> dict[str, ToolField]:
    """Read an object JSON schema, as advertised by external servers, into fields."""
    if not isinstance(schema, Mapping):
        return {}

    properties = schema.get("properties")
    if not isinstance(properties, Mapping):
        return {}

    required = schema.get("required")
    required = set(required) if isinstance(required, list) else set()

    fields: dict[str, ToolField] = {}
    for key, prop in properties.items():
        prop = prop if isinstance(prop, Mapping) else {}
        prop_type = prop.get("type")
        fields[key] = ToolField(
            type=prop_type if isinstance(prop_type, str) else "string",
            required=key in required,
            description=str(prop.get("description", "") or ""),
        )
    return fields


def sanitize_tool_name(name: str) -> str:
    """Reduce a tool name to the character set accepted by Anthropic."""
    if SANITIZED_NAME_PATTERN.match(name):
        return name
    return INVALID_NAME_CHARS.sub("_", name)[:MAX_SANITIZED_LENGTH]


@dataclass
class ProviderToolSet:
    """Tool descriptors for one provider call and the names they were sent under."""

    tools: list[dict[str, Any]] = field(default_factory=list)
    to_original: dict[str, str] = field(default_factory=dict)

    def original_name(self, name: str) -> str:
        """Map a name the provider used back to the registry name."""
        return self.to_original.get(name, name)


class ToolRegistry:
    """Registry of tool definitions keyed by unique name.

    The registry is an explicitly constructed service object. The app creates
    one at startup and passes it by reference into every request-handling task.
    All mutating methods are synchronous so that they complete between awaits.
    """

    def __init__(
        self,
        usage_log_limit: int = DEFAULT_USAGE_LOG_LIMIT,
        usage_log_capacity: int = DEFAULT_USAGE_LOG_CAPACITY,
    ) -> None:
        """Initialize an empty registry.

        Args:
            usage_log_limit: Default number of entries returned by get_usage_log
            usage_log_capacity: Number of entries kept before the oldest are dropped
        """
        self._tools: dict[str, ToolDefinition] = {}
        self._usage_log: deque[ToolUsageLogEntry] = deque(maxlen=max(1, usage_log_capacity))
        self._usage_log_limit = usage_log_limit
        self._original_to_sanitized: dict[str, str] = {}
        self._sanitized_to_original: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    # --- Registration ---

    def add_tool(self, definition: ToolDefinition | Mapping[str, Any]) -> ToolDefinition:
        """Store a tool definition, replacing any existing one with the same name.

        Args:
            definition: A ToolDefinition or a mapping with the same keys

        Returns:
            The stored ToolDefinition

        Raises:
            ValidationError: If the definition is not an object, lacks a
                non-empty string name, or has no callable handler
        """
        tool = _coerce_definition(definition)

        if not isinstance(tool.name, str) or not tool.name:
            raise ValidationError("Tool definition must include a string `name`")
        if not callable(tool.handler):
            raise ValidationError(f"Tool '{tool.name}' must have a callable handler")

        existing = self._tools.get(tool.name)
        if existing is not None and existing.origin != tool.origin:
            logger.warning(
                f"Tool '{tool.name}' from origin {existing.origin!r} replaced by "
                f"registration from origin {tool.origin!r}"
            )

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name} (origin={tool.origin})")
        return tool

    def remove_tool(self, name: str) -> bool:
        """Remove a tool by name.

        Returns:
            True if an entry existed and was removed
        """
        if not name or not isinstance(name, str):
            return False
        if self._tools.pop(name, None) is None:
            return False
        logger.info(f"Removed tool {name}")
        return True

    def remove_tools_by_origin(self, origin: str) -> int:
        """Remove every tool owned by an origin.

        A tool is owned when its origin marker matches, or when its name is
        namespaced with the ``origin:`` prefix.

        Args:
            origin: The origin marker to prune

        Returns:
            Number of tools removed
        """
        if not origin:
            return 0

        prefix = f"{origin}:"
        doomed = [
            name
            for name, tool in self._tools.items()
            if tool.origin == origin or name.startswith(prefix)
        ]
        for name in doomed:
            del self._tools[name]

        if doomed:
            logger.info(f"Pruned {len(doomed)} tools of origin {origin}")
        return len(doomed)

    # --- Lookup ---

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tool_defs(self) -> list[ToolDefinition]:
        """Return a snapshot list of all registered definitions."""
        return list(self._tools.values())

    def list_tools_by_origin(self, origin: str) -> list[ToolDefinition]:
        return [tool for tool in self._tools.values() if tool.origin == origin]

    # --- Provider schemas ---

    def build_provider_tool_set(self, kind: ProviderKind | str) -> ProviderToolSet:
        """Translate every definition into a provider's tool descriptor format.

        For Anthropic, names are sanitized and made unique with a numeric
        suffix. The returned set carries its own sanitized-to-original map,
        so a caller resolving tool_use names against it is unaffected by
        registry changes or other callers building their own sets.

        Args:
            kind: ProviderKind.OPENAI (``parameters``) or
                  ProviderKind.ANTHROPIC (``input_schema``)

        Returns:
            The descriptors in the provider's wire shape plus the name map

        Raises:
            ValidationError: If the provider kind is unknown
        """
        try:
            kind = ProviderKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown provider kind: {kind}")

        if kind is ProviderKind.OPENAI:
            return ProviderToolSet(
                tools=[
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": build_json_schema(tool.input_schema),
                    }
                    for tool in self._tools.values()
                ],
                to_original={name: name for name in self._tools},
            )

        sanitized_to_original: dict[str, str] = {}
        descriptors: list[dict[str, Any]] = []

        for tool in self._tools.values():
            sanitized = sanitize_tool_name(tool.name)
            if sanitized in sanitized_to_original:
                base = sanitized[:SUFFIX_BASE_LENGTH]
                suffix = 2
                candidate = f"{base}_{suffix}"
                while candidate in sanitized_to_original:
                    suffix += 1
                    candidate = f"{base}_{suffix}"
                sanitized = candidate

            sanitized_to_original[sanitized] = tool.name
            descriptors.append(
                {
                    "name": sanitized,
                    "description": tool.description,
                    "input_schema": build_json_schema(tool.input_schema),
                }
            )

        return ProviderToolSet(tools=descriptors, to_original=sanitized_to_original)

    def build_provider_tools(self, kind: ProviderKind | str) -> list[dict[str, Any]]:
        """Build provider descriptors and remember their name map for lookups.

        The remembered map backs original_tool_name and provider_tool_name,
        which serve previews and diagnostics. A conversation keeps the
        ProviderToolSet it sent instead.
        """
        tool_set = self.build_provider_tool_set(kind)
        self._sanitized_to_original = dict(tool_set.to_original)
        self._original_to_sanitized = {
            original: sanitized for sanitized, original in tool_set.to_original.items()
        }
        return tool_set.tools

    def original_tool_name(self, name: str) -> str:
        """Map a provider-sanitized name back to the registry name."""
        return self._sanitized_to_original.get(name, name)

    def provider_tool_name(self, name: str) -> str:
        """Map a registry name to the name last sent to the provider."""
        return self._original_to_sanitized.get(name, name)

    # --- Usage log ---

    def record_usage(self, entry: ToolUsageLogEntry) -> None:
        self._usage_log.append(entry)

    def get_usage_log(self, limit: int | None = None) -> list[ToolUsageLogEntry]:
        """Return the most recent usage log entries, oldest first."""
        limit = self._usage_log_limit if limit is None else limit
        if limit <= 0:
            return []
        return list(self._usage_log)[-limit:]

    def clear_usage_log(self) -> None:
        self._usage_log.clear()
