"""Unit tests for the ToolRegistry."""

import pytest

from toolhub_server.errors import ValidationError
from toolhub_server.tools import (
    ProviderKind,
    ToolDefinition,
    ToolField,
    ToolRegistry,
    ToolUsageLogEntry,
    build_json_schema,
    fields_from_json_schema,
    sanitize_tool_name,
)


async def _noop(args):
    return "ok"


def _tool(name: str, origin: str | None = None, **fields) -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        input_schema={key: ToolField(type=value) for key, value in fields.items()},
        handler=_noop,
        origin=origin,
    )


class TestRegistration:
    """Tests for adding and removing tools."""

    def test_add_and_get_tool(self):
        registry = ToolRegistry()
        stored = registry.add_tool(_tool("echo", text="string"))

        assert registry.get_tool("echo") is stored
        assert registry.has_tool("echo")
        assert "echo" in registry
        assert len(registry) == 1

    def test_add_tool_from_mapping(self):
        registry = ToolRegistry()
        stored = registry.add_tool(
            {
                "name": "sum",
                "description": "Add numbers",
                "input_schema": {"a": "number", "b": {"type": "number", "required": False}},
                "handler": _noop,
            }
        )

        assert isinstance(stored, ToolDefinition)
        assert stored.input_schema["a"].type == "number"
        assert stored.input_schema["b"].required is False

    def test_add_tool_overwrites_by_name(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("echo"))
        replacement = registry.add_tool(_tool("echo", origin="server-1"))

        assert len(registry) == 1
        assert registry.get_tool("echo") is replacement

    @pytest.mark.parametrize(
        "definition",
        [
            "not a tool",
            {"description": "missing name", "handler": _noop},
            {"name": "", "handler": _noop},
            {"name": 42, "handler": _noop},
            {"name": "no_handler"},
            {"name": "bad_handler", "handler": "not callable"},
        ],
    )
    def test_add_tool_rejects_invalid_definitions(self, definition):
        registry = ToolRegistry()
        with pytest.raises(ValidationError):
            registry.add_tool(definition)
        assert len(registry) == 0

    def test_remove_tool(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("echo"))

        assert registry.remove_tool("echo") is True
        assert registry.remove_tool("echo") is False
        assert registry.get_tool("echo") is None

    def test_remove_tools_by_origin_matches_marker_and_prefix(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("read_file", origin="abc"))
        registry.add_tool(_tool("abc:write_file"))
        registry.add_tool(_tool("echo"))
        registry.add_tool(_tool("other", origin="xyz"))

        removed = registry.remove_tools_by_origin("abc")

        assert removed == 2
        assert sorted(tool.name for tool in registry.list_tool_defs()) == ["echo", "other"]

    def test_remove_tools_by_empty_origin_is_noop(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("echo"))
        assert registry.remove_tools_by_origin("") == 0
        assert len(registry) == 1

    def test_list_tool_defs_is_snapshot(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("echo"))
        snapshot = registry.list_tool_defs()
        registry.add_tool(_tool("other"))

        assert [tool.name for tool in snapshot] == ["echo"]

    def test_list_tools_by_origin(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("a", origin="one"))
        registry.add_tool(_tool("b", origin="two"))

        assert [tool.name for tool in registry.list_tools_by_origin("one")] == ["a"]


class TestProviderTools:
    """Tests for provider schema translation."""

    def test_openai_shape(self):
        registry = ToolRegistry()
        registry.add_tool(
            ToolDefinition(
                name="search",
                description="Search files",
                input_schema={
                    "pattern": ToolField(type="string"),
                    "limit": ToolField(type="integer", required=False),
                    "recursive": ToolField(type="boolean"),
                    "options": ToolField(type="object"),
                },
                handler=_noop,
            )
        )

        tools = registry.build_provider_tools(ProviderKind.OPENAI)

        assert tools == [
            {
                "name": "search",
                "description": "Search files",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "pattern": {"type": "string", "description": ""},
                        "limit": {"type": "number", "description": ""},
                        "recursive": {"type": "boolean", "description": ""},
                        "options": {"type": "string", "description": ""},
                    },
                    "required": ["pattern", "recursive", "options"],
                },
            }
        ]

    def test_anthropic_shape_uses_input_schema(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("echo", text="string"))

        tools = registry.build_provider_tools("anthropic")

        assert tools[0]["name"] == "echo"
        assert tools[0]["input_schema"]["required"] == ["text"]
        assert "parameters" not in tools[0]

    def test_anthropic_names_sanitized_and_deduplicated(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("fs:read"))
        registry.add_tool(_tool("fs.read"))
        registry.add_tool(_tool("fs_read"))

        names = [tool["name"] for tool in registry.build_provider_tools(ProviderKind.ANTHROPIC)]

        assert names == ["fs_read", "fs_read_2", "fs_read_3"]
        assert registry.original_tool_name("fs_read") == "fs:read"
        assert registry.original_tool_name("fs_read_2") == "fs.read"
        assert registry.original_tool_name("fs_read_3") == "fs_read"
        assert registry.provider_tool_name("fs.read") == "fs_read_2"

    def test_name_map_rebuilt_after_removal(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("fs:read"))
        registry.build_provider_tools(ProviderKind.ANTHROPIC)
        registry.remove_tool("fs:read")

        registry.build_provider_tools(ProviderKind.ANTHROPIC)

        assert registry.original_tool_name("fs_read") == "fs_read"

    def test_tool_set_keeps_its_own_name_map(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("fs:read"))
        registry.add_tool(_tool("fs.read"))
        tool_set = registry.build_provider_tool_set(ProviderKind.ANTHROPIC)

        registry.remove_tool("fs:read")
        registry.build_provider_tools(ProviderKind.ANTHROPIC)

        assert [tool["name"] for tool in tool_set.tools] == ["fs_read", "fs_read_2"]
        assert tool_set.original_name("fs_read") == "fs:read"
        assert tool_set.original_name("fs_read_2") == "fs.read"
        assert registry.original_tool_name("fs_read") == "fs.read"

    def test_openai_tool_set_maps_names_to_themselves(self):
        registry = ToolRegistry()
        registry.add_tool(_tool("fs:read"))

        tool_set = registry.build_provider_tool_set(ProviderKind.OPENAI)

        assert tool_set.to_original == {"fs:read": "fs:read"}
        assert tool_set.original_name("unknown") == "unknown"

    def test_unknown_names_pass_through(self):
        registry = ToolRegistry()
        assert registry.original_tool_name("missing") == "missing"
        assert registry.provider_tool_name("missing") == "missing"

    def test_unknown_kind_rejected(self):
        registry = ToolRegistry()
        with pytest.raises(ValidationError):
            registry.build_provider_tools("gemini")

    def test_sanitize_truncates_long_names(self):
        name = "x" * 100 + ":" + "y" * 100
        sanitized = sanitize_tool_name(name)
        assert len(sanitized) == 128
        assert ":" not in sanitized

    def test_sanitize_keeps_valid_names(self):
        assert sanitize_tool_name("read_file-2") == "read_file-2"


class TestSchemaHelpers:
    """Tests for JSON-schema helpers."""

    def test_build_json_schema_keeps_field_order(self):
        schema = build_json_schema(
            {"b": ToolField(type="string"), "a": ToolField(type="number", required=False)}
        )
        assert list(schema["properties"]) == ["b", "a"]
        assert schema["required"] == ["b"]

    def test_fields_from_json_schema(self):
        fields = fields_from_json_schema(
            {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path"},
                    "depth": {"type": "integer"},
                    "flags": {},
                },
                "required": ["path"],
            }
        )

        assert fields["path"] == ToolField(type="string", required=True, description="File path")
        assert fields["depth"].required is False
        assert fields["flags"].type == "string"

    @pytest.mark.parametrize("schema", [None, "nope", {"type": "object"}])
    def test_fields_from_invalid_schema(self, schema):
        assert fields_from_json_schema(schema) == {}


class TestUsageLog:
    """Tests for the usage log."""

    def test_returns_most_recent_entries(self):
        registry = ToolRegistry(usage_log_limit=3)
        for i in range(5):
            registry.record_usage(ToolUsageLogEntry(name=f"tool{i}"))

        assert [e.name for e in registry.get_usage_log()] == ["tool2", "tool3", "tool4"]
        assert [e.name for e in registry.get_usage_log(limit=1)] == ["tool4"]
        assert registry.get_usage_log(limit=0) == []

    def test_clear_usage_log(self):
        registry = ToolRegistry()
        registry.record_usage(ToolUsageLogEntry(name="echo"))
        registry.clear_usage_log()
        assert registry.get_usage_log() == []

    def test_oldest_entries_dropped_at_capacity(self):
        registry = ToolRegistry(usage_log_limit=100, usage_log_capacity=3)
        for i in range(10):
            registry.record_usage(ToolUsageLogEntry(name=f"tool{i}"))

        assert [e.name for e in registry.get_usage_log()] == ["tool7", "tool8", "tool9"]
        assert [e.name for e in registry.get_usage_log(limit=50)] == ["tool7", "tool8", "tool9"]
