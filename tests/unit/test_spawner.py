"""Unit tests for ServerSpawner with in-memory processes."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from toolhub_server.errors import ToolExecutionError
from toolhub_server.servers import (
    ExternalServerEntry,
    ServerSpawner,
    ServerSpec,
    ServerType,
    SpawnAttempt,
)
from toolhub_server.tools import ToolDefinition, ToolRegistry, result_to_text


async def _local(args):
    return "local"


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Wait until a condition holds, failing the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _launched(process):
    """Patch the launcher so that the primary attempt starts a fake process."""
    attempts = [SpawnAttempt(label="primary", command="tool-server", args=["--stdio"], ok=True)]
    return patch(
        "toolhub_server.servers.spawner.launch_first",
        new=AsyncMock(return_value=(process, attempts)),
    )


def _add(spawner, entry):
    """Place an entry in the table directly, as a lost race would leave it."""
    spawner._entries[entry.id] = entry
    return entry


def _launch_failed():
    attempts = [
        SpawnAttempt(label="primary", command="npx", error="No such file"),
        SpawnAttempt(label="alternate", command="npx", error="npx not found on PATH"),
    ]
    return patch(
        "toolhub_server.servers.spawner.launch_first",
        new=AsyncMock(return_value=(None, attempts)),
    )


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest_asyncio.fixture
async def spawner(registry, tmp_path):
    spawner = ServerSpawner(
        registry,
        fs_root=tmp_path,
        specification_path=tmp_path / "servers.json",
        ready_timeout=2.0,
        ready_poll_interval=0.01,
        quick_exit_seconds=1.0,
        watch_interval=0.05,
    )
    yield spawner
    await spawner.close()


class TestSpawn:
    """Tests for spawning and bridging."""

    @pytest.mark.asyncio
    async def test_embedded_entry_counts_local_tools(self, spawner, registry):
        registry.add_tool(ToolDefinition(name="echo", handler=_local))
        registry.add_tool(ToolDefinition(name="bridged", handler=_local, origin="other"))

        entry = await spawner.spawn_server("local", ServerSpec(type=ServerType.EMBEDDED))

        assert entry.type is ServerType.EMBEDDED
        assert entry.process is None
        assert entry.tool_count == 1
        assert entry.ready is True

    @pytest.mark.asyncio
    async def test_external_server_tools_are_bridged(self, spawner, registry, fake_process):
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))

        await eventually(lambda: entry.ready)

        tool = registry.get_tool("echo")
        assert tool is not None
        assert tool.origin == entry.id
        assert tool.input_schema["text"].required is True
        assert entry.tool_count == 1
        assert entry.started_at is not None

        result = await tool.handler({"text": "hi"})
        assert result_to_text(result) == 'echo: {"text": "hi"}'

    @pytest.mark.asyncio
    async def test_spawn_returns_existing_entry_for_name(self, spawner):
        first = await spawner.spawn_server("local", ServerSpec(type=ServerType.EMBEDDED))
        second = await spawner.spawn_server("local", ServerSpec(type=ServerType.EMBEDDED))

        assert first is second
        assert len(spawner.list_entries()) == 1

    @pytest.mark.asyncio
    async def test_respawn_replaces_fallback_with_live_process(
        self, spawner, registry, fake_process
    ):
        with _launch_failed():
            fallback = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))
        assert fallback.type is ServerType.FILESYSTEM_INPROC
        assert registry.has_tool("write_file")

        process = fake_process(
            tools=[{"name": "read_file", "description": "Remote read", "inputSchema": {}}]
        )
        with _launched(process):
            entry = await spawner.spawn_server(
                "files", ServerSpec(type=ServerType.FILESYSTEM, command="fs-server")
            )

        assert entry is not fallback
        assert entry.process is process
        assert spawner.list_entries() == [entry]
        assert registry.list_tools_by_origin(fallback.id) == []

        await eventually(lambda: entry.ready)
        assert registry.get_tool("read_file").origin == entry.id
        assert registry.get_tool("read_file").description == "Remote read"
        assert not registry.has_tool("write_file")

    @pytest.mark.asyncio
    async def test_failed_respawn_keeps_existing_fallback(self, spawner, registry):
        with _launch_failed():
            first = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))
            second = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        assert second is first
        assert spawner.list_entries() == [first]
        assert registry.get_tool("read_file").origin == first.id

    @pytest.mark.asyncio
    async def test_live_entry_is_not_relaunched(self, spawner, fake_process):
        with _launched(fake_process()) as launch:
            first = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
            second = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))

        assert second is first
        assert launch.await_count == 1

    @pytest.mark.asyncio
    async def test_colliding_tool_is_namespaced(self, spawner, registry, fake_process):
        registry.add_tool(ToolDefinition(name="echo", handler=_local))

        with _launched(fake_process()):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)

        assert registry.get_tool("echo").origin is None
        assert registry.get_tool("remote:echo").origin == entry.id

    @pytest.mark.asyncio
    async def test_double_collision_is_skipped(self, spawner, registry, fake_process):
        registry.add_tool(ToolDefinition(name="echo", handler=_local))
        registry.add_tool(ToolDefinition(name="remote:echo", handler=_local))

        with _launched(fake_process()):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)

        assert entry.tool_count == 0
        assert registry.list_tools_by_origin(entry.id) == []

    @pytest.mark.asyncio
    async def test_forwarder_reports_transport_errors(self, spawner, registry, fake_process):
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)
        handler = registry.get_tool("echo").handler

        process.exit(1)
        result = await handler({"text": "hi"})

        assert result["isError"] is True
        assert result_to_text(result).startswith("Tool server error:")

    @pytest.mark.asyncio
    async def test_non_filesystem_failure_sets_warning(self, spawner, registry):
        with _launch_failed():
            entry = await spawner.spawn_server("broken", ServerSpec(command="npx"))

        assert entry.type is ServerType.EXTERNAL
        assert entry.tool_count == 0
        assert "no tools available" in entry.warning
        assert len(entry.spawn_attempts) == 2
        assert len(registry) == 0


class TestFilesystemFallback:
    """Tests for in-process and degraded filesystem fallbacks."""

    @pytest.mark.asyncio
    async def test_failed_launch_falls_back_to_inproc(self, spawner, registry):
        with _launch_failed() as launch:
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        plan = launch.call_args.args[0]
        assert plan[0].command == "npx"
        assert plan[0].args[-1] == str(spawner.fs_root)

        assert entry.type is ServerType.FILESYSTEM_INPROC
        assert "in-process" in entry.warning
        assert entry.ready is True
        assert registry.get_tool("read_file").origin == entry.id
        assert registry.get_tool("list_directory").origin == entry.id
        assert entry.tool_count == len(registry.list_tools_by_origin(entry.id))

    @pytest.mark.asyncio
    async def test_unimportable_module_falls_back_to_degraded(self, spawner, registry):
        spec = ServerSpec(type=ServerType.FILESYSTEM, module="toolhub_tests_missing_module")
        with _launch_failed():
            entry = await spawner.spawn_server("files", spec)

        assert entry.type is ServerType.FILESYSTEM_DEGRADED
        assert "static in-process file tools" in entry.warning
        assert registry.has_tool("read_file")

    @pytest.mark.asyncio
    async def test_inproc_tools_fill_in_required_tools(self, spawner, registry, tmp_path):
        module = type("PartialModule", (), {})()
        module.get_tool_definitions = lambda root: [
            {"name": "read_file", "description": "custom", "handler": _local}
        ]

        with _launch_failed(), patch(
            "toolhub_server.servers.spawner.importlib.import_module", return_value=module
        ):
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        assert entry.type is ServerType.FILESYSTEM_INPROC
        assert registry.get_tool("read_file").description == "custom"
        assert registry.has_tool("list_directory")
        assert entry.tool_count == 2

    @pytest.mark.asyncio
    async def test_module_without_factory_falls_back_to_degraded(self, spawner, registry):
        spec = ServerSpec(type=ServerType.FILESYSTEM, module="json")
        with _launch_failed():
            entry = await spawner.spawn_server("files", spec)

        assert entry.type is ServerType.FILESYSTEM_DEGRADED
        assert "json has no get_tool_definitions()" in entry.warning
        assert "static in-process file tools" in entry.warning
        assert entry.ready is True
        assert registry.get_tool("read_file").origin == entry.id

    @pytest.mark.asyncio
    async def test_failing_factory_falls_back_to_degraded(self, spawner, registry):
        def get_tool_definitions(root):
            raise RuntimeError("no disk")

        module = type("BrokenModule", (), {})()
        module.get_tool_definitions = get_tool_definitions

        with _launch_failed(), patch(
            "toolhub_server.servers.spawner.importlib.import_module", return_value=module
        ):
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        assert entry.type is ServerType.FILESYSTEM_DEGRADED
        assert "no disk" in entry.warning
        assert "static in-process file tools" in entry.warning
        assert registry.has_tool("read_file")
        assert registry.has_tool("list_directory")

    @pytest.mark.asyncio
    async def test_malformed_definitions_fall_back_to_degraded(self, spawner, registry):
        module = type("OddModule", (), {})()
        module.get_tool_definitions = lambda root: [{"name": "read_file", "colour": "red"}]

        with _launch_failed(), patch(
            "toolhub_server.servers.spawner.importlib.import_module", return_value=module
        ):
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        assert entry.type is ServerType.FILESYSTEM_DEGRADED
        assert registry.get_tool("read_file").handler is not None

    @pytest.mark.asyncio
    async def test_tool_without_handler_falls_back_to_degraded(self, spawner, registry):
        module = type("HalfModule", (), {})()
        module.get_tool_definitions = lambda root: [{"name": "read_file"}]

        with _launch_failed(), patch(
            "toolhub_server.servers.spawner.importlib.import_module", return_value=module
        ):
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        assert entry.type is ServerType.FILESYSTEM_DEGRADED
        assert "unusable tool 'read_file'" in entry.warning

    @pytest.mark.asyncio
    async def test_quick_exit_mutates_same_entry(self, spawner, registry, fake_process):
        process = fake_process()
        process.auto_reply = False
        process.exit(1)

        with _launched(process):
            entry = await spawner.spawn_server(
                "files", ServerSpec(type=ServerType.FILESYSTEM, command="fs-server")
            )
        entry_id = entry.id

        await eventually(lambda: entry.type is ServerType.FILESYSTEM_INPROC)

        assert entry.id == entry_id
        assert spawner.get_entry(entry_id) is entry
        assert "exited immediately" in entry.warning
        assert registry.get_tool("read_file").origin == entry_id

    @pytest.mark.asyncio
    async def test_quick_exit_of_external_server_sets_warning(self, spawner, fake_process):
        process = fake_process()
        process.auto_reply = False
        process.exit(2)

        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))

        await eventually(lambda: entry.warning is not None)
        assert entry.type is ServerType.EXTERNAL
        assert "exited immediately (code 2)" in entry.warning

    @pytest.mark.asyncio
    async def test_later_exit_prunes_tools(self, spawner, registry, fake_process):
        spawner.quick_exit_seconds = 0.0
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)
        assert registry.has_tool("echo")

        process.exit(3)
        await eventually(lambda: not registry.has_tool("echo"))

        assert entry.tool_count == 0
        assert "exited with code 3" in entry.warning
        assert spawner.get_entry(entry.id) is entry


class TestReconcile:
    """Tests for duplicate-entry reconciliation."""

    def _entry(self, entry_id, server_type, process=None):
        return ExternalServerEntry(
            id=entry_id,
            name="files",
            type=server_type,
            spec=ServerSpec(type=ServerType.FILESYSTEM),
            process=process,
        )

    @pytest.mark.asyncio
    async def test_inproc_beats_degraded(self, spawner, registry):
        degraded = _add(spawner, self._entry("old", ServerType.FILESYSTEM_DEGRADED))
        inproc = _add(spawner, self._entry("new", ServerType.FILESYSTEM_INPROC))
        registry.add_tool(ToolDefinition(name="read_file", handler=_local, origin="old"))

        discarded = spawner.reconcile()

        assert discarded == [degraded]
        assert spawner.list_entries() == [inproc]
        assert not registry.has_tool("read_file")

    @pytest.mark.asyncio
    async def test_live_process_beats_inproc(self, spawner, fake_process):
        _add(spawner, self._entry("old", ServerType.FILESYSTEM_INPROC))
        live = _add(
            spawner,
            self._entry("new", ServerType.FILESYSTEM, process=fake_process()),
        )

        spawner.reconcile()

        assert spawner.list_entries() == [live]

    @pytest.mark.asyncio
    async def test_dead_process_loses_to_inproc(self, spawner, fake_process):
        dead = fake_process()
        dead.exit(1)
        _add(spawner, self._entry("old", ServerType.FILESYSTEM, process=dead))
        inproc = _add(spawner, self._entry("new", ServerType.FILESYSTEM_INPROC))

        spawner.reconcile()

        assert spawner.list_entries() == [inproc]

    @pytest.mark.asyncio
    async def test_ties_go_to_oldest(self, spawner):
        oldest = _add(spawner, self._entry("a", ServerType.FILESYSTEM_DEGRADED))
        _add(spawner, self._entry("b", ServerType.FILESYSTEM_DEGRADED))

        spawner.reconcile()

        assert spawner.list_entries() == [oldest]

    @pytest.mark.asyncio
    async def test_loser_process_is_terminated(self, spawner, fake_process):
        loser_process = fake_process()
        _add(spawner, self._entry("old", ServerType.FILESYSTEM_INPROC))
        _add(
            spawner,
            self._entry("new", ServerType.FILESYSTEM_INPROC, process=loser_process),
        )

        spawner.reconcile()

        await eventually(lambda: loser_process.terminated)


class TestDirectAccess:
    """Tests for listing and calling one server's tools directly."""

    @pytest.mark.asyncio
    async def test_live_server_is_asked_directly(self, spawner, registry, fake_process):
        registry.add_tool(ToolDefinition(name="echo", handler=_local))
        with _launched(fake_process()):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)

        tools = await spawner.list_server_tools(entry)
        result = await spawner.call_server_tool(entry, "echo", {"text": "hi"})

        assert [tool["name"] for tool in tools] == ["echo"]
        assert registry.get_tool("remote:echo").origin == entry.id
        assert result_to_text(result) == 'echo: {"text": "hi"}'

    @pytest.mark.asyncio
    async def test_call_failure_on_live_server_is_error_result(self, spawner, fake_process):
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)
        process.auto_reply = False

        call = asyncio.create_task(spawner.call_server_tool(entry, "echo", {}))
        await eventually(lambda: process.sent_methods()[-1] == "tools/call")
        process.fail(process.sent()[-1]["id"], -32601, "Unknown tool")
        result = await call

        assert result["isError"] is True
        assert "Unknown tool" in result_to_text(result)

    @pytest.mark.asyncio
    async def test_fallback_server_reports_owned_tools(self, spawner, registry, tmp_path):
        (tmp_path / "a.txt").write_text("alpha")
        registry.add_tool(ToolDefinition(name="read_file", handler=_local))
        with _launch_failed():
            entry = await spawner.spawn_server("files", ServerSpec(type=ServerType.FILESYSTEM))

        names = {tool["name"] for tool in await spawner.list_server_tools(entry)}
        assert "files:read_file" in names
        assert "read_file" not in names

        result = await spawner.call_server_tool(entry, "list_directory", {"path": "."})
        assert result["isError"] is False

        # the unqualified name resolves to the namespaced tool of this entry
        result = await spawner.call_server_tool(entry, "read_file", {"path": "a.txt"})
        assert result_to_text(result) == "alpha"

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, spawner):
        entry = await spawner.spawn_server("local", ServerSpec(type=ServerType.EMBEDDED))

        with pytest.raises(ToolExecutionError):
            await spawner.call_server_tool(entry, "nothing", {})


class TestLifecycle:
    """Tests for specification passes, sync, removal and diagnostics."""

    @pytest.mark.asyncio
    async def test_apply_specification_prunes_and_spawns(self, spawner):
        await spawner.spawn_server("old", ServerSpec(type=ServerType.EMBEDDED))

        result = await spawner.apply_specification(
            {"new": ServerSpec(type=ServerType.EMBEDDED)}, prune=True
        )

        assert result.spawned == ["new"]
        assert result.removed == ["old"]
        assert [entry.name for entry in spawner.list_entries()] == ["new"]

    @pytest.mark.asyncio
    async def test_additive_pass_keeps_unlisted(self, spawner):
        await spawner.spawn_server("old", ServerSpec(type=ServerType.EMBEDDED))

        result = await spawner.apply_specification(
            {"new": ServerSpec(type=ServerType.EMBEDDED)}, prune=False
        )

        assert result.removed == []
        assert sorted(entry.name for entry in spawner.list_entries()) == ["new", "old"]

    @pytest.mark.asyncio
    async def test_reload_reads_specification_file(self, spawner, tmp_path):
        (tmp_path / "servers.json").write_text(
            json.dumps({"mcpServers": {"local": {"type": "embedded"}}})
        )

        result = await spawner.reload()

        assert result.spawned == ["local"]

    @pytest.mark.asyncio
    async def test_sync_rebridges_tools(self, spawner, registry, fake_process):
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)

        process.tools = [{"name": "shout", "description": "Shout text"}]
        synced = await spawner.sync()

        assert synced == {entry.id: 1}
        assert registry.has_tool("shout")
        assert not registry.has_tool("echo")

    @pytest.mark.asyncio
    async def test_remove_server(self, spawner, registry, fake_process):
        process = fake_process()
        with _launched(process):
            entry = await spawner.spawn_server("remote", ServerSpec(command="tool-server"))
        await eventually(lambda: entry.ready)

        assert await spawner.remove_server(entry.id) is True
        assert await spawner.remove_server(entry.id) is False
        assert process.terminated
        assert not registry.has_tool("echo")

    @pytest.mark.asyncio
    async def test_diagnostics(self, spawner, fake_process):
        process = fake_process()
        process.write_stderr("listening on stdio\n")
        with _launched(process):
            entry = await spawner.spawn_server(
                "remote", ServerSpec(command="tool-server", cwd="/srv")
            )
        await eventually(lambda: entry.ready)

        diagnostics = spawner.diagnostics(entry.id)

        assert diagnostics["id"] == entry.id
        assert diagnostics["running"] is True
        assert diagnostics["attempts"][0]["label"] == "primary"
        assert diagnostics["external"] == {"command": "tool-server --stdio", "cwd": "/srv"}
        assert diagnostics["stderr"] == "listening on stdio"
        assert spawner.diagnostics("missing") is None

    @pytest.mark.asyncio
    async def test_watching_spawns_new_servers(self, spawner, tmp_path):
        spawner.start_watching()
        await asyncio.sleep(0.1)

        (tmp_path / "servers.json").write_text(
            json.dumps({"mcpServers": {"watched": {"type": "embedded"}}})
        )

        await eventually(lambda: spawner.find_by_name("watched") is not None)

    @pytest.mark.asyncio
    async def test_close_terminates_processes(self, registry, tmp_path, fake_process):
        spawner = ServerSpawner(registry, fs_root=tmp_path, ready_poll_interval=0.01)
        process = fake_process()
        with _launched(process):
            await spawner.spawn_server("remote", ServerSpec(command="tool-server"))

        await spawner.close()

        assert process.terminated
