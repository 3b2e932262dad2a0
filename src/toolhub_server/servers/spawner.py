"""Supervision of external tool-server processes.

This module provides the ServerSpawner class which handles:
- Launching server processes through an ordered launch plan
- Checking readiness and bridging discovered tools into the ToolRegistry
- Falling back to in-process or degraded filesystem tools
- Reconciling duplicate entries for one logical name
- Reloading, syncing and watching the server specification file
- Listing and calling one server's tools directly
"""

import asyncio
import dataclasses
import importlib
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Coroutine

from toolhub_server.config import ToolhubSettings
from toolhub_server.errors import (
    SpawnError,
    ToolExecutionError,
    TransportError,
    ValidationError,
)
from toolhub_server.mcp import StdioMcpClient, wait_for_ready
from toolhub_server.servers.launch import (
    build_launch_plan,
    launch_first,
    terminate_process,
)
from toolhub_server.servers.specification import load_server_specification
from toolhub_server.servers.types import (
    ExternalServerEntry,
    ServerSpec,
    ServerType,
    SpecificationPass,
)
from toolhub_server.tools import (
    REQUIRED_FILESYSTEM_TOOLS,
    ToolDefinition,
    ToolRegistry,
    build_filesystem_tools,
    build_json_schema,
    fields_from_json_schema,
    normalize_tool_result,
    text_result,
)

logger = logging.getLogger(__name__)

DEFAULT_FILESYSTEM_PACKAGE = "@modelcontextprotocol/server-filesystem"
DEFAULT_FILESYSTEM_MODULE = "toolhub_server.tools.filesystem"
READY_TOOL_FILESYSTEM = "read_file"


def _rank(entry: ExternalServerEntry) -> int:
    if entry.type in (ServerType.EXTERNAL, ServerType.FILESYSTEM) and entry.is_live_process:
        return 0
    if entry.type is ServerType.FILESYSTEM_INPROC:
        return 1
    if entry.type is ServerType.FILESYSTEM_DEGRADED:
        return 2
    return 3


class ServerSpawner:
    """Keeps one live entry per logical server name and bridges its tools.

    Callers of spawn_server() only wait for the launch attempt.
    Readiness checks, bridging, exit watching and teardown run as background tasks
    tracked by the spawner and cancelled by close().
    """

    def __init__(
        self,
        registry: ToolRegistry,
        fs_root: Path | str = ".",
        specification_path: Path | str | None = None,
        request_timeout: float = 8.0,
        ready_timeout: float = 10.0,
        ready_poll_interval: float = 0.3,
        quick_exit_seconds: float = 2.0,
        watch_interval: float = 2.0,
        filesystem_module: str = DEFAULT_FILESYSTEM_MODULE,
        filesystem_package: str = DEFAULT_FILESYSTEM_PACKAGE,
    ) -> None:
        self.registry = registry
        self.fs_root = Path(fs_root)
        self.specification_path = Path(specification_path) if specification_path else None
        self.request_timeout = request_timeout
        self.ready_timeout = ready_timeout
        self.ready_poll_interval = ready_poll_interval
        self.quick_exit_seconds = quick_exit_seconds
        self.watch_interval = watch_interval
        self.filesystem_module = filesystem_module
        self.filesystem_package = filesystem_package

        self._entries: dict[str, ExternalServerEntry] = {}
        self._tasks: set[asyncio.Task] = set()
        self._watch_task: asyncio.Task | None = None
        self._closing = False

    @classmethod
    def from_settings(
        cls, registry: ToolRegistry, settings: ToolhubSettings
    ) -> "ServerSpawner":
        return cls(
            registry,
            fs_root=settings.fs_root,
            specification_path=settings.servers_config_path,
            request_timeout=settings.rpc_timeout_seconds,
            ready_timeout=settings.ready_timeout_seconds,
            ready_poll_interval=settings.ready_poll_interval,
            quick_exit_seconds=settings.quick_exit_seconds,
            watch_interval=settings.watch_interval_seconds,
            filesystem_module=settings.filesystem_module,
            filesystem_package=settings.filesystem_package,
        )

    # --- Entry table ---

    def list_entries(self) -> list[ExternalServerEntry]:
        return list(self._entries.values())

    def get_entry(self, entry_id: str) -> ExternalServerEntry | None:
        return self._entries.get(entry_id)

    def find_by_name(self, name: str) -> ExternalServerEntry | None:
        """Return the oldest entry for a logical name."""
        for entry in self._entries.values():
            if entry.name == name:
                return entry
        return None

    def diagnostics(self, entry_id: str) -> dict[str, Any] | None:
        """Return launch attempts, warning, external command and stderr tail."""
        entry = self._entries.get(entry_id)
        if entry is None:
            return None

        external = None
        command = entry.external_command
        if command is not None:
            external = {"command": command, "cwd": entry.spec.cwd}

        return {
            **entry.to_summary(),
            "attempts": [dataclasses.asdict(attempt) for attempt in entry.spawn_attempts],
            "external": external,
            "stderr": "\n".join(entry.stderr_tail) or None,
        }

    # --- Spawning ---

    async def spawn_server(self, name: str, spec: ServerSpec) -> ExternalServerEntry:
        """Create the entry for a logical name and launch its process.

        An embedded entry or one with a live process is returned as is.
        Otherwise a new launch attempt is made and the best entry for the
        name is kept. Only the launch attempt is awaited.
        """
        existing = self.find_by_name(name)
        if existing is not None and (
            existing.type is ServerType.EMBEDDED or existing.is_live_process
        ):
            return existing

        entry = ExternalServerEntry(
            id=uuid.uuid4().hex,
            name=name,
            type=spec.type,
            spec=spec,
            created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )
        self._entries[entry.id] = entry
        if existing is None:
            logger.info(f"Spawning server {name} ({spec.type.value}) as {entry.id}")
        else:
            logger.info(
                f"Relaunching server {name} ({spec.type.value}) as {entry.id}; "
                f"{existing.id} is {existing.type.value} without a live process"
            )

        await self._start_entry(entry)
        if existing is None:
            return entry
        self.reconcile()
        return self.find_by_name(name) or entry

    async def _start_entry(self, entry: ExternalServerEntry) -> None:
        spec = entry.spec

        if entry.type is ServerType.EMBEDDED:
            entry.tool_count = sum(
                1 for tool in self.registry.list_tool_defs() if tool.origin is None
            )
            entry.ready = True
            return

        command, args, package = spec.command, list(spec.args), spec.package
        if entry.type.provides_filesystem and not command:
            command = "npx"
            args = ["-y", self.filesystem_package, str(self.fs_root)]
            package = package or self.filesystem_package

        if not command:
            entry.warning = "No command configured; no tools available"
            logger.warning(f"Server {entry.name} has no command")
            return

        plan = build_launch_plan(command, args, package=package, cwd=spec.cwd)
        process, attempts = await launch_first(plan, cwd=spec.cwd, env=spec.env)
        entry.spawn_attempts.extend(attempts)

        if process is None:
            error = SpawnError(f"No launch attempt for server '{entry.name}' succeeded")
            if entry.type.provides_filesystem:
                logger.warning(f"{error}; using filesystem fallback")
                self._apply_filesystem_fallback(entry, "All spawn attempts failed")
            else:
                logger.error(str(error))
                entry.warning = f"{error}; no tools available"
            return

        entry.process = process
        entry.client = StdioMcpClient(process, request_timeout=self.request_timeout)
        entry.started_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        self._track(self._watch_ready(entry, entry.client), f"ready:{entry.id}")
        self._track(self._watch_exit(entry, process, entry.client), f"exit:{entry.id}")

    def _apply_filesystem_fallback(self, entry: ExternalServerEntry, reason: str) -> None:
        self.registry.remove_tools_by_origin(entry.id)
        module_name = entry.spec.module or self.filesystem_module

        try:
            tools = self._load_inproc_tools(module_name)
        except SpawnError as e:
            logger.warning(f"In-process filesystem module unusable: {e}")
            tools = build_filesystem_tools(self.fs_root)
            entry.type = ServerType.FILESYSTEM_DEGRADED
            entry.warning = f"{reason}; {e}; static in-process file tools active."
        else:
            entry.type = ServerType.FILESYSTEM_INPROC
            entry.warning = f"{reason}; in-process filesystem module {module_name} active."

        registered = [self._register(entry, tool) for tool in tools]
        entry.tool_count = sum(1 for name in registered if name is not None)
        entry.ready = True
        logger.info(f"Server {entry.name} is now {entry.type.value} with {entry.tool_count} tools")

    def _load_inproc_tools(self, module_name: str) -> list[ToolDefinition]:
        """Build tools from a module's get_tool_definitions(root) factory.

        Required file tools the module leaves out are filled in locally.

        Raises:
            SpawnError: If the module cannot be imported, has no factory, or
                its factory fails or returns malformed definitions
        """
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise SpawnError(f"could not import {module_name}: {e}") from e

        factory = getattr(module, "get_tool_definitions", None)
        if not callable(factory):
            raise SpawnError(f"{module_name} has no get_tool_definitions()")

        try:
            tools = [
                tool if isinstance(tool, ToolDefinition) else ToolDefinition(**tool)
                for tool in factory(self.fs_root)
            ]
        except Exception as e:
            raise SpawnError(f"{module_name}.get_tool_definitions() failed: {e}") from e

        for tool in tools:
            if not isinstance(tool.name, str) or not tool.name or not callable(tool.handler):
                raise SpawnError(f"{module_name} returned an unusable tool {tool.name!r}")

        present = {tool.name for tool in tools}
        for local in build_filesystem_tools(self.fs_root):
            if local.name in REQUIRED_FILESYSTEM_TOOLS and local.name not in present:
                tools.append(local)
        return tools

    # --- Bridging ---

    def _register(self, entry: ExternalServerEntry, tool: ToolDefinition) -> str | None:
        """Register one tool for an entry, namespacing on collision.

        Returns:
            The registered name, or None if the tool was skipped
        """
        name = tool.name
        existing = self.registry.get_tool(name)
        if existing is not None and existing.origin != entry.id:
            name = f"{entry.name}:{tool.name}"
            existing = self.registry.get_tool(name)
            if existing is not None and existing.origin != entry.id:
                logger.warning(
                    f"Skipping tool {tool.name} of server {entry.name}: "
                    f"{name} is already registered by another origin"
                )
                return None

        self.registry.add_tool(dataclasses.replace(tool, name=name, origin=entry.id))
        return name

    def _forwarder(self, client: StdioMcpClient, remote_name: str):
        async def forward(args: dict[str, Any]) -> dict[str, Any]:
            try:
                raw = await client.call_tool(remote_name, args)
            except TransportError as e:
                logger.warning(f"Call to external tool {remote_name} failed: {e}")
                return text_result(f"Tool server error: {e}", is_error=True)
            return normalize_tool_result(raw)

        return forward

    def _bridge_tools(
        self, entry: ExternalServerEntry, remote_tools: list[dict[str, Any]]
    ) -> int:
        registered: set[str] = set()
        for remote in remote_tools:
            remote_name = remote.get("name")
            if not isinstance(remote_name, str) or not remote_name:
                continue
            tool = ToolDefinition(
                name=remote_name,
                description=str(remote.get("description") or ""),
                input_schema=fields_from_json_schema(remote.get("inputSchema")),
                handler=self._forwarder(entry.client, remote_name),
            )
            name = self._register(entry, tool)
            if name is not None:
                registered.add(name)

        # Tools the server no longer advertises, or that moved to a plain name
        for stale in self.registry.list_tools_by_origin(entry.id):
            if stale.name not in registered:
                self.registry.remove_tool(stale.name)

        entry.tool_count = len(registered)
        logger.info(f"Bridged {entry.tool_count} tools from server {entry.name}")
        return entry.tool_count

    # --- Direct access ---

    def _live_client(self, entry: ExternalServerEntry) -> StdioMcpClient | None:
        if entry.client is None or entry.client.is_closed:
            return None
        return entry.client

    async def list_server_tools(self, entry: ExternalServerEntry) -> list[dict[str, Any]]:
        """List the tools one entry offers, in MCP ``tools/list`` shape.

        A live process is asked directly. Embedded and fallback entries
        report the registry tools they own.

        Raises:
            TransportError: If the live process does not answer
        """
        client = self._live_client(entry)
        if client is not None:
            return await client.list_tools()

        return [
            {
                "name": tool.name,
                "description": tool.description,
                "inputSchema": build_json_schema(tool.input_schema),
            }
            for tool in self._owned_tools(entry)
        ]

    async def call_server_tool(
        self, entry: ExternalServerEntry, name: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Call one tool of an entry and return a normalized result.

        Transport failures of a live process come back as an error result.

        Raises:
            ToolExecutionError: If a non-process entry has no such tool
        """
        client = self._live_client(entry)
        if client is not None:
            try:
                raw = await client.call_tool(name, arguments)
            except TransportError as e:
                logger.warning(f"Direct call of {name} on server {entry.name} failed: {e}")
                return text_result(f"Tool server error: {e}", is_error=True)
            return normalize_tool_result(raw)

        owned = {tool.name: tool for tool in self._owned_tools(entry)}
        tool = owned.get(name) or owned.get(f"{entry.name}:{name}")
        if tool is None or tool.handler is None:
            raise ToolExecutionError(name, f"not offered by server {entry.name}")
        return normalize_tool_result(await tool.handler(arguments))

    def _owned_tools(self, entry: ExternalServerEntry) -> list[ToolDefinition]:
        origin = None if entry.type is ServerType.EMBEDDED else entry.id
        return [tool for tool in self.registry.list_tool_defs() if tool.origin == origin]

    # --- Background tasks ---

    def _track(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error!r}")

    async def _watch_ready(self, entry: ExternalServerEntry, client: StdioMcpClient) -> None:
        tool_name = READY_TOOL_FILESYSTEM if entry.type.provides_filesystem else None
        ready = await wait_for_ready(
            client,
            tool_name=tool_name,
            max_wait=self.ready_timeout,
            interval=self.ready_poll_interval,
        )

        if client.is_closed or self._entries.get(entry.id) is not entry:
            return

        if not ready:
            entry.warning = f"Server did not report tools within {self.ready_timeout}s"
            logger.warning(f"Server {entry.name}: {entry.warning}")
            return

        self._bridge_tools(entry, await client.list_tools())
        entry.ready = True
        entry.warning = None
        self.reconcile()

    async def _watch_exit(
        self,
        entry: ExternalServerEntry,
        process: asyncio.subprocess.Process,
        client: StdioMcpClient,
    ) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        returncode = await process.wait()
        lifetime = loop.time() - started

        if self._closing or self._entries.get(entry.id) is not entry:
            return
        if entry.process is not process:
            return

        entry.ready = False
        logger.info(f"Server {entry.name} exited with code {returncode} after {lifetime:.1f}s")

        if lifetime < self.quick_exit_seconds and not client.has_output:
            if entry.type.provides_filesystem:
                self._apply_filesystem_fallback(
                    entry, "External process exited immediately"
                )
                self.reconcile()
                return
            self.registry.remove_tools_by_origin(entry.id)
            entry.tool_count = 0
            entry.warning = (
                f"Process exited immediately (code {returncode}) without output"
            )
            return

        self.registry.remove_tools_by_origin(entry.id)
        entry.tool_count = 0
        entry.warning = f"Process exited with code {returncode}; tools removed"

    async def _shutdown_entry(self, entry: ExternalServerEntry) -> None:
        if entry.process is not None:
            await terminate_process(entry.process)
        if entry.client is not None:
            await entry.client.close()

    # --- Reconciliation ---

    def reconcile(self) -> list[ExternalServerEntry]:
        """Keep one entry per logical name and discard the rest.

        Precedence is a live external process, then filesystem-inproc, then
        filesystem-degraded, then anything else. Ties go to the oldest entry.
        Losers have their bridged tools pruned and their processes terminated
        in the background.

        Returns:
            The discarded entries
        """
        groups: dict[str, list[ExternalServerEntry]] = {}
        for entry in self._entries.values():
            groups.setdefault(entry.name, []).append(entry)

        discarded: list[ExternalServerEntry] = []
        for name, entries in groups.items():
            if len(entries) < 2:
                continue
            winner = min(entries, key=_rank)
            for loser in entries:
                if loser is winner:
                    continue
                del self._entries[loser.id]
                self.registry.remove_tools_by_origin(loser.id)
                if loser.process is not None or loser.client is not None:
                    self._track(self._shutdown_entry(loser), f"shutdown:{loser.id}")
                discarded.append(loser)
                logger.info(
                    f"Reconciled server {name}: kept {winner.id} ({winner.type.value}), "
                    f"discarded {loser.id} ({loser.type.value})"
                )
        return discarded

    # --- Specification ---

    async def remove_server(self, entry_id: str) -> bool:
        """Tear down one entry, pruning its tools and terminating its process."""
        entry = self._entries.pop(entry_id, None)
        if entry is None:
            return False
        self.registry.remove_tools_by_origin(entry.id)
        await self._shutdown_entry(entry)
        logger.info(f"Removed server {entry.name} ({entry.id})")
        return True

    async def apply_specification(
        self, specs: dict[str, ServerSpec], prune: bool = True
    ) -> SpecificationPass:
        """Spawn missing servers and optionally tear down unlisted ones."""
        result = SpecificationPass()

        if prune:
            for entry in list(self._entries.values()):
                if entry.name not in specs:
                    await self.remove_server(entry.id)
                    result.removed.append(entry.name)

        for name, spec in specs.items():
            if self.find_by_name(name) is None:
                await self.spawn_server(name, spec)
                result.spawned.append(name)

        self.reconcile()
        return result

    async def reload(self, prune: bool = True) -> SpecificationPass:
        """Reread the specification file and apply it.

        Raises:
            ValidationError: If the file is malformed
        """
        specs = load_server_specification(self.specification_path)
        return await self.apply_specification(specs, prune=prune)

    async def sync(self) -> dict[str, int]:
        """Re-list tools on every live entry and re-bridge them.

        Returns:
            Mapping of entry id to bridged tool count
        """
        synced: dict[str, int] = {}
        for entry in list(self._entries.values()):
            if entry.client is None or entry.client.is_closed:
                continue
            try:
                tools = await entry.client.list_tools(force_refresh=True)
            except TransportError as e:
                logger.warning(f"Sync of server {entry.name} failed: {e}")
                entry.warning = f"Sync failed: {e}"
                continue
            if self._entries.get(entry.id) is not entry:
                continue
            synced[entry.id] = self._bridge_tools(entry, tools)
            entry.ready = True

        self.reconcile()
        return synced

    def _specification_mtime(self) -> float | None:
        if self.specification_path is None or not self.specification_path.exists():
            return None
        return self.specification_path.stat().st_mtime

    def start_watching(self) -> None:
        """Watch the specification file and spawn newly listed servers."""
        if self.specification_path is None or self._watch_task is not None:
            return
        self._watch_task = asyncio.create_task(
            self._watch_specification(), name="watch-specification"
        )
        logger.info(f"Watching server specification {self.specification_path}")

    async def _watch_specification(self) -> None:
        last = self._specification_mtime()
        while True:
            await asyncio.sleep(self.watch_interval)
            current = self._specification_mtime()
            if current == last:
                continue
            last = current
            try:
                result = await self.reload(prune=False)
            except ValidationError as e:
                logger.error(f"Ignoring invalid server specification: {e}")
                continue
            if result.spawned:
                logger.info(f"Specification change spawned {result.spawned}")

    async def close(self) -> None:
        """Cancel background work and terminate every process."""
        self._closing = True
        if self._watch_task is not None:
            self._watch_task.cancel()
            await asyncio.gather(self._watch_task, return_exceptions=True)
            self._watch_task = None

        entries = list(self._entries.values())
        await asyncio.gather(*(self._shutdown_entry(entry) for entry in entries))

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info(f"Closed {len(entries)} server entries")
