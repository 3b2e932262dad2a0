"""JSON-RPC 2.0 client over a child process's standard streams.

This module provides the StdioMcpClient class which handles:
- Newline-delimited framing of requests and responses
- Correlating responses to requests by integer id
- Independent per-request timeouts
- Failing pending requests when the process exits
- Capturing a bounded stderr tail for diagnostics
"""

import asyncio
import codecs
import json
import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Any

from toolhub_server.errors import (
    JsonRpcError,
    ProcessExitError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
DEFAULT_REQUEST_TIMEOUT = 8.0
DEFAULT_STDERR_TAIL_LINES = 50
READ_CHUNK_SIZE = 65536

STDERR_ERROR_PATTERN = re.compile(r"error|exception|traceback|fatal", re.IGNORECASE)


@dataclass
class _PendingRequest:
    method: str
    future: asyncio.Future
    timer: asyncio.TimerHandle


class StdioMcpClient:
    """Client for one external tool-server process.

    The client starts reading the process's stdout and stderr as soon as it
    is constructed, so it must be created inside a running event loop. Once
    the process closes its stdout the client is finished and every further
    request fails with ProcessExitError.

    Requests are not serialized. Concurrent callers share one id sequence and
    each response is matched to its request purely by id.
    """

    def __init__(
        self,
        process: Any,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        stderr_tail_lines: int = DEFAULT_STDERR_TAIL_LINES,
        client_name: str = "toolhub-server",
        client_version: str = "0.1.0",
    ) -> None:
        """Attach to a running process.

        Args:
            process: An asyncio subprocess, or any object exposing stdin,
                     stdout, stderr, returncode and an awaitable wait()
            request_timeout: Default timeout for each request, in seconds
            stderr_tail_lines: Number of stderr lines kept for diagnostics
            client_name: Name reported in the initialize handshake
            client_version: Version reported in the initialize handshake
        """
        self._process = process
        self._loop = asyncio.get_running_loop()
        self.request_timeout = request_timeout
        self._client_info = {"name": client_name, "version": client_version}

        self._pending: dict[int, _PendingRequest] = {}
        self._next_id = 0
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._closed = False
        self._has_output = False
        self._stderr_tail: deque[str] = deque(maxlen=stderr_tail_lines)

        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._capabilities: dict[str, Any] = {}
        self._server_info: dict[str, Any] | None = None
        self._tools: list[dict[str, Any]] | None = None

        self._stdout_task = asyncio.create_task(self._read_stdout())
        self._stderr_task: asyncio.Task | None = None
        if getattr(process, "stderr", None) is not None:
            self._stderr_task = asyncio.create_task(self._read_stderr())

    # --- State ---

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def has_output(self) -> bool:
        """Whether any bytes have arrived on the process's stdout."""
        return self._has_output

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def capabilities(self) -> dict[str, Any]:
        return self._capabilities

    @property
    def server_info(self) -> dict[str, Any] | None:
        return self._server_info

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    # --- Protocol operations ---

    async def initialize(self) -> dict[str, Any]:
        """Perform the initialize handshake once and return server capabilities.

        Concurrent callers wait on the same handshake. Later calls return the
        cached capabilities without contacting the process.
        """
        async with self._init_lock:
            if self._initialized:
                return self._capabilities

            result = await self._request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": self._client_info,
                },
            )
            result = result if isinstance(result, dict) else {}
            self._capabilities = result.get("capabilities") or {}
            self._server_info = result.get("serverInfo")
            self._initialized = True

            await self._notify("notifications/initialized")
            logger.debug(f"Initialized tool server {self._server_info}")
            return self._capabilities

    async def list_tools(self, force_refresh: bool = False) -> list[dict[str, Any]]:
        """Return the tools advertised by the process.

        Args:
            force_refresh: Ignore the cached list and ask the process again

        Returns:
            List of raw tool descriptors ({name, description, inputSchema})
        """
        if self._tools is not None and not force_refresh:
            return list(self._tools)

        await self.initialize()
        result = await self._request("tools/list", {})
        tools = result.get("tools") if isinstance(result, dict) else None
        self._tools = [tool for tool in tools or [] if isinstance(tool, dict)]
        return list(self._tools)

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Invoke a tool on the process and return its raw result.

        Raises:
            ValidationError: If the tool name is empty
            TransportError: On process exit, JSON-RPC error or timeout
        """
        if not name:
            raise ValidationError("Tool name must be a non-empty string")

        await self.initialize()
        result = await self._request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
        return result if isinstance(result, dict) else {}

    async def wait_closed(self) -> int | None:
        """Wait for the process to exit and return its exit code."""
        return await self._process.wait()

    async def close(self) -> None:
        """Stop reading the process streams and fail any pending requests."""
        for task in (self._stdout_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
        self._mark_closed()

    # --- Transport ---

    async def _request(
        self, method: str, params: dict[str, Any] | None, timeout: float | None = None
    ) -> Any:
        if self._closed:
            raise ProcessExitError(
                f"Tool server process has exited (code {self.returncode})",
                self.returncode,
            )

        timeout = self.request_timeout if timeout is None else timeout
        self._next_id += 1
        request_id = self._next_id

        payload: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            payload["params"] = params

        future = self._loop.create_future()
        timer = self._loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending[request_id] = _PendingRequest(method, future, timer)

        try:
            await self._write(payload)
            return await future
        finally:
            entry = self._pending.pop(request_id, None)
            if entry is not None:
                entry.timer.cancel()

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            payload["params"] = params
        await self._write(payload)

    async def _write(self, payload: dict[str, Any]) -> None:
        stdin = self._process.stdin
        if self._closed or stdin is None or stdin.is_closing():
            raise ProcessExitError(
                "Tool server stdin is closed", self._process.returncode
            )

        data = (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ProcessExitError(
                f"Tool server closed its stdin: {e}", self._process.returncode
            ) from e
        except OSError as e:
            raise TransportError(f"Failed to write to tool server: {e}") from e

    def _expire(self, request_id: int, timeout: float) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning(f"Request {entry.method} (id {request_id}) timed out after {timeout}s")
        entry.future.set_exception(
            RequestTimeoutError(
                f"Request {entry.method} (id {request_id}) timed out after {timeout}s"
            )
        )

    # --- Readers ---

    async def _read_stdout(self) -> None:
        stdout = self._process.stdout
        try:
            while True:
                chunk = await stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._has_output = True
                self._buffer += self._decoder.decode(chunk)
                self._drain_lines()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.warning(f"Tool server stdout failed: {e}")
        finally:
            self._mark_closed()

    def _drain_lines(self) -> None:
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            line = line.strip()
            if line:
                self._handle_line(line)

    def _handle_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except ValueError:
            logger.debug(f"Dropping non-JSON line from tool server: {line[:200]}")
            return

        if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
            logger.debug(f"Dropping malformed JSON-RPC message: {line[:200]}")
            return

        if "method" in message:
            # Server-initiated requests and notifications are not supported
            logger.debug(f"Ignoring server message {message.get('method')}")
            return

        request_id = message.get("id")
        if not isinstance(request_id, int):
            logger.debug(f"Dropping JSON-RPC message without integer id: {line[:200]}")
            return

        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug(f"Ignoring response for unknown request id {request_id}")
            return

        entry.timer.cancel()
        if entry.future.done():
            return

        if "error" in message:
            error = message.get("error")
            if isinstance(error, dict):
                entry.future.set_exception(
                    JsonRpcError(
                        str(error.get("message", "JSON-RPC error")),
                        code=error.get("code"),
                        data=error.get("data"),
                    )
                )
            else:
                entry.future.set_exception(JsonRpcError(str(error)))
            return

        entry.future.set_result(message.get("result"))

    async def _read_stderr(self) -> None:
        stderr = self._process.stderr
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        partial = ""
        while True:
            chunk = await stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            partial += decoder.decode(chunk)
            *lines, partial = partial.split("\n")
            for line in lines:
                self._record_stderr(line)
        self._record_stderr(partial)

    def _record_stderr(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        self._stderr_tail.append(line)
        if STDERR_ERROR_PATTERN.search(line):
            logger.warning(f"Tool server stderr: {line}")
        else:
            logger.debug(f"Tool server stderr: {line}")

    def _mark_closed(self) -> None:
        if self._closed and not self._pending:
            return
        self._closed = True
        self._buffer = ""

        pending = list(self._pending.items())
        self._pending.clear()
        returncode = self._process.returncode
        for request_id, entry in pending:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(
                    ProcessExitError(
                        f"Tool server exited before answering {entry.method} "
                        f"(id {request_id}, code {returncode})",
                        returncode,
                    )
                )
        if pending:
            logger.info(f"Rejected {len(pending)} pending requests after process exit")


async def wait_for_ready(
    client: StdioMcpClient,
    tool_name: str | None = None,
    max_wait: float = 5.0,
    interval: float = 0.3,
) -> bool:
    """Poll a client until the process advertises tools.

    Args:
        client: The client to poll
        tool_name: Tool that must appear, or None to accept any tool
        max_wait: Overall deadline in seconds
        interval: Delay between polls in seconds

    Returns:
        True once the tool is observed, False on deadline or process exit
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max_wait

    while not client.is_closed:
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False

        try:
            tools = await asyncio.wait_for(
                client.list_tools(force_refresh=True), timeout=remaining
            )
        except ProcessExitError:
            return False
        except (TransportError, asyncio.TimeoutError) as e:
            logger.debug(f"Readiness check failed: {e}")
        else:
            names = {tool.get("name") for tool in tools}
            if (tool_name is None and names) or tool_name in names:
                return True

        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(interval, remaining))

    return False
