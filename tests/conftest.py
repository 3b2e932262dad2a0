"""Pytest configuration and shared fixtures for toolhub-server tests.

This module provides common fixtures used across all test modules,
including test app creation, async client setup, an in-memory stand-in
for a tool-server process and a scripted LLM provider.
"""

import asyncio
import json
from typing import Any, Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from toolhub_server import create_app
from toolhub_server.config import ToolhubSettings
from toolhub_server.errors import UpstreamModelError
from toolhub_server.providers import ChatProvider, ContentBlock, ModelInfo, ModelResponse


class FakeStdin:
    """Writable end of a fake process, recording every frame sent to it."""

    def __init__(self, on_write: Callable[[bytes], None]) -> None:
        self.data = bytearray()
        self.closed = False
        self._on_write = on_write

    def write(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("stdin closed")
        self.data.extend(data)
        self._on_write(data)

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def is_closing(self) -> bool:
        return self.closed


class FakeProcess:
    """In-memory tool-server process.

    By default it answers initialize, tools/list and tools/call like a
    minimal MCP server. Set ``auto_reply`` to False to answer by hand with
    ``reply``, ``fail`` or ``feed``.
    """

    def __init__(self, tools: list[dict[str, Any]] | None = None) -> None:
        self.stdin = FakeStdin(self._handle_write)
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.pid = 4242
        self.tools = tools if tools is not None else [
            {
                "name": "echo",
                "description": "Echo text",
                "inputSchema": {
                    "type": "object",
                    "properties": {"text": {"type": "string"}},
                    "required": ["text"],
                },
            }
        ]
        self.auto_reply = True
        self.terminated = False
        self._exited = asyncio.Event()
        self._partial = ""

    # --- Inspection ---

    def sent(self) -> list[dict[str, Any]]:
        """All frames written by the client, decoded."""
        return [json.loads(line) for line in self.data_lines()]

    def data_lines(self) -> list[str]:
        return [line for line in self.stdin.data.decode("utf-8").split("\n") if line]

    def sent_methods(self) -> list[str]:
        return [frame["method"] for frame in self.sent()]

    # --- Driving ---

    def feed(self, data: str | bytes) -> None:
        self.stdout.feed_data(data.encode("utf-8") if isinstance(data, str) else data)

    def reply(self, request_id: int, result: Any) -> None:
        self.feed(json.dumps({"jsonrpc": "2.0", "id": request_id, "result": result}) + "\n")

    def fail(self, request_id: int, code: int, message: str) -> None:
        self.feed(
            json.dumps(
                {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}
            )
            + "\n"
        )

    def write_stderr(self, text: str) -> None:
        self.stderr.feed_data(text.encode("utf-8"))

    def exit(self, code: int = 0) -> None:
        if self._exited.is_set():
            return
        self.returncode = code
        self.stdin.closed = True
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    # --- asyncio.subprocess.Process interface ---

    async def wait(self) -> int | None:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)

    def _handle_write(self, data: bytes) -> None:
        self._partial += data.decode("utf-8")
        *lines, self._partial = self._partial.split("\n")
        for line in lines:
            if not line or not self.auto_reply:
                continue
            message = json.loads(line)
            if "id" not in message:
                continue
            result = self._answer(message["method"], message.get("params") or {})
            asyncio.get_running_loop().call_soon(self.reply, message["id"], result)

    def _answer(self, method: str, params: dict[str, Any]) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": "2024-11-05",
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "1.0"},
            }
        if method == "tools/list":
            return {"tools": self.tools}
        if method == "tools/call":
            return {
                "content": [
                    {"type": "text", "text": f"{params['name']}: {json.dumps(params['arguments'])}"}
                ]
            }
        return {}


class ScriptedProvider(ChatProvider):
    """Chat provider replaying a fixed list of model turns.

    Each script item is a ModelResponse or an exception to raise. Models in
    ``rejected_models`` raise UpstreamModelError before the script is read.
    Set ``models`` to an exception to make list_models() fail.
    """

    name = "scripted"

    def __init__(
        self,
        script: list[ModelResponse | Exception] | None = None,
        rejected_models: set[str] | None = None,
    ) -> None:
        self.script = list(script or [])
        self.rejected_models = set(rejected_models or ())
        self.calls: list[dict[str, Any]] = []
        self.connected = True
        self.closed = False
        self.models: list[ModelInfo] | Exception = [
            ModelInfo(name="test-model", display_name="Test Model"),
            ModelInfo(name="fallback-model"),
        ]

    async def create_message(self, model, system, messages, tools, max_tokens):
        self.calls.append(
            {
                "model": model,
                "system": system,
                "messages": [dict(message) for message in messages],
                "tools": tools,
                "max_tokens": max_tokens,
            }
        )
        if model in self.rejected_models:
            raise UpstreamModelError(f"model: {model} not found", model=model)
        if not self.script:
            return text_turn("(script exhausted)", model)
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        item.model = model
        return item

    async def list_models(self) -> list[ModelInfo]:
        if isinstance(self.models, Exception):
            raise self.models
        return list(self.models)

    async def check_connection(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.closed = True


def text_turn(text: str, model: str = "test-model") -> ModelResponse:
    return ModelResponse(
        model=model,
        blocks=[ContentBlock(type="text", text=text)],
        assistant_message={"role": "assistant", "content": text},
    )


def tool_turn(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelResponse:
    blocks = [ContentBlock(type="text", text=text)] if text else []
    for index, (name, args) in enumerate(calls):
        blocks.append(ContentBlock(type="tool_use", id=f"tu_{index}", name=name, input=args))
    return ModelResponse(
        model="test-model",
        blocks=blocks,
        assistant_message={"role": "assistant", "content": text, "tool_calls": list(calls)},
    )


@pytest.fixture
def fake_process():
    """Factory for in-memory tool-server processes."""
    return FakeProcess


@pytest.fixture
def scripted_provider():
    """Factory for scripted chat providers."""
    return ScriptedProvider


@pytest.fixture
def turns():
    """Helpers that build scripted model turns."""
    return {"text": text_turn, "tools": tool_turn}


@pytest.fixture
def test_settings(tmp_path):
    """Create test settings with an isolated filesystem root and no spec file.

    Args:
        tmp_path: Pytest fixture providing a temporary directory.

    Returns:
        ToolhubSettings: Settings instance configured for testing.
    """
    return ToolhubSettings(
        host="127.0.0.1",
        port=8000,
        provider="anthropic",
        anthropic_api_key=None,
        default_model="test-model",
        fallback_models=["fallback-model"],
        fs_root=str(tmp_path),
        servers_config_path=str(tmp_path / "mcp_servers.json"),
        watch_specification=False,
        rpc_timeout_seconds=2.0,
        ready_timeout_seconds=3.0,
        ready_poll_interval=0.05,
        quick_exit_seconds=0.5,
        log_level="DEBUG",
        cors_origins=["*"],
    )


@pytest.fixture
def test_app(test_settings):
    """Create a FastAPI test application instance.

    Args:
        test_settings: Test settings fixture.

    Returns:
        FastAPI: Configured test application.
    """
    return create_app(settings=test_settings)


@pytest_asyncio.fixture
async def async_client(test_app):
    """Create an async HTTP client for testing FastAPI endpoints.

    Args:
        test_app: Test application fixture.

    Yields:
        AsyncClient: Async HTTP client for making test requests.
    """
    # Trigger the lifespan startup manually for tests
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
