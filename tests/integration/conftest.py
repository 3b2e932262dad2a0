"""Pytest configuration for integration tests.

This module provides integration-test-specific fixtures: the app is created
with a scripted chat provider already in place, so the lifespan builds a
real orchestrator around it, and forwarding tools talk to an in-memory
HTTP endpoint instead of the network.
"""

import json

import httpx
import pytest
import pytest_asyncio

from toolhub_server import create_app


@pytest.fixture
def chat_provider(scripted_provider):
    """Scripted provider used by the app under test. Set ``.script`` per test."""
    return scripted_provider()


@pytest.fixture
def test_app(test_settings, chat_provider):
    """Create the app with the scripted provider injected before startup."""
    app = create_app(settings=test_settings)
    app.state.provider = chat_provider
    return app


@pytest.fixture
def forwarded_requests():
    """Requests received by the in-memory tool endpoint."""
    return []


@pytest_asyncio.fixture
async def tool_endpoint(test_app, async_client, forwarded_requests):
    """Route forwarding tools to an in-memory endpoint.

    ``/sum`` adds ``a`` and ``b``, ``/fail`` answers 500, and every other
    path echoes the arguments back as JSON.
    """

    def respond(request: httpx.Request) -> httpx.Response:
        args = json.loads(request.content or b"{}")
        forwarded_requests.append((request.url.path, args))
        if request.url.path == "/sum":
            return httpx.Response(200, json={"sum": args.get("a", 0) + args.get("b", 0)})
        if request.url.path == "/fail":
            return httpx.Response(500, text="upstream broke")
        return httpx.Response(200, json=args)

    original = test_app.state.http_client
    test_app.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(respond))
    yield test_app.state.http_client
    await test_app.state.http_client.aclose()
    test_app.state.http_client = original
