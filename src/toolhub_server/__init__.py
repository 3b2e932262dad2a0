"""toolhub-server: Headless tool-orchestration gateway for LLM conversations.

This package provides a shared tool registry, a JSON-RPC client for external
tool-server processes, a spawner that launches and bridges those processes,
and a conversation orchestrator exposed through a REST and SSE interface.
"""

__version__ = "0.1.0"

from toolhub_server.app import create_app  # noqa: E402

__all__ = ["create_app", "__version__"]
