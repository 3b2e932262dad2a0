"""Dependency injection providers for FastAPI endpoints.

This module provides FastAPI dependency functions that are used across
multiple routers to inject the services created during application startup.
"""

from functools import lru_cache

import httpx
from fastapi import HTTPException, Request

from toolhub_server.config import ToolhubSettings
from toolhub_server.conversation import ConversationOrchestrator
from toolhub_server.memory import SessionMemoryStore
from toolhub_server.servers import ServerSpawner
from toolhub_server.tools import ToolRegistry


@lru_cache
def get_settings() -> ToolhubSettings:
    """Get the application settings instance.

    This function is cached so that the same settings instance is reused
    across all requests. Settings are loaded from environment variables
    with the TOOLHUB_ prefix.

    Returns:
        ToolhubSettings: The application configuration settings.
    """
    return ToolhubSettings()


def _require_state(request: Request, attribute: str, label: str):
    if getattr(request.app.state, attribute, None) is None:
        raise HTTPException(
            status_code=503,
            detail={
                "error": {
                    "code": "service_unavailable",
                    "message": f"{label} not initialized",
                    "details": {},
                }
            },
        )
    return getattr(request.app.state, attribute)


def get_registry(request: Request) -> ToolRegistry:
    """Get the shared ToolRegistry from app state."""
    return _require_state(request, "registry", "Tool registry")


def get_spawner(request: Request) -> ServerSpawner:
    """Get the ServerSpawner from app state."""
    return _require_state(request, "spawner", "Server spawner")


def get_memory_store(request: Request) -> SessionMemoryStore:
    """Get the SessionMemoryStore from app state."""
    return _require_state(request, "memory", "Session memory")


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get the shared httpx client used by forwarding tools."""
    return _require_state(request, "http_client", "HTTP client")


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    """Get the ConversationOrchestrator from app state.

    Args:
        request: The FastAPI request object.

    Returns:
        ConversationOrchestrator: The orchestrator instance.

    Raises:
        HTTPException: If no LLM provider is configured (503 Service Unavailable).
    """
    return _require_state(request, "orchestrator", "LLM provider")
