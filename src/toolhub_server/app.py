"""FastAPI application factory and lifespan management.

This module contains the create_app() factory function that creates and configures
the FastAPI application instance, including lifespan management for startup/shutdown
and router registration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolhub_server import __version__
from toolhub_server.config import ToolhubSettings
from toolhub_server.conversation import ConversationOrchestrator
from toolhub_server.errors import ValidationError
from toolhub_server.memory import SessionMemoryStore
from toolhub_server.providers import create_provider
from toolhub_server.routers import chat, health, memory, models, servers, tools
from toolhub_server.servers import ServerSpawner
from toolhub_server.tools import ToolRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan context manager for FastAPI application.

    Creates the tool registry, session memory, shared HTTP client, LLM
    provider, conversation orchestrator and server spawner once at startup
    and stores them in app.state. The server specification file is applied
    additively and, if enabled, watched for changes.

    Args:
        app: The FastAPI application instance.

    Yields:
        None: Control is yielded while the app is running.
    """
    settings: ToolhubSettings = app.state.settings

    registry = ToolRegistry(
        usage_log_limit=settings.usage_log_limit,
        usage_log_capacity=settings.usage_log_capacity,
    )
    app.state.registry = registry
    app.state.memory = SessionMemoryStore(max_chars=settings.memory_max_chars)
    app.state.http_client = httpx.AsyncClient()

    # Tests may inject their own provider before startup
    provider = getattr(app.state, "provider", None)
    if provider is None:
        provider = create_provider(settings)
        app.state.provider = provider

    if provider is not None:
        app.state.orchestrator = ConversationOrchestrator.from_settings(
            registry, app.state.memory, provider, settings
        )
        logger.info(f"Initialized {provider.name} provider with model {settings.default_model}")
        if not await provider.check_connection():
            logger.warning(f"Could not connect to the {provider.name} provider")
    else:
        app.state.orchestrator = None

    spawner = ServerSpawner.from_settings(registry, settings)
    app.state.spawner = spawner
    try:
        result = await spawner.reload(prune=False)
        logger.info(f"Spawned {len(result.spawned)} server(s) from specification")
    except ValidationError as e:
        logger.error(f"Ignoring invalid server specification: {e}")
    if settings.watch_specification:
        spawner.start_watching()

    yield

    # Shutdown: Clean up resources
    await spawner.close()
    logger.info("Server spawner closed")
    await app.state.http_client.aclose()
    if provider is not None:
        await provider.close()
        logger.info(f"{provider.name} provider closed")


def create_app(settings: ToolhubSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    This factory function creates a FastAPI instance with all routers,
    middleware, and configuration applied. It can accept an optional
    settings object for testing or explicit configuration.

    Args:
        settings: Optional ToolhubSettings instance. If not provided,
                  settings will be loaded from environment variables.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    if settings is None:
        from toolhub_server.dependencies import get_settings

        settings = get_settings()

    app = FastAPI(
        title="toolhub-server",
        description="Headless tool-orchestration gateway for LLM conversations",
        version=__version__,
        lifespan=lifespan,
    )

    # Store settings in app.state for lifespan access
    app.state.settings = settings

    # Note: FastAPI's type hints for add_middleware are overly strict
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id"],
    )

    # Register routers
    app.include_router(health.router)
    app.include_router(tools.router)
    app.include_router(servers.router)
    app.include_router(chat.router)
    app.include_router(memory.router)
    app.include_router(models.router)

    return app
