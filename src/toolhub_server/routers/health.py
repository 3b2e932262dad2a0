"""Health check endpoint router."""

import logging

from fastapi import APIRouter, Request

from toolhub_server import __version__
from toolhub_server.models.health import HealthResponse
from toolhub_server.providers import ChatProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint.

    Returns the current health status and version of the toolhub-server,
    the number of registered tools and server entries, and whether the
    configured LLM provider is reachable.

    Args:
        request: The FastAPI request object.

    Returns:
        HealthResponse: Health status and version information.
    """
    state = request.app.state
    provider: ChatProvider | None = getattr(state, "provider", None)

    provider_connected = None
    if provider is not None:
        try:
            provider_connected = await provider.check_connection()
            logger.debug(f"Provider connectivity check: {provider_connected}")
        except Exception as e:
            logger.warning(f"Provider connectivity check failed: {e}")
            provider_connected = False

    registry = getattr(state, "registry", None)
    spawner = getattr(state, "spawner", None)

    return HealthResponse(
        status="ok",
        version=__version__,
        provider=provider.name if provider is not None else None,
        provider_connected=provider_connected,
        tool_count=len(registry) if registry is not None else 0,
        server_count=len(spawner.list_entries()) if spawner is not None else 0,
    )
