"""Health check response model."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for the health check endpoint.

    Attributes:
        status: Health status indicator ("ok" or "error").
        version: The version of toolhub-server.
        provider: Name of the configured LLM provider, if any.
        provider_connected: Whether the provider answered a connectivity check.
        tool_count: Number of registered tools.
        server_count: Number of external server entries.
    """

    status: str = Field(..., description="Health status of the service")
    version: str = Field(..., description="Version of toolhub-server")
    provider: str | None = Field(
        default=None, description="Configured LLM provider"
    )
    provider_connected: bool | None = Field(
        default=None, description="Whether the LLM provider is reachable"
    )
    tool_count: int = Field(default=0, description="Registered tools")
    server_count: int = Field(default=0, description="External server entries")
