"""Pydantic models for the model listing API."""

from pydantic import BaseModel, Field


class ModelDetail(BaseModel):
    """One model offered by the configured provider.

    Attributes:
        name: Model identifier accepted by the chat endpoints
        display_name: Human-readable name, where the provider has one
        size_mb: Model size in megabytes, where the provider reports it
    """

    name: str = Field(..., description="Model identifier")
    display_name: str | None = Field(default=None, description="Human-readable name")
    size_mb: float | None = Field(default=None, description="Model size in MB")


class ModelListResponse(BaseModel):
    """Response model for listing the provider's models."""

    provider: str = Field(..., description="Name of the configured provider")
    default_model: str = Field(..., description="Model used when a request names none")
    fallback_models: list[str] = Field(default_factory=list)
    models: list[ModelDetail] = Field(..., description="Models the provider offers")
