"""Models router for listing the models of the configured provider."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from toolhub_server.conversation import ConversationOrchestrator
from toolhub_server.dependencies import get_orchestrator
from toolhub_server.models.models import ModelDetail, ModelListResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["models"])


@router.get("/models", response_model=ModelListResponse)
async def list_models(
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ModelListResponse:
    """List the models the configured provider offers.

    The default and fallback models are reported alongside, whether or not
    the provider lists them.

    Args:
        orchestrator: The conversation orchestrator (injected).

    Returns:
        ModelListResponse: Provider name, default model and available models.

    Raises:
        HTTPException: 503 if no provider is configured, 502 if the provider
            request fails.
    """
    provider = orchestrator.provider
    try:
        model_infos = await provider.list_models()
    except Exception as e:
        logger.error(f"Failed to list models: {e}")
        raise HTTPException(
            status_code=502,
            detail={
                "error": {
                    "code": "upstream_error",
                    "message": f"Failed to list models from {provider.name}: {e}",
                    "details": {"provider": provider.name},
                }
            },
        )

    models = [
        ModelDetail(name=info.name, display_name=info.display_name, size_mb=info.size_mb)
        for info in model_infos
    ]
    logger.info(f"Listed {len(models)} models")
    return ModelListResponse(
        provider=provider.name,
        default_model=orchestrator.default_model,
        fallback_models=orchestrator.fallback_models,
        models=models,
    )
