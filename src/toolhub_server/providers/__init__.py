"""LLM chat providers used by the conversation orchestrator."""

import logging

from toolhub_server.config import ToolhubSettings
from toolhub_server.providers.anthropic import AnthropicProvider
from toolhub_server.providers.base import (
    ChatProvider,
    ContentBlock,
    ModelInfo,
    ModelResponse,
    ToolOutcome,
)
from toolhub_server.providers.ollama import OllamaProvider

logger = logging.getLogger(__name__)


def create_provider(settings: ToolhubSettings) -> ChatProvider | None:
    """Build the configured provider, or None if it cannot be configured."""
    if settings.provider == "ollama":
        return OllamaProvider(host=settings.ollama_host)
    if not settings.anthropic_api_key:
        logger.warning("TOOLHUB_ANTHROPIC_API_KEY is not set; chat is unavailable")
        return None
    return AnthropicProvider(api_key=settings.anthropic_api_key)


__all__ = [
    "AnthropicProvider",
    "ChatProvider",
    "ContentBlock",
    "ModelInfo",
    "ModelResponse",
    "OllamaProvider",
    "ToolOutcome",
    "create_provider",
]
