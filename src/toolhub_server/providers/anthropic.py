"""Anthropic Messages API provider."""

import logging
from typing import Any

import anthropic

from toolhub_server.errors import UpstreamModelError
from toolhub_server.providers.base import (
    ChatProvider,
    ContentBlock,
    ModelInfo,
    ModelResponse,
    ToolOutcome,
)
from toolhub_server.tools import ProviderKind

logger = logging.getLogger(__name__)


class AnthropicProvider(ChatProvider):
    """Chat provider backed by anthropic.AsyncAnthropic.

    Tools are sent with sanitized names in the ``input_schema`` shape, and
    tool results go back as ``tool_result`` blocks in a single user message.
    """

    kind = ProviderKind.ANTHROPIC
    name = "anthropic"

    def __init__(
        self, api_key: str | None = None, client: anthropic.AsyncAnthropic | None = None
    ) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        logger.info("AnthropicProvider initialized")

    async def create_message(
        self,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
    ) -> ModelResponse:
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        if system:
            request["system"] = system
        if tools:
            request["tools"] = tools

        try:
            response = await self._client.messages.create(**request)
        except anthropic.NotFoundError as e:
            logger.warning(f"Anthropic rejected model {model}: {e}")
            raise UpstreamModelError(f"Model not found: {model}", model=model) from e

        blocks: list[ContentBlock] = []
        content: list[dict[str, Any]] = []
        for block in response.content:
            if block.type == "text":
                blocks.append(ContentBlock(type="text", text=block.text))
                content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                arguments = block.input if isinstance(block.input, dict) else {}
                blocks.append(
                    ContentBlock(
                        type="tool_use", id=block.id, name=block.name, input=arguments
                    )
                )
                content.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": arguments}
                )
            else:
                logger.debug(f"Ignoring Anthropic content block of type {block.type}")

        return ModelResponse(
            model=response.model or model,
            blocks=blocks,
            assistant_message={"role": "assistant", "content": content},
        )

    def context_messages(self, context: list[dict[str, Any]]) -> list[dict[str, Any]]:
        # The Messages API only accepts user and assistant turns
        return [
            {
                "role": "assistant" if item["role"] == "assistant" else "user",
                "content": [{"type": "text", "text": item["content"]}],
            }
            for item in context
        ]

    def tool_result_messages(self, outcomes: list[ToolOutcome]) -> list[dict[str, Any]]:
        if not outcomes:
            return []
        results = []
        for outcome in outcomes:
            result: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": outcome.tool_use_id,
                "content": outcome.content,
            }
            if outcome.is_error:
                result["is_error"] = True
            results.append(result)
        return [{"role": "user", "content": results}]

    async def list_models(self) -> list[ModelInfo]:
        """Return the first page of models the API key can use."""
        page = await self._client.models.list()
        models = [
            ModelInfo(name=model.id, display_name=model.display_name) for model in page.data
        ]
        logger.debug(f"Retrieved {len(models)} models from Anthropic")
        return models

    async def check_connection(self) -> bool:
        try:
            await self._client.models.list(limit=1)
            return True
        except anthropic.APIError as e:
            logger.warning(f"Anthropic connection check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.close()
        logger.debug("AnthropicProvider closed")
