"""Ollama chat provider.

This module wraps ollama.AsyncClient for non-streaming tool-calling turns.
Ollama does not assign ids to tool calls, so ids are generated here and
results are returned as ``role: tool`` messages carrying the tool name.
"""

import json
import logging
import uuid
from typing import Any

import httpx
import ollama

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


class OllamaProvider(ChatProvider):
    """Chat provider backed by a local or remote Ollama server.

    Attributes:
        host: The Ollama server URL (e.g., "http://localhost:11434")
        _client: The underlying ollama.AsyncClient instance
    """

    kind = ProviderKind.OPENAI
    name = "ollama"

    def __init__(self, host: str, client: ollama.AsyncClient | None = None) -> None:
        """Initialize the provider.

        Args:
            host: The Ollama server URL
            client: Optional preconfigured client
        """
        self.host = host
        self._client = client or ollama.AsyncClient(host=host)
        logger.info(f"OllamaProvider initialized with host: {host}")

    async def create_message(
        self,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
    ) -> ModelResponse:
        payload = list(messages)
        if system:
            payload.insert(0, {"role": "system", "content": system})

        wrapped_tools = [{"type": "function", "function": tool} for tool in tools]

        try:
            response = await self._client.chat(
                model=model,
                messages=payload,
                tools=wrapped_tools or None,
                stream=False,
                options={"num_predict": max_tokens},
            )
        except ollama.ResponseError as e:
            if e.status_code == 404:
                logger.warning(f"Ollama model not found: {model}")
                raise UpstreamModelError(f"Model not found: {model}", model=model) from e
            logger.error(f"Ollama API error for model {model}: {e}")
            raise

        # Convert the response to a dict if it's not already
        data = response.model_dump() if hasattr(response, "model_dump") else dict(response)
        message = data.get("message") or {}
        text = message.get("content") or ""

        blocks: list[ContentBlock] = []
        if text:
            blocks.append(ContentBlock(type="text", text=text))

        tool_calls: list[dict[str, Any]] = []
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except ValueError:
                    logger.warning(f"Discarding unparseable tool arguments: {arguments[:200]}")
                    arguments = {}
            name = function.get("name") or ""
            blocks.append(
                ContentBlock(
                    type="tool_use",
                    id=f"call_{uuid.uuid4().hex[:10]}",
                    name=name,
                    input=arguments,
                )
            )
            tool_calls.append({"function": {"name": name, "arguments": arguments}})

        assistant_message: dict[str, Any] = {"role": "assistant", "content": text}
        if tool_calls:
            assistant_message["tool_calls"] = tool_calls

        return ModelResponse(
            model=data.get("model") or model,
            blocks=blocks,
            assistant_message=assistant_message,
        )

    def tool_result_messages(self, outcomes: list[ToolOutcome]) -> list[dict[str, Any]]:
        return [
            {"role": "tool", "tool_name": outcome.name, "content": outcome.content}
            for outcome in outcomes
        ]

    async def list_models(self) -> list[ModelInfo]:
        """Return the models pulled on the Ollama server."""
        response = await self._client.list()
        models: list[ModelInfo] = []
        for model_obj in response.models:
            if not model_obj.model:
                continue
            size_mb = round(model_obj.size / (1024 * 1024), 1) if model_obj.size else None
            models.append(ModelInfo(name=model_obj.model, size_mb=size_mb))
        logger.debug(f"Retrieved {len(models)} models from Ollama")
        return models

    async def check_connection(self) -> bool:
        """Check if the Ollama server is reachable."""
        try:
            await self._client.list()
            logger.debug("Ollama connection check: successful")
            return True
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            logger.warning(f"Ollama connection check failed: {e}")
            return False
