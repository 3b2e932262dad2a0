"""HTTP forwarding handler for admin-registered tools."""

import json
import logging
from typing import Any

import httpx

from toolhub_server.tools.results import text_result
from toolhub_server.tools.types import ToolHandler

logger = logging.getLogger(__name__)

DEFAULT_FORWARD_TIMEOUT = 30.0


def build_forwarding_handler(
    invoke_url: str,
    http_client: httpx.AsyncClient,
    timeout: float = DEFAULT_FORWARD_TIMEOUT,
) -> ToolHandler:
    """Create a handler that POSTs the tool arguments to a remote URL.

    The response body becomes a single text block. JSON bodies are
    pretty-printed. Any HTTP or network failure is returned as an
    ``Invocation error: ...`` text block instead of being raised.

    Args:
        invoke_url: Target URL receiving the arguments as a JSON body
        http_client: Shared httpx client owned by the application
        timeout: Per-request timeout in seconds

    Returns:
        Async handler suitable for a ToolDefinition
    """

    async def forward(args: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await http_client.post(
                invoke_url, json=args or {}, timeout=timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Forwarding to {invoke_url} failed: {e}")
            return text_result(f"Invocation error: {e}", is_error=True)

        text = response.text
        try:
            text = json.dumps(response.json(), indent=2, ensure_ascii=False)
        except ValueError:
            pass
        return text_result(text)

    return forward
