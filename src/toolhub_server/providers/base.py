"""Provider-neutral types and base class for LLM chat providers.

The orchestrator only talks to ChatProvider. Each provider translates
between its own message shapes and the neutral ContentBlock list.
"""

from dataclasses import dataclass, field
from typing import Any

from toolhub_server.tools import ProviderKind


@dataclass
class ContentBlock:
    """A text block or a tool-use request from the model."""

    type: str
    text: str = ""
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelResponse:
    """One model turn.

    Attributes:
        model: Model identifier that produced the response
        blocks: Content blocks in response order
        assistant_message: The response as a provider-shaped message, ready
                           to be appended to the conversation
    """

    model: str
    blocks: list[ContentBlock]
    assistant_message: dict[str, Any]

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.blocks if block.type == "text")

    @property
    def tool_uses(self) -> list[ContentBlock]:
        return [block for block in self.blocks if block.type == "tool_use"]


@dataclass
class ModelInfo:
    """A model the provider can serve."""

    name: str
    display_name: str | None = None
    size_mb: float | None = None


@dataclass
class ToolOutcome:
    """Result of one executed tool, to be reported back to the model."""

    tool_use_id: str
    name: str
    content: str
    is_error: bool = False


class ChatProvider:
    """Base class for chat providers using OpenAI-style message shapes."""

    kind: ProviderKind = ProviderKind.OPENAI
    name: str = "base"

    async def create_message(
        self,
        model: str,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        max_tokens: int,
    ) -> ModelResponse:
        """Run one model turn.

        Raises:
            UpstreamModelError: If the provider rejects the model identifier
        """
        raise NotImplementedError

    def user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "content": text}

    def context_messages(self, context: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert remembered role/content pairs into provider messages."""
        return [{"role": item["role"], "content": item["content"]} for item in context]

    def tool_result_messages(self, outcomes: list[ToolOutcome]) -> list[dict[str, Any]]:
        return [
            {"role": "tool", "tool_call_id": outcome.tool_use_id, "content": outcome.content}
            for outcome in outcomes
        ]

    async def list_models(self) -> list[ModelInfo]:
        """Return the models this provider offers. Empty when it cannot tell."""
        return []

    async def check_connection(self) -> bool:
        return True

    async def close(self) -> None:
        pass
