"""Multi-turn, tool-using conversations with an LLM provider.

This module provides the ConversationOrchestrator class which handles:
- Driving the model across turns until it answers without tool use
- Executing requested tools and feeding their results back
- Substituting fallback models when the requested one is rejected
- Streaming structured progress events for each run
- Reading and writing per-session memory
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable

from toolhub_server.config import ToolhubSettings
from toolhub_server.conversation.events import (
    AssistantTextEvent,
    ConversationEvent,
    DoneEvent,
    ErrorEvent,
    ModelUsedEvent,
    ToolErrorEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from toolhub_server.errors import (
    ToolExecutionError,
    ToolhubError,
    UpstreamModelError,
)
from toolhub_server.memory import SessionMemoryStore
from toolhub_server.providers import ChatProvider, ContentBlock, ModelResponse, ToolOutcome
from toolhub_server.tools import (
    ToolRegistry,
    ToolUsageLogEntry,
    normalize_tool_result,
    result_to_text,
)

logger = logging.getLogger(__name__)

TEXT_CHUNK_CHARS = 200
FINAL_TEXT_CHARS = 8000
USAGE_SUMMARY_CHARS = 200


class ConversationState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    STREAMING = "streaming"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ConversationRequest:
    """One user prompt to run through the orchestrator."""

    prompt: str
    model: str | None = None
    session_id: str | None = None
    max_turns: int | None = None


def build_system_prompt(registry: ToolRegistry) -> str:
    """Describe the registered tools to the model."""
    tool_lines = "\n".join(
        f"- {tool.name}: {tool.description}" for tool in registry.list_tool_defs()
    )
    return (
        "You are a helpful assistant.\n"
        "You currently have access to the following runtime tools:\n"
        f"{tool_lines or '- (no tools registered)'}\n"
        "Call a tool whenever the answer depends on information or actions it "
        "provides, and base your answer only on what the tool returned. Never "
        "invent tools or tool output. When asked about your capabilities, list "
        "only the tools above. Keep answers concise and relevant."
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ConversationRun:
    """A single conversation started by ConversationOrchestrator.start().

    Iterate events() exactly once. Closing the iterator early stops the run
    after the current step. Tools that already ran are not undone.
    """

    def __init__(
        self,
        orchestrator: "ConversationOrchestrator",
        request: ConversationRequest,
        session_id: str,
    ) -> None:
        self._orchestrator = orchestrator
        self.request = request
        self.session_id = session_id
        self.requested_model = request.model or orchestrator.default_model
        self.model = self.requested_model
        self.max_turns = request.max_turns or orchestrator.max_turns
        self.state = ConversationState.AWAITING_MODEL
        self.turns = 0
        self.final_text = ""
        self._tried_models: set[str] = set()
        self._model_announced = False
        self._tool_names: dict[str, str] = {}

    async def events(self) -> AsyncIterator[ConversationEvent]:
        """Run the conversation and yield progress events.

        Yields:
            model_used, tool_use, tool_result, tool_error, assistant_text and
            error events, always followed by exactly one done event
        """
        orchestrator = self._orchestrator
        provider = orchestrator.provider
        memory = orchestrator.memory

        try:
            context = memory.build_context(self.session_id)
            memory.append(self.session_id, "user", self.request.prompt)
            messages = provider.context_messages(context)
            messages.append(provider.user_message(self.request.prompt))

            for turn in range(1, self.max_turns + 1):
                self.turns = turn
                self.state = ConversationState.AWAITING_MODEL

                response = await self._call_model(messages)
                if not self._model_announced:
                    self._model_announced = True
                    yield ModelUsedEvent(
                        model=self.model,
                        requested_model=self.requested_model,
                        substituted=self.model != self.requested_model,
                    )

                text = response.text
                if text.strip():
                    self.final_text = text
                    for start in range(0, len(text), TEXT_CHUNK_CHARS):
                        yield AssistantTextEvent(text=text[start : start + TEXT_CHUNK_CHARS])

                tool_uses = response.tool_uses
                if not tool_uses:
                    self.state = ConversationState.STREAMING
                    break

                self.state = ConversationState.EXECUTING_TOOLS
                messages.append(response.assistant_message)

                outcomes: list[ToolOutcome] = []
                for block in tool_uses:
                    call_id = block.id or f"call_{uuid.uuid4().hex[:10]}"
                    yield ToolUseEvent(
                        tool=self._original_name(block.name or ""),
                        args=block.input,
                        id=call_id,
                        iteration=turn,
                    )
                    outcome, event = await self._run_tool(block, call_id, turn)
                    outcomes.append(outcome)
                    yield event

                messages.extend(provider.tool_result_messages(outcomes))
            else:
                logger.info(
                    f"Session {self.session_id} reached the limit of {self.max_turns} turns"
                )

            self.state = ConversationState.DONE
            if self.final_text:
                memory.append(self.session_id, "assistant", self.final_text)

        except Exception as e:
            logger.error(f"Conversation {self.session_id} failed: {e}")
            self.state = ConversationState.FAILED
            if isinstance(e, UpstreamModelError):
                code = "upstream_model_error"
            elif isinstance(e, ToolhubError):
                code = "conversation_error"
            else:
                code = "upstream_error"
            yield ErrorEvent(code=code, message=str(e) or type(e).__name__)

        yield DoneEvent(
            final=self.final_text[:FINAL_TEXT_CHARS],
            model=self.model,
            session_id=self.session_id,
            turns=self.turns,
            state=self.state.value,
        )

    async def _call_model(self, messages: list[dict[str, Any]]) -> ModelResponse:
        """Call the provider, walking the fallback chain on rejected models.

        Raises:
            UpstreamModelError: If the requested and every fallback model fail
        """
        orchestrator = self._orchestrator
        provider = orchestrator.provider
        system = build_system_prompt(orchestrator.registry)
        tool_set = orchestrator.registry.build_provider_tool_set(provider.kind)
        self._tool_names = tool_set.to_original
        tools = tool_set.tools

        async def attempt(model: str) -> ModelResponse:
            return await provider.create_message(
                model=model,
                system=system,
                messages=messages,
                tools=tools,
                max_tokens=orchestrator.max_tokens,
            )

        try:
            return await attempt(self.model)
        except UpstreamModelError as e:
            self._tried_models.add(self.model)
            last_error = e

        for candidate in orchestrator.fallback_models:
            if candidate in self._tried_models:
                continue
            self._tried_models.add(candidate)
            try:
                response = await attempt(candidate)
            except UpstreamModelError as e:
                last_error = e
                continue
            logger.warning(f"Model {self.model} was rejected; continuing with {candidate}")
            self.model = candidate
            return response

        raise last_error

    def _original_name(self, provider_name: str) -> str:
        """Resolve a tool_use name against the tool set sent on this turn."""
        return self._tool_names.get(provider_name, provider_name)

    async def _run_tool(
        self, block: ContentBlock, call_id: str, turn: int
    ) -> tuple[ToolOutcome, ToolResultEvent | ToolErrorEvent]:
        orchestrator = self._orchestrator
        registry = orchestrator.registry
        provider_name = block.name or ""
        name = self._original_name(provider_name)
        args = block.input or {}
        started_at = _now()

        tool = registry.get_tool(name)
        try:
            if tool is None or tool.handler is None:
                raise ToolExecutionError(name, "tool is not registered")
            try:
                raw = await tool.handler(args)
            except Exception as e:
                raise ToolExecutionError(name, str(e) or type(e).__name__) from e
        except ToolExecutionError as e:
            logger.warning(str(e))
            registry.record_usage(
                ToolUsageLogEntry(
                    name=name,
                    args=args,
                    started_at=started_at,
                    finished_at=_now(),
                    error=str(e),
                )
            )
            outcome = ToolOutcome(
                tool_use_id=call_id, name=provider_name, content=f"Error: {e}", is_error=True
            )
            return outcome, ToolErrorEvent(tool=name, id=call_id, error=str(e), iteration=turn)

        text = result_to_text(raw)
        is_error = bool(normalize_tool_result(raw).get("isError"))
        registry.record_usage(
            ToolUsageLogEntry(
                name=name,
                args=args,
                started_at=started_at,
                finished_at=_now(),
                summary=text[:USAGE_SUMMARY_CHARS],
            )
        )
        outcome = ToolOutcome(
            tool_use_id=call_id,
            name=provider_name,
            content=text[: orchestrator.tool_result_message_chars],
            is_error=is_error,
        )
        event = ToolResultEvent(
            tool=name,
            id=call_id,
            output=text[: orchestrator.tool_result_preview_chars],
            is_error=is_error,
            iteration=turn,
        )
        return outcome, event


class ConversationOrchestrator:
    """Starts conversation runs against shared registry, memory and provider."""

    def __init__(
        self,
        registry: ToolRegistry,
        memory: SessionMemoryStore,
        provider: ChatProvider,
        default_model: str,
        fallback_models: list[str] | None = None,
        max_turns: int = 5,
        max_tokens: int = 1024,
        tool_result_preview_chars: int = 4000,
        tool_result_message_chars: int = 8000,
    ) -> None:
        self.registry = registry
        self.memory = memory
        self.provider = provider
        self.default_model = default_model
        self.fallback_models = list(fallback_models or [])
        self.max_turns = max_turns
        self.max_tokens = max_tokens
        self.tool_result_preview_chars = tool_result_preview_chars
        self.tool_result_message_chars = tool_result_message_chars

    @classmethod
    def from_settings(
        cls,
        registry: ToolRegistry,
        memory: SessionMemoryStore,
        provider: ChatProvider,
        settings: ToolhubSettings,
    ) -> "ConversationOrchestrator":
        return cls(
            registry,
            memory,
            provider,
            default_model=settings.default_model,
            fallback_models=settings.fallback_models,
            max_turns=settings.max_turns,
            max_tokens=settings.max_tokens,
            tool_result_preview_chars=settings.tool_result_preview_chars,
            tool_result_message_chars=settings.tool_result_message_chars,
        )

    def start(
        self,
        request: ConversationRequest,
        on_session_id: Callable[[str], None] | None = None,
    ) -> ConversationRun:
        """Create a run and assign its session id.

        Args:
            request: The prompt and per-run options
            on_session_id: Invoked exactly once with the session id, which is
                           generated when the request does not carry one

        Returns:
            The run. Iterate run.events() to execute it.
        """
        session_id = request.session_id or uuid.uuid4().hex[:10]
        run = ConversationRun(self, request, session_id)
        if on_session_id is not None:
            on_session_id(session_id)
        logger.info(f"Started conversation {session_id} with model {run.requested_model}")
        return run
