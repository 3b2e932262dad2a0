"""Conversation orchestration and streamed progress events."""

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
from toolhub_server.conversation.orchestrator import (
    ConversationOrchestrator,
    ConversationRequest,
    ConversationRun,
    ConversationState,
    build_system_prompt,
)

__all__ = [
    "AssistantTextEvent",
    "ConversationEvent",
    "ConversationOrchestrator",
    "ConversationRequest",
    "ConversationRun",
    "ConversationState",
    "DoneEvent",
    "ErrorEvent",
    "ModelUsedEvent",
    "ToolErrorEvent",
    "ToolResultEvent",
    "ToolUseEvent",
    "build_system_prompt",
]
