"""Chat API endpoints.

This module provides the chat endpoints. Both run a tool-using conversation.
The streaming endpoint relays its progress events via SSE, and the
non-streaming endpoint collects them into one response.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from toolhub_server.conversation import (
    ConversationOrchestrator,
    ConversationRequest,
    DoneEvent,
    ErrorEvent,
    ModelUsedEvent,
    ToolErrorEvent,
    ToolResultEvent,
    ToolUseEvent,
)
from toolhub_server.dependencies import get_orchestrator
from toolhub_server.models.chat import ChatError, ChatRequest, ChatResponse, ToolCallSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

STREAM_TERMINATOR = "[DONE]"


def _conversation_request(request_body: ChatRequest) -> ConversationRequest:
    return ConversationRequest(
        prompt=request_body.prompt,
        model=request_body.model,
        session_id=request_body.session_id,
        max_turns=request_body.max_turns,
    )


def _pending_call(calls: list[ToolCallSummary], call_id: str) -> ToolCallSummary | None:
    # Ids may repeat across turns; match the latest open call
    for call in reversed(calls):
        if call.id == call_id and call.output is None and call.error is None:
            return call
    return None


@router.post("", response_model=ChatResponse)
async def chat_non_streaming(
    request_body: ChatRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> ChatResponse:
    """Run a tool-using conversation and return its outcome in one response.

    Args:
        request_body: Prompt, model, session id and turn limit
        orchestrator: Injected conversation orchestrator

    Returns:
        ChatResponse with the final answer and every tool call made

    Raises:
        HTTPException: 503 if no LLM provider is configured
    """
    run = orchestrator.start(_conversation_request(request_body))

    substituted = False
    tool_calls: list[ToolCallSummary] = []
    error: ChatError | None = None
    done: DoneEvent | None = None

    async for event in run.events():
        if isinstance(event, ModelUsedEvent):
            substituted = event.substituted
        elif isinstance(event, ToolUseEvent):
            tool_calls.append(
                ToolCallSummary(
                    id=event.id, tool=event.tool, args=event.args, iteration=event.iteration
                )
            )
        elif isinstance(event, ToolResultEvent):
            call = _pending_call(tool_calls, event.id)
            if call is not None:
                call.output = event.output
                call.is_error = event.is_error
        elif isinstance(event, ToolErrorEvent):
            call = _pending_call(tool_calls, event.id)
            if call is not None:
                call.error = event.error
                call.is_error = True
        elif isinstance(event, ErrorEvent):
            error = ChatError(code=event.code, message=event.message)
        elif isinstance(event, DoneEvent):
            done = event

    logger.info(
        f"Conversation {run.session_id} finished in state {run.state.value} "
        f"after {run.turns} turns"
    )
    return ChatResponse(
        session_id=run.session_id,
        model=done.model if done else run.model,
        requested_model=run.requested_model,
        substituted=substituted,
        final=done.final if done else run.final_text,
        turns=done.turns if done else run.turns,
        state=done.state if done else run.state.value,
        tool_calls=tool_calls,
        error=error,
    )


@router.post("/stream")
async def chat_streaming(
    request_body: ChatRequest,
    request: Request,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    """Stream a tool-using conversation via Server-Sent Events (SSE).

    Each frame is ``data: <json>`` where the JSON object carries a ``type``
    of model_used, tool_use, tool_result, tool_error, assistant_text, error
    or done. The stream always ends with a done event followed by a
    literal ``data: [DONE]`` frame. The session id is also returned in the
    ``X-Session-Id`` response header.

    Args:
        request_body: Prompt, model, session id and turn limit
        request: FastAPI request object
        orchestrator: Injected conversation orchestrator

    Returns:
        EventSourceResponse with SSE events

    Raises:
        HTTPException: 503 if no LLM provider is configured
    """
    session_ids: list[str] = []
    run = orchestrator.start(
        _conversation_request(request_body), on_session_id=session_ids.append
    )

    async def event_generator():
        """Relay conversation events as SSE frames."""
        events = run.events()
        try:
            async for event in events:
                # Check if client disconnected
                if await request.is_disconnected():
                    logger.warning(
                        f"Client disconnected during streaming for session {run.session_id}"
                    )
                    return
                yield {"data": event.model_dump_json()}
        finally:
            await events.aclose()

        yield {"data": STREAM_TERMINATOR}

    return EventSourceResponse(
        event_generator(), headers={"X-Session-Id": session_ids[0]}
    )
