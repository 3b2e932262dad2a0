"""Session memory API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from toolhub_server.dependencies import get_memory_store
from toolhub_server.errors import ValidationError
from toolhub_server.memory import SessionMemoryStore
from toolhub_server.models.memory import (
    AppendMemoryRequest,
    AppendMemoryResponse,
    ClearMemoryRequest,
    ClearMemoryResponse,
    MemoryMessageResponse,
    MemorySummaryResponse,
    SessionMemoryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/memory", tags=["memory"])


@router.post("/append", response_model=AppendMemoryResponse)
async def append_memory(
    request_body: AppendMemoryRequest,
    memory: SessionMemoryStore = Depends(get_memory_store),
) -> AppendMemoryResponse:
    """Append one message to a session's memory.

    Raises:
        HTTPException: 400 if the role or content is invalid
    """
    try:
        result = memory.append(
            request_body.session_id, request_body.role, request_body.content
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={
                "error": {
                    "code": "invalid_memory_message",
                    "message": str(e),
                    "details": {"session_id": request_body.session_id},
                }
            },
        )

    return AppendMemoryResponse(
        session_id=result.session_id,
        deduped=result.deduped,
        message_count=result.message_count,
        summary_count=result.summary_count,
        char_count=result.char_count,
    )


@router.get("/{session_id}", response_model=SessionMemoryResponse)
async def get_memory(
    session_id: str, memory: SessionMemoryStore = Depends(get_memory_store)
) -> SessionMemoryResponse:
    """Return a session's messages and summaries. Unknown sessions are empty."""
    session = memory.get(session_id)
    return SessionMemoryResponse(
        session_id=session.session_id,
        messages=[
            MemoryMessageResponse(role=m.role, content=m.content, timestamp=m.timestamp)
            for m in session.messages
        ],
        summaries=[
            MemorySummaryResponse(content=s.content, timestamp=s.timestamp)
            for s in session.summaries
        ],
        char_count=session.char_count,
    )


@router.post("/clear", response_model=ClearMemoryResponse)
async def clear_memory(
    request_body: ClearMemoryRequest,
    memory: SessionMemoryStore = Depends(get_memory_store),
) -> ClearMemoryResponse:
    """Forget a session's memory."""
    cleared = memory.clear(request_body.session_id)
    return ClearMemoryResponse(session_id=request_body.session_id, cleared=cleared)
