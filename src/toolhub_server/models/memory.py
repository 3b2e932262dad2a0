"""Pydantic models for the session memory API."""

from pydantic import BaseModel, Field


class AppendMemoryRequest(BaseModel):
    session_id: str = Field(min_length=1)
    role: str = Field(description="user, assistant or system")
    content: str


class AppendMemoryResponse(BaseModel):
    session_id: str
    deduped: bool = False
    message_count: int
    summary_count: int
    char_count: int


class MemoryMessageResponse(BaseModel):
    role: str
    content: str
    timestamp: float


class MemorySummaryResponse(BaseModel):
    content: str
    timestamp: float


class SessionMemoryResponse(BaseModel):
    session_id: str
    messages: list[MemoryMessageResponse] = Field(default_factory=list)
    summaries: list[MemorySummaryResponse] = Field(default_factory=list)
    char_count: int = 0


class ClearMemoryRequest(BaseModel):
    session_id: str = Field(min_length=1)


class ClearMemoryResponse(BaseModel):
    session_id: str
    cleared: bool
