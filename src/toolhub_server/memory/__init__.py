"""Per-session conversation memory."""

from toolhub_server.memory.store import SessionMemoryStore
from toolhub_server.memory.types import (
    AppendResult,
    MemoryMessage,
    MemorySummary,
    SessionMemory,
)

__all__ = [
    "AppendResult",
    "MemoryMessage",
    "MemorySummary",
    "SessionMemory",
    "SessionMemoryStore",
]
