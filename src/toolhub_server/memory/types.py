"""Data types for per-session conversation memory."""

from dataclasses import dataclass, field


@dataclass
class MemoryMessage:
    """One remembered conversation message."""

    role: str
    content: str
    timestamp: float


@dataclass
class MemorySummary:
    """A condensed block of older messages."""

    content: str
    timestamp: float


@dataclass
class SessionMemory:
    """Bounded rolling memory of one session.

    Attributes:
        session_id: Client-chosen or generated session identifier
        messages: Raw messages, oldest first
        summaries: Summaries of evicted messages, oldest first
        char_count: Total characters across messages and summaries
    """

    session_id: str
    messages: list[MemoryMessage] = field(default_factory=list)
    summaries: list[MemorySummary] = field(default_factory=list)
    char_count: int = 0

    def recount(self) -> int:
        self.char_count = sum(len(m.content) for m in self.messages) + sum(
            len(s.content) for s in self.summaries
        )
        return self.char_count


@dataclass
class AppendResult:
    """Outcome of appending one message."""

    session_id: str
    deduped: bool
    message_count: int
    summary_count: int
    char_count: int
