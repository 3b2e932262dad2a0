"""Bounded per-session conversation memory.

Messages accumulate per session until the character budget is exceeded. The
oldest half of the log is then collapsed into one summary. If that is not
enough, the oldest messages are dropped, then the oldest summaries, and as a
last resort the newest message is truncated.
"""

import logging
import time
from typing import Any, Callable

from toolhub_server.errors import ValidationError
from toolhub_server.memory.types import (
    AppendResult,
    MemoryMessage,
    MemorySummary,
    SessionMemory,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 12000
MIN_MESSAGES_TO_SUMMARIZE = 6
SUMMARY_LINE_CHARS = 300
DEDUPE_WINDOW_SECONDS = 5.0
VALID_ROLES = ("user", "assistant", "system")


class SessionMemoryStore:
    """In-process store of SessionMemory keyed by session id.

    Memory is created lazily on the first append and lives until cleared.
    """

    def __init__(
        self,
        max_chars: int = DEFAULT_MAX_CHARS,
        dedupe_window: float = DEDUPE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_chars = max_chars
        self.dedupe_window = dedupe_window
        self._clock = clock
        self._sessions: dict[str, SessionMemory] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def append(self, session_id: str, role: str, content: str) -> AppendResult:
        """Append a message and enforce the character budget.

        An identical message with the same role as the last message is
        dropped when it arrives within the dedupe window.

        Raises:
            ValidationError: If the session id, role or content is invalid
        """
        if not isinstance(session_id, str) or not session_id:
            raise ValidationError("Missing session_id")
        if role not in VALID_ROLES:
            raise ValidationError(f"Invalid role: {role!r}")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Invalid content: must be a non-empty string")

        memory = self._sessions.setdefault(session_id, SessionMemory(session_id=session_id))
        now = self._clock()

        last = memory.messages[-1] if memory.messages else None
        if (
            last is not None
            and last.role == role
            and last.content == content
            and now - last.timestamp < self.dedupe_window
        ):
            logger.debug(f"Deduplicated {role} message in session {session_id}")
            return self._result(memory, deduped=True)

        memory.messages.append(MemoryMessage(role=role, content=content, timestamp=now))
        memory.recount()
        self._enforce_budget(memory)
        return self._result(memory, deduped=False)

    def get(self, session_id: str) -> SessionMemory:
        """Return a session's memory, or an empty one if it does not exist."""
        return self._sessions.get(session_id) or SessionMemory(session_id=session_id)

    def build_context(self, session_id: str) -> list[dict[str, Any]]:
        """Replay memory as plain role/content pairs, summaries first."""
        memory = self._sessions.get(session_id)
        if memory is None:
            return []

        context = [
            {"role": "assistant", "content": f"(summary) {summary.content}"}
            for summary in memory.summaries
        ]
        context.extend(
            {"role": message.role, "content": message.content}
            for message in memory.messages
        )
        return context

    def clear(self, session_id: str) -> bool:
        """Forget a session. Returns True if it existed."""
        existed = self._sessions.pop(session_id, None) is not None
        if existed:
            logger.info(f"Cleared memory of session {session_id}")
        return existed

    # --- Budget ---

    def _enforce_budget(self, memory: SessionMemory) -> None:
        if memory.char_count <= self.max_chars:
            return

        if len(memory.messages) >= MIN_MESSAGES_TO_SUMMARIZE:
            self._summarize(memory)

        while memory.char_count > self.max_chars and len(memory.messages) > 1:
            memory.messages.pop(0)
            memory.recount()

        while memory.char_count > self.max_chars and memory.summaries:
            memory.summaries.pop(0)
            memory.recount()

        if memory.char_count > self.max_chars and memory.messages:
            newest = memory.messages[-1]
            overflow = memory.char_count - self.max_chars
            newest.content = newest.content[: max(len(newest.content) - overflow, 0)]
            memory.recount()

    def _summarize(self, memory: SessionMemory) -> None:
        half = len(memory.messages) // 2
        oldest = memory.messages[:half]
        removed_chars = sum(len(message.content) for message in oldest)

        lines = [
            f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"[
                :SUMMARY_LINE_CHARS
            ]
            for message in oldest
        ]
        summary = "\n".join(lines)[:removed_chars]

        memory.messages = memory.messages[half:]
        memory.summaries.append(MemorySummary(content=summary, timestamp=self._clock()))
        memory.recount()
        logger.info(
            f"Summarized {half} messages of session {memory.session_id} "
            f"({removed_chars} -> {len(summary)} chars)"
        )

    def _result(self, memory: SessionMemory, deduped: bool) -> AppendResult:
        return AppendResult(
            session_id=memory.session_id,
            deduped=deduped,
            message_count=len(memory.messages),
            summary_count=len(memory.summaries),
            char_count=memory.char_count,
        )
