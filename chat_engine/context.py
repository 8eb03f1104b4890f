from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .config import MemoryConfig
from .models import Role, Turn, utcnow


MIN_COMPACTION_TURNS = 10
SUMMARY_TURN_ID = "summary"
SUMMARY_HEADER = "[History summary]"

Summarizer = Callable[[List[Turn]], str]


@dataclass
class ContextStats:
    message_count: int
    summary_count: int


def simple_summary(turns: List[Turn]) -> str:
    user_msgs = [t.content for t in turns if t.role == Role.USER.value]
    assistant_msgs = [t.content for t in turns if t.role == Role.ASSISTANT.value]
    topics = ", ".join(user_msgs[:3])
    return (
        f"Conversation covered {len(user_msgs)} user questions and "
        f"{len(assistant_msgs)} replies. Main topics: {topics}..."
    )


class SessionContextStore:
    """Per-session sliding window of turns, compacted into summaries.

    On every append the compaction check runs before the window trim, so a
    window that reaches `compress_threshold` is halved first and only then
    trimmed down to `short_term_window`.
    """

    def __init__(self, config: MemoryConfig, summarizer: Optional[Summarizer] = None) -> None:
        self.config = config
        self.summarizer = summarizer or simple_summary
        self._windows: Dict[str, List[Turn]] = {}
        self._summaries: Dict[str, List[str]] = {}

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        agent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Turn:
        role_value = Role(role).value
        turn = Turn(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role_value,
            content=content,
            timestamp=utcnow(),
            agent_id=agent_id,
            metadata=metadata,
        )
        window = self._windows.setdefault(session_id, [])
        window.append(turn)

        if len(window) >= self.config.compress_threshold:
            self._compact(session_id)
            window = self._windows[session_id]

        overflow = len(window) - self.config.short_term_window
        if overflow > 0:
            del window[:overflow]
        return turn

    def get_context(self, session_id: str) -> List[Turn]:
        window = list(self._windows.get(session_id, []))
        summaries = self._summaries.get(session_id) or []
        if not summaries:
            return window
        summary_turn = Turn(
            id=SUMMARY_TURN_ID,
            session_id=session_id,
            role=Role.SYSTEM.value,
            content=f"{SUMMARY_HEADER}\n" + "\n\n".join(summaries),
            timestamp=utcnow(),
        )
        return [summary_turn] + window

    def clear_context(self, session_id: str) -> None:
        self._windows.pop(session_id, None)
        self._summaries.pop(session_id, None)

    def get_stats(self, session_id: str) -> ContextStats:
        return ContextStats(
            message_count=len(self._windows.get(session_id, [])),
            summary_count=len(self._summaries.get(session_id, [])),
        )

    def get_summaries(self, session_id: str) -> List[str]:
        return list(self._summaries.get(session_id, []))

    def _compact(self, session_id: str) -> None:
        window = self._windows.get(session_id, [])
        if len(window) < MIN_COMPACTION_TURNS:
            return
        mid = len(window) // 2
        older, newer = window[:mid], window[mid:]
        summary = self.summarizer(older)
        self._summaries.setdefault(session_id, []).append(summary)
        self._windows[session_id] = newer
        logger.info(f"context_compacted | session={session_id} compressed={len(older)} kept={len(newer)}")
