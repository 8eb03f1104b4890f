from __future__ import annotations

import re
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Protocol

from loguru import logger

from .models import MemoryRecord, Role, Turn, utcnow


IMPORTANCE_PATTERNS = [
    # identity
    re.compile(r"\bmy name is\b|\bcall me\b|\bi am called\b|我叫|我的名字|我是", re.IGNORECASE),
    # preferences
    re.compile(r"\bi (really )?(like|love|hate|prefer|enjoy|dislike)\b|\bmy favou?rite\b|我喜欢|我讨厌|我偏好", re.IGNORECASE),
    # occupation
    re.compile(r"\bi work (as|at|for|in)\b|\bmy job\b|\bmy (occupation|profession) is\b|我的工作是|我是做", re.IGNORECASE),
    # location
    re.compile(r"\bi live in\b|\bi'?m from\b|\bi am from\b|\bmy address\b|我住|我在|我的地址", re.IGNORECASE),
    # remember-me instructions
    re.compile(r"\bremember\b|\bdon'?t forget\b|\bdo not forget\b|记得|记住|别忘了", re.IGNORECASE),
    # importance markers
    re.compile(r"\bimportant\b|\bcrucial\b|\bmust\b|重要|关键|必须", re.IGNORECASE),
]


def is_important(content: str) -> bool:
    return any(p.search(content or "") for p in IMPORTANCE_PATTERNS)


def tokenize_query(query: str) -> List[str]:
    return (query or "").lower().split()


def relevance(content: str, query_tokens: List[str]) -> float:
    """Fraction of query tokens found as substrings of `content`."""
    if not query_tokens:
        return 0.0
    low = (content or "").lower()
    hits = sum(1 for tok in query_tokens if tok in low)
    return hits / len(query_tokens)


def extract_important(turns: Iterable[Turn]) -> List[Turn]:
    return [t for t in turns if t.role == Role.USER.value and is_important(t.content)]


def _local_id() -> str:
    return f"local-{int(time.time() * 1000)}-{uuid.uuid4().hex[:10]}"


class MemoryBackend(Protocol):
    """Contract shared by the local store and any remote vector store."""

    def add(self, turns: List[Turn], user_id: str, metadata: Optional[Dict[str, Any]]) -> None:
        ...

    def search(self, query: str, user_id: str, limit: int) -> List[MemoryRecord]:
        ...

    def get_all(self, user_id: str) -> List[MemoryRecord]:
        ...

    def delete(self, memory_id: str) -> None:
        ...


class LocalMemoryBackend:
    """In-process heuristic store keyed by user id."""

    def __init__(self) -> None:
        self._store: Dict[str, List[MemoryRecord]] = {}
        # source turn ids already extracted, per user
        self._seen: Dict[str, set] = {}

    def add(self, turns: List[Turn], user_id: str, metadata: Optional[Dict[str, Any]]) -> None:
        records = self._store.setdefault(user_id, [])
        seen = self._seen.setdefault(user_id, set())
        for turn in extract_important(turns):
            if turn.id in seen:
                continue
            seen.add(turn.id)
            now = utcnow()
            records.append(
                MemoryRecord(
                    id=_local_id(),
                    content=turn.content,
                    user_id=user_id,
                    metadata=metadata,
                    created_at=now,
                    updated_at=now,
                )
            )

    def search(self, query: str, user_id: str, limit: int) -> List[MemoryRecord]:
        tokens = tokenize_query(query)
        scored = [m.with_score(relevance(m.content, tokens)) for m in self._store.get(user_id, [])]
        scored = [m for m in scored if m.score > 0]
        # sorted() is stable, ties keep storage order
        scored = sorted(scored, key=lambda m: m.score, reverse=True)
        return scored[:limit]

    def get_all(self, user_id: str) -> List[MemoryRecord]:
        return list(self._store.get(user_id, []))

    def delete(self, memory_id: str) -> None:
        for records in self._store.values():
            for i, record in enumerate(records):
                if record.id == memory_id:
                    del records[i]
                    return


class SemanticMemoryStore:
    """Long-term per-user fact store.

    When a remote backend is given, each operation is attempted there first and
    falls back to the local heuristic store on any failure.
    """

    def __init__(self, remote: Optional[MemoryBackend] = None, local: Optional[LocalMemoryBackend] = None) -> None:
        self.remote = remote
        self.local = local or LocalMemoryBackend()

    def add_memory(
        self,
        turns: List[Turn],
        user_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if turns:
            metadata = {"session_id": turns[0].session_id, **(metadata or {})}
        if self.remote is not None:
            try:
                self.remote.add(turns, user_id, metadata)
                return
            except Exception as e:
                logger.warning(f"memory_remote_fallback | op=add user={user_id} err={e}")
        self.local.add(turns, user_id, metadata)

    def search_memory(self, query: str, user_id: str, limit: int = 10) -> List[MemoryRecord]:
        if self.remote is not None:
            try:
                return list(self.remote.search(query, user_id, limit))
            except Exception as e:
                logger.warning(f"memory_remote_fallback | op=search user={user_id} err={e}")
        return self.local.search(query, user_id, limit)

    def get_all_memories(self, user_id: str) -> List[MemoryRecord]:
        if self.remote is not None:
            try:
                return list(self.remote.get_all(user_id))
            except Exception as e:
                logger.warning(f"memory_remote_fallback | op=get_all user={user_id} err={e}")
        return self.local.get_all(user_id)

    def delete_memory(self, memory_id: str) -> None:
        if self.remote is not None:
            try:
                self.remote.delete(memory_id)
                return
            except Exception as e:
                logger.warning(f"memory_remote_fallback | op=delete id={memory_id} err={e}")
        self.local.delete(memory_id)
