from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from loguru import logger

from .memory import SemanticMemoryStore
from .models import MemoryRecord, Turn


MEMORY_SEARCH_LIMIT = 5
MEMORY_HEADER = "[Relevant user information]"
PERSONALIZE_INSTRUCTION = "Use this information to personalize your reply."


@dataclass
class MemoryContext:
    system_prompt: str
    relevant_memories: List[MemoryRecord] = field(default_factory=list)


def format_memories(memories: List[MemoryRecord]) -> str:
    if not memories:
        return ""
    bullets = "\n".join(f"- {m.content}" for m in memories)
    return f"{MEMORY_HEADER}\n{bullets}\n\n{PERSONALIZE_INSTRUCTION}"


class HybridMemoryManager:
    """Combines long-term memory retrieval with the short-term window.

    Every context build both reads and writes long-term memory: relevant
    records are retrieved for the query, then the given turns are offered to
    the store for fact extraction.
    """

    def __init__(self, store: SemanticMemoryStore) -> None:
        self.store = store

    def build_context(self, turns: List[Turn], user_id: str, current_query: str) -> MemoryContext:
        memories = self.store.search_memory(current_query, user_id, MEMORY_SEARCH_LIMIT)
        system_prompt = format_memories(memories)
        if memories:
            logger.debug(f"memory_context | user={user_id} memories={len(memories)}")
        if turns:
            self.store.add_memory(turns, user_id)
        return MemoryContext(system_prompt=system_prompt, relevant_memories=memories)
