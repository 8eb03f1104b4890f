from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Turn:
    id: str
    session_id: str
    role: str
    content: str
    timestamp: datetime
    agent_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class Session:
    id: str
    platform: str
    user_id: str
    group_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)
    metadata: Optional[Dict[str, Any]] = None

    @property
    def is_group(self) -> bool:
        return bool(self.group_id)


@dataclass
class Agent:
    """A persona the engine can answer as.

    `triggers` are matched as case-insensitive substrings of incoming text.
    `llm_override` is merged over the shared LLM config (keys of LLMConfig).
    """

    id: str
    name: str
    system_prompt: str
    triggers: List[str] = field(default_factory=list)
    description: Optional[str] = None
    llm_override: Optional[Dict[str, Any]] = None
    is_default: bool = False

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Agent":
        agent_id = str(obj.get("id") or "").strip()
        if not agent_id:
            raise ValueError(f"Agent definition missing id: {obj!r}")
        return cls(
            id=agent_id,
            name=str(obj.get("name") or agent_id),
            system_prompt=obj.get("system_prompt") or obj.get("systemPrompt") or "",
            triggers=[str(t) for t in (obj.get("triggers") or []) if str(t).strip()],
            description=obj.get("description"),
            llm_override=obj.get("llm_override") or obj.get("llmOverride"),
            is_default=bool(obj.get("is_default", obj.get("isDefault", False))),
        )


@dataclass(frozen=True)
class MemoryRecord:
    id: str
    content: str
    user_id: str
    metadata: Optional[Dict[str, Any]] = None
    score: Optional[float] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def with_score(self, score: float) -> "MemoryRecord":
        return replace(self, score=score)


@dataclass
class GroupChatConfig:
    enabled: bool = False
    agent_interaction: bool = False
    max_agent_chain: Optional[int] = 3
    chain_threshold: float = 0.5

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.chain_threshold) <= 1.0:
            raise ValueError(f"chain_threshold must be within [0, 1], got {self.chain_threshold}")
        if self.max_agent_chain is not None and self.max_agent_chain < 0:
            raise ValueError(f"max_agent_chain must be >= 0, got {self.max_agent_chain}")
