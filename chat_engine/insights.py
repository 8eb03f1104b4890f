from __future__ import annotations

import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .memory import SemanticMemoryStore
from .models import MemoryRecord, utcnow


RELATED_THRESHOLD = 0.3

_TYPE_PATTERNS = [
    ("preference", re.compile(r"喜欢|讨厌|偏好|最爱|\b(hate|love|like|prefer|favou?rite)\b", re.IGNORECASE)),
    ("emotion", re.compile(r"开心|难过|生气|焦虑|害怕|\b(happy|sad|angry|anxious|afraid)\b", re.IGNORECASE)),
    ("event", re.compile(r"今天|昨天|明天|上周|下周|周末|\b(today|yesterday|tomorrow|last week|next week|weekend)\b", re.IGNORECASE)),
    ("fact", re.compile(r"是|有|在|工作|住|叫|\b(i am|i'm|i have|i work|i live|my name)\b", re.IGNORECASE)),
]

_TYPE_BONUS = {"preference": 0.2, "fact": 0.15, "emotion": 0.1}

_WORD_RE = re.compile(r"[^\w一-龥]+")


def tokenize(text: str) -> List[str]:
    return [w for w in _WORD_RE.sub(" ", (text or "").lower()).split() if w]


def classify_memory(content: str) -> str:
    for kind, pattern in _TYPE_PATTERNS:
        if pattern.search(content or ""):
            return kind
    return "identity"


def jaccard(a: str, b: str) -> float:
    wa, wb = set(tokenize(a)), set(tokenize(b))
    union = wa | wb
    if not union:
        return 0.0
    return len(wa & wb) / len(union)


def importance(record: MemoryRecord, now: Optional[datetime] = None) -> float:
    """Heuristic 0..1 weight: type bonus, minus up to 0.2 for age (0.01/day)."""
    now = now or utcnow()
    score = 0.55 + _TYPE_BONUS.get(classify_memory(record.content), 0.0)
    days_old = max(0.0, (now - record.created_at).total_seconds() / 86400)
    score -= min(days_old * 0.01, 0.2)
    return max(0.0, min(1.0, score))


@dataclass
class MemoryNode:
    id: str
    type: str
    content: str
    importance: float
    created_at: datetime
    connections: List[str] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class MemoryEdge:
    source: str
    target: str
    strength: float
    type: str = "related"


@dataclass
class MemoryGraph:
    nodes: List[MemoryNode]
    edges: List[MemoryEdge]
    stats: Dict[str, Any]


class MemoryInsights:
    """Read-only analytics over a user's long-term memories."""

    def __init__(self, store: SemanticMemoryStore) -> None:
        self.store = store

    def get_memory_graph(self, user_id: str) -> MemoryGraph:
        records = self.store.get_all_memories(user_id)
        now = utcnow()
        nodes = [
            MemoryNode(
                id=r.id,
                type=classify_memory(r.content),
                content=r.content,
                importance=importance(r, now),
                created_at=r.created_at,
                metadata=r.metadata,
            )
            for r in records
        ]
        edges: List[MemoryEdge] = []
        for i, a in enumerate(nodes):
            for b in nodes[i + 1:]:
                strength = jaccard(a.content, b.content)
                if strength > RELATED_THRESHOLD:
                    edges.append(MemoryEdge(source=a.id, target=b.id, strength=strength))
                    a.connections.append(b.id)
                    b.connections.append(a.id)

        stats: Dict[str, Any] = {
            "total_memories": len(nodes),
            "by_type": dict(Counter(n.type for n in nodes)),
            "oldest": min((n.created_at for n in nodes), default=None),
            "newest": max((n.created_at for n in nodes), default=None),
            "avg_importance": sum(n.importance for n in nodes) / len(nodes) if nodes else 0.0,
        }
        return MemoryGraph(nodes=nodes, edges=edges, stats=stats)

    def get_memory_timeline(self, user_id: str) -> List[Dict[str, Any]]:
        by_date: Dict[str, List[Dict[str, str]]] = defaultdict(list)
        for r in self.store.get_all_memories(user_id):
            by_date[r.created_at.date().isoformat()].append(
                {"id": r.id, "content": r.content, "type": classify_memory(r.content)}
            )
        return [
            {
                "date": day,
                "count": len(items),
                "types": dict(Counter(i["type"] for i in items)),
                "memories": items,
            }
            for day, items in sorted(by_date.items())
        ]

    def get_word_cloud(self, user_id: str, top_n: int = 100) -> List[Dict[str, Any]]:
        counts = Counter(
            w
            for r in self.store.get_all_memories(user_id)
            for w in tokenize(r.content)
            if len(w) >= 2
        )
        return [
            {"word": w, "count": c, "importance": min(c / 10, 1.0)}
            for w, c in counts.most_common(top_n)
        ]
