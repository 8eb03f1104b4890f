from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from . import embeddings, pinecone_utils
from .memory import extract_important
from .models import MemoryRecord, Turn, utcnow


ID_SEPARATOR = "#"


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return utcnow()


def record_from_metadata(memory_id: str, metadata: Optional[Dict[str, Any]], score: Optional[float] = None) -> MemoryRecord:
    if not metadata or "content" not in metadata or "user_id" not in metadata:
        raise ValueError(f"Malformed memory vector metadata for id={memory_id}")
    extra = metadata.get("meta_json")
    return MemoryRecord(
        id=memory_id,
        content=str(metadata["content"]),
        user_id=str(metadata["user_id"]),
        metadata=json.loads(extra) if extra else None,
        score=float(score) if score is not None else None,
        created_at=_parse_time(metadata.get("created_at")),
        updated_at=_parse_time(metadata.get("updated_at")),
    )


class PineconeMemoryBackend:
    """Memory backend on a Pinecone index with OpenAI embeddings.

    Vector ids are `<user_id>#<turn id>` so a user's memories can be listed by
    prefix and re-extracting the same turn overwrites instead of duplicating.
    Only turns passing the local importance filter are stored, which keeps
    this backend interchangeable with the local one.
    """

    def __init__(
        self,
        index_name: str,
        namespace: Optional[str] = None,
        index: Any = None,
        embed_texts: Callable[[List[str]], List[List[float]]] = embeddings.embed_texts,
        embed_query: Callable[[str], List[float]] = embeddings.embed_query,
    ) -> None:
        self.index_name = index_name
        self.namespace = namespace
        self._index = index
        self._embed_texts = embed_texts
        self._embed_query = embed_query

    @property
    def index(self):
        if self._index is None:
            self._index = pinecone_utils.get_index(self.index_name)
        return self._index

    def add(self, turns: List[Turn], user_id: str, metadata: Optional[Dict[str, Any]]) -> None:
        important = extract_important(turns)
        if not important:
            return
        vectors = self._embed_texts([t.content for t in important])
        now = utcnow().isoformat()
        items = []
        for turn, values in zip(important, vectors):
            md: Dict[str, Any] = {
                "content": turn.content,
                "user_id": user_id,
                "created_at": now,
                "updated_at": now,
            }
            if metadata:
                md["meta_json"] = json.dumps(metadata, ensure_ascii=False, default=str)
            items.append({"id": f"{user_id}{ID_SEPARATOR}{turn.id or uuid.uuid4().hex}", "values": values, "metadata": md})
        pinecone_utils.upsert_vectors(self.index, items, namespace=self.namespace)
        logger.debug(f"remote_memory_add | user={user_id} stored={len(items)}")

    def search(self, query: str, user_id: str, limit: int) -> List[MemoryRecord]:
        vector = self._embed_query(query)
        res = pinecone_utils.query_top_k(
            self.index,
            vector,
            top_k=limit,
            namespace=self.namespace,
            filter={"user_id": {"$eq": user_id}},
        )
        matches = _field(res, "matches")
        if matches is None:
            raise ValueError("Malformed query response: missing 'matches'")
        records = [
            record_from_metadata(_field(m, "id"), _field(m, "metadata"), _field(m, "score"))
            for m in matches
        ]
        # the filter should already scope by user; keep the boundary explicit
        return [r for r in records if r.user_id == user_id][:limit]

    def get_all(self, user_id: str) -> List[MemoryRecord]:
        ids = pinecone_utils.list_ids(self.index, prefix=f"{user_id}{ID_SEPARATOR}", namespace=self.namespace)
        vectors = pinecone_utils.fetch_vectors(self.index, ids, namespace=self.namespace)
        records = [record_from_metadata(vid, _field(v, "metadata")) for vid, v in vectors.items()]
        return sorted(records, key=lambda r: r.created_at)

    def delete(self, memory_id: str) -> None:
        pinecone_utils.delete_ids(self.index, [memory_id], namespace=self.namespace)
