from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from loguru import logger


def get_pinecone_client():
    try:
        from pinecone import Pinecone
    except ImportError as e:
        raise RuntimeError(
            "pinecone is not installed. Please `pip install pinecone>=5`."
        ) from e
    api_key = os.getenv("PINECONE_API_KEY")
    if not api_key:
        raise RuntimeError("PINECONE_API_KEY not set in environment")
    return Pinecone(api_key=api_key)


def _index_names(pc) -> set:
    listed = pc.list_indexes()
    if hasattr(listed, "names"):
        return set(listed.names())
    names = set()
    for idx in listed:
        if isinstance(idx, str):
            names.add(idx)
        elif isinstance(idx, dict):
            names.add(idx.get("name"))
        else:
            names.add(getattr(idx, "name", None))
    return names


def ensure_index(index_name: str, dimension: int, metric: str = "cosine") -> bool:
    """Create the Pinecone index if missing (serverless). Returns True if created."""
    pc = get_pinecone_client()
    if index_name in _index_names(pc):
        logger.info("Pinecone index exists: {}", index_name)
        return False
    from pinecone import ServerlessSpec

    cloud = os.getenv("PINECONE_CLOUD", "aws")
    region = os.getenv("PINECONE_REGION", "us-east-1")
    logger.info("Creating Pinecone index: {} (dim={}, metric={})", index_name, dimension, metric)
    pc.create_index(
        name=index_name,
        dimension=dimension,
        metric=metric,
        spec=ServerlessSpec(cloud=cloud, region=region),
    )
    return True


def get_index(index_name: str):
    pc = get_pinecone_client()
    return pc.Index(index_name)


def upsert_vectors(
    index,
    items: List[Dict[str, Any]],
    namespace: Optional[str] = None,
) -> None:
    """Upsert items shaped {id, values, metadata}."""
    if not items:
        return
    logger.debug("Upserting {} vectors ns={}", len(items), namespace)
    if namespace:
        index.upsert(vectors=items, namespace=namespace)
    else:
        index.upsert(vectors=items)


def query_top_k(
    index,
    vector: List[float],
    top_k: int = 5,
    namespace: Optional[str] = None,
    include_metadata: bool = True,
    filter: Optional[dict] = None,
):
    kwargs: Dict[str, Any] = {
        "vector": vector,
        "top_k": top_k,
        "include_metadata": include_metadata,
    }
    if namespace:
        kwargs["namespace"] = namespace
    if filter:
        kwargs["filter"] = filter
    return index.query(**kwargs)


def list_ids(index, prefix: str, namespace: Optional[str] = None) -> List[str]:
    """Collect all vector ids starting with `prefix` (serverless indexes only)."""
    kwargs: Dict[str, Any] = {"prefix": prefix}
    if namespace:
        kwargs["namespace"] = namespace
    ids: List[str] = []
    for page in index.list(**kwargs):
        ids.extend(page)
    return ids


def fetch_vectors(index, ids: List[str], namespace: Optional[str] = None) -> Dict[str, Any]:
    if not ids:
        return {}
    kwargs: Dict[str, Any] = {"ids": ids}
    if namespace:
        kwargs["namespace"] = namespace
    res = index.fetch(**kwargs)
    vectors = getattr(res, "vectors", None)
    if vectors is None and isinstance(res, dict):
        vectors = res.get("vectors")
    if vectors is None:
        raise ValueError("Malformed fetch response: missing 'vectors'")
    return vectors


def delete_ids(index, ids: List[str], namespace: Optional[str] = None) -> None:
    kwargs: Dict[str, Any] = {"ids": ids}
    if namespace:
        kwargs["namespace"] = namespace
    index.delete(**kwargs)
