from __future__ import annotations

import os
from functools import lru_cache
from typing import List

from loguru import logger


DEFAULT_EMBEDDINGS_MODEL = "text-embedding-3-small"

EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def embeddings_model() -> str:
    return os.getenv("OPENAI_EMBEDDINGS_MODEL", DEFAULT_EMBEDDINGS_MODEL)


@lru_cache(maxsize=1)
def _get_memory_embeddings_client():
    """Cached OpenAIEmbeddings client used for long-term memory vectors.

    Env:
      - OPENAI_API_KEY (required)
      - OPENAI_EMBEDDINGS_MODEL (default: text-embedding-3-small)
    """
    from langchain_openai import OpenAIEmbeddings

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY not set for memory embeddings")
    model = embeddings_model()
    logger.debug(f"embeddings_client_init | model={model}")
    return OpenAIEmbeddings(model=model, api_key=api_key)


def embed_texts(texts: List[str]) -> List[List[float]]:
    if not texts:
        return []
    return _get_memory_embeddings_client().embed_documents(texts)


def embed_query(text: str) -> List[float]:
    return _get_memory_embeddings_client().embed_query(text)


def embedding_dimension() -> int:
    """Vector size of the configured model; unknown models are probed once."""
    model = embeddings_model()
    if model in EMBEDDING_DIMENSIONS:
        return EMBEDDING_DIMENSIONS[model]
    probe = embed_texts(["dimension probe"])
    logger.info(f"embedding_dimension_probed | model={model} dim={len(probe[0])}")
    return len(probe[0])
