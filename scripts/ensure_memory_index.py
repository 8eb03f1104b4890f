from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from loguru import logger

# Ensure project root is importable when running from scripts/
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chat_engine.embeddings import embedding_dimension
from chat_engine.pinecone_utils import ensure_index


def main() -> None:
    parser = argparse.ArgumentParser(description="Create the Pinecone index used for long-term chat memory")
    parser.add_argument("--index-name", type=str, default=os.getenv("PINECONE_INDEX", "chat-memories"))
    parser.add_argument("--metric", type=str, default="cosine", choices=["cosine", "dotproduct", "euclidean"])
    args = parser.parse_args()

    dim = embedding_dimension()
    logger.info("Preparing memory index {} (dim={})", args.index_name, dim)
    created = ensure_index(args.index_name, dimension=dim, metric=args.metric)
    logger.info("Index {} {}", args.index_name, "created" if created else "already present")


if __name__ == "__main__":
    main()
