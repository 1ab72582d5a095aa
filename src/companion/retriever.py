from __future__ import annotations

import logging
from typing import List

from .errors import EmbeddingServiceError
from .index import EmbeddingIndex, ScoredChunk

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 2


class Retriever:
    """Top-k lookup against the startup index; retrieval is skipped if embedding fails."""

    def __init__(self, index: EmbeddingIndex, k: int = DEFAULT_TOP_K) -> None:
        self.index = index
        self.k = int(k)

    def retrieve(self, query: str) -> List[ScoredChunk]:
        try:
            results = self.index.query(query, self.k)
        except EmbeddingServiceError as e:
            logger.warning("Retrieval skipped, embedding service unavailable: %s", e)
            return []
        logger.info(
            "Retrieved %d chunk(s) for query %r (scores: %s)",
            len(results),
            query[:80],
            ", ".join(f"{r.score:.3f}" for r in results),
        )
        return results
