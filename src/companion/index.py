"""In-memory vector index over chunks (FAISS inner product on unit vectors)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import faiss
import numpy as np

from .chunker import Chunk
from .embeddings import EmbeddingService
from .errors import EmbeddingServiceError
from .utils.timeout import call_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_BUILD_BATCH = 32


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    score: float


def _as_matrix(raw: Any, expected_rows: int) -> np.ndarray:
    """Validate embedding output and return unit-normalised float32 rows."""
    try:
        mat = np.asarray(raw, dtype="float32")
    except (TypeError, ValueError) as e:
        raise EmbeddingServiceError(f"Malformed embedding output: {e}") from e
    if mat.ndim != 2 or mat.shape[0] != expected_rows or mat.shape[1] == 0:
        raise EmbeddingServiceError(
            f"Expected {expected_rows} non-empty vector(s), got array of shape {mat.shape}"
        )
    if not np.all(np.isfinite(mat)):
        raise EmbeddingServiceError("Embedding output contains non-finite values")
    if np.any(np.linalg.norm(mat, axis=1) == 0):
        raise EmbeddingServiceError("Embedding output contains a zero vector")
    mat = np.ascontiguousarray(mat)
    faiss.normalize_L2(mat)
    return mat


class EmbeddingIndex:
    """Chunks plus their vectors, searchable by cosine similarity.

    Built once from a fixed chunk list and read-only afterwards.
    """

    def __init__(
        self,
        chunks: Sequence[Chunk],
        index: faiss.Index,
        embedder: EmbeddingService,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.chunks = list(chunks)
        self._index = index
        self._embedder = embedder
        self._timeout = timeout

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def dim(self) -> int:
        return int(self._index.d)

    # ----------------- build -----------------
    @classmethod
    def build(
        cls,
        chunks: Sequence[Chunk],
        embedder: EmbeddingService,
        *,
        timeout: Optional[float] = None,
    ) -> "EmbeddingIndex":
        chunks = list(chunks)
        if not chunks:
            raise EmbeddingServiceError("Cannot build an index from zero chunks")

        texts = [c.content for c in chunks]
        try:
            if hasattr(embedder, "embed_many"):
                # The timeout bounds each batch, not the whole corpus.
                step = max(1, int(getattr(embedder, "batch_size", DEFAULT_BUILD_BATCH)))
                raw = []
                for i in range(0, len(texts), step):
                    raw.extend(call_with_timeout(embedder.embed_many, timeout, texts[i : i + step]))
            else:
                raw = [call_with_timeout(embedder.embed, timeout, t) for t in texts]
        except EmbeddingServiceError:
            raise
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding service failed during index build: {e}") from e

        vectors = _as_matrix(raw, len(chunks))
        index = faiss.IndexFlatIP(vectors.shape[1])
        index.add(vectors)
        logger.info("Built embedding index: %d chunk(s), dim=%d", len(chunks), vectors.shape[1])
        return cls(chunks, index, embedder, timeout=timeout)

    # ----------------- query -----------------
    def embed_query(self, text: str) -> np.ndarray:
        try:
            raw = call_with_timeout(self._embedder.embed, self._timeout, text)
        except Exception as e:
            raise EmbeddingServiceError(f"Embedding service failed for query: {e}") from e
        vec = _as_matrix([raw], 1)
        if vec.shape[1] != self.dim:
            raise EmbeddingServiceError(
                f"Query embedding has dim {vec.shape[1]}, index expects {self.dim}"
            )
        return vec

    def query(self, text: str, k: int) -> List[ScoredChunk]:
        """Top ``k`` chunks for ``text``, highest similarity first."""
        k = min(int(k), len(self.chunks))
        if k <= 0:
            return []
        scores, ids = self._index.search(self.embed_query(text), k)
        out: List[ScoredChunk] = []
        for idx, score in zip(ids[0].tolist(), scores[0].tolist()):
            if idx < 0:
                continue
            out.append(ScoredChunk(chunk=self.chunks[idx], score=float(score)))
        # Stable order for equal scores: earlier chunk first.
        out.sort(key=lambda sc: (-sc.score, sc.chunk.index))
        return out
