"""Embedding services: ``embed(text) -> vector`` and batched ``embed_many``."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from .config import env_secret, section

logger = logging.getLogger(__name__)

DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"


class EmbeddingService(Protocol):
    def embed(self, text: str) -> Sequence[float]: ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers model, loaded on first use."""

    def __init__(self, model_name: str, *, max_chars: int = 4000) -> None:
        self.model_name = model_name
        self.max_chars = max_chars
        self._model = None

    def _model_ensure(self):
        if self._model is None:
            # Lazy import so unit tests pass without the model weights.
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        texts = [t[: self.max_chars] for t in texts]
        vecs = self._model_ensure().encode(texts, normalize_embeddings=True)
        return [v.tolist() for v in vecs]


class OpenAICompatEmbedder:
    """``POST {base_url}/embeddings`` against an OpenAI-compatible endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        *,
        batch_size: int = 10,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = base_url.rstrip("/") + "/embeddings"
        self.model = model
        self.batch_size = max(1, int(batch_size))
        self._headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        self._client = client or httpx.Client(timeout=timeout)

    def embed(self, text: str) -> List[float]:
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        out: List[List[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = list(texts[i : i + self.batch_size])
            resp = self._client.post(
                self.url,
                json={"model": self.model, "input": batch},
                headers=self._headers,
            )
            resp.raise_for_status()
            data = resp.json().get("data") or []
            # Providers may return items out of order; "index" is authoritative.
            data = sorted(data, key=lambda item: item.get("index", 0))
            if len(data) != len(batch):
                raise ValueError(f"expected {len(batch)} embeddings, got {len(data)}")
            out.extend(item["embedding"] for item in data)
        logger.debug("Embedded %d text(s) with %s", len(out), self.model)
        return out


def create_embedder(cfg: Dict[str, Any]) -> EmbeddingService:
    """Create the embedding service selected by ``embeddings.provider``."""
    emb_cfg = section(cfg, "embeddings")
    provider = str(emb_cfg.get("provider", "openai_compat")).lower()
    if provider == "sentence_transformers":
        return SentenceTransformerEmbedder(emb_cfg.get("local_model") or DEFAULT_LOCAL_MODEL)
    if provider == "openai_compat":
        api_key = env_secret(emb_cfg.get("api_key_env", "DASHSCOPE_API_KEY"))
        if not api_key:
            raise ValueError(f"Embedding API key not set (env {emb_cfg.get('api_key_env')!r})")
        return OpenAICompatEmbedder(
            emb_cfg.get("base_url", ""),
            api_key,
            emb_cfg.get("model", "text-embedding-v3"),
            batch_size=int(emb_cfg.get("batch_size", 10)),
        )
    raise ValueError(f"Unknown embeddings provider: {provider!r}")
