"""The retrieval-augmented conversation pipeline.

Startup (:func:`build_pipeline`):
    load knowledge documents → snapshot history → history document →
    chunks → embedding index.

Per request (:meth:`ChatPipeline.chat`):
    read history → rewrite query → retrieve chunks → generate reply →
    append user turn and reply.

The index reflects the history snapshot taken at startup. Messages appended
while the process runs reach the model through conversation memory on every
request, but become searchable only after the pipeline is rebuilt.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List

from .chunker import split_documents
from .config import section
from .documents import Document, build_history_document, load_knowledge_documents
from .embeddings import EmbeddingService
from .errors import GenerationError, HistoryUnavailable
from .generator import FALLBACK_REPLY, PERSONA_PROMPT, ResponseGenerator
from .history import HistoryStore
from .index import EmbeddingIndex, ScoredChunk
from .llm import CompletionService, GenerationOptions
from .messages import Message
from .retriever import DEFAULT_TOP_K, Retriever
from .rewriter import REWRITE_INSTRUCTION, QueryRewriter

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    reply: str
    ok: bool
    query: str = ""
    rewritten: bool = False
    chunks: List[ScoredChunk] = field(default_factory=list)
    persisted: bool = False


class ChatPipeline:
    """One long-lived conversation: its history store, index and model stages."""

    def __init__(
        self,
        *,
        session_id: str,
        history: HistoryStore,
        index: EmbeddingIndex,
        rewriter: QueryRewriter,
        retriever: Retriever,
        generator: ResponseGenerator,
        knowledge_documents: int = 0,
        history_messages_indexed: int = 0,
        fallback_reply: str = FALLBACK_REPLY,
    ) -> None:
        self.session_id = session_id
        self.history = history
        self.index = index
        self.rewriter = rewriter
        self.retriever = retriever
        self.generator = generator
        self.knowledge_documents = knowledge_documents
        self.history_messages_indexed = history_messages_indexed
        self.fallback_reply = fallback_reply
        self._lock = threading.Lock()

    def _read_history(self) -> List[Message]:
        try:
            return self.history.read_all(self.session_id)
        except HistoryUnavailable as e:
            logger.warning("History unavailable, continuing without memory: %s", e)
            return []

    def _persist(self, user_input: str, reply: str) -> bool:
        try:
            self.history.append_turn(self.session_id, user_input, reply)
        except HistoryUnavailable as e:
            logger.error("Reply not persisted to history: %s", e)
            return False
        return True

    def chat(self, user_input: str) -> ChatResult:
        """Run one request through all stages. Never raises for stage failures."""
        with self._lock:
            history = self._read_history()

            query = self.rewriter.rewrite(history, user_input)
            chunks = self.retriever.retrieve(query.text)

            try:
                reply = self.generator.generate(chunks, history, user_input)
            except GenerationError as e:
                logger.error("Generation failed: %s", e)
                return ChatResult(
                    reply=self.fallback_reply,
                    ok=False,
                    query=query.text,
                    rewritten=query.rewritten,
                    chunks=chunks,
                )

            persisted = self._persist(user_input, reply)
            return ChatResult(
                reply=reply,
                ok=True,
                query=query.text,
                rewritten=query.rewritten,
                chunks=chunks,
                persisted=persisted,
            )

    def stats(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "knowledge_documents": self.knowledge_documents,
            "chunks": len(self.index),
            "history_messages_indexed": self.history_messages_indexed,
        }


def build_pipeline(
    cfg: Dict[str, Any],
    *,
    completion: CompletionService,
    embedder: EmbeddingService,
    history: HistoryStore,
) -> ChatPipeline:
    """Assemble the pipeline at startup.

    Raises CorpusLoadError or EmbeddingServiceError; both are fatal.
    A history store that cannot be read only costs the history document.
    """
    hist_cfg = section(cfg, "history")
    chunk_cfg = section(cfg, "chunking")
    timeouts = section(cfg, "timeouts")
    gen_cfg = section(cfg, "generation")
    context_messages = hist_cfg.get("context_messages")
    context_messages = None if context_messages is None else int(context_messages)
    session_id = str(hist_cfg.get("session_id") or "default")

    knowledge = load_knowledge_documents(section(cfg, "corpus").get("path", "data/context.json"))

    try:
        snapshot = history.read_all(session_id)
    except HistoryUnavailable as e:
        logger.warning("History unavailable at startup, indexing without it: %s", e)
        snapshot = []
    history_doc = build_history_document(snapshot)

    documents: List[Document] = [*knowledge, history_doc]
    chunks = split_documents(
        documents,
        chunk_size=int(chunk_cfg.get("chunk_size", 100)),
        overlap=int(chunk_cfg.get("overlap", 10)),
    )
    index = EmbeddingIndex.build(chunks, embedder, timeout=timeouts.get("embedding_s"))

    completion_timeout = timeouts.get("completion_s")
    rewriter = QueryRewriter(
        completion,
        options=GenerationOptions.from_config(section(cfg, "rewriter"), temperature=0.3, max_new_tokens=64),
        instruction=section(cfg, "rewriter").get("instruction") or REWRITE_INSTRUCTION,
        context_messages=context_messages,
        timeout=completion_timeout,
    )
    generator = ResponseGenerator(
        completion,
        persona=gen_cfg.get("persona") or PERSONA_PROMPT,
        options=GenerationOptions.from_config(gen_cfg, temperature=1.3, max_new_tokens=512),
        context_messages=context_messages,
        timeout=completion_timeout,
    )
    retriever = Retriever(index, k=int(section(cfg, "retrieval").get("k", DEFAULT_TOP_K)))

    logger.info(
        "Pipeline ready: session=%s, %d knowledge doc(s), %d history message(s), %d chunk(s)",
        session_id,
        len(knowledge),
        len(snapshot),
        len(chunks),
    )
    return ChatPipeline(
        session_id=session_id,
        history=history,
        index=index,
        rewriter=rewriter,
        retriever=retriever,
        generator=generator,
        knowledge_documents=len(knowledge),
        history_messages_indexed=len(snapshot),
        fallback_reply=gen_cfg.get("fallback_reply") or FALLBACK_REPLY,
    )
