"""Split documents into bounded, overlapping character spans.

Guarantees, for ``split_documents(docs, chunk_size, overlap)``:

- every chunk holds at most ``chunk_size`` characters;
- consecutive chunks of one document share exactly ``overlap`` characters
  (the tail of one is the head of the next);
- a document no longer than ``chunk_size`` yields exactly one chunk equal to it.

Cuts prefer a natural boundary (paragraph, line, sentence, space) in the back
half of the window and fall back to a hard cut.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .documents import Document

# Ordered by preference; the cut lands just after the separator.
SEPARATORS = ("\n\n", "\n", "。", "！", "？", "；", ". ", "! ", "? ", "，", ", ", " ")


@dataclass(frozen=True)
class Chunk:
    content: str
    metadata: Dict[str, str] = field(default_factory=dict)
    index: int = 0


def _find_cut(text: str, start: int, hard_end: int, min_end: int) -> int:
    """Best end offset in ``(min_end, hard_end]`` ending on a separator, else ``hard_end``."""
    window = text[start:hard_end]
    for sep in SEPARATORS:
        pos = window.rfind(sep)
        if pos < 0:
            continue
        end = start + pos + len(sep)
        if min_end < end <= hard_end:
            return end
    return hard_end


def split_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must satisfy 0 <= overlap < chunk_size")

    n = len(text)
    if n <= chunk_size:
        return [text]

    pieces: List[str] = []
    start = 0
    while True:
        hard_end = start + chunk_size
        if hard_end >= n:
            pieces.append(text[start:])
            break
        # Keep the cut in the back half so the next start always advances.
        min_end = start + max(overlap, chunk_size // 2)
        end = _find_cut(text, start, hard_end, min_end)
        pieces.append(text[start:end])
        start = end - overlap
    return pieces


def split_documents(documents: Iterable[Document], chunk_size: int = 100, overlap: int = 10) -> List[Chunk]:
    """Split every document in order; chunk metadata is the parent's, copied."""
    chunks: List[Chunk] = []
    for doc in documents:
        for piece in split_text(doc.content, chunk_size, overlap):
            chunks.append(Chunk(content=piece, metadata=dict(doc.metadata), index=len(chunks)))
    return chunks
