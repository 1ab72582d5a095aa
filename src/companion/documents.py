"""Knowledge-base loading and the synthetic chat-history document."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Sequence

from .errors import CorpusLoadError
from .messages import Message
from .utils.io import read_json

logger = logging.getLogger(__name__)

HISTORY_SOURCE = "chat_history"
EMPTY_HISTORY_PLACEHOLDER = "无历史对话"


@dataclass(frozen=True)
class Document:
    content: str
    metadata: Dict[str, str] = field(default_factory=dict)


def _text_leaves(obj: Any) -> Iterator[str]:
    """Yield every non-empty string value of a JSON structure in document order."""
    if isinstance(obj, str):
        if obj.strip():
            yield obj
    elif isinstance(obj, dict):
        for value in obj.values():
            yield from _text_leaves(value)
    elif isinstance(obj, list):
        for item in obj:
            yield from _text_leaves(item)


def load_knowledge_documents(path: str | Path) -> List[Document]:
    """Load the knowledge corpus: a JSON array of records with text fields.

    Every string value becomes one Document, in file order, tagged with the
    corpus file name and its position. Raises CorpusLoadError if the file is
    missing, is not valid JSON, is not an array, or holds no text at all.
    """
    p = Path(path)
    if not p.is_file():
        raise CorpusLoadError(f"Knowledge corpus not found: {p}")
    try:
        data = read_json(p)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorpusLoadError(f"Failed to read knowledge corpus {p}: {e}") from e

    if not isinstance(data, list):
        raise CorpusLoadError(f"Knowledge corpus {p} must be a JSON array, got {type(data).__name__}")

    docs = [
        Document(content=text, metadata={"source": p.name, "seq": str(i)})
        for i, text in enumerate(_text_leaves(data), 1)
    ]
    if not docs:
        raise CorpusLoadError(f"Knowledge corpus {p} contains no text")

    logger.info("Loaded %d knowledge document(s) from %s", len(docs), p)
    return docs


def build_history_document(
    messages: Sequence[Message],
    *,
    placeholder: str = EMPTY_HISTORY_PLACEHOLDER,
) -> Document:
    """Render the message log as one document, ``<role>: <text>`` per line."""
    if not messages:
        content = placeholder
    else:
        content = "\n".join(f"{m.role.value}: {m.text}" for m in messages)
    return Document(content=content, metadata={"source": HISTORY_SOURCE})
