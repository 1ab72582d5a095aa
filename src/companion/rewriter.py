"""Condense the latest user turn plus prior turns into a standalone search query."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import RewriteFailure
from .llm import CompletionService, GenerationOptions
from .messages import Message, memory_turns
from .utils.timeout import call_with_timeout

logger = logging.getLogger(__name__)

REWRITE_INSTRUCTION = "根据上述对话，生成一个可用于查找与该对话相关信息的搜索查询"

_QUOTES = "\"'“”‘’「」『』`"


@dataclass(frozen=True)
class RewrittenQuery:
    text: str
    rewritten: bool


def _clean(raw: str) -> str:
    for line in (raw or "").splitlines():
        line = line.strip().strip(_QUOTES).strip()
        if line:
            return line
    return ""


class QueryRewriter:
    def __init__(
        self,
        completion: CompletionService,
        *,
        options: Optional[GenerationOptions] = None,
        instruction: str = REWRITE_INSTRUCTION,
        context_messages: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.completion = completion
        self.options = options or GenerationOptions(temperature=0.3, max_new_tokens=64)
        self.instruction = instruction
        self.context_messages = context_messages
        self.timeout = timeout

    def _rewrite(self, history: Sequence[Message], latest_input: str) -> str:
        messages = memory_turns(history, self.context_messages)
        messages.append({"role": "user", "content": latest_input})
        messages.append({"role": "user", "content": self.instruction})
        try:
            raw = call_with_timeout(self.completion.complete, self.timeout, messages, self.options)
        except Exception as e:
            raise RewriteFailure(f"completion service failed: {e}") from e
        query = _clean(raw)
        if not query:
            raise RewriteFailure("completion service returned an empty query")
        return query

    def rewrite(self, history: Sequence[Message], latest_input: str) -> RewrittenQuery:
        """Standalone query for ``latest_input``; falls back to it verbatim on failure."""
        if not memory_turns(history, self.context_messages):
            return RewrittenQuery(text=latest_input, rewritten=False)
        try:
            query = self._rewrite(history, latest_input)
        except RewriteFailure as e:
            logger.warning("Query rewrite failed, using input verbatim: %s", e)
            return RewrittenQuery(text=latest_input, rewritten=False)
        logger.debug("Rewrote %r -> %r", latest_input, query)
        return RewrittenQuery(text=query, rewritten=True)
