"""Error taxonomy for the companion chat pipeline.

Startup errors (``CorpusLoadError``, ``EmbeddingServiceError`` during index
build) abort initialization. Everything else is handled at the request
boundary by :class:`companion.pipeline.ChatPipeline`.
"""

from __future__ import annotations


class CompanionError(Exception):
    """Base class for all pipeline errors."""


class CorpusLoadError(CompanionError):
    """The knowledge corpus is missing, unreadable or malformed."""


class EmbeddingServiceError(CompanionError):
    """The embedding service failed or returned unusable vectors."""


class HistoryUnavailable(CompanionError):
    """The history backing store could not be read or written."""


class RewriteFailure(CompanionError):
    """The query rewriter could not produce a standalone query."""


class GenerationError(CompanionError):
    """The completion service failed to produce a reply."""
