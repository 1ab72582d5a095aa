"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from companion.rewriter import REWRITE_INSTRUCTION  # noqa: E402


class FakeEmbedder:
    """Deterministic character-bucket embeddings; texts sharing characters score higher."""

    def __init__(self, dim: int = 64) -> None:
        self.dim = dim
        self.calls: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vec = [0.0] * self.dim
        for ch in text:
            vec[ord(ch) % self.dim] += 1.0
        if not any(vec):
            vec[0] = 1.0
        return vec


class FailingEmbedder:
    def __init__(self, exc: Exception | None = None) -> None:
        self.exc = exc or ConnectionError("embedding service unreachable")

    def embed(self, text: str) -> List[float]:
        raise self.exc


class ScriptedCompletion:
    """Completion service double that records every request.

    Rewrite requests (ending with the rewrite instruction) get ``rewrite_reply``;
    everything else is answered by ``responder(messages)``.
    """

    def __init__(
        self,
        reply: str = "好的，我在呢。",
        *,
        rewrite_reply: str = "老人 聊天 陪伴",
        responder: Optional[Callable[[List[Dict[str, str]]], str]] = None,
        fail_generation: bool = False,
        fail_rewrite: bool = False,
    ) -> None:
        self.reply = reply
        self.rewrite_reply = rewrite_reply
        self.responder = responder
        self.fail_generation = fail_generation
        self.fail_rewrite = fail_rewrite
        self.calls: List[List[Dict[str, str]]] = []
        self.options: List[object] = []

    @staticmethod
    def is_rewrite(messages: List[Dict[str, str]]) -> bool:
        return bool(messages) and messages[-1]["content"] == REWRITE_INSTRUCTION

    @property
    def generation_calls(self) -> List[List[Dict[str, str]]]:
        return [m for m in self.calls if not self.is_rewrite(m)]

    @property
    def rewrite_calls(self) -> List[List[Dict[str, str]]]:
        return [m for m in self.calls if self.is_rewrite(m)]

    def complete(self, messages, options) -> str:
        self.calls.append([dict(m) for m in messages])
        self.options.append(options)
        if self.is_rewrite(messages):
            if self.fail_rewrite:
                raise RuntimeError("rewrite provider error")
            return self.rewrite_reply
        if self.fail_generation:
            raise RuntimeError("provider returned 503")
        if self.responder is not None:
            return self.responder(messages)
        return self.reply


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for history / corpus files during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var.startswith("COMPANION__"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("COMPANION_CONFIG", raising=False)
    yield


@pytest.fixture
def corpus_path(tmp_data_dir: Path) -> Path:
    p = tmp_data_dir / "context.json"
    p.write_text(
        json.dumps(
            [
                {"text": "老年人陪伴服务介绍"},
                {"text": "天气变冷时，提醒老人多穿衣服，注意保暖。"},
                {"text": "老人想念孙子时，可以鼓励他们给家人打个电话。"},
            ],
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )
    return p


@pytest.fixture
def cfg(tmp_data_dir: Path, corpus_path: Path) -> Dict[str, object]:
    from companion.config import DEFAULT_CONFIG, _deep_merge

    return _deep_merge(
        DEFAULT_CONFIG,
        {
            "history": {"data_dir": str(tmp_data_dir / "history"), "session_id": "test-session"},
            "corpus": {"path": str(corpus_path)},
            "timeouts": {"completion_s": None, "embedding_s": None},
        },
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def completion() -> ScriptedCompletion:
    return ScriptedCompletion()
