"""Durable append/read access to a session's message log.

Two backing stores are provided:

- :class:`JsonlHistoryStore` keeps one append-only JSONL file per session on
  local disk (thread-safe).
- :class:`UpstashHistoryStore` talks to the Upstash Redis REST API, keeping
  the session as a Redis list laid out the way LangChain's
  ``UpstashRedisChatMessageHistory`` lays it out, so existing logs stay readable.

Both raise :class:`~companion.errors.HistoryUnavailable` on any backing-store
failure. :meth:`append_turn` stores a user message and its reply
together: either both land or neither does. Reading a session that has never been written returns ``[]``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from .config import env_secret, section
from .errors import HistoryUnavailable
from .messages import Message, Role
from .utils.io import append_jsonl, ensure_dir, read_jsonl

logger = logging.getLogger(__name__)


class HistoryStore(Protocol):
    def append(self, session: str, role: Role, text: str) -> Message: ...

    def append_turn(self, session: str, user_text: str, agent_text: str) -> List[Message]: ...

    def read_all(self, session: str) -> List[Message]: ...


def _safe_session(name: str) -> str:
    # Keep it readable but filesystem-safe.
    s = re.sub(r"[^\w.\-@]+", "_", name.strip() or "default")
    return s[:128]


# -----------------------------
# JSONL on disk
# -----------------------------
class JsonlHistoryStore:
    """Append-only JSONL message log, one file per session.

    Layout:
        data_dir/
          <session>.jsonl    # {"role", "text", "ts"} per line, oldest first
    """

    def __init__(self, data_dir: str) -> None:
        self.root = Path(data_dir)
        self._lock = threading.RLock()

    def _path(self, session: str) -> Path:
        return self.root / f"{_safe_session(session)}.jsonl"

    def append(self, session: str, role: Role, text: str) -> Message:
        message = Message(role=Role.parse(role), text=text)
        with self._lock:
            try:
                ensure_dir(self.root)
                append_jsonl(self._path(session), message.to_row())
            except (OSError, ValueError) as e:
                raise HistoryUnavailable(f"Failed to append to session {session!r}: {e}") from e
        return message

    def append_turn(self, session: str, user_text: str, agent_text: str) -> List[Message]:
        pair = [Message(Role.USER, user_text), Message(Role.AGENT, agent_text)]
        with self._lock:
            try:
                ensure_dir(self.root)
                append_jsonl(self._path(session), *(m.to_row() for m in pair))
            except (OSError, ValueError) as e:
                raise HistoryUnavailable(f"Failed to append to session {session!r}: {e}") from e
        return pair

    def read_all(self, session: str) -> List[Message]:
        with self._lock:
            try:
                rows = read_jsonl(self._path(session))
            except (OSError, UnicodeDecodeError) as e:
                raise HistoryUnavailable(f"Failed to read session {session!r}: {e}") from e
        return [Message.from_row(r) for r in rows]


# -----------------------------
# Upstash Redis (REST)
# -----------------------------
class UpstashHistoryStore:
    """Session history kept in an Upstash Redis list.

    Each message is one JSON-encoded ``{"type", "data": {"content"}}`` element
    under ``<key_prefix><session>`` (the bare session id by default). LPUSH
    adds at the head, so the list is newest first and reads are reversed.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        key_prefix: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not url or not token:
            raise ValueError("Upstash history store requires both a REST url and token")
        self.url = url.rstrip("/")
        self.key_prefix = key_prefix
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    def _key(self, session: str) -> str:
        return f"{self.key_prefix}{session}"

    def _command(self, *args: Any) -> Any:
        try:
            resp = self._client.post(self.url, json=list(args), headers=self._headers)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise HistoryUnavailable(f"Upstash {args[0]} failed: {e}") from e
        if not isinstance(payload, dict) or "error" in payload:
            raise HistoryUnavailable(f"Upstash {args[0]} returned an error: {payload!r}")
        return payload.get("result")

    def append(self, session: str, role: Role, text: str) -> Message:
        message = Message(role=Role.parse(role), text=text)
        self._command("LPUSH", self._key(session), _encode(message))
        return message

    def append_turn(self, session: str, user_text: str, agent_text: str) -> List[Message]:
        pair = [Message(Role.USER, user_text), Message(Role.AGENT, agent_text)]
        # One LPUSH with both values: the reply ends up at the head.
        self._command("LPUSH", self._key(session), *(_encode(m) for m in pair))
        return pair

    def read_all(self, session: str) -> List[Message]:
        result = self._command("LRANGE", self._key(session), 0, -1)
        if result is None:
            return []
        if not isinstance(result, list):
            raise HistoryUnavailable(f"Unexpected LRANGE result type: {type(result).__name__}")
        out: List[Message] = []
        for raw in reversed(result):
            try:
                row = json.loads(raw)
            except (TypeError, json.JSONDecodeError):
                logger.warning("Skipping undecodable history entry in session %r", session)
                continue
            if isinstance(row, dict):
                out.append(Message.from_row(row))
        return out


def _encode(message: Message) -> str:
    return json.dumps(message.to_stored(), ensure_ascii=False)


# -----------------------------
# Factory
# -----------------------------
def create_history_store(cfg: Dict[str, Any]) -> HistoryStore:
    """Create the history store selected by ``history.backend``."""
    hist_cfg = section(cfg, "history")
    backend = str(hist_cfg.get("backend", "jsonl")).lower()
    if backend == "jsonl":
        return JsonlHistoryStore(hist_cfg.get("data_dir") or "data/history")
    if backend == "upstash":
        return UpstashHistoryStore(
            env_secret(hist_cfg.get("upstash_url_env", "UPSTASH_REDIS_REST_URL")),
            env_secret(hist_cfg.get("upstash_token_env", "UPSTASH_REDIS_REST_TOKEN")),
        )
    raise ValueError(f"Unknown history backend: {backend!r}")
