"""Conversation message types and the conversation-memory view."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Sequence


class Role(str, Enum):
    USER = "user"
    AGENT = "agent"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Map a stored role value onto the enum; anything unrecognised is UNKNOWN."""
        if isinstance(value, Role):
            return value
        raw = str(value or "").strip().lower()
        # Aliases written by other chat-history stores
        if raw in {"user", "human"}:
            return cls.USER
        if raw in {"agent", "ai", "assistant"}:
            return cls.AGENT
        return cls.UNKNOWN


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class Message:
    role: Role
    text: str
    ts: str = field(default_factory=_utc_iso)

    def to_row(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text, "ts": self.ts}

    def to_stored(self) -> Dict[str, Any]:
        """LangChain's stored-message shape, used by the Redis-backed log."""
        return {
            "type": _STORED_TYPES[self.role],
            "data": {"content": self.text, "additional_kwargs": {"ts": self.ts}},
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Message":
        """Accept both ``{"role", "text", "ts"}`` rows and LangChain's
        ``{"type", "data": {"content", ...}}`` rows."""
        data = row.get("data")
        if "role" not in row and isinstance(data, dict):
            extra = data.get("additional_kwargs")
            ts = extra.get("ts") if isinstance(extra, dict) else None
            return cls(
                role=Role.parse(row.get("type")),
                text=str(data.get("content") or ""),
                ts=str(ts or ""),
            )
        return cls(
            role=Role.parse(row.get("role")),
            text=str(row.get("text") or ""),
            ts=str(row.get("ts") or ""),
        )


_STORED_TYPES = {Role.USER: "human", Role.AGENT: "ai", Role.UNKNOWN: "generic"}


# Completion services speak the usual chat-message dialect.
_CHAT_ROLES = {Role.USER: "user", Role.AGENT: "assistant"}


def memory_turns(messages: Sequence[Message], limit: int | None = None) -> List[Dict[str, str]]:
    """Render the most recent ``limit`` messages as prior chat turns.

    Messages whose role is UNKNOWN have no chat-role counterpart and are left out.
    """
    items = list(messages)
    if limit is not None:
        items = items[-max(0, limit):] if limit > 0 else []
    out: List[Dict[str, str]] = []
    for m in items:
        role = _CHAT_ROLES.get(m.role)
        if role is None or not m.text:
            continue
        out.append({"role": role, "content": m.text})
    return out
