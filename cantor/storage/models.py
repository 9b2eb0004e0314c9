"""
Data models for conversation storage.
A session's history is a flat, chronologically ordered list of Message.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

ROLES = ("user", "assistant")


def now_ms() -> int:
    """Milliseconds since the epoch, the timestamp unit stored on every turn."""
    return int(time.time() * 1000)


@dataclass
class Message:
    """A single turn in a conversation."""
    role: str = ""           # "user" or "assistant"
    content: str = ""
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    def to_prompt_format(self) -> dict:
        """Role/content only, the shape sent to the model."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            role=data.get("role", ""),
            content=data.get("content", ""),
            timestamp=int(data.get("timestamp") or 0),
        )


def trim(history: list[Message], limit: int) -> list[Message]:
    """Keep only the newest `limit` entries (oldest dropped first)."""
    if limit <= 0:
        return []
    return list(history[-limit:])
