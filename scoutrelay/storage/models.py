"""
Data models for coach conversation storage.
These define the shape of rows flowing between the relay and SQLite.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Message:
    """A single coach message. Append-only."""
    id: str = field(default_factory=lambda: uuid4().hex)
    conversation_id: str = ""
    scout_id: str = ""
    role: str = ""           # "user" or "assistant"
    content: str = ""
    tokens_used: int | None = None   # assistant turns only, from upstream usage
    latency_ms: int | None = None    # assistant turns only
    created_at: str = field(default_factory=_now)


@dataclass
class Conversation:
    """At most one conversation per scout is active at a time."""
    id: str = field(default_factory=lambda: uuid4().hex)
    scout_id: str = ""
    is_active: bool = True
    created_at: str = field(default_factory=_now)
