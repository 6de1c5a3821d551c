"""
Fixed-window rate limiter.

One instance per endpoint, injected into the handlers that use it.
Entries are keyed by caller identity (user id or client address) and
live for the lifetime of the process; nothing evicts stale keys.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from scoutrelay.errors import RateLimited

logger = logging.getLogger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    Allows `limit` requests per `window` seconds for each key.

    The first request for a key opens a window ending at now + window.
    Requests inside the window increment the counter; the (limit+1)-th
    and later are rejected until the window has passed.
    """

    def __init__(
        self,
        limit: int,
        window: float = 60.0,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window
        self.name = name
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, name: str, cfg: dict) -> "FixedWindowRateLimiter":
        limits = cfg.get("rate_limits", {}).get(name, {})
        return cls(
            limit=int(limits.get("limit", 10)),
            window=float(limits.get("window", 60)),
            name=name,
        )

    def check(self, key: str) -> bool:
        """Record an attempt for key. Returns True if it is allowed."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                self._entries[key] = RateLimitEntry(count=1, reset_at=now + self.window)
                return True
            entry.count += 1
            allowed = entry.count <= self.limit

        if not allowed:
            logger.info(
                "Rate limit hit on %s for %s (%d/%d)",
                self.name or "limiter", key, entry.count, self.limit,
            )
        return allowed

    def enforce(self, key: str, message: str | None = None):
        """Like check(), but raises RateLimited instead of returning False."""
        if not self.check(key):
            raise RateLimited(message)

    def reset(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
