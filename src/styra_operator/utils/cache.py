"""Expiring in-memory cache shared across reconciles."""

from __future__ import annotations

import os
import threading
import time
from typing import Any, Optional

# 0 keeps entries until they are explicitly invalidated.
DEFAULT_TTL_SECONDS = float(os.getenv("USER_CACHE_TTL_SECONDS", "0"))


class ExpiringCache:
    """Thread-safe key/value map whose entries expire after ``ttl`` seconds."""

    def __init__(self, ttl: float = DEFAULT_TTL_SECONDS):
        self.ttl = ttl
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        """Get an object from cache if it hasn't expired.

        Args:
            key: Cache key

        Returns:
            Cached object or None if not found or expired
        """
        with self._lock:
            if key not in self._entries:
                return None

            obj, timestamp = self._entries[key]
            if self.ttl > 0 and time.time() - timestamp > self.ttl:
                del self._entries[key]
                return None

            return obj

    def set(self, key: str, obj: Any) -> None:
        """Store an object in cache with current timestamp."""
        with self._lock:
            self._entries[key] = (obj, time.time())

    def invalidate_all(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
