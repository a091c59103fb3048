from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from streamforge.schemas.comments import ModerationResult

CacheKey = Tuple[str, str]


class ModerationCache:
    """LRU cache of moderation verdicts keyed by (author, message), with optional TTL."""

    def __init__(
        self,
        max_entries: int = 5000,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max = max_entries
        self.ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._clock = clock
        self.data: OrderedDict[CacheKey, Tuple[float, ModerationResult]] = OrderedDict()

    def __len__(self) -> int:
        return len(self.data)

    def get(self, key: CacheKey) -> Optional[ModerationResult]:
        entry = self.data.pop(key, None)
        if entry is None:
            return None
        stored_at, value = entry
        if self.ttl is not None and self._clock() - stored_at > self.ttl:
            # expired, leave it out
            return None
        # re-insert to mark as most-recently used
        self.data[key] = entry
        return value

    def set(self, key: CacheKey, value: ModerationResult) -> None:
        if key in self.data:
            self.data.pop(key)
        self.data[key] = (self._clock(), value)
        if len(self.data) > self.max:
            # evict least-recently used
            self.data.popitem(last=False)

    def clear(self) -> None:
        self.data.clear()
