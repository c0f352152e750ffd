from __future__ import annotations

import logging
import time
from collections.abc import Callable

from topicquota.core.models import DecodedMessage

logger = logging.getLogger(__name__)


class TTLMessageCache:
    """In-process cache of reconstructed message sequences, keyed by topic id.

    Entries expire ``ttl_s`` seconds after they were stored. A hit returns
    a copy of the cached list so callers cannot mutate the cached sequence.

    Args:
        ttl_s: Lifetime of an entry in seconds (default 5 minutes)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(self, ttl_s: float = 300.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, tuple[float, list[DecodedMessage]]] = {}

    def get(self, topic_id: str) -> list[DecodedMessage] | None:
        hit = self._entries.get(topic_id)
        if hit is None:
            return None
        stored_at, messages = hit
        if self._clock() - stored_at >= self.ttl_s:
            del self._entries[topic_id]
            logger.debug("Cache entry for topic %s expired", topic_id)
            return None
        return list(messages)

    def put(self, topic_id: str, messages: list[DecodedMessage]) -> None:
        self._entries[topic_id] = (self._clock(), list(messages))

    def invalidate(self, topic_id: str | None = None) -> None:
        if topic_id is None:
            self._entries.clear()
        else:
            self._entries.pop(topic_id, None)

    def __len__(self) -> int:
        return len(self._entries)
