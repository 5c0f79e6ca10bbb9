"""
Deduplication of service reports by identity key.
"""
import threading
import time
from collections.abc import Callable

import structlog  # type: ignore[import-not-found]

logger = structlog.get_logger(__name__)


class DeduplicationCache:
    """
    Admits each identity key (`address:category:port`) once per session.

    With `ttl_seconds` set, a key may be admitted again once that long has
    passed since its last admission; without it, keys never expire until
    `reset()`.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._admitted: dict[str, float] = {} # key -> admission time
        self._lock = threading.Lock()

    def try_admit(self, key: str) -> bool:
        """Record `key` and return True if it has not been admitted yet."""
        now = self._clock()
        with self._lock:
            admitted_at = self._admitted.get(key)
            if admitted_at is not None:
                if self.ttl_seconds is None or (now - admitted_at) < self.ttl_seconds:
                    return False
                logger.debug("Identity re-admitted after TTL", key=key)
            self._admitted[key] = now
            return True

    def reset(self) -> None:
        with self._lock:
            count = len(self._admitted)
            self._admitted.clear()
        logger.debug("Deduplication cache cleared", keys=count)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._admitted

    def __len__(self) -> int:
        with self._lock:
            return len(self._admitted)
