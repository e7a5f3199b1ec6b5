"""In-process read-through TTL cache for dashboard views

Only eventually-consistent list views go through here. Balances and payment
inserts always read the database.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

OVERDUE_PLANS_KEY = "plans:overdue"
OUTSTANDING_PLANS_KEY = "plans:outstanding"
PLANS_PREFIX = "plans:"


class TTLCache:
    """Thread-safe key/value store whose entries expire after a per-entry TTL"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Tuple[bool, Any]:
        """Returns (hit, value); expired entries are evicted on read"""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return False, None
            value, expires = item
            if self._clock() >= expires:
                del self._entries[key]
                return False, None
            return True, value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [key for key in self._entries if key.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug("Cache invalidated", extra={"prefix": prefix, "keys": len(keys)})
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def get_or_load(self, key: str, loader: Callable[[], T], ttl_seconds: float) -> T:
        hit, value = self.get(key)
        if hit:
            return value
        value = loader()
        self.set(key, value, ttl_seconds)
        return value


dashboard_cache = TTLCache()
