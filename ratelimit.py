"""
Best-effort request quotas.

Counts are kept in a ``RateLimitStore``. The default store lives in process
memory, is not shared between workers and is lost on restart, so quotas here
are advisory only. A shared cache can be plugged in by implementing the same
methods; ``hit`` must be atomic for the quota to hold under concurrency.
"""
import logging
import math
import threading
import time
from collections import defaultdict
from typing import Dict, List, Optional

from fastapi import Depends, Request

from auth import get_optional_user
from errors import TooManyRequests

logger = logging.getLogger(__name__)


class RateLimitStore:
    def get(self, key: str) -> int:
        """Number of requests recorded for ``key`` in the current window."""
        raise NotImplementedError

    def increment(self, key: str, now: float) -> int:
        raise NotImplementedError

    def expire(self, key: str, before: float) -> None:
        """Forget requests for ``key`` recorded before ``before``."""
        raise NotImplementedError

    def hit(self, key: str, now: float, before: float, limit: int) -> bool:
        """Record a request unless ``limit`` requests since ``before`` are already recorded.

        Stores shared between threads or workers should override this with a
        single atomic operation.
        """
        self.expire(key, before)
        if self.get(key) >= limit:
            return False
        self.increment(key, now)
        return True


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self):
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def get(self, key: str) -> int:
        with self._lock:
            return len(self._hits.get(key, ()))

    def increment(self, key: str, now: float) -> int:
        with self._lock:
            self._hits[key].append(now)
            return len(self._hits[key])

    def expire(self, key: str, before: float) -> None:
        with self._lock:
            hits = self._hits.get(key)
            if hits is None:
                return
            kept = [t for t in hits if t > before]
            if kept:
                self._hits[key] = kept
            else:
                del self._hits[key]

    def hit(self, key: str, now: float, before: float, limit: int) -> bool:
        with self._lock:
            hits = [t for t in self._hits.get(key, ()) if t > before]
            allowed = len(hits) < limit
            if allowed:
                hits.append(now)
            if hits:
                self._hits[key] = hits
            else:
                self._hits.pop(key, None)
            return allowed

    def clear(self):
        with self._lock:
            self._hits.clear()


default_store = InMemoryRateLimitStore()


def client_identity(request: Request, user: Optional[dict]) -> str:
    if user:
        return f"user:{user['id']}"
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


def rate_limit(max_requests: int = 100, window_ms: int = 15 * 60 * 1000, store: Optional[RateLimitStore] = None, scope: str = "default"):
    """Build a dependency allowing ``max_requests`` per identity per sliding window."""
    window = window_ms / 1000.0
    retry_after = math.ceil(window)

    def dependency(request: Request, user=Depends(get_optional_user)):
        backend = store or default_store
        key = f"{scope}:{client_identity(request, user)}"
        now = time.time()
        if not backend.hit(key, now, now - window, max_requests):
            logger.warning("Rate limit hit for %s", key)
            raise TooManyRequests(retry_after)

    return dependency
