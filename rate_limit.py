"""Submission throttling keyed by source IP.

Both limiters use a fixed window that opens on the first hit from a key and
lasts ``window_seconds``. Once ``max_requests`` hits are counted inside the
window every further hit is refused until the window expires.
"""
import threading
import time
from typing import Callable, Optional

from firebase_admin import firestore

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_SECONDS = 10 * 60


class RateLimiter:
    def check_and_increment(self, key: str) -> bool:
        """Count one hit for ``key`` and return whether it is allowed."""
        raise NotImplementedError


class InMemoryRateLimiter(RateLimiter):
    """Process-local counter. Resets on restart and is not shared between instances."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._windows = {}  # key -> [window_start, count]
        self._lock = threading.Lock()

    def check_and_increment(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window[0] >= self.window_seconds:
                self._windows[key] = [now, 1]
                self._prune(now)
                return True
            if window[1] >= self.max_requests:
                return False
            window[1] += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        # drop expired windows so the map does not grow with every IP ever seen
        expired = [k for k, (start, _) in self._windows.items() if now - start >= self.window_seconds]
        for k in expired:
            del self._windows[k]


class FirestoreRateLimiter(RateLimiter):
    """Shared counter kept in a Firestore collection, for multi-instance deployments."""

    def __init__(
        self,
        client,
        collection: str = 'rate_limits',
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.client = client
        self.collection = collection
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock or time.time

    def check_and_increment(self, key: str) -> bool:
        # document ids may not contain '/', IPv6 addresses contain ':' which is fine
        doc_ref = self.client.collection(self.collection).document(key.replace('/', '_'))
        transaction = self.client.transaction()
        return _touch_window(
            transaction, doc_ref, self._clock(), self.max_requests, self.window_seconds
        )


def touch_window(transaction, doc_ref, now, max_requests, window_seconds) -> bool:
    """Count one hit on the window document through ``transaction``."""
    snapshot = doc_ref.get(transaction=transaction)
    data = snapshot.to_dict() if snapshot.exists else None

    if not data or now - float(data.get('windowStart', 0)) >= window_seconds:
        transaction.set(doc_ref, {'windowStart': now, 'count': 1})
        return True

    count = int(data.get('count', 0))
    if count >= max_requests:
        return False

    transaction.update(doc_ref, {'count': count + 1})
    return True


_touch_window = firestore.transactional(touch_window)
