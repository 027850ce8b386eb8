import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from limits import RateLimitItemPerSecond
from limits.storage import Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float  # seconds until the current window ends


class ChatRateLimiter:
    """Fixed window limit per client address, backed by a ``limits`` storage.

    A key's window starts on its first request and lasts ``window_seconds``;
    the count drops back to zero only once the window has fully elapsed.
    The default ``memory://`` storage is process-local; any other ``limits``
    storage URI (e.g. ``redis://``) shares counters between instances.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 15 * 60,
        storage: Optional[Storage] = None,
    ):
        self.item = RateLimitItemPerSecond(max_requests, window_seconds, namespace="chat")
        self.storage = storage or storage_from_string("memory://")
        self.strategy = FixedWindowRateLimiter(self.storage)
        # hit and stats are read together so headers match the decision
        self._lock = threading.Lock()

    @property
    def max_requests(self) -> int:
        return self.item.amount

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for ``key`` and say whether it may proceed."""
        with self._lock:
            allowed = self.strategy.hit(self.item, key)
            stats = self.strategy.get_window_stats(self.item, key)

        return RateLimitDecision(
            allowed=allowed,
            limit=self.item.amount,
            remaining=stats.remaining,
            reset_after=max(stats.reset_time - time.time(), 0.0),
        )

    def reset(self, key: Optional[str] = None):
        if key is None:
            self.storage.reset()
        else:
            self.strategy.clear(self.item, key)


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    reset_seconds = str(math.ceil(decision.reset_after))
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": reset_seconds,
    }
    if not decision.allowed:
        headers["Retry-After"] = reset_seconds
    return headers
