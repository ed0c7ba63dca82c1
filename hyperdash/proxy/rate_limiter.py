"""
Per-client fixed-window rate limiter for the REST proxy.

Each client key (the remote IP) owns a bucket {count, window_reset_at}. A
bucket is reset lazily by the first request that observes
now > window_reset_at; there is no background sweep. Expired buckets are
evicted opportunistically once the map grows past max_buckets.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional
import logging
import threading
import time

from hyperdash.config import RateLimitConfig

LOG = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitBucket:
    """Request counter for one client within the current window"""
    ip: str
    count: int
    window_reset_at: int


@dataclass(frozen=True)
class RateDecision:
    """Outcome of a rate-limit check"""
    allowed: bool
    count: int
    limit: int
    reset_at: int
    retry_after_ms: int = 0


class RateLimiter:
    """Fixed-window limiter keyed by client IP"""

    def __init__(self, config: Optional[RateLimitConfig] = None,
                 clock: Optional[Callable[[], int]] = None):
        self.config = config or RateLimitConfig()
        self._clock = clock or _now_ms
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = threading.Lock()
        self.denied_total = 0

    def check(self, key: str) -> RateDecision:
        """Count one request for `key` and decide whether it may proceed"""
        with self._lock:
            now = self._clock()

            if len(self._buckets) >= self.config.max_buckets:
                self._evict_expired(now)

            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = RateLimitBucket(ip=key, count=0, window_reset_at=now + self.config.window_ms)
                self._buckets[key] = bucket

            if now > bucket.window_reset_at:
                bucket.count = 0
                bucket.window_reset_at = now + self.config.window_ms

            if bucket.count >= self.config.max_requests:
                self.denied_total += 1
                LOG.warning("Rate limit exceeded for %s (%d/%d)", key, bucket.count, self.config.max_requests)
                return RateDecision(False, bucket.count, self.config.max_requests,
                                    bucket.window_reset_at, bucket.window_reset_at - now)

            bucket.count += 1
            return RateDecision(True, bucket.count, self.config.max_requests, bucket.window_reset_at)

    def get_bucket(self, key: str) -> Optional[RateLimitBucket]:
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return None
            return RateLimitBucket(bucket.ip, bucket.count, bucket.window_reset_at)

    def bucket_count(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _evict_expired(self, now: int):
        # Caller holds the lock
        expired = [k for k, b in self._buckets.items() if now > b.window_reset_at]
        for k in expired:
            del self._buckets[k]
        if expired:
            LOG.debug("Evicted %d expired rate-limit buckets", len(expired))
