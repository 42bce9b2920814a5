"""Token-bucket rate limiting with named policies and per-key buckets.

Buckets are created lazily for each (key, policy) pair and live in a bounded
LRU cache. A bucket that has not been touched for ``idle_ttl_s`` is treated
as new on next access, so a returning caller starts with a full bucket.

Refill is interval based: every full ``refill_period_s`` that elapses adds
``refill_tokens`` in one batch, capped at ``capacity``. A caller that drains
a LOGIN_ATTEMPTS bucket therefore waits the full 15 minutes, not 3.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from services.api.src.safesnap.core.redaction import mask_email

logger = logging.getLogger(__name__)

MAX_CACHED_BUCKETS = 10_000
BUCKET_IDLE_TTL_S = 60 * 60


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    capacity: int
    refill_tokens: int
    refill_period_s: float


LOGIN_ATTEMPTS = RateLimitPolicy("LOGIN_ATTEMPTS", 5, 5, 15 * 60)
REGISTRATION = RateLimitPolicy("REGISTRATION", 3, 3, 60 * 60)
FILE_UPLOADS = RateLimitPolicy("FILE_UPLOADS", 20, 20, 60 * 60)
LARGE_FILE_UPLOADS = RateLimitPolicy("LARGE_FILE_UPLOADS", 5, 5, 60 * 60)
INCIDENT_CREATION = RateLimitPolicy("INCIDENT_CREATION", 10, 10, 10 * 60)
GENERAL_API = RateLimitPolicy("GENERAL_API", 100, 100, 60)
VISION_API = RateLimitPolicy("VISION_API", 50, 50, 60 * 60)

NAMED_POLICIES = {
    p.name: p
    for p in (
        LOGIN_ATTEMPTS,
        REGISTRATION,
        FILE_UPLOADS,
        LARGE_FILE_UPLOADS,
        INCIDENT_CREATION,
        GENERAL_API,
        VISION_API,
    )
}


def per_minute(name: str, amount: int) -> RateLimitPolicy:
    """Policy allowing ``amount`` units per minute."""
    return RateLimitPolicy(name, amount, amount, 60)


def user_key(email: str, operation: str) -> str:
    return f"user:{email}:{operation}"


def ip_key(ip: str, operation: str) -> str:
    return f"ip:{ip}:{operation}"


class TokenBucket:
    """A single bucket. Not thread safe on its own; RateLimiter holds the lock."""

    def __init__(self, policy: RateLimitPolicy, now: float):
        self.policy = policy
        self.tokens = policy.capacity
        self.last_refill = now
        self.last_access = now

    def _refill(self, now: float) -> None:
        periods = int((now - self.last_refill) // self.policy.refill_period_s)
        if periods <= 0:
            return
        self.tokens = min(
            self.policy.capacity, self.tokens + periods * self.policy.refill_tokens
        )
        self.last_refill += periods * self.policy.refill_period_s

    def consume(self, cost: int, now: float) -> bool:
        self._refill(now)
        self.last_access = now
        if self.tokens >= cost:
            self.tokens -= cost
            return True
        return False

    def available(self, now: float) -> int:
        self._refill(now)
        return self.tokens

    def seconds_until_refill(self, now: float) -> float:
        self._refill(now)
        return max(0.0, self.last_refill + self.policy.refill_period_s - now)


class RateLimiter:
    """Per-key quota enforcement shared by the API edge and the AI client."""

    def __init__(
        self,
        max_buckets: int = MAX_CACHED_BUCKETS,
        idle_ttl_s: float = BUCKET_IDLE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_buckets = max_buckets
        self._idle_ttl_s = idle_ttl_s
        self._clock = clock
        self._buckets: OrderedDict[tuple[str, str], TokenBucket] = OrderedDict()
        self._lock = threading.Lock()

    def _bucket(self, key: str, policy: RateLimitPolicy, now: float) -> TokenBucket:
        cache_key = (key, policy.name)
        bucket = self._buckets.get(cache_key)
        if bucket is not None and now - bucket.last_access > self._idle_ttl_s:
            bucket = None
        if bucket is None:
            bucket = TokenBucket(policy, now)
            self._buckets[cache_key] = bucket
            while len(self._buckets) > self._max_buckets:
                self._buckets.popitem(last=False)
        else:
            self._buckets.move_to_end(cache_key)
        return bucket

    def is_allowed(self, key: str, policy: RateLimitPolicy, cost: int = 1) -> bool:
        """Try to take ``cost`` tokens. Consumption is atomic."""
        with self._lock:
            now = self._clock()
            allowed = self._bucket(key, policy, now).consume(cost, now)
        if not allowed:
            logger.warning(
                "rate_limit_denied",
                extra={"key": mask_email(key), "policy": policy.name, "cost": cost},
            )
        return allowed

    def remaining(self, key: str, policy: RateLimitPolicy) -> int:
        with self._lock:
            now = self._clock()
            return self._bucket(key, policy, now).available(now)

    def time_until_refill(self, key: str, policy: RateLimitPolicy) -> float | None:
        """Seconds until the next refill, or None while a token is available."""
        with self._lock:
            now = self._clock()
            bucket = self._bucket(key, policy, now)
            if bucket.available(now) >= 1:
                return None
            return bucket.seconds_until_refill(now)

    def clear(self, key: str) -> int:
        """Drop every bucket held for ``key``. Returns how many were dropped."""
        with self._lock:
            doomed = [k for k in self._buckets if k[0] == key]
            for k in doomed:
                del self._buckets[k]
        logger.info("rate_limit_cleared", extra={"key": mask_email(key), "buckets": len(doomed)})
        return len(doomed)

    def cleanup(self) -> int:
        """Evict idle buckets. Returns how many were evicted."""
        with self._lock:
            now = self._clock()
            expired = [
                k for k, b in self._buckets.items()
                if now - b.last_access > self._idle_ttl_s
            ]
            for k in expired:
                del self._buckets[k]
        return len(expired)

    def stats(self) -> dict:
        with self._lock:
            cached = len(self._buckets)
        return {
            "cached_buckets": cached,
            "max_buckets": self._max_buckets,
            "policies": {
                name: {
                    "capacity": p.capacity,
                    "refill_tokens": p.refill_tokens,
                    "refill_period_s": p.refill_period_s,
                }
                for name, p in NAMED_POLICIES.items()
            },
        }
