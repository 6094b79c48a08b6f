"""
Rate Limiter / Dedupe
Fixed-window counters keyed by client identity, plus set-once dedupe keys.

Two stores:
- MemoryRateLimitStore: per process, lost on restart (best-effort only)
- RedisRateLimitStore: shared across workers, falls back to memory when redis errors

The limiter is deliberately small: it protects the public tracking and
email-capture endpoints from floods, it is not a general quota service.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateRule:
    name: str
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0
    rule: Optional[str] = None


# Public endpoint rules
TRACK_BURST = RateRule("track_burst", 30, 10)
TRACK_SUSTAINED = RateRule("track_ip", 240, 60)
TRACK_PER_IDENTITY = RateRule("track_identity", 60, 60)
SUBSCRIBE_MINUTE = RateRule("subscribe_min", 5, 60)
SUBSCRIBE_HOUR = RateRule("subscribe_hour", 30, 3600)
PAGE_VIEW_DEDUPE_SECONDS = 30 * 60


# ============================================================================
# STORES
# ============================================================================

class MemoryRateLimitStore:
    """{key: (count, reset_at)} behind a lock"""

    def __init__(self, max_keys: int = 5000):
        self._hits: Dict[str, Tuple[int, float]] = {}
        self._once: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.max_keys = max_keys

    def _evict(self, now: float) -> None:
        if len(self._hits) > self.max_keys:
            for key in [k for k, (_, reset_at) in self._hits.items() if reset_at <= now]:
                del self._hits[key]
        if len(self._once) > self.max_keys:
            for key in [k for k, expires in self._once.items() if expires <= now]:
                del self._once[key]

    def hit(self, key: str, window_seconds: int, now: Optional[float] = None) -> Tuple[int, float]:
        """Count one hit; returns (count in window, window reset time)"""
        now = time.time() if now is None else now
        with self._lock:
            count, reset_at = self._hits.get(key, (0, 0.0))
            if now > reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._hits[key] = (count, reset_at)
            self._evict(now)
            return count, reset_at

    def set_once(self, key: str, ttl_seconds: int, now: Optional[float] = None) -> bool:
        """True the first time a key is seen within its ttl"""
        now = time.time() if now is None else now
        with self._lock:
            expires = self._once.get(key)
            if expires is not None and expires > now:
                return False
            self._once[key] = now + ttl_seconds
            self._evict(now)
            return True


class RedisRateLimitStore:
    """Same contract as the memory store, shared through redis"""

    def __init__(self, client: "redis.Redis", prefix: str = "rl:", fallback: Optional[MemoryRateLimitStore] = None):
        self.client = client
        self.prefix = prefix
        self.fallback = fallback or MemoryRateLimitStore()

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitStore":
        return cls(redis.Redis.from_url(url, socket_timeout=1, socket_connect_timeout=1))

    def hit(self, key: str, window_seconds: int, now: Optional[float] = None) -> Tuple[int, float]:
        now = time.time() if now is None else now
        full_key = f"{self.prefix}{key}"
        try:
            pipe = self.client.pipeline()
            pipe.set(full_key, 0, nx=True, px=window_seconds * 1000)
            pipe.incr(full_key)
            pipe.pttl(full_key)
            _, count, ttl_ms = pipe.execute()
            if ttl_ms is None or ttl_ms < 0:
                # Key lost its expiry (created by INCR after the window lapsed)
                self.client.pexpire(full_key, window_seconds * 1000)
                ttl_ms = window_seconds * 1000
        except redis.RedisError as e:
            logger.warning(f"Rate limit store unavailable, using memory: {e}")
            return self.fallback.hit(key, window_seconds, now)

        return int(count), now + ttl_ms / 1000.0

    def set_once(self, key: str, ttl_seconds: int, now: Optional[float] = None) -> bool:
        try:
            return bool(self.client.set(f"{self.prefix}once:{key}", 1, nx=True, px=ttl_seconds * 1000))
        except redis.RedisError as e:
            logger.warning(f"Dedupe store unavailable, using memory: {e}")
            return self.fallback.set_once(key, ttl_seconds, now)


# ============================================================================
# LIMITER
# ============================================================================

class RateLimiter:
    """
    Every rule is counted on every call; the request is denied if any rule
    is over its limit, and retry_after is the longest wait among them.
    """

    def __init__(self, store=None):
        self.store = store or MemoryRateLimitStore()

    def check(self, identity: str, rules: Iterable[RateRule], now: Optional[float] = None) -> RateDecision:
        now = time.time() if now is None else now
        retry_after = 0
        denied_rule = None
        for rule in rules:
            count, reset_at = self.store.hit(f"{rule.name}:{identity}", rule.window_seconds, now)
            if count > rule.limit:
                wait = max(1, int(reset_at - now + 0.999))
                if wait > retry_after:
                    retry_after = wait
                    denied_rule = rule.name
        if denied_rule is None:
            return RateDecision(True)
        return RateDecision(False, retry_after, denied_rule)

    def dedupe_once(self, key: str, ttl_seconds: int, now: Optional[float] = None) -> bool:
        return self.store.set_once(key, ttl_seconds, now)


def build_rate_limiter(redis_url: str = "") -> RateLimiter:
    if redis_url:
        logger.info("Rate limiter using redis store")
        return RateLimiter(RedisRateLimitStore.from_url(redis_url))
    return RateLimiter(MemoryRateLimitStore())
