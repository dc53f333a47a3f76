"""
Read-through cache for storage reads.

Entries expire purely by age; there is no size bound. Without redis the
entries live in-process. With redis configured, redis is the only tier:
every worker sees the same entries, the same expiry and the same
invalidations.
"""

import json
import math
import time
from typing import Any, Callable, Optional

import redis
from cachetools import TLRUCache

from storefront.core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 300.0
REDIS_KEY_PREFIX = "storefront:"

class ReadCache:
    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        timer: Callable[[], float] = time.monotonic,
        redis_client: Optional[redis.Redis] = None,
    ):
        self.ttl = ttl
        self._entries = TLRUCache(maxsize=math.inf, ttu=self._expires_at, timer=timer)
        self._redis = redis_client

    @property
    def redis_client(self) -> Optional[redis.Redis]:
        return self._redis

    def _expires_at(self, _key, _value, now: float) -> float:
        # Still fresh at exactly ``ttl`` seconds old
        return math.nextafter(now + self.ttl, math.inf)

    def _redis_ttl_ms(self) -> int:
        # One extra millisecond keeps the entry readable at exactly ``ttl``
        return max(int(self.ttl * 1000), 1) + 1

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None when missing, stale or unreadable."""
        if self._redis is None:
            self._entries.expire()
            return self._entries.get(key)
        try:
            raw = self._redis.get(REDIS_KEY_PREFIX + key)
        except redis.RedisError as exc:
            logger.warning(f"Redis cache read failed for {key}: {exc}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.warning(f"Dropping unreadable cache entry {key}: {exc}")
            return None

    def set(self, key: str, value: Any) -> None:
        if self._redis is None:
            self._entries[key] = value
            return
        try:
            self._redis.psetex(REDIS_KEY_PREFIX + key, self._redis_ttl_ms(), json.dumps(value))
        except redis.RedisError as exc:
            logger.warning(f"Redis cache write failed for {key}: {exc}")

    def invalidate_prefix(self, prefix: str) -> None:
        """Evict every entry whose key starts with ``prefix``."""
        if self._redis is None:
            for key in tuple(self._entries.keys()):  # snapshot
                if key.startswith(prefix):
                    self._entries.pop(key, None)
            return
        try:
            for key in self._redis.scan_iter(match=f"{REDIS_KEY_PREFIX}{prefix}*"):
                self._redis.delete(key)
        except redis.RedisError as exc:
            logger.warning(f"Redis cache invalidation failed for {prefix}: {exc}")

    def clear(self) -> None:
        self._entries.clear()
        self.invalidate_prefix("")

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)
