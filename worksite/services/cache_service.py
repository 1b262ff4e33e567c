"""
TTL cache objects.

A TTLCache is created explicitly and handed to the component that needs it
(e.g. SettingsService); there is no module-level cache state.

Backends:
  - Redis (via REDIS_URL) in production
  - a per-instance in-memory dict for development/testing or when Redis
    cannot be reached at start-up

Values are stored JSON-encoded so both backends behave identically.
"""

import json
import logging
import time

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300   # 5 minutes


class _MemoryBackend:
    """Dict-backed store with the subset of the Redis API used by TTLCache."""

    def __init__(self, clock=time.time):
        self._store: dict = {}  # key → (value_json, expire_ts)
        self._clock = clock

    def get(self, key):
        entry = self._store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and self._clock() > expires:
            self._store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        self._store[key] = (value, self._clock() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            self._store.pop(k, None)

    def keys(self, pattern):
        """Simple glob matching for 'prefix*' patterns."""
        if pattern.endswith("*"):
            prefix = pattern[:-1]
            return [k for k in self._store if k.startswith(prefix)]
        return [k for k in self._store if k == pattern]

    def ping(self):
        return True


class TTLCache:
    """Namespaced key/value cache with a fixed default time-to-live.

    Usage:
        cache = TTLCache.from_url(app.config["REDIS_URL"], ttl_seconds=300, namespace="settings")
        cache.set("all", {...})
        cache.get("all")
    """

    def __init__(self, ttl_seconds=DEFAULT_TTL, *, backend=None, namespace="cache", clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._backend = backend if backend is not None else _MemoryBackend(clock=clock)

    @classmethod
    def from_url(cls, redis_url, ttl_seconds=DEFAULT_TTL, namespace="cache"):
        """Build a Redis-backed cache, or an in-memory one for memory:// / unreachable Redis."""
        if redis_url and not redis_url.startswith("memory://"):
            try:
                backend = redis.from_url(redis_url, decode_responses=True)
                backend.ping()
                logger.info("Cache[%s]: using Redis at %s", namespace, redis_url.split("@")[-1])
                return cls(ttl_seconds, backend=backend, namespace=namespace)
            except redis.RedisError as exc:
                logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
        return cls(ttl_seconds, namespace=namespace)

    def _key(self, key):
        return f"{self.namespace}:{key}"

    def get(self, key):
        """Return the cached value, or None on miss/expiry."""
        raw = self._backend.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    def set(self, key, value, ttl_seconds=None):
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._backend.setex(self._key(key), ttl, json.dumps(value, default=str))

    def delete(self, key):
        self._backend.delete(self._key(key))

    def clear(self):
        """Drop every key in this cache's namespace."""
        keys = self._backend.keys(f"{self.namespace}:*")
        if keys:
            self._backend.delete(*keys)
