"""Redis-backed key/value store and FastAPI dependency injection.

All records are JSON strings; indexes are Redis lists, sets and sorted sets.
Every ``redis.RedisError`` surfaces as ``StorageError``.
"""

import json
from functools import wraps
from typing import Any, Generator, Optional

import redis

from coliving.core.config import settings
from coliving.core.exceptions import StorageError


def _wrap_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except redis.RedisError as e:
            raise StorageError(f"KV store {func.__name__} failed: {e}") from e
    return wrapper


class KVStore:
    """Generic key/value, list, set and sorted-set primitives."""

    def __init__(self, client: Optional[redis.Redis] = None, url: Optional[str] = None):
        self._client = client
        self._url = url or settings.REDIS_URL

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                max_connections=100,
            )
        return self._client

    # ---- Key/value ----
    @_wrap_errors
    def get_json(self, key: str) -> Optional[Any]:
        """Get and parse a JSON value."""
        raw = self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    @_wrap_errors
    def get_many_json(self, keys: list[str]) -> list[Optional[Any]]:
        """Fetch several JSON values in one round trip; missing keys are None."""
        if not keys:
            return []
        return [json.loads(raw) if raw is not None else None for raw in self.client.mget(keys)]

    @_wrap_errors
    def set_json(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Serialize and store a JSON value, optionally with a TTL."""
        self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)

    @_wrap_errors
    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """Conditional write. Returns True only for the caller that created the key."""
        return bool(self.client.set(key, value, nx=True, ex=ttl_seconds))

    @_wrap_errors
    def incr_with_ttl(self, key: str, ttl_seconds: int) -> int:
        """Increment a counter, setting its expiry on first use. Returns the new value."""
        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, ttl_seconds)
        return count

    @_wrap_errors
    def exists(self, key: str) -> bool:
        return self.client.exists(key) > 0

    @_wrap_errors
    def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        if not keys:
            return 0
        return self.client.delete(*keys)

    # ---- Ordered lists (newest first) ----
    @_wrap_errors
    def push_capped(self, key: str, value: str, cap: int) -> None:
        """Prepend to a list and trim it to ``cap`` entries."""
        pipe = self.client.pipeline(transaction=False)
        pipe.lpush(key, value)
        pipe.ltrim(key, 0, cap - 1)
        pipe.execute()

    @_wrap_errors
    def list_range(self, key: str, start: int, stop: int) -> list[str]:
        """Inclusive slice of a list, same semantics as LRANGE."""
        return self.client.lrange(key, start, stop)

    @_wrap_errors
    def list_length(self, key: str) -> int:
        return self.client.llen(key)

    # ---- Sets ----
    @_wrap_errors
    def set_add(self, key: str, *members: str) -> None:
        if members:
            self.client.sadd(key, *members)

    @_wrap_errors
    def set_remove(self, key: str, *members: str) -> None:
        if members:
            self.client.srem(key, *members)

    @_wrap_errors
    def set_members(self, key: str) -> set[str]:
        return self.client.smembers(key)

    # ---- Sorted sets ----
    @_wrap_errors
    def sorted_add(self, key: str, member: str, score: float) -> None:
        self.client.zadd(key, {member: score})

    @_wrap_errors
    def sorted_range_by_score(self, key: str, min_score: float, max_score: float) -> list[str]:
        return self.client.zrangebyscore(key, min_score, max_score)

    @_wrap_errors
    def sorted_members(self, key: str) -> list[str]:
        return self.client.zrange(key, 0, -1)

    @_wrap_errors
    def sorted_remove(self, key: str, *members: str) -> None:
        if members:
            self.client.zrem(key, *members)

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


kv_store = KVStore()


def get_store() -> Generator[KVStore, None, None]:
    """FastAPI dependency that provides the KV store per request."""
    yield kv_store
