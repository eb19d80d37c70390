"""
Shared key-value store with TTL semantics.

Rate counters, domain cooldowns and the DNS verdict cache live behind this
interface. The in-memory backend is only correct for a single process; any
deployment running more than one API or worker instance must point REDIS_URL
at a shared Redis, otherwise limits degrade to "per instance".
"""
import json
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis

from app.platform.config import settings
from app.platform.logger import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def window_add(self, key: str, timestamp: float, ttl_seconds: float) -> None:
        """Append a timestamp to a sliding window and refresh the window's expiry."""

    @abstractmethod
    async def window_prune(self, key: str, older_than: float) -> None:
        """Drop timestamps at or before `older_than`."""

    @abstractmethod
    async def window_members(self, key: str) -> List[float]:
        """Timestamps currently in the window, oldest first."""


class InMemoryStore(KeyValueStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._values: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._windows: Dict[str, Tuple[List[float], float]] = {}

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self.clock() >= expires_at

    async def get(self, key: str) -> Optional[Any]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            self._values.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        expires_at = self.clock() + ttl_seconds if ttl_seconds else None
        self._values[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._values.pop(key, None)
        self._windows.pop(key, None)

    async def window_add(self, key: str, timestamp: float, ttl_seconds: float) -> None:
        members = await self.window_members(key)
        members.append(timestamp)
        members.sort()
        self._windows[key] = (members, self.clock() + ttl_seconds)

    async def window_prune(self, key: str, older_than: float) -> None:
        entry = self._windows.get(key)
        if entry is None:
            return
        members, expires_at = entry
        recent = [ts for ts in members if ts > older_than]
        if recent:
            self._windows[key] = (recent, expires_at)
        else:
            self._windows.pop(key, None)

    async def window_members(self, key: str) -> List[float]:
        entry = self._windows.get(key)
        if entry is None:
            return []
        members, expires_at = entry
        if self._expired(expires_at):
            self._windows.pop(key, None)
            return []
        return list(members)


class RedisStore(KeyValueStore):
    def __init__(self, redis: Redis, prefix: str = "a11y:"):
        self.redis = redis
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ex = max(1, int(ttl_seconds)) if ttl_seconds else None
        await self.redis.set(self._key(key), json.dumps(value), ex=ex)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def window_add(self, key: str, timestamp: float, ttl_seconds: float) -> None:
        member = f"{timestamp}:{uuid.uuid4().hex}"
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zadd(self._key(key), {member: timestamp})
            pipe.expire(self._key(key), max(1, int(ttl_seconds)))
            await pipe.execute()

    async def window_prune(self, key: str, older_than: float) -> None:
        await self.redis.zremrangebyscore(self._key(key), "-inf", older_than)

    async def window_members(self, key: str) -> List[float]:
        entries = await self.redis.zrange(self._key(key), 0, -1, withscores=True)
        return [float(score) for _, score in entries]


_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    global _store

    if _store is None:
        if settings.REDIS_URL and not settings.FORCE_IN_MEMORY_STORE:
            redis = Redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            _store = RedisStore(redis)
            logger.info("[store] Using Redis-backed shared store")
        else:
            _store = InMemoryStore()
            logger.warning(
                "[store] Using in-process store: rate limits, cooldowns and DNS cache "
                "are per instance and reset on restart"
            )
    return _store


def set_store(store: Optional[KeyValueStore]) -> None:
    """Swap the process-wide store (tests, or a custom backend)."""
    global _store
    _store = store


async def close_store() -> None:
    """
    Release the Redis connection pool. Celery tasks call this before their
    event loop closes; the next get_store() builds a fresh client.
    """
    global _store

    if isinstance(_store, RedisStore):
        await _store.redis.aclose()
        _store = None
