"""
Server-side cache for per-user and per-listing views.

Read endpoints store rendered views under keys built by
:func:`cache_key`; mutating endpoints drop the affected keys through
:class:`CacheInvalidator` before they respond, so a client reading
right after its own write never sees a stale view next to fresh data.

A read that loads from the database while a write is being committed
could otherwise put the pre-write view back after the invalidation.
Every key therefore carries a generation number that ``delete`` bumps;
:meth:`CacheBackend.get_or_load` captures it before loading and only
stores the result if it is unchanged.

Two backends implement :class:`CacheBackend`: an in-memory TTL map
for single-process deployments and tests, and Redis (``REDIS_URL``)
when several instances must share one cache.  Redis errors on reads
and writes are logged and treated as a miss.
"""

import abc
import json
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

import redis.asyncio as redis
from fastapi import Request


logger = logging.getLogger(__name__)


def cache_key(namespace: str, subject_id: Union[str, int], qualifier: Optional[str] = None) -> str:
    """Build ``namespace:subject[:qualifier]``."""
    parts = [namespace, str(subject_id)]
    if qualifier:
        parts.append(qualifier)
    return ":".join(parts)


class CacheBackend(abc.ABC):
    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abc.abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store ``value``; with ``generation``, only if the key's is unchanged.

        Returns whether the value was stored.
        """

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Drop ``key`` and bump its generation."""

    @abc.abstractmethod
    async def generation(self, key: str) -> int:
        ...

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value or load, store and return a fresh one."""
        cached = await self.get(key)
        if cached is not None:
            return cached
        generation = await self.generation(key)
        value = await loader()
        if not await self.set(key, value, generation=generation):
            logger.debug("Skipped caching %s: invalidated while loading", key)
        return value

    async def close(self) -> None:
        return None


class InMemoryCache(CacheBackend):
    """Thread-safe in-memory cache with TTL (seconds)."""

    def __init__(self, default_ttl: int = 3600) -> None:
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.default_ttl = default_ttl

    async def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry = entry
            if time.time() >= expiry:
                del self._entries[key]
                return None
            return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        generation: Optional[int] = None,
    ) -> bool:
        expiry = time.time() + (ttl or self.default_ttl)
        with self._lock:
            if generation is not None and self._generations.get(key, 0) != generation:
                return False
            self._entries[key] = (value, expiry)
            return True

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1

    async def generation(self, key: str) -> int:
        with self._lock:
            return self._generations.get(key, 0)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class RedisCache(CacheBackend):
    """JSON values in Redis under the ``cache:`` prefix.

    Generations live next to the values under ``cache:gen:``; they
    outlive the values so that a slow reader still sees the bump.
    """

    def __init__(self, redis_url: str, default_ttl: int = 3600, prefix: str = "cache:") -> None:
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.default_ttl = default_ttl
        self.prefix = prefix

    def _generation_key(self, key: str) -> str:
        return f"{self.prefix}gen:{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.redis.get(f"{self.prefix}{key}")
        except (redis.RedisError, OSError) as exc:
            logger.warning("Cache read of %s failed, treating as miss: %s", key, exc)
            return None
        if value is None:
            return None
        return json.loads(value)

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        generation: Optional[int] = None,
    ) -> bool:
        payload = json.dumps(value)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                if generation is not None:
                    await pipe.watch(self._generation_key(key))
                    current = await pipe.get(self._generation_key(key))
                    if int(current or 0) != generation:
                        return False
                    pipe.multi()
                pipe.setex(f"{self.prefix}{key}", ttl or self.default_ttl, payload)
                await pipe.execute()
            return True
        except redis.WatchError:
            return False
        except (redis.RedisError, OSError) as exc:
            logger.warning("Cache write of %s failed: %s", key, exc)
            return False

    async def delete(self, key: str) -> None:
        generation_key = self._generation_key(key)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(f"{self.prefix}{key}")
            pipe.incr(generation_key)
            pipe.expire(generation_key, self.default_ttl * 2)
            await pipe.execute()

    async def generation(self, key: str) -> int:
        try:
            value = await self.redis.get(self._generation_key(key))
        except (redis.RedisError, OSError) as exc:
            # The following set fails or is skipped as well.
            logger.warning("Cache generation read of %s failed: %s", key, exc)
            return -1
        return int(value or 0)

    async def close(self) -> None:
        await self.redis.aclose()


class CacheInvalidator:
    """Delete cached views made stale by a mutation."""

    def __init__(self, backend: CacheBackend) -> None:
        self.backend = backend

    @staticmethod
    def keys_for_review_change(author_id: str, listing_id: str) -> List[str]:
        """Views that show a review, its scores or its counters."""
        return [
            cache_key("dashboard", author_id),
            cache_key("user", author_id),
            cache_key("user", author_id, "ratings"),
            cache_key("listing", listing_id),
        ]

    async def invalidate(self, keys: Iterable[str]) -> None:
        """Delete every key; awaited before the mutating response is sent.

        The mutation has already been committed when this runs, so a
        backend failure is logged instead of turning the response into
        an error.  Cached entries also expire after their TTL.
        """
        for key in keys:
            try:
                await self.backend.delete(key)
            except (redis.RedisError, OSError):
                logger.exception("Failed to invalidate cache key %s", key)


def get_cache(request: Request) -> CacheBackend:
    return request.app.state.cache


def get_cache_invalidator(request: Request) -> CacheInvalidator:
    return request.app.state.cache_invalidator
