"""
Fixed-window rate limiting for mutating and read endpoints.

Every action has an independent budget (``RATE_LIMITS``).  A request
consumes one unit from the counter keyed by
``(identity, action, window index)`` where the window index is
``now // window``.  Because each window has its own key, old windows
need no explicit reset; they simply expire.

Counters live behind the :class:`CounterStore` interface.  The
in-memory store is enough for a single process.  With several API
instances, configure ``REDIS_URL`` so that :class:`RedisCounterStore`
shares one counter per key; without it each instance enforces its own
budget and the bound becomes best effort.

The :func:`rate_limited` dependency factory wires the limiter into
FastAPI.  It depends on the origin guard and on identity resolution,
so a forged or anonymous request is rejected before any counter is
touched.
"""

import abc
import ipaddress
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis
from fastapi import Depends, Request, Response

from .config import settings
from .errors import RateLimitedError, retry_after_seconds
from .origin import verify_origin
from .security import get_current_user, get_optional_user


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_ms: int


RATE_LIMITS: Dict[str, RateLimitRule] = {
    # Rating submissions and review edits: 10 per minute per user
    "ratings": RateLimitRule(limit=10, window_ms=60 * 1000),
    # Votes: 30 per minute, voting on several reviews in a row is normal
    "votes": RateLimitRule(limit=30, window_ms=60 * 1000),
    # Flags: 10 per hour, to prevent flag spam
    "flags": RateLimitRule(limit=10, window_ms=60 * 60 * 1000),
    # Listing submissions: 5 per hour per user
    "listings": RateLimitRule(limit=5, window_ms=60 * 60 * 1000),
    # Registry bulk sync: 1 per minute
    "sync": RateLimitRule(limit=1, window_ms=60 * 1000),
    # Public read endpoints: 100 per minute per client address
    "read": RateLimitRule(limit=100, window_ms=60 * 1000),
}


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_in_ms: int

    @property
    def reset_in_seconds(self) -> int:
        return retry_after_seconds(self.reset_in_ms)


class CounterStore(abc.ABC):
    """Atomic counters with expiry, shared by all calls of a limiter."""

    @abc.abstractmethod
    async def incr(self, key: str, ttl_ms: int) -> int:
        """Atomically add one to ``key`` and return the new value.

        ``ttl_ms`` is how long the key must survive; the store may
        drop it afterwards.
        """

    async def close(self) -> None:
        return None


class InMemoryCounterStore(CounterStore):
    """Process-local counters guarded by a lock.

    Expired entries are dropped lazily: every ``sweep_every``
    increments the store removes keys whose expiry has passed.
    """

    def __init__(self, clock: Callable[[], float] = _now_ms, sweep_every: int = 256) -> None:
        self._counters: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_every = sweep_every
        self._calls = 0

    async def incr(self, key: str, ttl_ms: int) -> int:
        now = self._clock()
        with self._lock:
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)
            entry = self._counters.get(key)
            if entry is None or entry[1] <= now:
                entry = [0, now + ttl_ms]
                self._counters[key] = entry
            entry[0] += 1
            return int(entry[0])

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    def __len__(self) -> int:
        return len(self._counters)


class RedisCounterStore(CounterStore):
    """Counters in Redis, shared by every instance using the same server.

    While Redis is unreachable, increments go to an in-process
    ``fallback`` store so requests keep being limited per instance.
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "ratelimit:",
        fallback: Optional[CounterStore] = None,
    ) -> None:
        self.redis = redis.from_url(redis_url, decode_responses=True)
        self.fallback = fallback if fallback is not None else InMemoryCounterStore()
        self.prefix = prefix

    async def incr(self, key: str, ttl_ms: int) -> int:
        redis_key = f"{self.prefix}{key}"
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.pexpire(redis_key, max(1, int(ttl_ms)))
                count, _ = await pipe.execute()
        except (redis.RedisError, OSError) as exc:
            logger.warning("Redis rate-limit store unavailable, counting in process: %s", exc)
            return await self.fallback.incr(key, ttl_ms)
        return int(count)

    async def close(self) -> None:
        await self.redis.aclose()
        await self.fallback.close()


class RateLimiter:
    """Fixed-window limiter over an injected :class:`CounterStore`."""

    def __init__(
        self,
        store: CounterStore,
        rules: Optional[Dict[str, RateLimitRule]] = None,
        clock: Callable[[], float] = _now_ms,
    ) -> None:
        self.store = store
        self.rules = dict(RATE_LIMITS if rules is None else rules)
        self.clock = clock

    async def check_and_consume(self, identity_key: str, action: str) -> RateLimitResult:
        """Consume one unit of ``action`` for ``identity_key``.

        Raises ``KeyError`` for an action without a configured rule.
        """
        rule = self.rules[action]
        now = int(self.clock())
        window_index = now // rule.window_ms
        window_start = window_index * rule.window_ms
        reset_in_ms = window_start + rule.window_ms - now
        count = await self.store.incr(f"{identity_key}:{action}:{window_index}", reset_in_ms)
        if count > rule.limit:
            return RateLimitResult(False, rule.limit, 0, reset_in_ms)
        return RateLimitResult(True, rule.limit, rule.limit - count, reset_in_ms)


def normalize_ip(value: str) -> str:
    """Canonical form of a client address (``unknown`` if unparseable)."""
    candidate = value.strip().strip('"')
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1:candidate.index("]")]
    elif candidate.count(":") == 1:
        # IPv4 with a port, e.g. "203.0.113.7:51234"
        candidate = candidate.split(":", 1)[0]
    candidate = candidate.split("%", 1)[0]
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return "unknown"
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return address.compressed


def get_client_ip(request: Request, trusted_headers: List[str]) -> str:
    """Resolve the client address from trusted proxy headers or the socket."""
    for header in trusted_headers:
        value = request.headers.get(header)
        if value:
            # x-forwarded-for style lists start with the original client.
            return normalize_ip(value.split(",")[0])
    if request.client and request.client.host:
        return normalize_ip(request.client.host)
    return "unknown"


def rate_limit_identity(request: Request, current_user: Optional[Dict[str, Any]]) -> str:
    if current_user and current_user.get("user_id"):
        return f"user:{current_user['user_id']}"
    return f"ip:{get_client_ip(request, settings.trusted_ip_header_list())}"


def rate_limited(action: str, require_user: bool = True) -> Callable[..., Any]:
    """Dependency factory enforcing the ``action`` budget.

    Use it in endpoints via ``Depends(rate_limited("votes"))``.  The
    dependency runs the origin guard and identity resolution first, in
    that order, then consumes one unit and returns the current user
    (``None`` for anonymous callers when ``require_user`` is false).
    Successful responses carry ``X-RateLimit-*`` headers; exhausted
    budgets raise ``RATE_LIMITED``.
    """
    user_dependency = get_current_user if require_user else get_optional_user

    async def _rate_limit_dependency(
        request: Request,
        response: Response,
        _origin: None = Depends(verify_origin),
        current_user: Optional[Dict[str, Any]] = Depends(user_dependency),
    ) -> Optional[Dict[str, Any]]:
        limiter: RateLimiter = request.app.state.rate_limiter
        identity = rate_limit_identity(request, current_user)
        result = await limiter.check_and_consume(identity, action)
        if not result.allowed:
            logger.warning("Rate limit exceeded for %s on %s", identity, action)
            raise RateLimitedError(result.reset_in_ms)
        response.headers["X-RateLimit-Limit"] = str(result.limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        response.headers["X-RateLimit-Reset"] = str(result.reset_in_seconds)
        return current_user

    return _rate_limit_dependency
