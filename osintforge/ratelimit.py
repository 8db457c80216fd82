"""
Sliding-window rate limiting for job intake.

Each key owns a sorted set of request timestamps covering the last
``window_ms``. A check purges expired entries, counts what is left, and either
rejects (count already at the limit) or records the new request. The whole
check is one atomic operation against the counter store: a Lua script in
Redis, or a lock-guarded dict in memory.

If the counter store is unreachable the limiter fails open by default: the
request is allowed and a warning is logged. Set ``fail_open=False`` (or
``OSINT_RATE_LIMIT_FAIL_OPEN=false``) to reject instead.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from osintforge.base.timeutil import now_ms
from osintforge.errors import CounterStoreError, RateLimitError
from osintforge.toolkit.models import ToolMetadata

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000


class UserRole(str, Enum):
    USER = "user"
    PRO = "pro"
    ADMIN = "admin"


class LimitType(str, Enum):
    GLOBAL = "global"
    TOOL = "tool"


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_ms: int
    key_prefix: str = "ratelimit"


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int
    remaining: int
    reset: int  # epoch milliseconds

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


RATE_LIMITS: Dict[UserRole, Dict[LimitType, RateLimitRule]] = {
    UserRole.USER: {
        LimitType.GLOBAL: RateLimitRule(max_requests=100, window_ms=HOUR_MS),
        LimitType.TOOL: RateLimitRule(max_requests=10, window_ms=HOUR_MS),
    },
    UserRole.PRO: {
        LimitType.GLOBAL: RateLimitRule(max_requests=1000, window_ms=HOUR_MS),
        LimitType.TOOL: RateLimitRule(max_requests=100, window_ms=HOUR_MS),
    },
    UserRole.ADMIN: {
        LimitType.GLOBAL: RateLimitRule(max_requests=10000, window_ms=HOUR_MS),
        LimitType.TOOL: RateLimitRule(max_requests=1000, window_ms=HOUR_MS),
    },
}


class WindowOutcome(NamedTuple):
    allowed: bool
    count: int  # live entries before this request was recorded
    oldest_ms: Optional[int]


# ---------------------------------------------------------------------------
# Counter stores
# ---------------------------------------------------------------------------

class CounterStore(Protocol):
    async def hit(self, key: str, now: int, window_ms: int, limit: int) -> WindowOutcome: ...

    async def peek(self, key: str, now: int, window_ms: int) -> WindowOutcome: ...

    async def reset(self, key: str) -> None: ...


class MemoryCounterStore:
    """
    Single-process store: a dict of timestamp lists behind an asyncio.Lock.

    A key whose window has emptied is dropped, so the dict only holds keys with
    live entries.
    """

    def __init__(self):
        self.requests: Dict[str, List[int]] = {}
        self._lock = asyncio.Lock()

    def _purge(self, key: str, now: int, window_ms: int) -> List[int]:
        live = [t for t in self.requests.get(key, ()) if t > now - window_ms]
        if live:
            self.requests[key] = live
        else:
            self.requests.pop(key, None)
        return live

    async def hit(self, key: str, now: int, window_ms: int, limit: int) -> WindowOutcome:
        async with self._lock:
            live = self._purge(key, now, window_ms)
            count = len(live)
            oldest = min(live) if live else None
            if count >= limit:
                return WindowOutcome(False, count, oldest)
            live.append(now)
            self.requests[key] = live
            return WindowOutcome(True, count, oldest if oldest is not None else now)

    async def peek(self, key: str, now: int, window_ms: int) -> WindowOutcome:
        async with self._lock:
            live = self._purge(key, now, window_ms)
            return WindowOutcome(True, len(live), min(live) if live else None)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self.requests.pop(key, None)


# KEYS[1] = window key
# ARGV = now_ms, window_ms, limit, member
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, 0, now - window)
local count = redis.call('ZCARD', key)
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_score = now
if oldest[2] then
  oldest_score = tonumber(oldest[2])
end
if count >= limit then
  return {0, count, oldest_score}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('PEXPIRE', key, window)
return {1, count, oldest_score}
"""


class RedisCounterStore:
    """Shared store backed by Redis sorted sets, one atomic script call per check."""

    def __init__(self, client: "aioredis.Redis"):
        self.client = client
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    @classmethod
    def from_url(cls, url: str) -> "RedisCounterStore":
        return cls(aioredis.Redis.from_url(url, decode_responses=True))

    async def hit(self, key: str, now: int, window_ms: int, limit: int) -> WindowOutcome:
        member = f"{now}-{uuid.uuid4().hex[:8]}"
        try:
            allowed, count, oldest = await self._script(keys=[key], args=[now, window_ms, limit, member])
        except RedisError as exc:
            raise CounterStoreError(f"Redis unavailable: {exc}") from exc
        return WindowOutcome(bool(int(allowed)), int(count), int(oldest))

    async def peek(self, key: str, now: int, window_ms: int) -> WindowOutcome:
        try:
            await self.client.zremrangebyscore(key, 0, now - window_ms)
            count = await self.client.zcard(key)
            oldest = await self.client.zrange(key, 0, 0, withscores=True)
        except RedisError as exc:
            raise CounterStoreError(f"Redis unavailable: {exc}") from exc
        return WindowOutcome(True, int(count), int(oldest[0][1]) if oldest else None)

    async def reset(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as exc:
            raise CounterStoreError(f"Redis unavailable: {exc}") from exc

    async def close(self) -> None:
        await self.client.aclose()


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------

class SlidingWindowRateLimiter:
    def __init__(
        self,
        store: CounterStore,
        fail_open: bool = True,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.fail_open = fail_open
        self.clock = clock

    @staticmethod
    def key(identifier: str, rule: RateLimitRule) -> str:
        return f"{rule.key_prefix}:{identifier}"

    async def check(self, identifier: str, rule: RateLimitRule) -> RateLimitInfo:
        """
        Record one request against ``identifier`` under ``rule``.

        Raises:
            RateLimitError: the window already holds ``rule.max_requests`` entries
            CounterStoreError: the store is down and ``fail_open`` is False
        """
        now = self.clock()
        key = self.key(identifier, rule)
        try:
            outcome = await self.store.hit(key, now, rule.window_ms, rule.max_requests)
        except CounterStoreError as exc:
            if not self.fail_open:
                raise
            logger.warning(f"[RateLimit] Counter store unavailable, allowing {key}: {exc}")
            return RateLimitInfo(limit=rule.max_requests, remaining=rule.max_requests, reset=now + rule.window_ms)

        if not outcome.allowed:
            reset_at = (outcome.oldest_ms if outcome.oldest_ms is not None else now) + rule.window_ms
            retry_after = max(1, math.ceil((reset_at - now) / 1000))
            info = RateLimitInfo(limit=rule.max_requests, remaining=0, reset=reset_at)
            raise RateLimitError(
                f"Rate limit exceeded. Try again in {retry_after} seconds.",
                retry_after_seconds=retry_after,
                info=info,
                details={"key": key, "limit": rule.max_requests},
            )

        return RateLimitInfo(
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - outcome.count - 1),
            reset=now + rule.window_ms,
        )

    async def status(self, identifier: str, rule: RateLimitRule) -> RateLimitInfo:
        """Current window state without recording a request."""
        now = self.clock()
        key = self.key(identifier, rule)
        try:
            outcome = await self.store.peek(key, now, rule.window_ms)
        except CounterStoreError as exc:
            if not self.fail_open:
                raise
            logger.warning(f"[RateLimit] Counter store unavailable, status for {key} unknown: {exc}")
            return RateLimitInfo(limit=rule.max_requests, remaining=rule.max_requests, reset=now + rule.window_ms)
        reset_at = (outcome.oldest_ms + rule.window_ms) if outcome.oldest_ms is not None else now + rule.window_ms
        return RateLimitInfo(
            limit=rule.max_requests,
            remaining=max(0, rule.max_requests - outcome.count),
            reset=reset_at,
        )

    async def reset(self, identifier: str, rule: RateLimitRule) -> None:
        await self.store.reset(self.key(identifier, rule))
        logger.info(f"[RateLimit] Reset window {self.key(identifier, rule)}")


def rule_for(role: UserRole | str, limit_type: LimitType, key_prefix: str = "ratelimit") -> RateLimitRule:
    """Tier budget for ``role``, keyed ``<prefix>:<role>:<type>``. Unknown roles get the free tier."""
    try:
        role = UserRole(role)
    except ValueError:
        role = UserRole.USER
    base = RATE_LIMITS[role][limit_type]
    return RateLimitRule(
        max_requests=base.max_requests,
        window_ms=base.window_ms,
        key_prefix=f"{key_prefix}:{role.value}:{limit_type.value}",
    )


class IntakeLimiter:
    """Applies every budget a job submission has to fit: role global, role tool, and per-tool."""

    def __init__(self, limiter: SlidingWindowRateLimiter, key_prefix: str = "ratelimit"):
        self.limiter = limiter
        self.key_prefix = key_prefix

    async def admit(self, user_id: str, role: UserRole | str, metadata: ToolMetadata) -> RateLimitInfo:
        identifier = f"user:{user_id}"
        await self.limiter.check(identifier, rule_for(role, LimitType.GLOBAL, self.key_prefix))
        info = await self.limiter.check(identifier, rule_for(role, LimitType.TOOL, self.key_prefix))
        if metadata.rate_limit is not None:
            tool_rule = RateLimitRule(
                max_requests=metadata.rate_limit.max_requests,
                window_ms=metadata.rate_limit.window_ms,
                key_prefix=f"{self.key_prefix}:tool:{metadata.name}",
            )
            await self.limiter.check(identifier, tool_rule)
        return info
