"""
Frinder Ledger — Per-user, per-action admission control.

Each ``(identity, action)`` pair gets a fixed window that opens on the first
request and lasts ``window_ms``; up to ``max_count`` requests are admitted
inside it.  Anchoring the window to the first request (rather than to
wall-clock buckets) prevents a burst straddling a bucket boundary from
admitting ``2 × max_count`` requests.

Counter state lives behind the :class:`RateLimitStore` protocol:

* :class:`InMemoryRateLimitStore` — process-local dict.  Correct for a
  single-instance deployment only.
* :class:`RedisRateLimitStore` — shared counters in Redis for multi-instance
  deployments.  Windows are enforced with ``PX`` expiries on the server.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import structlog

from app.config import get_settings
from app.errors import RateLimitedError

logger = structlog.get_logger("frinder.rate_limiter")


@dataclass(frozen=True)
class RateLimitRule:
    window_ms: int
    max_count: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    reset_in_ms: int
    remaining: int


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    total: int
    reset_in_ms: int


class RateLimitStore(Protocol):
    """Counter backend.  ``hit`` must be atomic per key."""

    async def hit(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitDecision: ...

    async def peek(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitStatus: ...

    async def clear(self, key_prefix: str) -> None: ...


# ──────────────────────────────────────────────────────────────────────────────
# In-memory backend
# ──────────────────────────────────────────────────────────────────────────────


@dataclass
class _Window:
    count: int
    reset_at_ms: int


class InMemoryRateLimitStore:
    """Process-local counters.

    ``hit`` performs no ``await`` between read and write, so it is atomic
    with respect to other coroutines on the same event loop.  Every
    ``sweep_every`` hits, windows that have already expired are dropped so
    identities that stop calling do not accumulate.
    """

    def __init__(self, sweep_every: int = 1000) -> None:
        self._windows: dict[str, _Window] = {}
        self.sweep_every = sweep_every
        self._hits_since_sweep = 0

    def __len__(self) -> int:
        return len(self._windows)

    def sweep(self, now_ms: int) -> int:
        """Drop expired windows; returns how many were removed."""
        expired = [k for k, w in self._windows.items() if now_ms >= w.reset_at_ms]
        for key in expired:
            del self._windows[key]
        self._hits_since_sweep = 0
        if expired:
            logger.debug("rate_limit_windows_swept", removed=len(expired))
        return len(expired)

    async def hit(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitDecision:
        self._hits_since_sweep += 1
        if self._hits_since_sweep >= self.sweep_every:
            self.sweep(now_ms)

        window = self._windows.get(key)

        if window is None or now_ms >= window.reset_at_ms:
            self._windows[key] = _Window(count=1, reset_at_ms=now_ms + rule.window_ms)
            return RateLimitDecision(
                allowed=True,
                reset_in_ms=rule.window_ms,
                remaining=rule.max_count - 1,
            )

        if window.count >= rule.max_count:
            return RateLimitDecision(
                allowed=False,
                reset_in_ms=window.reset_at_ms - now_ms,
                remaining=0,
            )

        window.count += 1
        return RateLimitDecision(
            allowed=True,
            reset_in_ms=window.reset_at_ms - now_ms,
            remaining=rule.max_count - window.count,
        )

    async def peek(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitStatus:
        window = self._windows.get(key)
        if window is None or now_ms >= window.reset_at_ms:
            return RateLimitStatus(
                remaining=rule.max_count, total=rule.max_count, reset_in_ms=0
            )
        return RateLimitStatus(
            remaining=max(0, rule.max_count - window.count),
            total=rule.max_count,
            reset_in_ms=window.reset_at_ms - now_ms,
        )

    async def clear(self, key_prefix: str) -> None:
        for key in [k for k in self._windows if k.startswith(key_prefix)]:
            del self._windows[key]


# ──────────────────────────────────────────────────────────────────────────────
# Redis backend
# ──────────────────────────────────────────────────────────────────────────────


class RedisRateLimitStore:
    """Shared counters in Redis.

    The window key is created with ``SET NX PX`` and counted with ``INCR``
    inside one MULTI block, so the first request of a window fixes its
    expiry exactly as the in-memory store does.  Rejected requests still
    increment the counter; only the comparison with ``max_count`` matters.
    """

    def __init__(self, client: Any, namespace: str = "ratelimit") -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def hit(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitDecision:
        redis_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(redis_key, 0, px=rule.window_ms, nx=True)
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            _, count, ttl = await pipe.execute()

        reset_in_ms = int(ttl) if ttl and ttl > 0 else rule.window_ms
        count = int(count)
        return RateLimitDecision(
            allowed=count <= rule.max_count,
            reset_in_ms=reset_in_ms,
            remaining=max(0, rule.max_count - count),
        )

    async def peek(
        self, key: str, rule: RateLimitRule, now_ms: int
    ) -> RateLimitStatus:
        redis_key = self._key(key)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.get(redis_key)
            pipe.pttl(redis_key)
            raw_count, ttl = await pipe.execute()

        if raw_count is None or ttl is None or ttl <= 0:
            return RateLimitStatus(
                remaining=rule.max_count, total=rule.max_count, reset_in_ms=0
            )
        return RateLimitStatus(
            remaining=max(0, rule.max_count - int(raw_count)),
            total=rule.max_count,
            reset_in_ms=int(ttl),
        )

    async def clear(self, key_prefix: str) -> None:
        pattern = f"{self._key(key_prefix)}*"
        keys = [k async for k in self._client.scan_iter(match=pattern)]
        if keys:
            await self._client.delete(*keys)


# ──────────────────────────────────────────────────────────────────────────────
# Limiter
# ──────────────────────────────────────────────────────────────────────────────


def _monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class RateLimiter:
    """Admission control over an injected :class:`RateLimitStore`.

    Parameters
    ----------
    store:
        Counter backend; defaults to a fresh :class:`InMemoryRateLimitStore`.
    rules:
        Mapping of action name to ``{"window_ms": int, "max_count": int}``.
        Defaults to ``Settings.RATE_LIMITS``.
    clock:
        Millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        rules: Mapping[str, Mapping[str, int]] | None = None,
        clock: Callable[[], int] = _monotonic_ms,
    ) -> None:
        self.store: RateLimitStore = store or InMemoryRateLimitStore()
        raw_rules = rules if rules is not None else get_settings().RATE_LIMITS
        self.rules: dict[str, RateLimitRule] = {
            action: RateLimitRule(
                window_ms=int(cfg["window_ms"]), max_count=int(cfg["max_count"])
            )
            for action, cfg in raw_rules.items()
        }
        self._clock = clock

    @staticmethod
    def _key(identity: str, action: str) -> str:
        return f"{identity}:{action}"

    async def allow(self, identity: str, action: str) -> RateLimitDecision:
        """Count one request and report whether it is admitted.

        Unknown actions are always admitted.
        """
        rule = self.rules.get(action)
        if rule is None:
            return RateLimitDecision(allowed=True, reset_in_ms=0, remaining=-1)

        decision = await self.store.hit(
            self._key(identity, action), rule, self._clock()
        )
        if not decision.allowed:
            logger.info(
                "rate_limit_rejected",
                identity=identity,
                action=action,
                reset_in_ms=decision.reset_in_ms,
            )
        return decision

    async def check(self, identity: str, action: str) -> RateLimitDecision:
        """Like :meth:`allow` but raise :class:`RateLimitedError` on rejection."""
        decision = await self.allow(identity, action)
        if not decision.allowed:
            raise RateLimitedError(action=action, reset_in_ms=decision.reset_in_ms)
        return decision

    async def status(self, identity: str, action: str) -> RateLimitStatus:
        rule = self.rules.get(action)
        if rule is None:
            return RateLimitStatus(remaining=-1, total=-1, reset_in_ms=0)
        return await self.store.peek(self._key(identity, action), rule, self._clock())

    async def clear(self, identity: str, action: str | None = None) -> None:
        prefix = self._key(identity, action) if action else f"{identity}:"
        await self.store.clear(prefix)
