"""Fixed-window request admission, per process or shared through Redis."""

from __future__ import annotations

import time

from redis.asyncio import Redis
import structlog

LOGGER = structlog.get_logger("fileproxy.ratelimit")


class RateLimiter:
    """Redis-backed fixed-window counter shared by every instance pointing at the same Redis."""

    def __init__(self, redis: Redis):
        self._redis = redis

    async def check_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> tuple[bool, int]:
        """
        Count one request against ``key``.

        Args:
            key: Unique key for the limit, e.g. ``"client:203.0.113.7"``
            limit: Maximum requests allowed in the window
            window_seconds: Window length in seconds

        Returns:
            (allowed, current_count)
        """
        rate_key = f"ratelimit:{key}"

        try:
            current = await self._redis.incr(rate_key)
            if current == 1:
                await self._redis.expire(rate_key, window_seconds)

            allowed = current <= limit
            if not allowed:
                LOGGER.warning(
                    "Rate limit exceeded",
                    key=key,
                    current=current,
                    limit=limit,
                    window=window_seconds,
                )
            return allowed, current

        except Exception as exc:
            # Redis outages must not take the proxy down with them.
            LOGGER.error("Rate limiter error, failing open", key=key, error=str(exc))
            return True, 0

    async def ttl(self, key: str, window_seconds: int) -> int:
        """Seconds until the current window for ``key`` resets."""
        try:
            remaining = await self._redis.ttl(f"ratelimit:{key}")
        except Exception as exc:
            LOGGER.error("Rate limiter ttl lookup failed", key=key, error=str(exc))
            return window_seconds
        if remaining is None or remaining < 0:
            return window_seconds
        return int(remaining)

    async def reset(self, key: str) -> None:
        await self._redis.delete(f"ratelimit:{key}")

    async def close(self) -> None:
        await self._redis.aclose()


class InMemoryRateLimiter:
    """Per-process fixed-window counter.

    Windows that have ended are dropped once ``sweep_threshold``
    keys are tracked, so a long-lived process does not keep one entry per
    client it has ever seen.
    """

    def __init__(self, clock=time.monotonic, sweep_threshold: int = 1024):
        self._counters: dict[str, tuple[int, float]] = {}
        self._clock = clock
        self._sweep_threshold = sweep_threshold

    def _sweep(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]

    @property
    def tracked_keys(self) -> int:
        return len(self._counters)

    async def check_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> tuple[bool, int]:
        now = self._clock()
        if len(self._counters) >= self._sweep_threshold:
            self._sweep(now)
        count, expires_at = self._counters.get(key, (0, 0.0))
        if now >= expires_at:
            count, expires_at = 0, now + window_seconds
        count += 1
        self._counters[key] = (count, expires_at)

        allowed = count <= limit
        if not allowed:
            LOGGER.warning(
                "Rate limit exceeded (in-memory)",
                key=key,
                current=count,
                limit=limit,
            )
        return allowed, count

    async def ttl(self, key: str, window_seconds: int) -> int:
        entry = self._counters.get(key)
        if entry is None:
            return window_seconds
        return max(0, int(round(entry[1] - self._clock())))

    async def reset(self, key: str) -> None:
        self._counters.pop(key, None)

    async def close(self) -> None:
        self._counters.clear()
