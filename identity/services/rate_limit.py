"""
Fixed-window rate limiter keyed by (identifier, action).

A window opens on the first hit of a key and lasts ``window`` seconds. An
expired counter is replaced on the next call for its key, and every counter
past its own window is swept out at most once per ``sweep_interval`` seconds,
so keys that never come back do not accumulate. The increment and the limit
check happen under one lock so concurrent callers for the same key can never
both be admitted past the limit.
"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from identity.config import RateLimitPolicy

DEFAULT_SWEEP_INTERVAL = 60.0


@dataclass
class RateLimitInfo:
    allowed: bool
    remaining: int
    limit: int
    reset_at: float
    retry_after: Optional[int] = None


@dataclass
class RateLimitCounter:
    window_start: float
    window: int
    count: int

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window


class RateLimiter(Protocol):
    def allow(self, identifier: str, action: str, limit: int, window: int) -> RateLimitInfo:
        ...

    def peek(self, identifier: str, action: str, limit: int, window: int) -> RateLimitInfo:
        ...

    def reset(self, identifier: str, action: str) -> None:
        ...


def enforce(
    limiter: RateLimiter,
    identifier: str,
    policy: RateLimitPolicy,
) -> RateLimitInfo:
    return limiter.allow(identifier, policy.action, policy.limit, policy.window_seconds)


def check(
    limiter: RateLimiter,
    identifier: str,
    policy: RateLimitPolicy,
) -> RateLimitInfo:
    """Report whether the next hit would be admitted without counting it."""
    return limiter.peek(identifier, policy.action, policy.limit, policy.window_seconds)


class InMemoryRateLimiter:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._counters: dict[tuple[str, str], RateLimitCounter] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def allow(self, identifier: str, action: str, limit: int, window: int) -> RateLimitInfo:
        key = (action, identifier)
        with self._lock:
            now = self._clock()
            if now - self._last_sweep >= self._sweep_interval:
                self._drop_expired(now)
            counter = self._counters.get(key)
            if counter is None or counter.expired(now):
                counter = RateLimitCounter(window_start=now, window=window, count=0)
                self._counters[key] = counter
            reset_at = counter.window_start + window

            if counter.count >= limit:
                return RateLimitInfo(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=reset_at,
                    retry_after=max(1, math.ceil(reset_at - now)),
                )

            counter.count += 1
            return RateLimitInfo(
                allowed=True,
                remaining=limit - counter.count,
                limit=limit,
                reset_at=reset_at,
            )

    def peek(self, identifier: str, action: str, limit: int, window: int) -> RateLimitInfo:
        with self._lock:
            now = self._clock()
            counter = self._counters.get((action, identifier))
            if counter is None or counter.expired(now):
                return RateLimitInfo(
                    allowed=True, remaining=limit, limit=limit, reset_at=now + window
                )
            reset_at = counter.window_start + counter.window
            if counter.count >= limit:
                return RateLimitInfo(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=reset_at,
                    retry_after=max(1, math.ceil(reset_at - now)),
                )
            return RateLimitInfo(
                allowed=True,
                remaining=limit - counter.count,
                limit=limit,
                reset_at=reset_at,
            )

    def reset(self, identifier: str, action: str) -> None:
        with self._lock:
            self._counters.pop((action, identifier), None)

    def sweep(self) -> int:
        """Drop every counter whose window has closed; returns how many were removed."""
        with self._lock:
            return self._drop_expired(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def _drop_expired(self, now: float) -> int:
        stale = [key for key, counter in self._counters.items() if counter.expired(now)]
        for key in stale:
            del self._counters[key]
        self._last_sweep = now
        return len(stale)


rate_limiter = InMemoryRateLimiter()
