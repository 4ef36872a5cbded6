"""Per-client request rate limiting.

In-memory sliding window keyed by client identifier, with LRU eviction so
the key table cannot grow without bound. State is per process.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from starlette.requests import Request

from app.config import settings

MAX_RATE_LIMIT_KEYS = 10000


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float


def client_identifier(request: Request) -> str:
    """First forwarded-for hop, then x-real-ip, then 'anonymous'."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return "anonymous"


class RateLimiter:
    def __init__(
        self,
        *,
        max_requests: int | None = None,
        window_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max(int(max_requests or settings.rate_limit_max_requests), 1)
        self.window_seconds = float(window_seconds or settings.rate_limit_window_seconds)
        self._clock = clock
        self._hits: OrderedDict[str, list[float]] = OrderedDict()

    async def limit(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        window_start = now - self.window_seconds
        hits = [t for t in self._hits.get(identifier, []) if t > window_start]

        if len(hits) >= self.max_requests:
            self._hits[identifier] = hits
            self._hits.move_to_end(identifier)
            return RateLimitResult(
                success=False,
                limit=self.max_requests,
                remaining=0,
                reset=hits[0] + self.window_seconds,
            )

        hits.append(now)
        self._hits[identifier] = hits
        self._hits.move_to_end(identifier)
        while len(self._hits) > MAX_RATE_LIMIT_KEYS:
            self._hits.popitem(last=False)

        return RateLimitResult(
            success=True,
            limit=self.max_requests,
            remaining=self.max_requests - len(hits),
            reset=hits[0] + self.window_seconds,
        )


rate_limiter = RateLimiter()
