from __future__ import annotations

import pytest
from starlette.requests import Request

from app.services import rate_limit
from app.services.rate_limit import RateLimiter, client_identifier


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _request(headers: dict[str, str]) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "headers": raw})


def test_identifier_prefers_first_forwarded_hop():
    request = _request({"x-forwarded-for": "203.0.113.5, 10.0.0.1", "x-real-ip": "10.0.0.9"})

    assert client_identifier(request) == "203.0.113.5"


def test_identifier_uses_real_ip_then_anonymous():
    assert client_identifier(_request({"x-real-ip": "198.51.100.7"})) == "198.51.100.7"
    assert client_identifier(_request({})) == "anonymous"


@pytest.mark.asyncio
async def test_limit_rejects_after_max_requests_in_window():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=clock)

    first = await limiter.limit("ip")
    second = await limiter.limit("ip")
    third = await limiter.limit("ip")

    assert first.success and second.success
    assert second.remaining == 0
    assert third.success is False
    assert third.reset == pytest.approx(1060.0)


@pytest.mark.asyncio
async def test_limit_window_slides():
    clock = FakeClock()
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)

    assert (await limiter.limit("ip")).success
    assert not (await limiter.limit("ip")).success
    clock.now += 61
    assert (await limiter.limit("ip")).success


@pytest.mark.asyncio
async def test_limit_is_per_identifier():
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    assert (await limiter.limit("a")).success
    assert (await limiter.limit("b")).success
    assert not (await limiter.limit("a")).success


@pytest.mark.asyncio
async def test_key_table_is_bounded(monkeypatch):
    monkeypatch.setattr(rate_limit, "MAX_RATE_LIMIT_KEYS", 3)
    limiter = RateLimiter(max_requests=1, window_seconds=60, clock=FakeClock())

    for key in ("a", "b", "c", "d"):
        await limiter.limit(key)

    # "a" was evicted, so it is admitted again.
    assert (await limiter.limit("a")).success
    assert not (await limiter.limit("d")).success
