"""Tests for request rate limiting."""

from typing import Annotated

import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from healthnexus.core.redis_client import CacheStore, LocalSlidingWindow, RateLimiter
from healthnexus.dependencies import get_cache_store
from healthnexus.middleware.cache import (
    SERVICE_CACHE_PATTERNS,
    appointment_cache_patterns,
    invalidate_patterns,
)
from healthnexus.middleware.error_handler import register_exception_handlers
from healthnexus.middleware.rate_limit import RateLimit


@pytest.mark.asyncio
async def test_limiter_allows_up_to_limit(cache: CacheStore):
    limiter = RateLimiter(cache, limit=3, window=60, scope="api")

    results = [await limiter.hit("ip:10.0.0.1") for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert 0 < results[-1].retry_after <= 60


@pytest.mark.asyncio
async def test_limiter_counts_identities_separately(cache: CacheStore):
    limiter = RateLimiter(cache, limit=1, window=60)

    assert (await limiter.hit("user:a")).allowed
    assert (await limiter.hit("user:b")).allowed
    assert not (await limiter.hit("user:a")).allowed


@pytest.mark.asyncio
async def test_limiter_falls_back_when_redis_is_down(cache: CacheStore, fake_redis):
    fake_redis.fail = True
    local = LocalSlidingWindow(window=60, max_identities=100)
    limiter = RateLimiter(cache, limit=2, window=60, local=local)

    results = [await limiter.hit("ip:10.0.0.2") for _ in range(3)]

    assert [r.allowed for r in results] == [True, True, False]
    assert "ip:10.0.0.2" in local
    assert 1 <= results[-1].retry_after <= 61


@pytest.mark.asyncio
async def test_cache_invalidation_keeps_rate_limit_counts(cache: CacheStore):
    limiter = RateLimiter(cache, limit=2, window=60, scope="appointments")
    for _ in range(3):
        await limiter.hit("user:p1")

    await invalidate_patterns(cache, appointment_cache_patterns("p1", "d1", appointment_id="a1"))
    await invalidate_patterns(cache, SERVICE_CACHE_PATTERNS)
    await cache.clear()

    result = await limiter.hit("user:p1")
    assert not result.allowed
    assert result.remaining == 0


@pytest.mark.asyncio
async def test_counter_expiry_restored_after_failed_expire(cache: CacheStore, fake_redis):
    limiter = RateLimiter(cache, limit=5, window=60)
    key = limiter.key_for("user:x")
    expire = fake_redis.expire
    calls = []

    async def flaky_expire(name, seconds):
        calls.append(name)
        if len(calls) == 1:
            raise RedisConnectionError("Connection reset")
        return await expire(name, seconds)

    fake_redis.expire = flaky_expire

    await limiter.hit("user:x")
    assert await fake_redis.ttl(key) == -1

    result = await limiter.hit("user:x")
    assert 0 < await fake_redis.ttl(key) <= 60
    assert result.remaining == 3


def test_sliding_window_expires_old_requests():
    window = LocalSlidingWindow(window=60, max_identities=10)

    window.hit("a", now=0)
    window.hit("a", now=30)
    count, oldest = window.hit("a", now=61)

    assert count == 2
    assert oldest == 30


def test_sliding_window_evicts_least_recent_identity():
    window = LocalSlidingWindow(window=60, max_identities=2)

    window.hit("a", now=0)
    window.hit("b", now=1)
    window.hit("a", now=2)
    window.hit("c", now=3)

    assert len(window) == 2
    assert "b" not in window
    assert "a" in window
    assert "c" in window


@pytest.fixture
def limited_app(cache: CacheStore) -> FastAPI:
    """Minimal app with a two-request quota."""
    limit = RateLimit(scope="test", limit=2, window=60)
    test_app = FastAPI()
    register_exception_handlers(test_app)
    test_app.dependency_overrides[get_cache_store] = lambda: cache

    @test_app.get("/limited")
    async def limited(_: Annotated[object, Depends(limit)]) -> dict[str, str]:
        return {"status": "ok"}

    return test_app


@pytest.mark.asyncio
async def test_rate_limit_dependency_rejects_with_429(limited_app: FastAPI):
    async with AsyncClient(
        transport=ASGITransport(app=limited_app), base_url="http://test"
    ) as client:
        first = await client.get("/limited")
        second = await client.get("/limited")
        third = await client.get("/limited")

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert second.status_code == 200
    assert third.status_code == 429
    assert third.json()["error"] == "RateLimitException"
    assert int(third.headers["Retry-After"]) > 0
    assert third.headers["X-RateLimit-Remaining"] == "0"


@pytest.mark.asyncio
async def test_rate_limit_keys_on_token_subject(limited_app: FastAPI, patient, headers_for):
    async with AsyncClient(
        transport=ASGITransport(app=limited_app), base_url="http://test"
    ) as client:
        for _ in range(2):
            await client.get("/limited")
        anonymous = await client.get("/limited")
        authenticated = await client.get("/limited", headers=headers_for(patient))

    assert anonymous.status_code == 429
    assert authenticated.status_code == 200


@pytest.mark.asyncio
async def test_rate_limit_survives_redis_outage(limited_app: FastAPI, fake_redis):
    fake_redis.fail = True

    async with AsyncClient(
        transport=ASGITransport(app=limited_app), base_url="http://test"
    ) as client:
        statuses = [(await client.get("/limited")).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
