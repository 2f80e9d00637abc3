from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import fakeredis.aioredis
import pytest
from catalog_config import ApiRateLimitRule, ApiRateLimitSettings
from fastapi import FastAPI
from fastapi.testclient import TestClient

from observability import TraceIdMiddleware
from rate_limit import (
    RateLimitMiddleware,
    RateLimitResult,
    SlidingWindowRateLimiter,
)


@dataclass
class FakeRedis:
    zsets: dict[str, list[int]] = field(default_factory=dict)
    calls: int = 0

    async def eval(self, script: str, numkeys: int, *keys_and_args: object) -> object:
        self.calls += 1
        assert numkeys == 1

        key = str(keys_and_args[0])
        now_ms = int(keys_and_args[1])
        window_ms = int(keys_and_args[2])
        limit = int(keys_and_args[3])

        threshold = now_ms - window_ms
        entries = [item for item in self.zsets.get(key, []) if item > threshold]
        self.zsets[key] = entries

        if len(entries) < limit:
            entries.append(now_ms)
            entries.sort()
            return [1, 0]

        oldest = entries[0] if entries else now_ms
        return [0, max(0, oldest + window_ms - now_ms)]


class BrokenRedis:
    async def eval(self, script: str, numkeys: int, *keys_and_args: object) -> object:
        raise RuntimeError("redis down")


@dataclass
class Clock:
    now: int

    def __call__(self) -> int:
        return self.now


def _products_config(**overrides: object) -> ApiRateLimitSettings:
    return ApiRateLimitSettings(
        rules=[ApiRateLimitRule(path_prefix="/api/v1/products", requests_per_minute=1)],
        **overrides,
    )


def _make_app(
    *, config: ApiRateLimitSettings, redis_client: object, clock: Clock
) -> tuple[FastAPI, dict[str, int]]:
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        config=config,
        redis_client=redis_client,
        now_ms=clock,
    )
    app.add_middleware(TraceIdMiddleware)
    hits = {"count": 0}

    @app.get("/api/v1/products")
    def list_products() -> dict[str, bool]:
        hits["count"] += 1
        return {"ok": True}

    @app.get("/api/v1/productsearch")
    def product_search() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app, hits


def test_rate_limit_returns_429_with_retry_after() -> None:
    app, hits = _make_app(
        config=_products_config(), redis_client=FakeRedis(), clock=Clock(1_000_000)
    )
    client = TestClient(app)

    ok = client.get("/api/v1/products")
    assert ok.status_code == 200
    assert hits["count"] == 1

    blocked = client.get("/api/v1/products")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "60"
    assert blocked.headers["X-Trace-Id"]
    assert blocked.json() == {"message": "Too Many Requests"}
    assert hits["count"] == 1


def test_rate_limit_sliding_window_allows_after_window() -> None:
    clock = Clock(now=1_000_000)
    app, hits = _make_app(
        config=_products_config(), redis_client=FakeRedis(), clock=clock
    )
    client = TestClient(app)

    assert client.get("/api/v1/products").status_code == 200
    clock.now += 30_000
    blocked = client.get("/api/v1/products")
    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "30"

    clock.now += 30_001
    assert client.get("/api/v1/products").status_code == 200
    assert hits["count"] == 2


def test_unmatched_path_and_health_do_not_hit_redis() -> None:
    redis = FakeRedis()
    app, _hits = _make_app(
        config=_products_config(), redis_client=redis, clock=Clock(1_000_000)
    )
    client = TestClient(app)

    assert client.get("/api/v1/productsearch").status_code == 200
    assert client.get("/health").status_code == 200
    assert client.get("/health").status_code == 200
    assert redis.calls == 0


def test_disabled_rate_limit_passes_through() -> None:
    redis = FakeRedis()
    app, hits = _make_app(
        config=_products_config(enabled=False),
        redis_client=redis,
        clock=Clock(1_000_000),
    )
    client = TestClient(app)

    for _ in range(3):
        assert client.get("/api/v1/products").status_code == 200
    assert hits["count"] == 3
    assert redis.calls == 0


def test_redis_errors_return_503() -> None:
    app, hits = _make_app(
        config=_products_config(), redis_client=BrokenRedis(), clock=Clock(1_000_000)
    )
    response = TestClient(app).get("/api/v1/products")

    assert response.status_code == 503
    assert response.json() == {"message": "Rate limiter unavailable"}
    assert hits["count"] == 0


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"x-forwarded-for": "203.0.113.10, 10.0.0.2"}, "203.0.113.10"),
        ({"x-real-ip": "203.0.113.10:1234"}, "203.0.113.10"),
        ({"x-real-ip": "[2001:db8::1]:443"}, "2001:db8::1"),
        ({"x-forwarded-for": "not-an-ip"}, "10.0.0.1"),
        ({}, "10.0.0.1"),
    ],
)
def test_forwarded_headers_are_trusted_from_proxies(
    headers: dict[str, str], expected: str
) -> None:
    middleware = RateLimitMiddleware(
        FastAPI(), config=_products_config(), redis_client=FakeRedis()
    )
    scope = {
        "type": "http",
        "client": ("10.0.0.1", 5000),
        "headers": [(k.encode(), v.encode()) for k, v in headers.items()],
    }
    assert middleware._resolve_client_ip(scope) == expected


def test_forwarded_headers_are_ignored_from_untrusted_clients() -> None:
    middleware = RateLimitMiddleware(
        FastAPI(), config=_products_config(), redis_client=FakeRedis()
    )
    scope = {
        "type": "http",
        "client": ("198.51.100.7", 5000),
        "headers": [(b"x-forwarded-for", b"203.0.113.10")],
    }
    assert middleware._resolve_client_ip(scope) == "198.51.100.7"


def test_limiter_buckets_are_scoped_per_client() -> None:
    redis = FakeRedis()
    limiter = SlidingWindowRateLimiter(redis, now_ms=Clock(1_000_000))

    async def runner() -> list[RateLimitResult]:
        return [
            await limiter.allow(
                bucket="products", client_id=client_id, limit=1, window_s=60
            )
            for client_id in ("a", "a", "b")
        ]

    first, second, other = asyncio.run(runner())

    assert first.allowed and other.allowed
    assert not second.allowed
    assert second.retry_after_seconds == 60
    assert set(redis.zsets) == {
        "catalog:rate_limit:products:a",
        "catalog:rate_limit:products:b",
    }


def test_sliding_window_script_sets_key_expiry() -> None:
    async def runner() -> tuple[list[RateLimitResult], int, int]:
        redis = fakeredis.aioredis.FakeRedis()
        limiter = SlidingWindowRateLimiter(redis)
        key = limiter.key_for("products", "a")
        try:
            first = await limiter.allow(
                bucket="products", client_id="a", limit=1, window_s=60
            )
            ttl_after_admit = await redis.pttl(key)
            second = await limiter.allow(
                bucket="products", client_id="a", limit=1, window_s=60
            )
            ttl_after_reject = await redis.pttl(key)
        finally:
            await redis.aclose()
        return [first, second], ttl_after_admit, ttl_after_reject

    (first, second), ttl_after_admit, ttl_after_reject = asyncio.run(runner())

    assert first.allowed
    assert not second.allowed
    assert 0 < ttl_after_admit <= 60_000
    assert 0 < ttl_after_reject <= 60_000
