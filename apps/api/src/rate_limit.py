from __future__ import annotations

import ipaddress
import logging
import math
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Final, Optional, Protocol, Union

from redis.asyncio import Redis
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from catalog_config import ApiRateLimitRule, ApiRateLimitSettings
from errors import RateLimiterUnavailableError, TooManyRequestsError
from responses import error_response

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

EXEMPT_PATHS: Final[frozenset[str]] = frozenset({"/health"})


class RedisLike(Protocol):
    async def eval(
        self, script: str, numkeys: int, *keys_and_args: object
    ) -> object: ...


# KEYS[1]: sorted set of request timestamps for one client and bucket.
# ARGV: now (ms), window (ms), limit, unique member for this request.
# Returns {1, 0} when admitted, {0, ms until the oldest entry expires} otherwise.
_SLIDING_WINDOW_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])

redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - window)

if redis.call('ZCARD', KEYS[1]) < tonumber(ARGV[3]) then
  redis.call('ZADD', KEYS[1], now, ARGV[4])
  redis.call('PEXPIRE', KEYS[1], window)
  return {1, 0}
end

redis.call('PEXPIRE', KEYS[1], window)

local oldest = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
local wait = (tonumber(oldest[2]) or now) + window - now
return {0, math.max(wait, 0)}
"""


def create_redis_client(redis_url: str) -> Redis:
    # Connections are opened lazily on the first command.
    return Redis.from_url(redis_url, decode_responses=False)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _path_matches_prefix(path: str, prefix: str) -> bool:
    return prefix == "/" or path == prefix or path.startswith(f"{prefix}/")


def _parse_ip_networks(entries: list[str]) -> list[IPNetwork]:
    return [
        ipaddress.ip_network(entry.strip(), strict=False)
        for entry in entries
        if entry.strip()
    ]


def _parse_ip(value: str) -> Optional[IPAddress]:
    """Parse a bare, ``host:port`` or ``[v6]:port`` address; ``None`` if invalid."""

    host = value.strip()
    if host.startswith("["):
        host = host[1:].partition("]")[0]
    elif host.count(":") == 1:
        address, _, port = host.partition(":")
        if port.isdigit():
            host = address
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        return None


def _forwarded_client_ip(headers: Headers) -> Optional[str]:
    # The left-most X-Forwarded-For entry is the original client.
    forwarded = headers.get("x-forwarded-for") or headers.get("x-real-ip")
    if not forwarded:
        return None
    address = _parse_ip(forwarded.split(",")[0])
    return str(address) if address is not None else None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after_seconds: Optional[int] = None


class SlidingWindowRateLimiter:
    """Counts requests per ``(bucket, client)`` in Redis over a rolling window."""

    def __init__(
        self,
        redis_client: RedisLike,
        *,
        key_prefix: str = "catalog:rate_limit",
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.now_ms = now_ms

    def key_for(self, bucket: str, client_id: str) -> str:
        return f"{self.key_prefix}:{bucket}:{client_id}"

    async def allow(
        self, *, bucket: str, client_id: str, limit: int, window_s: int
    ) -> RateLimitResult:
        now_ms = self.now_ms()
        reply = await self.redis.eval(
            _SLIDING_WINDOW_SCRIPT,
            1,
            self.key_for(bucket, client_id),
            now_ms,
            window_s * 1000,
            limit,
            f"{now_ms}:{uuid.uuid4().hex}",
        )
        try:
            admitted, wait_ms = (int(item) for item in reply[:2])
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Unexpected Redis script result: {reply!r}") from exc

        if admitted:
            return RateLimitResult(allowed=True)
        return RateLimitResult(
            allowed=False, retry_after_seconds=max(1, math.ceil(wait_ms / 1000))
        )


class RateLimitMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        *,
        config: ApiRateLimitSettings,
        redis_client: RedisLike,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.app = app
        self.config = config
        self.limiter = SlidingWindowRateLimiter(redis_client, now_ms=now_ms)
        self.logger = logging.getLogger("api.rate_limit")
        self.trusted_proxies = _parse_ip_networks(config.trusted_proxies)
        self.rules = sorted(
            config.rules, key=lambda rule: len(rule.path_prefix), reverse=True
        )

    def _resolve_client_ip(self, scope: Scope) -> str:
        host = (scope.get("client") or ("", 0))[0] or "unknown"
        if not self.config.trust_proxy_headers:
            return host

        peer = _parse_ip(host)
        if peer is None or not any(peer in net for net in self.trusted_proxies):
            return host
        return _forwarded_client_ip(Headers(scope=scope)) or host

    def _match_rule(self, path: str) -> Optional[ApiRateLimitRule]:
        for rule in self.rules:
            if _path_matches_prefix(path, rule.path_prefix):
                return rule
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not self.config.enabled:
            await self.app(scope, receive, send)
            return

        path = (scope.get("path") or "").rstrip("/") or "/"
        rule = None if path in EXEMPT_PATHS else self._match_rule(path)
        if rule is None:
            await self.app(scope, receive, send)
            return

        client_ip = self._resolve_client_ip(scope)
        bucket = rule.path_prefix.strip("/").replace("/", ":") or "root"
        log_extra = {"client_ip": client_ip, "path": path, "bucket": bucket}
        try:
            result = await self.limiter.allow(
                bucket=bucket,
                client_id=client_ip,
                limit=rule.requests_per_minute,
                window_s=rule.window_seconds,
            )
        except Exception:
            self.logger.exception("rate_limit.redis_error", extra=log_extra)
            response = error_response(RateLimiterUnavailableError())
            await response(scope, receive, send)
            return

        if result.allowed:
            await self.app(scope, receive, send)
            return

        self.logger.info("rate_limit.rejected", extra=log_extra)
        retry_after = result.retry_after_seconds or rule.window_seconds
        response = error_response(
            TooManyRequestsError(), headers={"Retry-After": str(retry_after)}
        )
        await response(scope, receive, send)
