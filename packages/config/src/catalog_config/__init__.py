from .settings import (
    ApiRateLimitRule,
    ApiRateLimitSettings,
    ApiSettings,
    DatabaseSettings,
    RedisSettings,
    Settings,
)

__all__ = [
    "ApiRateLimitRule",
    "ApiRateLimitSettings",
    "ApiSettings",
    "DatabaseSettings",
    "RedisSettings",
    "Settings",
]
