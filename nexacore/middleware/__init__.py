"""
Middleware components for request processing.

This package contains:
- Fixed-window rate limiting (in-process and Redis-backed)
- The API gateway (rate limit, API key validation, request logging)

The process-wide limiter instance lives at
``nexacore.middleware.rate_limiter.rate_limiter``.
"""

from nexacore.middleware.api_gateway import (
    ApiGatewayConfig,
    ApiGatewayMiddleware,
    forwarded_ip_key,
)
from nexacore.middleware.rate_limiter import (
    RATE_LIMITS,
    RateLimiter,
    RedisRateLimiter,
    build_rate_limiter,
)

__all__ = [
    "ApiGatewayConfig",
    "ApiGatewayMiddleware",
    "forwarded_ip_key",
    "RATE_LIMITS",
    "RateLimiter",
    "RedisRateLimiter",
    "build_rate_limiter",
]
