"""
API Gateway Middleware - rate limiting, API key checks and request logging.

Every request passing through the gateway is:
1. Counted against a fixed-window rate limit keyed by client identity
   (default: first X-Forwarded-For address) -> 429 when exceeded
2. If an API key header is present, validated and usage-tracked -> 401 when invalid
3. Logged with method, path, status code and duration

Headers added (all gated responses, including 429):
- X-RateLimit-Limit: Maximum requests allowed in the window
- X-RateLimit-Remaining: Remaining requests in current window
- X-RateLimit-Reset: Epoch seconds when the window resets
- Retry-After: Seconds to wait before retrying (429 only)

Usage:
    from nexacore.middleware.api_gateway import ApiGatewayConfig, ApiGatewayMiddleware

    app.add_middleware(ApiGatewayMiddleware, config=ApiGatewayConfig(max_requests=100))
"""

import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from nexacore.config import settings
from nexacore.infrastructure.observability.logging import get_logger, log_request
from nexacore.middleware.rate_limiter import RateLimiter, RedisRateLimiter, rate_limiter
from nexacore.services.api_key_service import api_key_service

logger = get_logger(__name__)

KeyExtractor = Callable[[Request], str]
ApiKeyValidator = Callable[[str], Awaitable[bool] | bool]
UsageTracker = Callable[[str], Awaitable[None] | None]


def forwarded_ip_key(request: Request) -> str:
    """
    Default rate limit key: the original client address.

    X-Forwarded-For format is "client, proxy1, proxy2"; the first entry is
    the client. Falls back to the direct peer, then "unknown".
    """
    forwarded_for = request.headers.get(settings.TRUSTED_FORWARDED_HEADER)
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return f"ip:{client_ip}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "ip:unknown"


@dataclass(slots=True)
class ApiGatewayConfig:
    """Gateway behaviour switches. Defaults come from settings."""

    enable_rate_limit: bool = field(default_factory=lambda: settings.RATE_LIMIT_ENABLED)
    enable_logging: bool = field(default_factory=lambda: settings.GATEWAY_LOGGING_ENABLED)
    max_requests: int = field(default_factory=lambda: settings.RATE_LIMIT_MAX_REQUESTS)
    window_ms: int = field(default_factory=lambda: settings.RATE_LIMIT_WINDOW_SECONDS * 1000)
    key_extractor: KeyExtractor = forwarded_ip_key
    api_key_header: str = field(default_factory=lambda: settings.API_KEY_HEADER)
    require_api_key: bool = field(default_factory=lambda: settings.API_KEY_REQUIRED)
    exempt_paths: tuple[str, ...] = ("/healthz",)


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class ApiGatewayMiddleware(BaseHTTPMiddleware):
    """
    Request interception for rate limiting, API key validation and logging.

    Owns no durable state: counters live in the injected limiter and key
    records behind the injected validator.
    """

    def __init__(
        self,
        app,
        config: ApiGatewayConfig | None = None,
        limiter: RateLimiter | RedisRateLimiter | None = None,
        api_key_validator: ApiKeyValidator | None = None,
        usage_tracker: UsageTracker | None = None,
    ):
        super().__init__(app)
        self.config = config if config is not None else ApiGatewayConfig()
        self.limiter = limiter if limiter is not None else rate_limiter
        self.api_key_validator = api_key_validator or api_key_service.validate_presented_key
        self.usage_tracker = usage_tracker or api_key_service.track_usage

    async def dispatch(self, request: Request, call_next):
        """Gate the request, run it, add headers and log the outcome."""
        start_time = time.time()
        rate_limit_info = None

        try:
            if request.url.path in self.config.exempt_paths:
                response = await call_next(request)
            else:
                response, rate_limit_info = await self._gate(request)
                if response is None:
                    response = await call_next(request)

        except Exception as e:
            logger.error(
                "Unhandled error in API gateway",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            response = JSONResponse(
                status_code=500,
                content={"error": "internal_error", "message": "Internal server error"},
            )

        if rate_limit_info:
            self._apply_rate_limit_headers(response, rate_limit_info)

        if self.config.enable_logging:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        return response

    async def _gate(self, request: Request) -> tuple[JSONResponse | None, dict | None]:
        """Return (rejection, rate_limit_info); rejection is None when the request may proceed."""
        rate_limit_info = None

        if self.config.enable_rate_limit:
            key = self.config.key_extractor(request) or "unknown"
            allowed, rate_limit_info = await _maybe_await(
                self.limiter.check(key, self.config.max_requests, self.config.window_ms)
            )

            if not allowed:
                logger.warning(
                    "Rate limit exceeded",
                    key=key,
                    limit=rate_limit_info["limit"],
                    retry_after=rate_limit_info["retry_after"],
                    path=request.url.path,
                )
                return (
                    JSONResponse(
                        status_code=429,
                        content={
                            "error": "rate_limit_exceeded",
                            "message": (
                                "Too many requests. "
                                f"Try again in {rate_limit_info['retry_after']} seconds."
                            ),
                            "limit": rate_limit_info["limit"],
                            "retry_after": rate_limit_info["retry_after"],
                        },
                    ),
                    rate_limit_info,
                )

        api_key = request.headers.get(self.config.api_key_header)
        if api_key:
            if not await _maybe_await(self.api_key_validator(api_key)):
                logger.warning("Invalid API key", path=request.url.path, key_prefix=api_key[:8])
                return (
                    JSONResponse(
                        status_code=401,
                        content={"error": "invalid_api_key", "message": "Invalid API key"},
                    ),
                    rate_limit_info,
                )
            await _maybe_await(self.usage_tracker(api_key))
        elif self.config.require_api_key:
            return (
                JSONResponse(
                    status_code=401,
                    content={"error": "missing_api_key", "message": "Missing API key"},
                ),
                rate_limit_info,
            )

        return None, rate_limit_info

    @staticmethod
    def _apply_rate_limit_headers(response, rate_limit_info: dict) -> None:
        response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])
        response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])
        response.headers["X-RateLimit-Reset"] = str(rate_limit_info["reset_time"] // 1000)
        if not rate_limit_info.get("allowed", True):
            response.headers["Retry-After"] = str(rate_limit_info["retry_after"])
