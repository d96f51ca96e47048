"""
Rate Limiter - fixed-window request counting.

This module provides fixed-window rate limiting for:
- Per-IP limits applied by the API gateway
- Per-identity limits for sensitive actions (login, password reset, export)

Design:
- Fixed window: the counter resets entirely when the window elapses
- In-process backend (RateLimiter) guarded by a lock, with lazy expiry,
  an explicit sweep and a bounded map
- Shared backend (RedisRateLimiter) for multi-instance deployments,
  same contract over an atomic Lua INCR/PEXPIRE

Usage:
    from nexacore.middleware.rate_limiter import RATE_LIMITS, rate_limiter

    login = RATE_LIMITS["LOGIN"]
    if not rate_limiter.is_allowed(f"login:{email}", **login):
        ...
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from nexacore.config import settings
from nexacore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]

DEFAULT_WINDOW_MS = 15 * 60 * 1000  # 15 minutes
DEFAULT_MAX_REQUESTS = 5

# Preset configurations
RATE_LIMITS = {
    "LOGIN": {"max_requests": 5, "window_ms": 15 * 60 * 1000},
    "API_READ": {"max_requests": 100, "window_ms": 60 * 1000},
    "API_WRITE": {"max_requests": 30, "window_ms": 60 * 1000},
    "EXPORT": {"max_requests": 10, "window_ms": 60 * 1000},
    "PASSWORD_RESET": {"max_requests": 3, "window_ms": 60 * 60 * 1000},
}


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True, slots=True)
class RateLimitEntry:
    """Counter for one key in one window. Replaced, never reset in place, on rollover."""

    count: int
    reset_time: float


def _create_info_dict(
    allowed: bool,
    limit: int,
    remaining: int,
    reset_time: float,
    now: float,
    error: str | None = None,
) -> dict:
    """
    Create standardized rate limit info dict.

    reset_time is in epoch milliseconds; retry_after is whole seconds until
    the window rolls over (0 when the request was allowed).
    """
    retry_after = 0
    if not allowed:
        retry_after = max(1, int((reset_time - now + 999) // 1000))

    info = {
        "allowed": allowed,
        "limit": limit,
        "remaining": remaining,
        "reset_time": int(reset_time),
        "retry_after": retry_after,
    }

    if error:
        info["error"] = error

    return info


class RateLimiter:
    """
    In-process fixed-window rate limiter.

    Example:
        With max_requests=100 and a 60s window opened at 10:00:00, requests
        101+ are rejected until 10:01:00, when the counter starts over.

    Thread Safety:
        A single lock guards the entry map so each check-and-increment is atomic.
        Counters are not shared between processes; use RedisRateLimiter for that.
    """

    def __init__(
        self,
        default_max_requests: int = DEFAULT_MAX_REQUESTS,
        default_window_ms: int = DEFAULT_WINDOW_MS,
        max_entries: int | None = None,
        clock: Clock = _now_ms,
    ):
        """
        Initialize rate limiter.

        Args:
            default_max_requests: Requests allowed per window when not given per call
            default_window_ms: Window length in milliseconds when not given per call
            max_entries: Upper bound on tracked keys (None = unbounded)
            clock: Returns the current time in epoch milliseconds
        """
        self.default_max_requests = default_max_requests
        self.default_window_ms = default_window_ms
        self.max_entries = max_entries
        self._clock = clock
        self._limits: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check(
        self,
        key: str,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Count a request against key and report the decision.

        Args:
            key: Unique identifier (e.g. "ip:10.0.0.1", an email address)
            max_requests: Maximum requests allowed in the window
            window_ms: Time window in milliseconds

        Returns:
            Tuple of (allowed, info) where info carries limit, remaining,
            reset_time (epoch ms) and retry_after (seconds).
        """
        max_requests = max_requests if max_requests is not None else self.default_max_requests
        window_ms = window_ms if window_ms is not None else self.default_window_ms

        with self._lock:
            now = self._clock()
            entry = self._limits.get(key)

            if entry is None or now > entry.reset_time:
                if entry is None:
                    self._make_room(now)
                entry = RateLimitEntry(count=1, reset_time=now + window_ms)
            else:
                entry = RateLimitEntry(count=entry.count + 1, reset_time=entry.reset_time)

            self._limits[key] = entry

        allowed = entry.count <= max_requests
        remaining = max(0, max_requests - entry.count)
        return allowed, _create_info_dict(allowed, max_requests, remaining, entry.reset_time, now)

    def is_allowed(
        self,
        key: str,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> bool:
        """Return True if the request fits in the key's current window."""
        allowed, _ = self.check(key, max_requests, window_ms)
        return allowed

    def get_remaining(self, key: str, max_requests: int | None = None) -> int:
        """Remaining requests for key (full quota if no live window)."""
        max_requests = max_requests if max_requests is not None else self.default_max_requests
        with self._lock:
            entry = self._limits.get(key)
            if entry is None or self._clock() > entry.reset_time:
                return max_requests
            return max(0, max_requests - entry.count)

    def get_reset_time(self, key: str) -> float:
        """Epoch ms when the key's window ends (now if untracked)."""
        with self._lock:
            entry = self._limits.get(key)
            return entry.reset_time if entry else self._clock()

    def reset(self, key: str) -> None:
        with self._lock:
            self._limits.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._limits.clear()

    def sweep_expired(self) -> int:
        """Drop every entry whose window has passed. Returns the number removed."""
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        return len(self._limits)

    def _sweep(self, now: float) -> int:
        expired = [key for key, entry in self._limits.items() if now > entry.reset_time]
        for key in expired:
            del self._limits[key]
        return len(expired)

    def _make_room(self, now: float) -> None:
        """Keep the map under max_entries before a new key is inserted. Caller holds the lock."""
        if self.max_entries is None or len(self._limits) < self.max_entries:
            return

        swept = self._sweep(now)
        overflow = len(self._limits) - self.max_entries + 1
        if overflow <= 0:
            return

        oldest = sorted(self._limits.items(), key=lambda item: item[1].reset_time)[:overflow]
        for key, _ in oldest:
            del self._limits[key]

        logger.warning(
            "Rate limiter at capacity, evicted live windows",
            max_entries=self.max_entries,
            swept=swept,
            evicted=len(oldest),
        )


class RedisRateLimiter:
    """
    Fixed-window rate limiter backed by a shared Redis counter.

    Same contract as RateLimiter, but the counter lives in Redis so every
    instance behind the load balancer sees the same count.

    Thread Safety:
        Uses an atomic Lua script so INCR and the first PEXPIRE cannot race.
    """

    # Returns: {current_count, ttl_ms}
    RATE_LIMIT_LUA_SCRIPT = """
    local current = redis.call('INCR', KEYS[1])
    if current == 1 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
    end
    local ttl = redis.call('PTTL', KEYS[1])
    if ttl < 0 then
        redis.call('PEXPIRE', KEYS[1], ARGV[1])
        ttl = tonumber(ARGV[1])
    end
    return {current, ttl}
    """

    def __init__(
        self,
        client=None,
        redis_url: str | None = None,
        default_max_requests: int = DEFAULT_MAX_REQUESTS,
        default_window_ms: int = DEFAULT_WINDOW_MS,
        fail_open: bool = True,
        clock: Clock = _now_ms,
    ):
        """
        Initialize the shared limiter.

        Args:
            client: redis.asyncio.Redis instance (created from redis_url if None)
            redis_url: Connection URL used when no client is given
            default_max_requests: Requests allowed per window when not given per call
            default_window_ms: Window length in milliseconds when not given per call
            fail_open: If True, allow requests when Redis fails
            clock: Returns the current time in epoch milliseconds
        """
        self.client = client
        self.redis_url = redis_url
        self.default_max_requests = default_max_requests
        self.default_window_ms = default_window_ms
        self.fail_open = fail_open
        self._clock = clock

    def _get_client(self):
        if self.client is None and self.redis_url:
            import redis.asyncio as redis

            self.client = redis.Redis.from_url(self.redis_url, decode_responses=True)
        return self.client

    async def check(
        self,
        key: str,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> tuple[bool, dict]:
        """Count a request against key in Redis. See RateLimiter.check."""
        max_requests = max_requests if max_requests is not None else self.default_max_requests
        window_ms = window_ms if window_ms is not None else self.default_window_ms
        now = self._clock()

        client = self._get_client()
        if client is None:
            logger.warning("Redis not configured for rate limiting", fail_open=self.fail_open)
            return self._failure(max_requests, window_ms, now, "redis_not_initialized")

        try:
            result = await client.eval(
                self.RATE_LIMIT_LUA_SCRIPT,
                1,  # Number of keys
                f"ratelimit:{key}",  # KEYS[1]
                int(window_ms),  # ARGV[1]
            )
            current_count = int(result[0])
            ttl_ms = int(result[1])
        except Exception as e:
            logger.error(
                "Rate limiter Redis error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
                limit=max_requests,
            )
            return self._failure(max_requests, window_ms, now, "rate_limiter_error")

        allowed = current_count <= max_requests
        remaining = max(0, max_requests - current_count)
        return allowed, _create_info_dict(allowed, max_requests, remaining, now + ttl_ms, now)

    async def is_allowed(
        self,
        key: str,
        max_requests: int | None = None,
        window_ms: int | None = None,
    ) -> bool:
        allowed, _ = await self.check(key, max_requests, window_ms)
        return allowed

    def _failure(self, limit: int, window_ms: int, now: float, error: str) -> tuple[bool, dict]:
        if self.fail_open:
            return True, _create_info_dict(True, limit, limit, now + window_ms, now, error=error)
        return False, _create_info_dict(False, limit, 0, now + window_ms, now, error=error)


def build_rate_limiter() -> RateLimiter | RedisRateLimiter:
    """
    Limiter selected by RATE_LIMIT_BACKEND.

    The memory backend returns the shared in-process limiter so the sweep
    job and /readyz see the gateway's counters.
    """
    config = settings.get_rate_limits()
    if config["backend"] == "redis":
        return RedisRateLimiter(
            redis_url=settings.REDIS_URL,
            default_max_requests=config["max_requests"],
            default_window_ms=config["window_ms"],
            fail_open=config["fail_open"],
        )
    return rate_limiter


# Global singleton (in-process counters)
rate_limiter = RateLimiter(
    default_max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    default_window_ms=settings.RATE_LIMIT_WINDOW_SECONDS * 1000,
    max_entries=settings.RATE_LIMIT_MAX_ENTRIES,
)
