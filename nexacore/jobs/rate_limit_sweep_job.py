"""
Rate Limit Sweep Job.
Drops expired fixed-window counters from the in-process limiter so idle
clients do not accumulate. Redis-backed counters expire on their own.
"""

import asyncio

from nexacore.config import settings
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.middleware.rate_limiter import RateLimiter, rate_limiter

logger = get_logger(__name__)


def sweep_once(limiter: RateLimiter | None = None) -> int:
    """Remove expired windows. Returns the number removed."""
    if limiter is None:
        limiter = rate_limiter
    removed = limiter.sweep_expired()
    if removed:
        logger.info("Expired rate limit windows removed", removed=removed, tracked=len(limiter))
    return removed


async def start_rate_limit_sweep_scheduler() -> None:
    """Sweep once per rate limit window."""
    interval = settings.RATE_LIMIT_WINDOW_SECONDS
    logger.info("Rate limit sweep scheduler started", interval_seconds=interval)
    while True:
        sweep_once()
        await asyncio.sleep(interval)
