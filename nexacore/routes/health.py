"""
Health check endpoints.
"""

from fastapi import APIRouter

from nexacore.middleware.rate_limiter import rate_limiter
from nexacore.services.collaboration import collaboration_manager

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "nexacore"}


@router.get("/readyz")
async def readyz():
    """Readiness with in-process state sizes."""
    collaboration = await collaboration_manager.get_statistics()
    return {
        "status": "ok",
        "checks": {
            "collaboration": collaboration,
            "rate_limiter": {"tracked_keys": len(rate_limiter)},
        },
    }
