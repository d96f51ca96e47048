"""
Presence Cleanup Job for collaboration rooms.
Evicts collaborators whose heartbeat stopped and closes rooms left empty.
"""

import asyncio
from datetime import UTC, datetime

from nexacore.config import settings
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.services.collaboration import CollaborationSessionManager, collaboration_manager

logger = get_logger(__name__)

# Job configuration
CLEANUP_INTERVAL_SECONDS = 60  # Sweep once a minute


class PresenceCleanupJob:
    """Periodic sweep over a session manager's rooms."""

    def __init__(
        self,
        manager: CollaborationSessionManager | None = None,
        interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.manager = manager if manager is not None else collaboration_manager
        self.interval_seconds = interval_seconds
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.total_evicted = 0

    async def run_once(self) -> dict:
        """
        Run a single sweep.

        Returns:
            Dict: users evicted and rooms still open after the sweep
        """
        if self.is_running:
            logger.warning("Presence cleanup already running, skipping this iteration")
            return {"status": "skipped", "reason": "already_running"}

        self.is_running = True
        try:
            evicted = await self.manager.cleanup_inactive_users()
            self.total_evicted += evicted
            self.last_run_time = datetime.now(UTC)

            result = {
                "status": "completed",
                "evicted": evicted,
                "active_rooms": len(self.manager.registry),
                "timeout_seconds": self.manager.inactivity_timeout_seconds,
            }
            logger.info("Presence cleanup completed", **result)
            return result
        finally:
            self.is_running = False

    async def run_forever(self) -> None:
        logger.info(
            "Presence cleanup scheduler started",
            interval_seconds=self.interval_seconds,
            timeout_seconds=self.manager.inactivity_timeout_seconds,
        )
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "Presence cleanup iteration failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            await asyncio.sleep(self.interval_seconds)


async def start_presence_cleanup_scheduler() -> None:
    """Job entrypoint: sweep on the heartbeat cadence or once a minute, whichever is sooner."""
    interval = min(CLEANUP_INTERVAL_SECONDS, settings.COLLAB_HEARTBEAT_SECONDS * 2)
    await PresenceCleanupJob(interval_seconds=interval).run_forever()
