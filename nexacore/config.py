from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # RATE LIMITING
    # =================================================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_BACKEND: str = "memory"  # "memory" or "redis"
    RATE_LIMIT_MAX_REQUESTS: int = 100
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_ENTRIES: int = 10_000
    RATE_LIMIT_FAIL_OPEN: bool = True
    REDIS_URL: str | None = None

    # =================================================================
    # API GATEWAY
    # =================================================================
    API_KEY_HEADER: str = "x-api-key"
    API_KEY_REQUIRED: bool = False
    TRUSTED_FORWARDED_HEADER: str = "x-forwarded-for"
    GATEWAY_LOGGING_ENABLED: bool = True
    API_KEY_HASHING_SECRET: str = "nexacore-development-secret"

    # =================================================================
    # COLLABORATION
    # =================================================================
    COLLAB_MAX_ROOM_SIZE: int = 50
    COLLAB_INACTIVITY_TIMEOUT_SECONDS: int = 300  # 5 minutes
    COLLAB_HEARTBEAT_SECONDS: int = 30
    COLLAB_ENFORCE_LOCKS: bool = False
    COLLAB_BROADCAST_QUEUE_SIZE: int = 1000
    COLLAB_EXTERNAL_TIMEOUT_SECONDS: float = 5.0

    # =================================================================
    # CALENDAR
    # =================================================================
    CALENDAR_BUSINESS_START_HOUR: int = 9
    CALENDAR_BUSINESS_END_HOUR: int = 17
    CALENDAR_SLOT_STEP_MINUTES: int = 30
    CALENDAR_TIMEZONE: str = "UTC"
    CALENDAR_AGENDA_DAYS: int = 30
    CALENDAR_MAX_SUGGESTIONS: int = 5
    CALENDAR_RECURRENCE_HORIZON_DAYS: int = 365
    CALENDAR_PRODID: str = "-//NexaGestion//Calendar//EN"

    # =================================================================
    # BACKGROUND JOBS (run inside the API process)
    # =================================================================
    BACKGROUND_JOBS_ENABLED: bool = True
    BACKGROUND_JOBS: list[str] = ["presence_cleanup", "rate_limit_sweep"]

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_rate_limits(self) -> dict:
        """Get gateway rate limit configuration (window in milliseconds)."""
        return {
            "enabled": self.RATE_LIMIT_ENABLED,
            "backend": self.RATE_LIMIT_BACKEND,
            "max_requests": self.RATE_LIMIT_MAX_REQUESTS,
            "window_ms": self.RATE_LIMIT_WINDOW_SECONDS * 1000,
            "max_entries": self.RATE_LIMIT_MAX_ENTRIES,
            "fail_open": self.RATE_LIMIT_FAIL_OPEN,
        }

    def get_collaboration_config(self) -> dict:
        """Get collaboration session configuration."""
        return {
            "max_room_size": self.COLLAB_MAX_ROOM_SIZE,
            "inactivity_timeout_seconds": self.COLLAB_INACTIVITY_TIMEOUT_SECONDS,
            "heartbeat_seconds": self.COLLAB_HEARTBEAT_SECONDS,
            "enforce_locks": self.COLLAB_ENFORCE_LOCKS,
            "broadcast_queue_size": self.COLLAB_BROADCAST_QUEUE_SIZE,
            "external_timeout_seconds": self.COLLAB_EXTERNAL_TIMEOUT_SECONDS,
        }

    def get_calendar_config(self) -> dict:
        """Get scheduling engine configuration."""
        return {
            "business_start_hour": self.CALENDAR_BUSINESS_START_HOUR,
            "business_end_hour": self.CALENDAR_BUSINESS_END_HOUR,
            "slot_step_minutes": self.CALENDAR_SLOT_STEP_MINUTES,
            "timezone": self.CALENDAR_TIMEZONE,
            "agenda_days": self.CALENDAR_AGENDA_DAYS,
            "max_suggestions": self.CALENDAR_MAX_SUGGESTIONS,
            "recurrence_horizon_days": self.CALENDAR_RECURRENCE_HORIZON_DAYS,
            "prodid": self.CALENDAR_PRODID,
        }


settings = Settings()

# =================================================================
# QUICK CONFIGURATION REFERENCE
# =================================================================
"""
Multi-instance deployment (shared counters):
    RATE_LIMIT_BACKEND=redis
    REDIS_URL=rediss://default:<token>@<host>:6379

Strict collaboration locks (writes rejected from non-holders):
    COLLAB_ENFORCE_LOCKS=true

Only presence cleanup in the API process:
    BACKGROUND_JOBS='["presence_cleanup"]'

Extended business day:
    CALENDAR_BUSINESS_START_HOUR=8
    CALENDAR_BUSINESS_END_HOUR=19
"""
