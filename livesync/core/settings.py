"""Runtime settings for the live synchronization layer."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from ``LIVESYNC_*`` environment variables or ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="LIVESYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    APP_NAME: str = "livesync"

    # Remote data store (PostgREST + Realtime)
    STORE_URL: str | None = None
    STORE_KEY: str | None = None
    STORE_REQUEST_TIMEOUT_SEC: float = 10.0
    STORE_MAX_RETRIES: int = 3

    # Push channels
    # NOTE: SUBSCRIBE_TIMEOUT_MS is how long a channel may stay CONNECTING
    # before the store reports TIMED_OUT.
    SUBSCRIBE_TIMEOUT_MS: int = 10000
    SOCKET_HEARTBEAT_MS: int = 3000

    # Reconnection supervisor
    BACKOFF_BASE_MS: int = 1000
    BACKOFF_MAX_MS: int = 30000
    MAX_RECONNECT_ATTEMPTS: int = 5

    # Polling fallback
    POLL_TASKS_MS: int = 5000
    POLL_PROGRESS_MS: int = 5000
    POLL_PARTICIPANTS_MS: int = 10000
    POLL_STOP_ON_RECOVERY: bool = False

    # Liveness
    HEARTBEAT_MS: int = 30000
    HEALTH_CHECK_MS: int = 60000
    # A participant whose last_seen is older than this is treated as offline
    # even when is_online is still set.
    PRESENCE_TTL_SEC: int = 90

    # Local identity storage
    IDENTITY_PATH: str = "~/.livesync/identity.json"

    # Observability
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    METRICS_ENABLED: bool = True

    @model_validator(mode="after")
    def _check_timing(self) -> "Settings":
        for name in (
            "BACKOFF_BASE_MS",
            "POLL_TASKS_MS",
            "POLL_PROGRESS_MS",
            "POLL_PARTICIPANTS_MS",
            "HEARTBEAT_MS",
            "HEALTH_CHECK_MS",
            "SUBSCRIBE_TIMEOUT_MS",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.BACKOFF_BASE_MS > self.BACKOFF_MAX_MS:
            raise ValueError(
                f"BACKOFF_BASE_MS={self.BACKOFF_BASE_MS} must not exceed "
                f"BACKOFF_MAX_MS={self.BACKOFF_MAX_MS}"
            )
        if self.MAX_RECONNECT_ATTEMPTS < 0:
            raise ValueError("MAX_RECONNECT_ATTEMPTS must be >= 0")
        # A single missed heartbeat must not expire a participant.
        if self.HEARTBEAT_MS * 2 >= self.PRESENCE_TTL_SEC * 1000:
            raise ValueError(
                f"Invalid presence timing: HEARTBEAT_MS={self.HEARTBEAT_MS} must be "
                f"< PRESENCE_TTL_SEC/2={self.PRESENCE_TTL_SEC * 1000 / 2}ms"
            )
        return self


settings = Settings()


def get_settings() -> Settings:
    """Get the current settings instance (for dependency injection)."""
    return settings
