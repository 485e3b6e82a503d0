"""Application configuration loaded from environment and config files."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


class RateLimitScope(BaseModel):
    """A named fixed-window counting bucket."""

    limit: int
    window_ms: int

    @field_validator("limit", "window_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


def _default_event_type_windows() -> dict[str, int]:
    return {
        "job.assigned": 60_000,
        "job.completed": 30_000,
        "job.updated": 15_000,
        "booking.updated": 45_000,
        "emergency": 5_000,
    }


def _default_rate_limits() -> dict[str, RateLimitScope]:
    return {
        "per-minute": RateLimitScope(limit=10, window_ms=60_000),
        "per-hour": RateLimitScope(limit=100, window_ms=3_600_000),
        "per-day": RateLimitScope(limit=500, window_ms=86_400_000),
    }


def _event_type_scopes(per_minute: int, burst: int) -> dict[str, RateLimitScope]:
    return {
        "per-minute": RateLimitScope(limit=per_minute, window_ms=60_000),
        "burst": RateLimitScope(limit=burst, window_ms=10_000),
    }


def _default_event_type_rate_limits() -> dict[str, dict[str, RateLimitScope]]:
    return {
        "job.assigned": _event_type_scopes(20, 5),
        "job.status_updated": _event_type_scopes(30, 10),
        "job.completed": _event_type_scopes(15, 3),
        "emergency": _event_type_scopes(5, 2),
        "booking.updated": _event_type_scopes(25, 8),
    }


def _default_global_rate_limits() -> dict[str, RateLimitScope]:
    return {"per-second": RateLimitScope(limit=50, window_ms=1_000)}


class DedupConfig(BaseSettings):
    """Deduplication window and fast-tier retention configuration."""

    model_config = {"env_prefix": "FIELDALERT_DEDUP_"}

    default_window_ms: int = 30_000
    event_type_windows_ms: dict[str, int] = Field(default_factory=_default_event_type_windows)
    max_history_age_ms: int = 24 * 60 * 60 * 1000
    cleanup_interval_ms: int = 5 * 60 * 1000
    persistent_storage_enabled: bool = True

    @field_validator("default_window_ms", "max_history_age_ms", "cleanup_interval_ms")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("event_type_windows_ms")
    @classmethod
    def _positive_windows(cls, value: dict[str, int]) -> dict[str, int]:
        for event_type, window in value.items():
            if window <= 0:
                raise ValueError(f"window for {event_type!r} must be greater than zero")
        return value

    def window_for(self, event_type: str) -> int:
        """Resolve the dedup window for ``event_type``, falling back to the default."""
        return self.event_type_windows_ms.get(event_type, self.default_window_ms)


class RateLimitConfig(BaseSettings):
    """Global, per-recipient and per-event-type rate limit configuration."""

    model_config = {"env_prefix": "FIELDALERT_RATELIMIT_"}

    rate_limits: dict[str, RateLimitScope] = Field(default_factory=_default_rate_limits)
    event_type_rate_limits: dict[str, dict[str, RateLimitScope]] = Field(
        default_factory=_default_event_type_rate_limits
    )
    global_rate_limits: dict[str, RateLimitScope] = Field(
        default_factory=_default_global_rate_limits
    )
    urgent_multiplier: float = 2.0


class ChannelConfig(BaseSettings):
    """Delivery channel configuration."""

    model_config = {"env_prefix": "FIELDALERT_CHANNELS_"}

    enabled: list[str] = Field(default_factory=lambda: ["push", "realtime"])
    timeout_seconds: float = 10.0
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    realtime_backlog_size: int = 50
    webhook_headers: dict[str, str] = Field(default_factory=dict)


class DirectoryConfig(BaseSettings):
    """Recipient directory configuration."""

    model_config = {"env_prefix": "FIELDALERT_DIRECTORY_"}

    # Empty selects config/recipients.yml at the repository root.
    fixtures_path: str = ""


class TemplateConfig(BaseSettings):
    """Job notification template configuration."""

    model_config = {"env_prefix": "FIELDALERT_TEMPLATES_"}

    # Empty selects config/notification_templates.yml at the repository root.
    templates_path: str = ""


class DatabaseConfig(BaseSettings):
    """Durable event store configuration. An empty URL selects the in-memory store."""

    model_config = {"env_prefix": "FIELDALERT_DB_"}

    database_url: str = ""
    echo: bool = False
    pool_size: int = 5


class Settings(BaseSettings):
    """Root application settings."""

    model_config = {"env_prefix": "FIELDALERT_"}

    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    dedup: DedupConfig = Field(default_factory=DedupConfig)
    ratelimit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    channels: ChannelConfig = Field(default_factory=ChannelConfig)
    directory: DirectoryConfig = Field(default_factory=DirectoryConfig)
    templates: TemplateConfig = Field(default_factory=TemplateConfig)
    db: DatabaseConfig = Field(default_factory=DatabaseConfig)
