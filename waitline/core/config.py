"""Configuration management with pydantic-settings.

Provides type-safe engine configuration with environment variable validation.
Every threshold used by the resolution engine lives here with its product default.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings with environment variable validation."""

    model_config = SettingsConfigDict(
        env_prefix="WAITLINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Facility catalog ===
    catalog_path: str = Field("facilities.json", description="Path to the static facility catalog")

    # === HTTP ===
    http_timeout_seconds: float = Field(10.0, description="Per-call fetch timeout in seconds")
    http_user_agent: str = Field("STL-WaitLine/1.0", description="User-Agent sent to sources")
    trusted_api_hosts: str = Field(
        "api.clockwisemd.com,www.mercy.net,schedule.stlukes-stl.com",
        description="Comma-separated hosts allowed for API fetches",
    )
    trusted_website_hosts: str = Field(
        "clockwisemd.com,www.clockwisemd.com,gohealthuc.com,www.gohealthuc.com,"
        "afcurgentcare.com,www.afcurgentcare.com,stlukes-stl.com,www.stlukes-stl.com,"
        "mercy.net,www.mercy.net",
        description="Comma-separated hosts allowed for scraping",
    )

    # === Rate limits (per provider host) ===
    rate_min_interval_seconds: float = Field(
        2.0, description="Minimum spacing between calls to one provider"
    )
    rate_max_wait_seconds: float = Field(
        10.0, description="Longest a fetch waits for its provider slot before giving up"
    )

    # === Circuit breaker settings ===
    cb_fail_threshold: int = Field(3, description="Consecutive failures before opening")
    cb_base_cooldown_seconds: float = Field(60.0, description="Cooldown for the first open")
    cb_max_backoff_exponent: int = Field(5, description="Cap for cooldown doubling")

    # === Staleness / crowd ===
    staleness_threshold_hours: float = Field(8.0, description="Age after which cached values are stale")
    crowd_decay_horizon_seconds: float = Field(7200.0, description="Crowd log decay horizon")
    crowd_pending_ttl_hours: float = Field(
        6.0, description="How long an unconfirmed crowd log is kept"
    )

    # === Geofence ===
    geofence_radius_meters: float = Field(75.0, description="Eligibility radius around a facility")
    geofence_min_dwell_seconds: float = Field(300.0, description="Continuous dwell before eligible")

    # === Refresh scheduling ===
    refresh_concurrency: int = Field(5, description="Facility fetches in flight per cycle")
    foreground_interval_seconds: int = Field(90, description="Foreground refresh interval")
    background_deadline_seconds: float = Field(
        25.0, description="Soft completion deadline given to background cycles"
    )

    # === Logging ===
    log_level: str = Field("INFO", description="Root log level")
    log_file_path: str | None = Field(None, description="JSON log file (None disables file logging)")

    @field_validator("refresh_concurrency", "cb_fail_threshold")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def api_hosts(self) -> set[str]:
        """Get set of trusted API hosts."""
        return {h.strip().lower() for h in self.trusted_api_hosts.split(",") if h.strip()}

    @property
    def website_hosts(self) -> set[str]:
        """Get set of trusted website hosts."""
        return {h.strip().lower() for h in self.trusted_website_hosts.split(",") if h.strip()}

    @property
    def staleness_threshold_seconds(self) -> float:
        return self.staleness_threshold_hours * 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Raises:
        RuntimeError: If an environment variable holds an invalid value.

    """
    try:
        return Settings()
    except ValidationError as e:
        bad_fields = [f"WAITLINE_{str(error['loc'][0]).upper()}" for error in e.errors()]
        error_msg = (
            f"Configuration error: invalid environment variables: "
            f"{', '.join(bad_fields)}\n"
            f"Please fix them in .env file or the process environment."
        )
        raise RuntimeError(error_msg) from e


__all__ = ["Settings", "get_settings"]
