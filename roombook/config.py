"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the reservation core and its service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./roombook.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether the service should create database tables and constraints on startup.",
    )
    sqlite_busy_timeout: float = Field(
        default=5.0,
        description="Seconds a SQLite writer waits for the database lock before failing",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    identity_token_url: str = Field(default="/auth/login", description="Token endpoint of the identity provider")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    room_cache_ttl: int = Field(default=60, description="TTL (s) for the cached room directory")
    log_dir: str = Field(default="logs", description="Directory receiving the per-service audit logs")

    booking_timezone: str = Field(default="Asia/Taipei", description="IANA zone that defines the operating day")
    booking_day_start: str = Field(default="08:30", description="First bookable start time (HH:MM)")
    booking_day_end: str = Field(default="17:30", description="Last bookable end time (HH:MM)")
    booking_slot_minutes: int = Field(default=30, gt=0, description="Granularity of windows and timeline cells")
    booking_horizon_months: int = Field(default=2, ge=0, description="How many months ahead a booking may start")


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
