"""Configuration management for the Contract Engine."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Contract Engine configuration.

    Values are read from the environment (and an optional ``.env`` file).
    Unknown keys are ignored so the service can share an environment with
    other processes.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Service identity
    service_name: str = "contract-engine"
    service_version: str = "0.1.0"
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8014

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # console | json

    # Storage
    database_url: str = "sqlite:///./contract_engine.db"
    database_echo: bool = False

    # Contract defaults
    default_currency: str = "USD"

    # Renewal engine
    default_renewal_period_months: int = 12
    sweep_lookahead_buffer_days: int = 5
    system_actor: str = "system"

    # Notifications
    notification_webhook_url: str | None = None
    notification_timeout_seconds: float = 5.0


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
