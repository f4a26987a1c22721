"""Runtime configuration.

Values come from environment variables prefixed with ``STOCKKEEPER_`` or an
optional ``.env`` file in the working directory.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STOCKKEEPER_",
        env_file=".env",
        extra="ignore",
    )

    env: str = "development"
    database_url: str = "sqlite:///./stockkeeper.db"
    database_echo: bool = False

    # Reservations
    reservation_ttl_minutes: int = 30
    sweep_interval_seconds: float = 60.0
    sweeper_enabled: bool = True

    # Concurrency
    conflict_retry_attempts: int = 5
    conflict_retry_backoff_seconds: float = 0.05
    lock_timeout_seconds: float = 5.0

    # Payments
    default_currency: str = "usd"
    restock_on_refund: bool = False
    webhook_signing_secret: str = "test-signature"

    log_level: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
