# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Engine configuration loaded from the environment.

Each concern has its own settings class and variable prefix (DB_,
ALLOCATION_). Settings bundles them; get_settings() caches one instance
per process.

Example:
    >>> from electives.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> print(settings.allocation.max_attempts)
    3
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PASSWORD = "electives_password"


class DatabaseSettings(BaseSettings):
    """Database configuration for the allocation state.

    Attributes:
        dsn: Full SQLAlchemy async URL. Overrides the individual components
            when set (e.g. sqlite+aiosqlite:///./electives.db).
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        echo: Log every emitted SQL statement.
        sqlite_busy_timeout: Seconds a SQLite connection waits for the write
            lock before giving up.
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        extra="ignore",
    )

    dsn: str | None = None
    user: str = "electives"
    password: SecretStr = SecretStr(DEFAULT_DB_PASSWORD)
    host: str = "localhost"
    port: int = 5432
    database: str = "electives"
    pool_size: int = 10
    max_overflow: int = 20
    echo: bool = False
    sqlite_busy_timeout: float = 30.0

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.dsn:
            return self.dsn
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured URL targets SQLite."""
        return self.url.startswith("sqlite")


class AllocationSettings(BaseSettings):
    """Allocation engine configuration.

    Attributes:
        max_attempts: How many times a select/deselect unit of work is run
            when the storage reports a retryable conflict.
        publish_events: Whether committed changes are announced on the
            event bus.
    """

    model_config = SettingsConfigDict(
        env_prefix="ALLOCATION_",
        extra="ignore",
    )

    max_attempts: int = Field(default=3, ge=1)
    publish_events: bool = True


class Settings(BaseSettings):
    """Top-level settings for a process hosting the engine.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        db: Database settings.
        allocation: Allocation engine settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Read from their own prefixes
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    allocation: AllocationSettings = Field(default_factory=AllocationSettings)

    @model_validator(mode="after")
    def validate_production_settings(self) -> Self:
        """Refuse the default database password in production.

        Raises:
            ValueError: If production would connect with the default password.
        """
        if self.environment == "production" and not self.db.dsn:
            if self.db.password.get_secret_value() == DEFAULT_DB_PASSWORD:
                raise ValueError(
                    "Database password must be changed from default in production. "
                    "Set DB_PASSWORD or DB_DSN environment variable."
                )
        return self

    @property
    def is_development(self) -> bool:
        """Whether this is a development process."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Whether this is a production process."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Call this if you need to reload settings from environment.
    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
