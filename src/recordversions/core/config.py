"""Configuration management for recordversions.

This module uses Pydantic Settings to load and validate configuration from
environment variables and .env files. Configuration is loaded once, on first
use, and is immutable afterwards.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Library configuration settings.

    Settings are loaded from environment variables and .env files.
    All configuration values are validated when the settings are created.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RECORDVERSIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "production", "testing"] = "development"

    # Logging Settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Shadow schema naming
    version_table_suffix: str = Field(
        default="_versions",
        description="Appended to the entity table name to name its version table",
    )
    version_class_suffix: str = Field(
        default="Version",
        description="Appended to the entity class name to name its version class",
    )
    discriminator_length: int = Field(
        default=255,
        gt=0,
        description="Length of the string column that stores polymorphic identities",
    )

    @field_validator("version_table_suffix", "version_class_suffix")
    @classmethod
    def validate_suffix(cls, v: str) -> str:
        """Reject blank suffixes, which would collide with the entity's own names."""
        v = v.strip()
        if not v:
            raise ValueError("Version suffixes must not be empty")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == "testing"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Cached library settings instance.
    """
    return Settings()
