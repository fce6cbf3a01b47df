"""
Configuration management with environment validation.

This module provides type-safe configuration for the collaboration engine
using pydantic-settings, with range validation and environment-specific
checks.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AnyHttpUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stellar_collab.core.exceptions import ConfigurationError


class EngineSettings(BaseSettings):
    """Collaboration engine tuning options."""

    model_config = SettingsConfigDict(
        env_prefix="COLLAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Concurrency and deadlines
    max_concurrent_collaborations: int = Field(10, ge=1)
    collaboration_timeout_minutes: float = Field(120, gt=0)
    conflict_resolution_timeout_minutes: float = Field(30, gt=0)

    # Negotiation
    negotiation_rounds_limit: int = Field(5, ge=1)
    negotiation_round_timeout_seconds: float = Field(60.0, gt=0)
    consensus_threshold: float = Field(0.75, ge=0.0, le=1.0)

    # Conflict handling and plan quality
    auto_conflict_resolution: bool = True
    collaboration_quality_threshold: float = Field(0.8, ge=0.0, le=1.0)

    # Advisor calls
    advisor_timeout_seconds: float = Field(30.0, gt=0)
    advisor_max_retries: int = Field(1, ge=0)
    advisor_backoff_seconds: float = Field(0.5, ge=0)

    # Broadcast delivery
    broadcast_max_retries: int = Field(3, ge=0)
    broadcast_retry_backoff_seconds: float = Field(0.5, ge=0)
    broadcast_ack_timeout_seconds: float = Field(5.0, gt=0)
    broadcast_max_fanout: int = Field(32, ge=1)

    @property
    def collaboration_timeout_seconds(self) -> float:
        return self.collaboration_timeout_minutes * 60

    @property
    def conflict_resolution_timeout_seconds(self) -> float:
        return self.conflict_resolution_timeout_minutes * 60

    @property
    def negotiation_timeout_seconds(self) -> float:
        """Upper bound for a whole negotiation: rounds limit x round timeout."""
        return self.negotiation_rounds_limit * self.negotiation_round_timeout_seconds


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    # Environment Configuration
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # External advisor endpoint (optional; the engine degrades without it)
    advisor_url: Optional[AnyHttpUrl] = None
    advisor_api_key: Optional[str] = None

    # Nested Settings
    engine: EngineSettings = Field(default_factory=EngineSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed_environments = {"development", "staging", "production", "testing"}
        if v.lower() not in allowed_environments:
            raise ValueError(f"Environment must be one of: {allowed_environments}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Debug mode must be disabled in production."""
        if self.environment == "production" and self.debug:
            raise ValueError("Debug mode must be disabled in production")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and reused throughout the process lifetime;
    call ``get_settings.cache_clear()`` to reload.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()


def validate_required_settings() -> None:
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    settings = get_settings()

    if settings.is_production and settings.advisor_url is None:
        raise ConfigurationError("ADVISOR_URL is required in production environment")

    engine = settings.engine
    if engine.negotiation_round_timeout_seconds * engine.negotiation_rounds_limit > engine.collaboration_timeout_seconds:
        raise ConfigurationError(
            "Negotiation rounds cannot outlast the collaboration timeout "
            "(rounds limit x round timeout > collaboration timeout)"
        )


__all__ = ["EngineSettings", "Settings", "get_settings", "validate_required_settings"]
