"""
Unit tests for configuration management.

This module tests the configuration system including settings validation,
environment variable loading, and configuration validation.
"""

import pytest
from pydantic import ValidationError

from stellar_collab.config.settings import (
    EngineSettings,
    Settings,
    get_settings,
    validate_required_settings,
)
from stellar_collab.core.exceptions import ConfigurationError


class TestEngineSettings:
    """Test engine tuning options."""

    def test_defaults(self):
        """Test documented defaults."""
        settings = EngineSettings()

        assert settings.max_concurrent_collaborations == 10
        assert settings.collaboration_timeout_minutes == 120
        assert settings.conflict_resolution_timeout_minutes == 30
        assert settings.negotiation_rounds_limit == 5
        assert settings.consensus_threshold == 0.75
        assert settings.auto_conflict_resolution is True
        assert settings.collaboration_quality_threshold == 0.8
        assert settings.advisor_max_retries == 1

    def test_derived_timeouts(self):
        """Test minute settings converted to seconds."""
        settings = EngineSettings(
            collaboration_timeout_minutes=2,
            conflict_resolution_timeout_minutes=1,
            negotiation_rounds_limit=4,
            negotiation_round_timeout_seconds=15,
        )

        assert settings.collaboration_timeout_seconds == 120
        assert settings.conflict_resolution_timeout_seconds == 60
        assert settings.negotiation_timeout_seconds == 60

    def test_range_validation(self):
        """Test out-of-range values are rejected."""
        with pytest.raises(ValidationError):
            EngineSettings(consensus_threshold=1.5)

        with pytest.raises(ValidationError):
            EngineSettings(collaboration_quality_threshold=-0.1)

        with pytest.raises(ValidationError):
            EngineSettings(max_concurrent_collaborations=0)

        with pytest.raises(ValidationError):
            EngineSettings(negotiation_rounds_limit=0)

    def test_environment_override(self, monkeypatch):
        """Test COLLAB_ prefixed environment variables."""
        monkeypatch.setenv("COLLAB_MAX_CONCURRENT_COLLABORATIONS", "3")
        monkeypatch.setenv("COLLAB_AUTO_CONFLICT_RESOLUTION", "false")

        settings = EngineSettings()

        assert settings.max_concurrent_collaborations == 3
        assert settings.auto_conflict_resolution is False


class TestMainSettings:
    """Test main application settings."""

    def test_environment_validation(self):
        """Test environment validation."""
        for env in ["development", "staging", "testing"]:
            settings = Settings(environment=env)
            assert settings.environment == env

        with pytest.raises(ValidationError):
            Settings(environment="invalid")

    def test_log_level_validation(self):
        """Test log level validation."""
        for level in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            settings = Settings(log_level=level.lower())
            assert settings.log_level == level

        with pytest.raises(ValidationError):
            Settings(log_level="INVALID")

    def test_production_validation(self):
        """Test production-specific validation."""
        with pytest.raises(ValidationError):
            Settings(environment="production", debug=True)

        settings = Settings(environment="production", debug=False)
        assert settings.is_production
        assert not settings.is_development

    def test_nested_engine_settings(self):
        """Test engine settings nested in the main settings."""
        settings = Settings(engine=EngineSettings(consensus_threshold=0.6))
        assert settings.engine.consensus_threshold == 0.6

    def test_settings_cached(self, test_settings):
        """Test get_settings returns the cached instance."""
        assert get_settings() is test_settings
        assert test_settings.environment == "testing"


class TestSettingsValidation:
    """Test settings validation functions."""

    def test_validate_required_settings_development(self, monkeypatch):
        """Test validation in development environment."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        get_settings.cache_clear()

        try:
            validate_required_settings()
        finally:
            get_settings.cache_clear()

    def test_validate_required_settings_production_missing_advisor(self, monkeypatch):
        """Test validation in production without an advisor endpoint."""
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("DEBUG", "false")
        monkeypatch.delenv("ADVISOR_URL", raising=False)
        get_settings.cache_clear()

        try:
            with pytest.raises(ConfigurationError, match="ADVISOR_URL is required"):
                validate_required_settings()
        finally:
            get_settings.cache_clear()

    def test_validate_required_settings_negotiation_budget(self, monkeypatch):
        """Test negotiation rounds must fit in the collaboration timeout."""
        monkeypatch.setenv("ENVIRONMENT", "development")
        monkeypatch.setenv("COLLAB_COLLABORATION_TIMEOUT_MINUTES", "1")
        monkeypatch.setenv("COLLAB_NEGOTIATION_ROUND_TIMEOUT_SECONDS", "60")
        monkeypatch.setenv("COLLAB_NEGOTIATION_ROUNDS_LIMIT", "5")
        get_settings.cache_clear()

        try:
            with pytest.raises(ConfigurationError, match="Negotiation rounds cannot outlast"):
                validate_required_settings()
        finally:
            get_settings.cache_clear()
