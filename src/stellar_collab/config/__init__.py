"""Configuration package."""

from stellar_collab.config.settings import (
    EngineSettings,
    Settings,
    get_settings,
    validate_required_settings,
)

__all__ = ["EngineSettings", "Settings", "get_settings", "validate_required_settings"]
