"""
Configuration management for the draw reconciliation engine.
"""

from .config_manager import ConfigManager, EngineSettings, get_config_manager
from .validation import SettingsValidator, ValidationResult

__all__ = [
    "ConfigManager",
    "EngineSettings",
    "get_config_manager",
    "SettingsValidator",
    "ValidationResult"
]
