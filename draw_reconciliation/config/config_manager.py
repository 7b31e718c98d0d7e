"""
Configuration manager for the draw reconciliation engine.

Settings live in a JSON file under the configuration directory and can be
overridden by environment variables. Secrets (the webhook secret and the
store service key) are only ever read from the environment or passed in;
they are never written back to disk.
"""

import os
import json
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional
from pathlib import Path

from draw_reconciliation.exceptions import ConfigurationError

import logging
logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = 'DRAW_ENGINE_CONFIG_DIR'

SECRET_FIELDS = ('webhook_secret', 'rest_service_key')

STORE_BACKENDS = ('memory', 'rest')


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Environment variable -> (settings field, converter)
ENVIRONMENT_OVERRIDES: Dict[str, Any] = {
    'DRAW_ENGINE_MATCH_THRESHOLD': ('match_threshold', float),
    'DRAW_ENGINE_STUCK_AFTER_MINUTES': ('stuck_after_minutes', float),
    'DRAW_ENGINE_WEBHOOK_SECRET': ('webhook_secret', str),
    'DRAW_ENGINE_STORE_BACKEND': ('store_backend', str),
    'DRAW_ENGINE_STORE_URL': ('rest_url', str),
    'DRAW_ENGINE_SERVICE_KEY': ('rest_service_key', str),
    'DRAW_ENGINE_STORE_TIMEOUT': ('rest_timeout', int),
    'DRAW_ENGINE_DEFAULT_ACTOR': ('default_actor', str),
    'DRAW_ENGINE_RECORD_BUDGET_SPEND': ('record_budget_spend', _parse_bool),
}


@dataclass
class EngineSettings:
    """Runtime settings for matching, reconciliation and the record store."""
    match_threshold: float = 0.6
    stuck_after_minutes: float = 10
    webhook_secret: Optional[str] = None
    store_backend: str = 'memory'
    rest_url: Optional[str] = None
    rest_service_key: Optional[str] = None
    rest_timeout: int = 30
    default_actor: str = 'user'
    record_budget_spend: bool = True

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        """Convert to dictionary, masking secrets unless asked for them."""
        data = asdict(self)
        if not include_secrets:
            for name in SECRET_FIELDS:
                data[name] = '***' if data[name] else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineSettings':
        """Create from dictionary, ignoring keys that are not settings."""
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known})


class ConfigManager:
    """
    Loads engine settings.

    Resolution order, lowest to highest: dataclass defaults, settings.json
    in the config directory, DRAW_ENGINE_* environment variables.
    """

    def __init__(self, config_dir: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory holding settings.json. If None, uses
                DRAW_ENGINE_CONFIG_DIR or ~/.draw_reconciliation/config.
            environ: Environment mapping to read overrides from (os.environ if None)
        """
        self.logger = logging.getLogger(f"{__name__}.ConfigManager")
        self.environ = os.environ if environ is None else environ

        if config_dir:
            self.config_dir = Path(config_dir)
        elif self.environ.get(CONFIG_DIR_ENV):
            self.config_dir = Path(self.environ[CONFIG_DIR_ENV])
        else:
            self.config_dir = Path.home() / '.draw_reconciliation' / 'config'

        self.settings_file = self.config_dir / 'settings.json'
        self.logger.info(f"Configuration manager initialized with directory: {self.config_dir}")

    def load_settings(self) -> EngineSettings:
        """
        Load settings from disk and the environment.

        Returns:
            EngineSettings

        Raises:
            ConfigurationError: If settings.json is unreadable or an
                environment override cannot be converted
        """
        data: Dict[str, Any] = {}
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigurationError(f"Failed to read settings file {self.settings_file}: {e}")
            data.pop('updated_at', None)
            for name in SECRET_FIELDS:
                if data.pop(name, None) is not None:
                    self.logger.warning(f"Ignoring {name} in {self.settings_file}; set it through the environment")
        else:
            self.logger.info("No settings file found, using defaults")

        for env_name, (field_name, convert) in ENVIRONMENT_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None or raw == '':
                continue
            try:
                data[field_name] = self._convert(convert, raw)
            except ValueError:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}")

        try:
            return EngineSettings.from_dict(data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid settings: {e}")

    def get_config_info(self) -> Dict[str, Any]:
        """Describe where settings come from, without exposing secrets."""
        return {
            'config_directory': str(self.config_dir),
            'settings_file_exists': self.settings_file.exists(),
            'environment_overrides': sorted(
                name for name in ENVIRONMENT_OVERRIDES if self.environ.get(name)
            ),
        }

    @staticmethod
    def _convert(convert: Callable[[str], Any], raw: str) -> Any:
        return convert(raw.strip()) if convert is not str else raw


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """
    Get the global configuration manager instance.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager
    if _global_config_manager is None:
        _global_config_manager = ConfigManager()
    return _global_config_manager
