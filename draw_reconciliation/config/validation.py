"""
Settings validation with detailed error reporting.
"""

from typing import Dict, List, Any
from urllib.parse import urlparse
from dataclasses import dataclass, field

from .config_manager import EngineSettings, STORE_BACKENDS

import logging
logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of settings validation."""
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        """Add an error message."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str):
        """Add a warning message."""
        self.warnings.append(message)

    def add_suggestion(self, message: str):
        """Add a suggestion message."""
        self.suggestions.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'is_valid': self.is_valid,
            'errors': self.errors,
            'warnings': self.warnings,
            'suggestions': self.suggestions
        }


class SettingsValidator:
    """Validates engine settings before a service is built from them."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.SettingsValidator")

    def validate(self, settings: EngineSettings) -> ValidationResult:
        """
        Validate engine settings.

        Args:
            settings: Settings to validate

        Returns:
            ValidationResult with validation details
        """
        result = ValidationResult()

        # Matching
        if not (0 < settings.match_threshold <= 1):
            result.add_error("Match threshold must be greater than 0 and at most 1")
        elif settings.match_threshold < 0.5:
            result.add_warning(f"Match threshold {settings.match_threshold} accepts weak category matches")

        # Reconciliation
        if settings.stuck_after_minutes <= 0:
            result.add_error("Stuck-after minutes must be positive")
        elif settings.stuck_after_minutes < 2:
            result.add_warning("Stuck-after window under 2 minutes may error out invoices still processing")

        if not settings.webhook_secret:
            result.add_warning("Webhook secret is not set; the reconcile-processing endpoint will reject all calls")

        if not settings.default_actor:
            result.add_error("Default actor is required")

        # Store
        if settings.store_backend not in STORE_BACKENDS:
            result.add_error(f"Store backend must be one of: {', '.join(STORE_BACKENDS)}")
        elif settings.store_backend == 'rest':
            self._validate_rest(settings, result)
        else:
            result.add_suggestion("In-memory store loses all records on restart; use 'rest' outside tests")

        self.logger.debug(f"Settings validation: {len(result.errors)} errors, {len(result.warnings)} warnings")
        return result

    def _validate_rest(self, settings: EngineSettings, result: ValidationResult):
        if not settings.rest_url:
            result.add_error("Store URL is required for the rest backend")
        else:
            parsed = urlparse(settings.rest_url)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                result.add_error("Store URL must be a valid http(s) URL")
            elif parsed.scheme == 'http' and parsed.hostname not in ('localhost', '127.0.0.1'):
                result.add_warning("Store URL uses plain HTTP; the service key is sent in clear text")

        if not settings.rest_service_key:
            result.add_error("Service key is required for the rest backend")

        if settings.rest_timeout <= 0:
            result.add_error("Store timeout must be positive")
        elif settings.rest_timeout > 120:
            result.add_warning(f"Store timeout of {settings.rest_timeout}s is unusually long")
