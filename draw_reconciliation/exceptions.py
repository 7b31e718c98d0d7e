"""
Exception hierarchy for the draw reconciliation engine.

Every error carries a machine-readable `reason` so callers can tell
validation, precondition, storage and authorization failures apart.
"""

from typing import Any, Dict, List, Optional


class DrawEngineError(Exception):
    """Base exception for draw reconciliation operations."""
    reason = "internal_error"

    def __init__(self, message: str, reason: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Error payload carrying a machine-readable reason."""
        payload = {'error': self.message, 'reason': self.reason}
        payload.update(self.details)
        return payload


class ValidationError(DrawEngineError):
    """Raised when request fields or persisted records are malformed."""
    reason = "missing_field"


class FlagParseError(ValidationError):
    """Raised when a persisted flag column holds unknown or malformed content."""
    reason = "invalid_flags"


class PreconditionError(DrawEngineError):
    """Raised when referenced records are not in a state that allows the operation."""
    reason = "precondition_failed"


class DrawCountMismatchError(PreconditionError):
    """Raised when some requested draws could not be found."""
    reason = "draw_count_mismatch"

    def __init__(self, expected: int, found: int, missing_ids: Optional[List[str]] = None):
        super().__init__(
            f"Some draws not found. Expected {expected}, found {found}",
            expected=expected, found=found, missing_ids=missing_ids or [],
        )
        self.expected = expected
        self.found = found


class InvalidDrawStatusError(PreconditionError):
    """Raised when one or more requested draws are not in the required status."""
    reason = "invalid_draw_status"

    def __init__(self, invalid_ids: List[str], required_status: str, verb: str = "fund"):
        super().__init__(
            f"Cannot {verb} draws that are not {required_status}. "
            f"Invalid draws: {', '.join(invalid_ids)}",
            invalid_draw_ids=list(invalid_ids),
        )
        self.invalid_ids = list(invalid_ids)


class BatchNotFoundError(PreconditionError):
    """Raised when a wire batch id does not resolve."""
    reason = "batch_not_found"


class InvalidBatchStatusError(PreconditionError):
    """Raised when a wire batch is not in the required status."""
    reason = "invalid_batch_status"


class StoreError(DrawEngineError):
    """Raised when the record store fails to read or persist."""
    reason = "store_error"


class RecordNotFoundError(StoreError):
    """Raised when an update targets a row that does not exist."""
    reason = "record_not_found"


class AuthorizationError(DrawEngineError):
    """Raised when a caller fails the pre-shared secret check."""
    reason = "unauthorized"


class ConfigurationError(DrawEngineError):
    """Raised when configuration is invalid or missing."""
    reason = "configuration_error"
