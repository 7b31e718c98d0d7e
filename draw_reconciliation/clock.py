"""
Clock abstraction and timestamp helpers.

Reconciliation cutoffs and funding timestamps read the current time through
a Clock so tests can pin "now" instead of waiting on the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .exceptions import ValidationError


class Clock(ABC):
    """Source of the current time."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        pass


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, current: datetime):
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        self.current = current

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        """Move the clock forward by a timedelta built from kwargs (minutes=5, ...)."""
        self.current = self.current + timedelta(**kwargs)
        return self.current


def parse_timestamp(value: Any, field_name: str = "timestamp") -> datetime:
    """
    Parse an ISO-8601 timestamp or date string into an aware UTC datetime.

    Naive values are taken to be UTC. A trailing 'Z' is accepted.

    Args:
        value: String or datetime to parse
        field_name: Name used in the error message

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        ValidationError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text[-1] in ('Z', 'z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid {field_name} date format: {value!r}",
                                  reason="invalid_date") from e
    else:
        raise ValidationError(f"Invalid {field_name} date format: {value!r}", reason="invalid_date")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as ISO-8601, or None."""
    return value.isoformat() if value is not None else None
