"""
Typed flag structures stored against invoices and draw lines.

Invoices keep their processing sub-state in a JSON object column and draw
lines keep review tags in a JSON array column. Both are parsed into closed,
explicitly enumerated structures here; anything unknown is rejected at
parse time rather than silently dropped.
"""

import json
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional, Tuple

from .clock import format_timestamp, parse_timestamp
from .exceptions import FlagParseError, ValidationError


class StatusDetail(Enum):
    """Processing sub-state of an invoice."""
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"
    RETRY = "retry"

    # Outcomes written by the extraction and matching callback
    EXTRACTION_FAILED = "extraction_failed"
    NO_DRAW_LINES = "no_draw_lines"
    AUTO_SINGLE = "auto_single"
    AI_SELECTED = "ai_selected"
    MULTIPLE_CANDIDATES = "multiple_candidates"
    AMBIGUOUS = "ambiguous"
    NO_CANDIDATES = "no_candidates"


MATCH_OUTCOMES = frozenset({
    StatusDetail.EXTRACTION_FAILED,
    StatusDetail.NO_DRAW_LINES,
    StatusDetail.AUTO_SINGLE,
    StatusDetail.AI_SELECTED,
    StatusDetail.MULTIPLE_CANDIDATES,
    StatusDetail.AMBIGUOUS,
    StatusDetail.NO_CANDIDATES,
})

# Allowed status_detail moves; None means the invoice never entered a sub-state
_TRANSITIONS = {
    None: set(StatusDetail),
    StatusDetail.PROCESSING: {StatusDetail.COMPLETE, StatusDetail.ERROR} | MATCH_OUTCOMES,
    StatusDetail.RETRY: {StatusDetail.PROCESSING, StatusDetail.COMPLETE, StatusDetail.ERROR} | MATCH_OUTCOMES,
    StatusDetail.ERROR: {StatusDetail.RETRY},
    StatusDetail.COMPLETE: set(),
}
_TRANSITIONS.update({outcome: {StatusDetail.RETRY} for outcome in MATCH_OUTCOMES})


class LineFlag(Enum):
    """Review tags attached to draw request lines."""
    NO_INVOICE = "NO_INVOICE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    MULTIPLE_CANDIDATES = "MULTIPLE_CANDIDATES"
    NO_CANDIDATES = "NO_CANDIDATES"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    OVER_BUDGET = "OVER_BUDGET"
    NEAR_BUDGET = "NEAR_BUDGET"
    DUPLICATE_INVOICE = "DUPLICATE_INVOICE"


@dataclass(frozen=True)
class CandidateScore:
    """One of the top match candidates recorded when an invoice needs review."""
    category: Optional[str] = None
    score: Optional[float] = None
    amount_variance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'category': self.category, 'score': self.score, 'amountVariance': self.amount_variance}

    @classmethod
    def from_dict(cls, data: Any) -> 'CandidateScore':
        if not isinstance(data, dict):
            raise FlagParseError(f"Top candidate must be an object, got {data!r}")
        unknown = set(data) - {'category', 'score', 'amountVariance'}
        if unknown:
            raise FlagParseError(f"Unknown top candidate keys: {', '.join(sorted(unknown))}")
        return cls(
            category=_typed(data, 'category', str),
            score=_number(data, 'score'),
            amount_variance=_number(data, 'amountVariance'),
        )


@dataclass(frozen=True)
class InvoiceFlags:
    """
    Flag bag stored on an invoice row.

    Only the keys below are accepted. Boolean fields are tri-state so that a
    value that was never written stays absent when serialized again.
    """
    status_detail: Optional[StatusDetail] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    retry_started_at: Optional[datetime] = None
    reconciled: Optional[bool] = None
    auto_retry_attempted: Optional[bool] = None
    processing_started_at: Optional[datetime] = None
    n8n_execution_id: Optional[str] = None
    confidence: Optional[float] = None
    candidates_considered: Optional[int] = None
    top_candidates: Optional[Tuple[CandidateScore, ...]] = None

    @property
    def is_processing(self) -> bool:
        return self.status_detail is StatusDetail.PROCESSING

    def transition(self, target: StatusDetail, **changes: Any) -> 'InvoiceFlags':
        """
        Return a copy moved to `target` with the given field changes applied.

        Raises:
            ValidationError: If the move is not allowed or tries to clear `reconciled`
        """
        if target is not self.status_detail and target not in _TRANSITIONS[self.status_detail]:
            current = self.status_detail.value if self.status_detail else None
            raise ValidationError(
                f"Invalid status_detail transition: {current} -> {target.value}",
                reason="invalid_transition",
            )
        if self.reconciled and changes.get('reconciled') is False:
            raise ValidationError("reconciled flag cannot be cleared once set",
                                  reason="invalid_transition")
        return replace(self, status_detail=target, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted key/value shape, omitting unset fields."""
        data: Dict[str, Any] = {}
        if self.status_detail is not None:
            data['status_detail'] = self.status_detail.value
        if self.error is not None:
            data['error'] = self.error
        if self.completed_at is not None:
            data['completed_at'] = format_timestamp(self.completed_at)
        if self.retry_started_at is not None:
            data['retry_started_at'] = format_timestamp(self.retry_started_at)
        if self.reconciled is not None:
            data['reconciled'] = self.reconciled
        if self.auto_retry_attempted is not None:
            data['auto_retry_attempted'] = self.auto_retry_attempted
        if self.processing_started_at is not None:
            data['processing_started_at'] = format_timestamp(self.processing_started_at)
        if self.n8n_execution_id is not None:
            data['n8n_execution_id'] = self.n8n_execution_id
        if self.confidence is not None:
            data['confidence'] = self.confidence
        if self.candidates_considered is not None:
            data['candidates_considered'] = self.candidates_considered
        if self.top_candidates is not None:
            data['top_candidates'] = [candidate.to_dict() for candidate in self.top_candidates]
        return data

    def to_json(self) -> Optional[str]:
        """Serialize for the flags column; empty flags are stored as NULL."""
        data = self.to_dict()
        return json.dumps(data) if data else None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InvoiceFlags':
        """
        Build flags from a decoded mapping.

        Raises:
            FlagParseError: On unknown keys or values of the wrong type
        """
        unknown = set(data) - _INVOICE_FLAG_KEYS
        if unknown:
            raise FlagParseError(f"Unknown invoice flag keys: {', '.join(sorted(unknown))}")

        status_detail = data.get('status_detail')
        if status_detail is not None:
            try:
                status_detail = StatusDetail(status_detail)
            except ValueError as e:
                raise FlagParseError(f"Unknown status_detail: {status_detail!r}") from e

        return cls(
            status_detail=status_detail,
            error=_typed(data, 'error', str),
            completed_at=_timestamp(data, 'completed_at'),
            retry_started_at=_timestamp(data, 'retry_started_at'),
            reconciled=_typed(data, 'reconciled', bool),
            auto_retry_attempted=_typed(data, 'auto_retry_attempted', bool),
            processing_started_at=_timestamp(data, 'processing_started_at'),
            n8n_execution_id=_typed(data, 'n8n_execution_id', str),
            confidence=_number(data, 'confidence'),
            candidates_considered=_count(data, 'candidates_considered'),
            top_candidates=_candidates(data.get('top_candidates')),
        )

    @classmethod
    def from_json(cls, raw: Any) -> 'InvoiceFlags':
        """
        Parse the persisted flags column.

        Accepts NULL/empty, a JSON object string, or an already-decoded mapping.

        Raises:
            FlagParseError: If the content is not a JSON object or fails validation
        """
        if raw is None or raw == "":
            return cls()
        if isinstance(raw, dict):
            return cls.from_dict(raw)
        if not isinstance(raw, str):
            raise FlagParseError(f"Invoice flags must be a JSON object, got {type(raw).__name__}")
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FlagParseError(f"Invoice flags are not valid JSON: {e}") from e
        if not isinstance(decoded, dict):
            raise FlagParseError("Invoice flags must be a JSON object")
        return cls.from_dict(decoded)


_INVOICE_FLAG_KEYS = frozenset({
    'status_detail', 'error', 'completed_at', 'retry_started_at',
    'reconciled', 'auto_retry_attempted', 'processing_started_at',
    'n8n_execution_id', 'confidence', 'candidates_considered', 'top_candidates',
})


def _typed(data: Dict[str, Any], key: str, expected: type) -> Any:
    value = data.get(key)
    if value is not None and not isinstance(value, expected):
        raise FlagParseError(f"Invoice flag '{key}' must be {expected.__name__}, got {value!r}")
    return value


def _number(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
        raise FlagParseError(f"Flag '{key}' must be a number, got {value!r}")
    return value


def _count(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
        raise FlagParseError(f"Flag '{key}' must be a non-negative integer, got {value!r}")
    return value


def _candidates(raw: Any) -> Optional[Tuple[CandidateScore, ...]]:
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise FlagParseError("Invoice flag 'top_candidates' must be an array")
    return tuple(CandidateScore.from_dict(item) for item in raw)


def _timestamp(data: Dict[str, Any], key: str) -> Optional[datetime]:
    value = data.get(key)
    if value is None:
        return None
    try:
        return parse_timestamp(value, key)
    except ValidationError as e:
        raise FlagParseError(f"Invoice flag '{key}' is not a timestamp: {value!r}") from e


def parse_line_flags(raw: Any) -> FrozenSet[LineFlag]:
    """
    Parse a draw line's flags column.

    Accepts NULL/empty, a JSON array string, a decoded list, or the legacy
    comma-separated form ("NO_INVOICE, AMOUNT_MISMATCH").

    Raises:
        FlagParseError: On unknown tags or a JSON value that is not an array
    """
    if raw is None or raw == "":
        return frozenset()
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            decoded = [part.strip() for part in raw.split(',') if part.strip()]
        raw = decoded
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise FlagParseError("Draw line flags must be an array of tags")

    tags = set()
    for tag in raw:
        if isinstance(tag, LineFlag):
            tags.add(tag)
            continue
        try:
            tags.add(LineFlag(tag))
        except ValueError as e:
            raise FlagParseError(f"Unknown draw line flag: {tag!r}") from e
    return frozenset(tags)


def serialize_line_flags(flags: Iterable[LineFlag]) -> Optional[str]:
    """Serialize line flags as a JSON array in a stable order; no flags is NULL."""
    values = sorted(flag.value for flag in flags)
    return json.dumps(values) if values else None
