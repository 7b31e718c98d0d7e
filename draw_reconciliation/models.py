"""
Core data models for the draw reconciliation engine.

This module defines the typed records the engine reads from and writes to
the record store (budget lines, invoices, draw requests and their lines,
wire batches, audit events) and the reports returned by reconciliation
and funding operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from .clock import format_timestamp, parse_timestamp
from .exceptions import ValidationError
from .flags import InvoiceFlags, LineFlag, parse_line_flags, serialize_line_flags


class InvoiceStatus(Enum):
    """Overall invoice status column."""
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class DrawStatus(Enum):
    """Lifecycle states of a draw request."""
    DRAFT = "draft"
    REVIEW = "review"
    STAGED = "staged"
    PENDING_WIRE = "pending_wire"
    FUNDED = "funded"
    REJECTED = "rejected"


class WireBatchStatus(Enum):
    """Lifecycle states of a wire batch."""
    PENDING = "pending"
    FUNDED = "funded"
    CANCELLED = "cancelled"


class EntityType(Enum):
    """Entity types recorded in the audit log."""
    PROJECT = "project"
    BUDGET = "budget"
    DRAW_REQUEST = "draw_request"
    INVOICE = "invoice"
    WIRE_BATCH = "wire_batch"


# Draw statuses that may carry a wire batch link
BATCH_LINKED_STATUSES = frozenset({DrawStatus.STAGED, DrawStatus.PENDING_WIRE, DrawStatus.FUNDED})


def to_decimal(value: Any, field_name: str = "amount") -> Decimal:
    """Coerce a persisted numeric value to Decimal; None becomes zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid {field_name}: {value!r}") from e


def _optional_timestamp(value: Any, field_name: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_timestamp(value, field_name)


def _require(data: Dict[str, Any], key: str, record: str) -> Any:
    if data.get(key) is None:
        raise ValidationError(f"{record} record is missing '{key}'")
    return data[key]


def _enum_value(enum_cls, value: Any, record: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"{record} has unknown {enum_cls.__name__}: {value!r}") from e


@dataclass
class BudgetLine:
    """
    A budget category on a project.

    `category` is the canonical name; `builder_category_raw` keeps whatever
    the builder typed on their own spreadsheet, when that differs.
    """
    id: str
    category: str
    project_id: Optional[str] = None
    builder_category_raw: Optional[str] = None
    current_amount: Decimal = Decimal("0")
    spent_amount: Decimal = Decimal("0")

    @property
    def remaining_amount(self) -> Decimal:
        return self.current_amount - self.spent_amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'project_id': self.project_id,
            'category': self.category,
            'builder_category_raw': self.builder_category_raw,
            'current_amount': str(self.current_amount),
            'spent_amount': str(self.spent_amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BudgetLine':
        """Create BudgetLine from a persisted row."""
        return cls(
            id=str(_require(data, 'id', 'Budget')),
            category=_require(data, 'category', 'Budget'),
            project_id=data.get('project_id'),
            builder_category_raw=data.get('builder_category_raw'),
            current_amount=to_decimal(data.get('current_amount'), 'current_amount'),
            spent_amount=to_decimal(data.get('spent_amount'), 'spent_amount'),
        )


@dataclass
class Invoice:
    """An uploaded invoice awaiting or having completed external processing."""
    id: str
    draw_request_id: str
    status: InvoiceStatus
    created_at: datetime
    flags: InvoiceFlags = field(default_factory=InvoiceFlags)
    file_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary; flags are stored as a JSON string column."""
        return {
            'id': self.id,
            'draw_request_id': self.draw_request_id,
            'status': self.status.value,
            'created_at': format_timestamp(self.created_at),
            'flags': self.flags.to_json(),
            'file_path': self.file_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Invoice':
        """Create Invoice from a persisted row, rejecting malformed flags."""
        return cls(
            id=str(_require(data, 'id', 'Invoice')),
            draw_request_id=str(_require(data, 'draw_request_id', 'Invoice')),
            status=_enum_value(InvoiceStatus, _require(data, 'status', 'Invoice'), 'Invoice'),
            created_at=parse_timestamp(_require(data, 'created_at', 'Invoice'), 'created_at'),
            flags=InvoiceFlags.from_json(data.get('flags')),
            file_path=data.get('file_path'),
        )


@dataclass
class DrawRequestLine:
    """A single requested amount on a draw, optionally tied to a budget and invoice."""
    id: str
    draw_request_id: str
    amount_requested: Decimal = Decimal("0")
    amount_approved: Optional[Decimal] = None
    budget_id: Optional[str] = None
    invoice_file_id: Optional[str] = None
    matched_invoice_amount: Optional[Decimal] = None
    flags: FrozenSet[LineFlag] = frozenset()
    confidence_score: Optional[float] = None

    @property
    def has_invoice(self) -> bool:
        return bool(self.invoice_file_id) or bool(self.matched_invoice_amount)

    @property
    def needs_invoice(self) -> bool:
        return self.amount_requested > 0 and not self.has_invoice

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary; flags are stored as a JSON array string."""
        return {
            'id': self.id,
            'draw_request_id': self.draw_request_id,
            'amount_requested': str(self.amount_requested),
            'amount_approved': str(self.amount_approved) if self.amount_approved is not None else None,
            'budget_id': self.budget_id,
            'invoice_file_id': self.invoice_file_id,
            'matched_invoice_amount': (str(self.matched_invoice_amount)
                                       if self.matched_invoice_amount is not None else None),
            'flags': serialize_line_flags(self.flags),
            'confidence_score': self.confidence_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DrawRequestLine':
        """Create DrawRequestLine from a persisted row."""
        approved = data.get('amount_approved')
        matched = data.get('matched_invoice_amount')
        confidence = data.get('confidence_score')
        return cls(
            id=str(_require(data, 'id', 'Draw line')),
            draw_request_id=str(_require(data, 'draw_request_id', 'Draw line')),
            amount_requested=to_decimal(data.get('amount_requested'), 'amount_requested'),
            amount_approved=to_decimal(approved, 'amount_approved') if approved is not None else None,
            budget_id=data.get('budget_id'),
            invoice_file_id=data.get('invoice_file_id'),
            matched_invoice_amount=to_decimal(matched, 'matched_invoice_amount') if matched is not None else None,
            flags=parse_line_flags(data.get('flags')),
            confidence_score=float(confidence) if confidence is not None else None,
        )


@dataclass
class DrawRequest:
    """A draw request moving through review, staging and funding."""
    id: str
    status: DrawStatus
    total_amount: Decimal = Decimal("0")
    builder_id: Optional[str] = None
    funded_at: Optional[datetime] = None
    wire_batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'status': self.status.value,
            'total_amount': str(self.total_amount),
            'builder_id': self.builder_id,
            'funded_at': format_timestamp(self.funded_at),
            'wire_batch_id': self.wire_batch_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DrawRequest':
        """Create DrawRequest from a persisted row."""
        return cls(
            id=str(_require(data, 'id', 'Draw request')),
            status=_enum_value(DrawStatus, _require(data, 'status', 'Draw request'), 'Draw request'),
            total_amount=to_decimal(data.get('total_amount'), 'total_amount'),
            builder_id=data.get('builder_id'),
            funded_at=_optional_timestamp(data.get('funded_at'), 'funded_at'),
            wire_batch_id=data.get('wire_batch_id'),
        )


@dataclass
class WireBatch:
    """A group of draws wired to one builder in a single payment."""
    builder_id: str
    total_amount: Decimal
    status: WireBatchStatus
    id: Optional[str] = None
    submitted_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    funded_at: Optional[datetime] = None
    funded_by: Optional[str] = None
    wire_reference: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'builder_id': self.builder_id,
            'total_amount': str(self.total_amount),
            'status': self.status.value,
            'submitted_at': format_timestamp(self.submitted_at),
            'submitted_by': self.submitted_by,
            'funded_at': format_timestamp(self.funded_at),
            'funded_by': self.funded_by,
            'wire_reference': self.wire_reference,
            'notes': self.notes,
        }
        if self.id is not None:
            data['id'] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WireBatch':
        """Create WireBatch from a persisted row."""
        return cls(
            id=str(_require(data, 'id', 'Wire batch')),
            builder_id=str(_require(data, 'builder_id', 'Wire batch')),
            total_amount=to_decimal(data.get('total_amount'), 'total_amount'),
            status=_enum_value(WireBatchStatus, _require(data, 'status', 'Wire batch'), 'Wire batch'),
            submitted_at=_optional_timestamp(data.get('submitted_at'), 'submitted_at'),
            submitted_by=data.get('submitted_by'),
            funded_at=_optional_timestamp(data.get('funded_at'), 'funded_at'),
            funded_by=data.get('funded_by'),
            wire_reference=data.get('wire_reference'),
            notes=data.get('notes'),
        )


@dataclass
class AuditEvent:
    """Append-only record of a change to an entity."""
    entity_type: EntityType
    entity_id: str
    action: str
    actor: str = "system"
    old_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'entity_type': self.entity_type.value,
            'entity_id': self.entity_id,
            'action': self.action,
            'actor': self.actor,
            'old_data': self.old_data,
            'new_data': self.new_data,
        }
        if self.id is not None:
            data['id'] = self.id
        if self.created_at is not None:
            data['created_at'] = format_timestamp(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        """Create AuditEvent from a persisted row."""
        return cls(
            id=data.get('id'),
            entity_type=_enum_value(EntityType, _require(data, 'entity_type', 'Audit event'), 'Audit event'),
            entity_id=str(_require(data, 'entity_id', 'Audit event')),
            action=_require(data, 'action', 'Audit event'),
            actor=data.get('actor') or 'system',
            old_data=data.get('old_data'),
            new_data=data.get('new_data'),
            created_at=_optional_timestamp(data.get('created_at'), 'created_at'),
        )


@dataclass
class FlagReconciliationReport:
    """Outcome of a NO_INVOICE flag reconciliation pass over one draw."""
    draw_request_id: str
    lines_checked: int = 0
    flagged_ids: List[str] = field(default_factory=list)
    cleared_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    skipped_no_invoices: bool = False

    @property
    def writes(self) -> int:
        return len(self.flagged_ids) + len(self.cleared_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'draw_request_id': self.draw_request_id,
            'lines_checked': self.lines_checked,
            'flagged_ids': self.flagged_ids,
            'cleared_ids': self.cleared_ids,
            'failed_ids': self.failed_ids,
            'skipped_no_invoices': self.skipped_no_invoices,
        }


@dataclass
class StuckInvoiceReport:
    """Outcome of a stuck-processing reconciliation pass."""
    cutoff: datetime
    draw_request_id: Optional[str] = None
    scanned: int = 0
    marked_error: int = 0
    skipped: int = 0
    marked_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)
    # Counted in `skipped`; rows whose record could not be parsed
    unreadable_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Response payload shape used by the reconcile-processing endpoint."""
        return {
            'success': True,
            'drawRequestId': self.draw_request_id,
            'cutoff': format_timestamp(self.cutoff),
            'scanned': self.scanned,
            'markedError': self.marked_error,
            'skipped': self.skipped,
            'markedIds': self.marked_ids,
        }


@dataclass
class FundingResult:
    """
    Outcome of a funding or wire submission operation.

    `failed_draw_ids` lists draws whose update did not land. The batch is
    kept regardless, so a non-empty list means the batch total no longer
    matches the draws actually advanced and needs operator follow-up.
    """
    batch_id: str
    status: WireBatchStatus
    draw_count: int
    total_amount: Decimal
    funded_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    updated_draw_ids: List[str] = field(default_factory=list)
    failed_draw_ids: List[str] = field(default_factory=list)

    @property
    def needs_reconciliation(self) -> bool:
        return bool(self.failed_draw_ids)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': True,
            'batch_id': self.batch_id,
            'status': self.status.value,
            'draw_count': self.draw_count,
            'total_amount': float(self.total_amount),
            'updated_draw_ids': self.updated_draw_ids,
            'failed_draw_ids': self.failed_draw_ids,
        }
        if self.funded_at is not None:
            data['funded_at'] = format_timestamp(self.funded_at)
        if self.submitted_at is not None:
            data['submitted_at'] = format_timestamp(self.submitted_at)
        return data


@dataclass
class StoreHealthResult:
    """Result of probing the record store."""
    success: bool
    store_id: str
    backend: str
    response_time: float
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'store_id': self.store_id,
            'backend': self.backend,
            'response_time': self.response_time,
            'error_message': self.error_message,
        }


