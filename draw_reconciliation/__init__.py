"""
Draw Reconciliation Engine

Back-office reconciliation for construction-loan draw requests: matches
builder category labels to budget lines, keeps NO_INVOICE flags on draw
lines in step with uploaded invoices, errors out invoices whose processing
callback never arrived, and funds staged draws through wire batches with a
full audit trail.

This package provides:
- Core data models and flag structures
- Category similarity matching
- Invoice flag and stuck-processing reconciliation
- Wire batch funding and budget spend recording
- Record stores (in-memory and REST)
- Configuration management
"""

from .models import (
    # Core data models
    BudgetLine,
    Invoice,
    DrawRequestLine,
    DrawRequest,
    WireBatch,
    AuditEvent,

    # Reports
    FlagReconciliationReport,
    StuckInvoiceReport,
    FundingResult,

    # Enums
    InvoiceStatus,
    DrawStatus,
    WireBatchStatus,
    EntityType
)
from .flags import InvoiceFlags, LineFlag, StatusDetail
from .exceptions import (
    DrawEngineError,
    ValidationError,
    FlagParseError,
    PreconditionError,
    DrawCountMismatchError,
    InvalidDrawStatusError,
    BatchNotFoundError,
    InvalidBatchStatusError,
    StoreError,
    RecordNotFoundError,
    AuthorizationError,
    ConfigurationError
)

__version__ = "1.0.0"

__all__ = [
    # Core data models
    "BudgetLine",
    "Invoice",
    "DrawRequestLine",
    "DrawRequest",
    "WireBatch",
    "AuditEvent",

    # Reports
    "FlagReconciliationReport",
    "StuckInvoiceReport",
    "FundingResult",

    # Enums and flags
    "InvoiceStatus",
    "DrawStatus",
    "WireBatchStatus",
    "EntityType",
    "InvoiceFlags",
    "LineFlag",
    "StatusDetail",

    # Exceptions
    "DrawEngineError",
    "ValidationError",
    "FlagParseError",
    "PreconditionError",
    "DrawCountMismatchError",
    "InvalidDrawStatusError",
    "BatchNotFoundError",
    "InvalidBatchStatusError",
    "StoreError",
    "RecordNotFoundError",
    "AuthorizationError",
    "ConfigurationError"
]
