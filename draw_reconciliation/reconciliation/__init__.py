"""
Self-healing reconciliation passes over draw lines and invoices.
"""

from .invoice_flags import InvoiceFlagReconciler
from .stuck_processing import StuckProcessReconciler, DEFAULT_OLDER_THAN_MINUTES

__all__ = [
    "InvoiceFlagReconciler",
    "StuckProcessReconciler",
    "DEFAULT_OLDER_THAN_MINUTES"
]
