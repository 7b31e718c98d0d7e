"""
Base record store interface for the draw reconciliation engine.

Every component reads and writes persisted records only through this
interface: per-row reads, inserts, plain updates, and conditional updates
that only apply when a row is still in an expected status.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from draw_reconciliation.exceptions import StoreError
from draw_reconciliation.flags import InvoiceFlags, LineFlag
from draw_reconciliation.models import (
    AuditEvent, BudgetLine, DrawRequest, DrawRequestLine, DrawStatus, EntityType,
    Invoice, StoreHealthResult, WireBatch, WireBatchStatus
)

logger = logging.getLogger(__name__)


class BaseRecordStore(ABC):
    """
    Abstract base class for record stores.

    Provides common logging and error wrapping for the in-memory and REST
    implementations.
    """

    backend = "abstract"

    def __init__(self, store_id: str):
        """
        Initialize base store.

        Args:
            store_id: Identifier for this store, used in logs
        """
        self.store_id = store_id
        self.logger = logging.getLogger(f"{__name__}.{store_id}")
        self._last_health_check: Optional[StoreHealthResult] = None
        self._healthy = True

    @abstractmethod
    def test_connection(self) -> StoreHealthResult:
        """
        Check that the underlying storage is reachable.

        Returns:
            StoreHealthResult with success status and timing
        """
        pass

    # Budgets

    @abstractmethod
    def get_budget_line(self, budget_id: str) -> Optional[BudgetLine]:
        """Fetch one budget line, or None if it does not exist."""
        pass

    @abstractmethod
    def list_budget_lines(self, project_id: str) -> List[BudgetLine]:
        """List budget lines for a project."""
        pass

    @abstractmethod
    def update_budget_spent(self, budget_id: str, spent_amount) -> BudgetLine:
        """
        Set a budget line's spent amount.

        Raises:
            RecordNotFoundError: If the budget does not exist
            StoreError: If the write fails
        """
        pass

    # Invoices

    @abstractmethod
    def list_invoices(self, draw_request_id: str) -> List[Invoice]:
        """List all invoices uploaded against a draw."""
        pass

    @abstractmethod
    def list_pending_invoice_rows(self, created_before: datetime,
                                  draw_request_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List raw rows of invoices whose status is pending and that were
        created strictly before the given time, optionally restricted to one
        draw. Rows are not validated, so callers can handle a malformed row
        without losing the rest of the scan.
        """
        pass

    def list_pending_invoices(self, created_before: datetime,
                              draw_request_id: Optional[str] = None) -> List[Invoice]:
        """
        Typed form of list_pending_invoice_rows.

        Raises:
            ValidationError: If any row is malformed
        """
        return [Invoice.from_dict(row)
                for row in self.list_pending_invoice_rows(created_before, draw_request_id)]

    @abstractmethod
    def update_invoice_flags(self, invoice_id: str, flags: InvoiceFlags) -> Invoice:
        """
        Replace an invoice's flag bag.

        Raises:
            RecordNotFoundError: If the invoice does not exist
            StoreError: If the write fails
        """
        pass

    # Draw lines

    @abstractmethod
    def list_draw_lines(self, draw_request_id: str) -> List[DrawRequestLine]:
        """List all lines on a draw."""
        pass

    @abstractmethod
    def update_draw_line_flags(self, line_id: str, flags: FrozenSet[LineFlag]) -> DrawRequestLine:
        """
        Replace a draw line's flag set.

        Raises:
            RecordNotFoundError: If the line does not exist
            StoreError: If the write fails
        """
        pass

    # Draw requests

    @abstractmethod
    def get_draw_requests(self, draw_ids: Iterable[str]) -> List[DrawRequest]:
        """Fetch the draws that exist among the given ids."""
        pass

    @abstractmethod
    def list_draw_requests_for_batch(self, batch_id: str) -> List[DrawRequest]:
        """List draws linked to a wire batch."""
        pass

    @abstractmethod
    def update_draw_request_if_status(self, draw_id: str, expected_status: DrawStatus,
                                      changes: Dict[str, Any]) -> Optional[DrawRequest]:
        """
        Apply changes to a draw only if its status still equals expected_status.

        Args:
            draw_id: Draw to update
            expected_status: Status the draw must currently have
            changes: Column values to write (enum values are accepted)

        Returns:
            The updated draw, or None if the status guard did not hold

        Raises:
            StoreError: If the write fails
        """
        pass

    # Wire batches

    @abstractmethod
    def create_wire_batch(self, batch: WireBatch) -> WireBatch:
        """Insert a wire batch and return it with its assigned id."""
        pass

    @abstractmethod
    def get_wire_batch(self, batch_id: str) -> Optional[WireBatch]:
        """Fetch one wire batch, or None if it does not exist."""
        pass

    @abstractmethod
    def update_wire_batch_if_status(self, batch_id: str, expected_status: WireBatchStatus,
                                    changes: Dict[str, Any]) -> Optional[WireBatch]:
        """Apply changes to a batch only if its status still equals expected_status."""
        pass

    # Audit log

    @abstractmethod
    def append_audit_event(self, event: AuditEvent) -> AuditEvent:
        """Append an audit event and return it with id and timestamp set."""
        pass

    @abstractmethod
    def list_audit_events(self, entity_type: Optional[EntityType] = None,
                          entity_id: Optional[str] = None,
                          action: Optional[str] = None,
                          limit: Optional[int] = None) -> List[AuditEvent]:
        """List audit events matching the filters, newest first."""
        pass

    def is_healthy(self) -> bool:
        """
        Check if the store is healthy.

        Returns:
            True if the last operation or connection check succeeded
        """
        return self._healthy

    def get_last_health_check(self) -> Optional[StoreHealthResult]:
        """Result of the last test_connection call, if any."""
        return self._last_health_check

    def _log_operation(self, operation: str, duration: float, success: bool,
                       details: Optional[str] = None):
        """
        Log a store operation with timing and status.

        Args:
            operation: Name of the operation
            duration: Time taken in seconds
            success: Whether operation succeeded
            details: Additional details to log
        """
        status = "SUCCESS" if success else "FAILED"
        message = f"{operation} {status} in {duration:.3f}s"

        if details:
            message += f" - {details}"

        if success:
            self.logger.debug(message)
        else:
            self.logger.error(message)

    def _handle_error(self, operation: str, error: Exception) -> StoreError:
        """
        Wrap a low-level failure in a StoreError.

        Args:
            operation: Name of the operation that failed
            error: The original exception

        Returns:
            StoreError with appropriate message
        """
        error_msg = f"{operation} failed for store '{self.store_id}': {error}"
        self.logger.error(error_msg, exc_info=True)
        self._healthy = False
        return StoreError(error_msg)
