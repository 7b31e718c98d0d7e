"""
Reconciliation of invoices stuck in the "processing" sub-state.

Invoice processing is handed to an external worker that reports back through
a callback. When that callback never arrives the invoice would sit in
processing forever; this reconciler moves such invoices to an error state
with an explanation so a person or a retry trigger can act on them.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from draw_reconciliation.clock import Clock, SystemClock
from draw_reconciliation.exceptions import StoreError, ValidationError
from draw_reconciliation.flags import StatusDetail
from draw_reconciliation.models import Invoice, StuckInvoiceReport
from draw_reconciliation.store.base_store import BaseRecordStore

import logging
logger = logging.getLogger(__name__)

DEFAULT_OLDER_THAN_MINUTES = 10


class StuckProcessReconciler:
    """
    Marks long-running processing invoices as errored.

    State change per invoice:
        pending(status_detail=processing) -> pending(status_detail=error, reconciled=True)

    The overall invoice status is left for the normal completion path; the
    reconciled flag and the error sub-state keep later passes from counting
    the same invoice again.
    """

    def __init__(self, store: BaseRecordStore, clock: Optional[Clock] = None,
                 default_older_than_minutes: float = DEFAULT_OLDER_THAN_MINUTES):
        """
        Initialize stuck-process reconciler.

        Args:
            store: Record store holding invoices
            clock: Time source (wall clock if None)
            default_older_than_minutes: Age an invoice must exceed to count as stuck
        """
        self.store = store
        self.clock = clock or SystemClock()
        self.default_older_than_minutes = default_older_than_minutes
        self.logger = logging.getLogger(f"{__name__}.StuckProcessReconciler")

    def reconcile(self, draw_request_id: Optional[str] = None,
                  older_than_minutes: Optional[float] = None,
                  auto_retry_once: bool = False) -> StuckInvoiceReport:
        """
        Scan pending invoices older than the cutoff and error out stuck ones.

        Args:
            draw_request_id: Restrict the scan to one draw
            older_than_minutes: Minimum age in minutes (uses default if None)
            auto_retry_once: Mark errored invoices for a single external retry

        Returns:
            StuckInvoiceReport with counts and the ids that were marked

        Raises:
            ValidationError: If older_than_minutes is negative
        """
        if older_than_minutes is None:
            older_than_minutes = self.default_older_than_minutes
        if older_than_minutes < 0:
            raise ValidationError("olderThanMinutes must not be negative", reason="invalid_field")

        now = self.clock.now()
        cutoff = now - timedelta(minutes=older_than_minutes)
        rows = self.store.list_pending_invoice_rows(cutoff, draw_request_id)

        report = StuckInvoiceReport(cutoff=cutoff, draw_request_id=draw_request_id,
                                    scanned=len(rows))

        for row in rows:
            invoice = self._parse_row(row)
            if invoice is None:
                report.skipped += 1
                report.unreadable_ids.append(str(row.get('id')))
                continue
            if not invoice.flags.is_processing:
                report.skipped += 1
                continue

            changes = {
                'error': f"Timed out after {older_than_minutes:g} minutes waiting for processing callback",
                'completed_at': now,
                'reconciled': True,
            }
            if auto_retry_once and not invoice.flags.auto_retry_attempted:
                changes['auto_retry_attempted'] = True
            next_flags = invoice.flags.transition(StatusDetail.ERROR, **changes)

            try:
                self.store.update_invoice_flags(invoice.id, next_flags)
            except StoreError as e:
                self.logger.error(f"Failed to mark stuck invoice {invoice.id} as error: {e}")
                report.failed_ids.append(invoice.id)
                continue

            report.marked_error += 1
            report.marked_ids.append(invoice.id)
            self.logger.warning(f"Invoice {invoice.id} stuck in processing since "
                                f"{invoice.created_at.isoformat()}; marked as error")

        self.logger.info(
            f"Stuck invoice reconciliation (cutoff {cutoff.isoformat()}): scanned {report.scanned}, "
            f"marked {report.marked_error}, skipped {report.skipped} "
            f"({len(report.unreadable_ids)} unreadable), failed {len(report.failed_ids)}"
        )
        return report

    def retry_candidates(self, draw_request_id: Optional[str] = None) -> List[Invoice]:
        """
        Invoices this reconciler errored out and flagged for one automatic retry.

        The external retry trigger reads this list; the reconciler never
        re-invokes processing itself. Unreadable rows are left out.
        """
        rows = self.store.list_pending_invoice_rows(self.clock.now(), draw_request_id)
        invoices = [invoice for invoice in map(self._parse_row, rows) if invoice is not None]
        return [
            invoice for invoice in invoices
            if invoice.flags.status_detail is StatusDetail.ERROR
            and invoice.flags.reconciled
            and invoice.flags.auto_retry_attempted
        ]

    def _parse_row(self, row: Dict[str, Any]) -> Optional[Invoice]:
        try:
            return Invoice.from_dict(row)
        except ValidationError as e:
            self.logger.warning(f"Skipping unreadable invoice {row.get('id')}: {e}")
            return None
