"""
NO_INVOICE flag reconciliation for draw lines.

Runs after invoices are uploaded or removed. A line with a requested amount
and no linked invoice gets NO_INVOICE; a line that has since been matched
loses it. Draws with no invoices at all are left alone.
"""

from draw_reconciliation.exceptions import StoreError
from draw_reconciliation.flags import LineFlag
from draw_reconciliation.models import FlagReconciliationReport
from draw_reconciliation.store.base_store import BaseRecordStore

import logging
logger = logging.getLogger(__name__)


class InvoiceFlagReconciler:
    """Keeps each draw line's NO_INVOICE flag in step with its invoice linkage."""

    def __init__(self, store: BaseRecordStore):
        self.store = store
        self.logger = logging.getLogger(f"{__name__}.InvoiceFlagReconciler")

    def reconcile(self, draw_request_id: str) -> FlagReconciliationReport:
        """
        Add or remove NO_INVOICE on every line of a draw.

        Only lines whose flag state actually changes are written. A line whose
        write fails is recorded in the report and picked up again on the next
        run.

        Args:
            draw_request_id: Draw to reconcile

        Returns:
            FlagReconciliationReport
        """
        report = FlagReconciliationReport(draw_request_id=draw_request_id)

        lines = self.store.list_draw_lines(draw_request_id)
        invoices = self.store.list_invoices(draw_request_id)

        if not invoices:
            report.skipped_no_invoices = True
            self.logger.debug(f"Draw {draw_request_id} has no invoices; skipping NO_INVOICE reconciliation")
            return report

        for line in lines:
            report.lines_checked += 1
            needs_invoice = line.needs_invoice
            has_flag = LineFlag.NO_INVOICE in line.flags

            if needs_invoice and not has_flag:
                new_flags = line.flags | {LineFlag.NO_INVOICE}
                changed = report.flagged_ids
            elif not needs_invoice and has_flag:
                new_flags = line.flags - {LineFlag.NO_INVOICE}
                changed = report.cleared_ids
            else:
                continue

            try:
                self.store.update_draw_line_flags(line.id, new_flags)
            except StoreError as e:
                self.logger.error(f"Failed to update NO_INVOICE flag on line {line.id}: {e}")
                report.failed_ids.append(line.id)
                continue
            changed.append(line.id)

        self.logger.info(
            f"Reconciled NO_INVOICE flags for draw {draw_request_id}: "
            f"{len(report.flagged_ids)} flagged, {len(report.cleared_ids)} cleared, "
            f"{len(report.failed_ids)} failed of {report.lines_checked} lines"
        )
        return report
