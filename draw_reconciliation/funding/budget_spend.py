"""
Budget spend recording for funded draws.

When a draw is funded, each of its lines adds its approved (or requested)
amount to the spent total of the budget it draws against. Each line is
recorded at most once, keyed on a spend_recorded audit event for that line.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from draw_reconciliation.audit import AuditLog
from draw_reconciliation.exceptions import DrawEngineError
from draw_reconciliation.models import EntityType
from draw_reconciliation.store.base_store import BaseRecordStore

import logging
logger = logging.getLogger(__name__)

SPEND_RECORDED_ACTION = "spend_recorded"


@dataclass
class BudgetSpendReport:
    """Lines recorded, skipped and failed for one draw."""
    draw_request_id: str
    updated_line_ids: List[str] = field(default_factory=list)
    skipped_line_ids: List[str] = field(default_factory=list)
    failed_line_ids: List[str] = field(default_factory=list)


class BudgetSpendRecorder:
    """Adds funded line amounts to budget spent totals, once per line."""

    def __init__(self, store: BaseRecordStore, audit: Optional[AuditLog] = None):
        self.store = store
        self.audit = audit or AuditLog(store)
        self.logger = logging.getLogger(f"{__name__}.BudgetSpendRecorder")

    def record_for_draw(self, draw_request_id: str, actor: str) -> BudgetSpendReport:
        """
        Record spend for every eligible line of a funded draw.

        Failures are logged and reported, never raised; funding must not be
        blocked by bookkeeping.

        Args:
            draw_request_id: Draw that was funded
            actor: Who funded it, for the audit trail

        Returns:
            BudgetSpendReport
        """
        report = BudgetSpendReport(draw_request_id=draw_request_id)

        try:
            lines = self.store.list_draw_lines(draw_request_id)
        except DrawEngineError as e:
            self.logger.error(f"Could not load lines for draw {draw_request_id}: {e}")
            return report

        for line in lines:
            amount = line.amount_approved if line.amount_approved is not None else line.amount_requested
            if not line.budget_id or amount <= 0:
                report.skipped_line_ids.append(line.id)
                continue

            try:
                if self.audit.has_event(EntityType.BUDGET, line.budget_id, SPEND_RECORDED_ACTION,
                                        draw_line_id=line.id):
                    self.logger.debug(f"Spend for line {line.id} already recorded")
                    report.skipped_line_ids.append(line.id)
                    continue

                budget = self.store.get_budget_line(line.budget_id)
                if budget is None:
                    self.logger.warning(f"Budget {line.budget_id} for line {line.id} not found")
                    report.failed_line_ids.append(line.id)
                    continue

                new_spent = budget.spent_amount + amount
                self.store.update_budget_spent(budget.id, new_spent)
                self.audit.record(
                    EntityType.BUDGET, budget.id, SPEND_RECORDED_ACTION, actor,
                    old_data={
                        'spent_amount': float(budget.spent_amount),
                        'remaining_amount': float(budget.remaining_amount),
                    },
                    new_data={
                        'spent_amount': float(new_spent),
                        'remaining_amount': float(budget.current_amount - new_spent),
                        'draw_request_id': draw_request_id,
                        'draw_line_id': line.id,
                        'amount': float(amount),
                    },
                )
            except DrawEngineError as e:
                self.logger.error(f"Failed to record spend for line {line.id} on budget {line.budget_id}: {e}")
                report.failed_line_ids.append(line.id)
                continue

            report.updated_line_ids.append(line.id)

        self.logger.info(
            f"Budget spend for draw {draw_request_id}: {len(report.updated_line_ids)} recorded, "
            f"{len(report.skipped_line_ids)} skipped, {len(report.failed_line_ids)} failed"
        )
        return report
