"""
In-memory record store.

Keeps rows in their persisted dictionary shape so every read goes through
the same from_dict validation a real backend would. Used for local runs and
tests; failures can be injected per operation and record id.
"""

import time
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from draw_reconciliation.clock import Clock, SystemClock, format_timestamp, parse_timestamp
from draw_reconciliation.exceptions import RecordNotFoundError
from draw_reconciliation.flags import InvoiceFlags, LineFlag, serialize_line_flags
from draw_reconciliation.models import (
    AuditEvent, BudgetLine, DrawRequest, DrawRequestLine, DrawStatus, EntityType,
    Invoice, InvoiceStatus, StoreHealthResult, WireBatch, WireBatchStatus
)
from .base_store import BaseRecordStore


def _to_row_value(value: Any) -> Any:
    """Convert a typed value to the shape stored in a row."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


class InMemoryRecordStore(BaseRecordStore):
    """Dictionary-backed record store."""

    backend = "memory"

    def __init__(self, store_id: str = "memory", clock: Optional[Clock] = None):
        super().__init__(store_id)
        self.clock = clock or SystemClock()
        self.budgets: Dict[str, Dict[str, Any]] = {}
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.draw_lines: Dict[str, Dict[str, Any]] = {}
        self.draw_requests: Dict[str, Dict[str, Any]] = {}
        self.wire_batches: Dict[str, Dict[str, Any]] = {}
        self.audit_events: List[Dict[str, Any]] = []
        self.write_count = 0
        self._failures: Set[Tuple[str, Optional[str]]] = set()

    # Test and seeding helpers

    def inject_failure(self, operation: str, record_id: Optional[str] = None):
        """
        Make an operation raise StoreError.

        Args:
            operation: Method name, e.g. 'update_draw_request_if_status'
            record_id: Only fail for this id; None fails every call
        """
        self._failures.add((operation, record_id))

    def clear_failures(self):
        self._failures.clear()

    def add_budget_line(self, budget: BudgetLine) -> BudgetLine:
        self.budgets[budget.id] = budget.to_dict()
        return budget

    def add_invoice(self, invoice: Invoice) -> Invoice:
        self.invoices[invoice.id] = invoice.to_dict()
        return invoice

    def add_draw_line(self, line: DrawRequestLine) -> DrawRequestLine:
        self.draw_lines[line.id] = line.to_dict()
        return line

    def add_draw_request(self, draw: DrawRequest) -> DrawRequest:
        self.draw_requests[draw.id] = draw.to_dict()
        return draw

    def _check_failure(self, operation: str, record_id: Optional[str] = None):
        if (operation, None) in self._failures or (operation, record_id) in self._failures:
            raise self._handle_error(operation, RuntimeError(f"injected failure for {record_id}"))

    def _get_row(self, table: Dict[str, Dict[str, Any]], record_id: str, kind: str) -> Dict[str, Any]:
        row = table.get(record_id)
        if row is None:
            raise RecordNotFoundError(f"{kind} not found: {record_id}")
        return row

    def _write(self, row: Dict[str, Any], changes: Dict[str, Any]):
        row.update({key: _to_row_value(value) for key, value in changes.items()})
        self.write_count += 1

    def test_connection(self) -> StoreHealthResult:
        start_time = time.time()
        result = StoreHealthResult(
            success=True,
            store_id=self.store_id,
            backend=self.backend,
            response_time=time.time() - start_time
        )
        self._last_health_check = result
        self._healthy = True
        return result

    # Budgets

    def get_budget_line(self, budget_id: str) -> Optional[BudgetLine]:
        self._check_failure('get_budget_line', budget_id)
        row = self.budgets.get(budget_id)
        return BudgetLine.from_dict(row) if row else None

    def list_budget_lines(self, project_id: str) -> List[BudgetLine]:
        return [BudgetLine.from_dict(row) for row in self.budgets.values()
                if row.get('project_id') == project_id]

    def update_budget_spent(self, budget_id: str, spent_amount) -> BudgetLine:
        self._check_failure('update_budget_spent', budget_id)
        row = self._get_row(self.budgets, budget_id, "Budget")
        self._write(row, {'spent_amount': Decimal(str(spent_amount))})
        return BudgetLine.from_dict(row)

    # Invoices

    def list_invoices(self, draw_request_id: str) -> List[Invoice]:
        self._check_failure('list_invoices', draw_request_id)
        return [Invoice.from_dict(row) for row in self.invoices.values()
                if row['draw_request_id'] == draw_request_id]

    def list_pending_invoice_rows(self, created_before: datetime,
                                  draw_request_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self._check_failure('list_pending_invoice_rows', draw_request_id)
        rows = []
        for row in self.invoices.values():
            if row['status'] != InvoiceStatus.PENDING.value:
                continue
            if draw_request_id and row['draw_request_id'] != draw_request_id:
                continue
            if parse_timestamp(row['created_at'], 'created_at') < created_before:
                rows.append(dict(row))
        return rows

    def update_invoice_flags(self, invoice_id: str, flags: InvoiceFlags) -> Invoice:
        self._check_failure('update_invoice_flags', invoice_id)
        row = self._get_row(self.invoices, invoice_id, "Invoice")
        self._write(row, {'flags': flags.to_json()})
        return Invoice.from_dict(row)

    # Draw lines

    def list_draw_lines(self, draw_request_id: str) -> List[DrawRequestLine]:
        self._check_failure('list_draw_lines', draw_request_id)
        return [DrawRequestLine.from_dict(row) for row in self.draw_lines.values()
                if row['draw_request_id'] == draw_request_id]

    def update_draw_line_flags(self, line_id: str, flags: FrozenSet[LineFlag]) -> DrawRequestLine:
        self._check_failure('update_draw_line_flags', line_id)
        row = self._get_row(self.draw_lines, line_id, "Draw line")
        self._write(row, {'flags': serialize_line_flags(flags)})
        return DrawRequestLine.from_dict(row)

    # Draw requests

    def get_draw_requests(self, draw_ids: Iterable[str]) -> List[DrawRequest]:
        self._check_failure('get_draw_requests')
        return [DrawRequest.from_dict(self.draw_requests[draw_id])
                for draw_id in dict.fromkeys(draw_ids) if draw_id in self.draw_requests]

    def list_draw_requests_for_batch(self, batch_id: str) -> List[DrawRequest]:
        return [DrawRequest.from_dict(row) for row in self.draw_requests.values()
                if row.get('wire_batch_id') == batch_id]

    def update_draw_request_if_status(self, draw_id: str, expected_status: DrawStatus,
                                      changes: Dict[str, Any]) -> Optional[DrawRequest]:
        self._check_failure('update_draw_request_if_status', draw_id)
        row = self.draw_requests.get(draw_id)
        if row is None or row['status'] != expected_status.value:
            return None
        self._write(row, changes)
        return DrawRequest.from_dict(row)

    # Wire batches

    def create_wire_batch(self, batch: WireBatch) -> WireBatch:
        self._check_failure('create_wire_batch')
        row = batch.to_dict()
        row['id'] = str(uuid.uuid4())
        self.wire_batches[row['id']] = row
        self.write_count += 1
        return WireBatch.from_dict(row)

    def get_wire_batch(self, batch_id: str) -> Optional[WireBatch]:
        row = self.wire_batches.get(batch_id)
        return WireBatch.from_dict(row) if row else None

    def update_wire_batch_if_status(self, batch_id: str, expected_status: WireBatchStatus,
                                    changes: Dict[str, Any]) -> Optional[WireBatch]:
        self._check_failure('update_wire_batch_if_status', batch_id)
        row = self.wire_batches.get(batch_id)
        if row is None or row['status'] != expected_status.value:
            return None
        self._write(row, changes)
        return WireBatch.from_dict(row)

    # Audit log

    def append_audit_event(self, event: AuditEvent) -> AuditEvent:
        self._check_failure('append_audit_event', event.entity_id)
        row = event.to_dict()
        row['id'] = str(uuid.uuid4())
        row['created_at'] = format_timestamp(self.clock.now())
        self.audit_events.append(row)
        return AuditEvent.from_dict(row)

    def list_audit_events(self, entity_type: Optional[EntityType] = None,
                          entity_id: Optional[str] = None,
                          action: Optional[str] = None,
                          limit: Optional[int] = None) -> List[AuditEvent]:
        events = []
        # Appended in order, so reversed is newest first
        for row in reversed(self.audit_events):
            if entity_type is not None and row['entity_type'] != entity_type.value:
                continue
            if entity_id is not None and row['entity_id'] != entity_id:
                continue
            if action is not None and row['action'] != action:
                continue
            events.append(AuditEvent.from_dict(row))
            if limit is not None and len(events) >= limit:
                break
        return events
