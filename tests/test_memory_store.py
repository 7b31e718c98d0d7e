"""
Unit tests for the in-memory record store.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from draw_reconciliation.clock import FixedClock
from draw_reconciliation.exceptions import FlagParseError, RecordNotFoundError, StoreError
from draw_reconciliation.models import (
    AuditEvent, DrawRequest, DrawStatus, EntityType, Invoice, InvoiceStatus, WireBatch, WireBatchStatus
)
from draw_reconciliation.store import InMemoryRecordStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestInMemoryRecordStore:
    """Test cases for InMemoryRecordStore."""

    def setup_method(self):
        self.clock = FixedClock(NOW)
        self.store = InMemoryRecordStore(clock=self.clock)

    def test_connection_check(self):
        result = self.store.test_connection()

        assert result.success is True
        assert result.backend == "memory"
        assert self.store.is_healthy() is True
        assert self.store.get_last_health_check() is result

    def test_conditional_update_applies_on_matching_status(self):
        self.store.add_draw_request(DrawRequest(id="d-1", status=DrawStatus.STAGED))

        updated = self.store.update_draw_request_if_status(
            "d-1", DrawStatus.STAGED, {'status': DrawStatus.FUNDED, 'wire_batch_id': 'wb-1'})

        assert updated.status is DrawStatus.FUNDED
        assert updated.wire_batch_id == 'wb-1'
        assert self.store.draw_requests["d-1"]["status"] == "funded"

    def test_conditional_update_refuses_on_status_mismatch(self):
        self.store.add_draw_request(DrawRequest(id="d-1", status=DrawStatus.REVIEW))

        assert self.store.update_draw_request_if_status(
            "d-1", DrawStatus.STAGED, {'status': DrawStatus.FUNDED}) is None
        assert self.store.draw_requests["d-1"]["status"] == "review"
        assert self.store.write_count == 0

    def test_conditional_update_on_missing_draw(self):
        assert self.store.update_draw_request_if_status("nope", DrawStatus.STAGED, {}) is None

    def test_get_draw_requests_skips_unknown_and_duplicates(self):
        self.store.add_draw_request(DrawRequest(id="d-1", status=DrawStatus.STAGED))

        draws = self.store.get_draw_requests(["d-1", "d-1", "missing"])

        assert [draw.id for draw in draws] == ["d-1"]

    def test_pending_invoice_cutoff_is_strict(self):
        for invoice_id, minutes in (("i-old", 11), ("i-edge", 10), ("i-new", 5)):
            self.store.add_invoice(Invoice(id=invoice_id, draw_request_id="d-1",
                                           status=InvoiceStatus.PENDING,
                                           created_at=NOW - timedelta(minutes=minutes)))

        invoices = self.store.list_pending_invoices(NOW - timedelta(minutes=10))

        assert [invoice.id for invoice in invoices] == ["i-old"]

    def test_malformed_flags_raise_on_read(self):
        self.store.invoices["i-1"] = {
            'id': 'i-1', 'draw_request_id': 'd-1', 'status': 'pending',
            'created_at': '2024-03-01T11:00:00+00:00', 'flags': '{"status_detail": "lost"}',
        }

        with pytest.raises(FlagParseError):
            self.store.list_invoices("d-1")

    def test_update_missing_row_raises(self):
        with pytest.raises(RecordNotFoundError):
            self.store.update_budget_spent("b-missing", Decimal("1"))

    def test_wire_batch_lifecycle(self):
        batch = self.store.create_wire_batch(WireBatch(builder_id="builder-1", total_amount=Decimal("50"),
                                                       status=WireBatchStatus.PENDING))

        assert batch.id is not None
        assert self.store.get_wire_batch(batch.id).status is WireBatchStatus.PENDING
        assert self.store.update_wire_batch_if_status(
            batch.id, WireBatchStatus.FUNDED, {'status': WireBatchStatus.CANCELLED}) is None
        updated = self.store.update_wire_batch_if_status(
            batch.id, WireBatchStatus.PENDING, {'status': WireBatchStatus.FUNDED, 'funded_at': NOW})
        assert updated.funded_at == NOW
        assert self.store.get_wire_batch("unknown") is None

    def test_audit_events_newest_first_with_filters(self):
        for action in ("created", "funded"):
            self.store.append_audit_event(AuditEvent(EntityType.WIRE_BATCH, "wb-1", action))
            self.clock.advance(minutes=1)
        self.store.append_audit_event(AuditEvent(EntityType.DRAW_REQUEST, "d-1", "funded"))

        assert [e.action for e in self.store.list_audit_events(EntityType.WIRE_BATCH, "wb-1")] == \
            ["funded", "created"]
        assert len(self.store.list_audit_events(action="funded")) == 2
        assert len(self.store.list_audit_events(limit=1)) == 1

        latest = self.store.list_audit_events()[0]
        assert latest.entity_id == "d-1"
        assert latest.created_at == NOW + timedelta(minutes=2)
        assert latest.id is not None

    def test_injected_failure_targets_one_record(self):
        self.store.add_draw_request(DrawRequest(id="d-1", status=DrawStatus.STAGED))
        self.store.add_draw_request(DrawRequest(id="d-2", status=DrawStatus.STAGED))
        self.store.inject_failure('update_draw_request_if_status', 'd-1')

        with pytest.raises(StoreError):
            self.store.update_draw_request_if_status("d-1", DrawStatus.STAGED, {'status': DrawStatus.FUNDED})
        assert self.store.update_draw_request_if_status(
            "d-2", DrawStatus.STAGED, {'status': DrawStatus.FUNDED}) is not None
        assert self.store.is_healthy() is False
