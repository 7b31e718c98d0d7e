"""
Unit tests for stuck-processing invoice reconciliation.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from draw_reconciliation.clock import FixedClock, format_timestamp
from draw_reconciliation.exceptions import ValidationError
from draw_reconciliation.flags import InvoiceFlags, StatusDetail
from draw_reconciliation.models import Invoice, InvoiceStatus
from draw_reconciliation.reconciliation import StuckProcessReconciler
from draw_reconciliation.store import InMemoryRecordStore

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestStuckProcessReconciler:
    """Test cases for StuckProcessReconciler."""

    def setup_method(self):
        self.clock = FixedClock(NOW)
        self.store = InMemoryRecordStore(clock=self.clock)
        self.reconciler = StuckProcessReconciler(self.store, clock=self.clock)

    def add_invoice(self, invoice_id, minutes_old, status_detail=StatusDetail.PROCESSING,
                    status=InvoiceStatus.PENDING, draw_id="d-1"):
        self.store.add_invoice(Invoice(
            id=invoice_id, draw_request_id=draw_id, status=status,
            created_at=NOW - timedelta(minutes=minutes_old),
            flags=InvoiceFlags(status_detail=status_detail)))

    def flags_of(self, invoice_id):
        return Invoice.from_dict(self.store.invoices[invoice_id]).flags

    def test_recent_invoice_is_not_selected(self):
        self.add_invoice("i-1", minutes_old=5)

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 0
        assert report.marked_error == 0
        assert self.flags_of("i-1").is_processing

    def test_old_processing_invoice_is_marked_error(self):
        self.add_invoice("i-1", minutes_old=11)

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 1
        assert report.marked_error == 1
        assert report.marked_ids == ["i-1"]

        flags = self.flags_of("i-1")
        assert flags.status_detail is StatusDetail.ERROR
        assert flags.reconciled is True
        assert flags.completed_at == NOW
        assert flags.error == "Timed out after 10 minutes waiting for processing callback"
        assert flags.auto_retry_attempted is None

    def test_default_window_is_ten_minutes(self):
        self.add_invoice("i-1", minutes_old=11)
        self.add_invoice("i-2", minutes_old=9)

        report = self.reconciler.reconcile()

        assert report.marked_ids == ["i-1"]
        assert report.cutoff == NOW - timedelta(minutes=10)

    def test_second_pass_skips_already_marked(self):
        self.add_invoice("i-1", minutes_old=11)

        first = self.reconciler.reconcile(older_than_minutes=10)
        second = self.reconciler.reconcile(older_than_minutes=10)

        assert first.marked_error == 1
        assert second.marked_error == 0
        assert second.skipped == 1

    def test_non_processing_invoices_are_skipped(self):
        self.add_invoice("i-1", minutes_old=30, status_detail=None)
        self.add_invoice("i-2", minutes_old=30, status_detail=StatusDetail.RETRY)

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 2
        assert report.skipped == 2
        assert report.marked_error == 0

    def test_completed_invoices_are_not_scanned(self):
        self.add_invoice("i-1", minutes_old=30, status=InvoiceStatus.COMPLETE)

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 0

    def test_scope_to_one_draw(self):
        self.add_invoice("i-1", minutes_old=30, draw_id="d-1")
        self.add_invoice("i-2", minutes_old=30, draw_id="d-2")

        report = self.reconciler.reconcile(draw_request_id="d-2", older_than_minutes=10)

        assert report.marked_ids == ["i-2"]
        assert report.draw_request_id == "d-2"
        assert self.flags_of("i-1").is_processing

    def test_auto_retry_marker(self):
        self.add_invoice("i-1", minutes_old=30)

        self.reconciler.reconcile(older_than_minutes=10, auto_retry_once=True)

        assert self.flags_of("i-1").auto_retry_attempted is True
        candidates = self.reconciler.retry_candidates()
        assert [invoice.id for invoice in candidates] == ["i-1"]

    def test_retry_candidates_exclude_unflagged(self):
        self.add_invoice("i-1", minutes_old=30)

        self.reconciler.reconcile(older_than_minutes=10)

        assert self.reconciler.retry_candidates() == []

    def test_fractional_minutes_in_message(self):
        self.add_invoice("i-1", minutes_old=3)

        self.reconciler.reconcile(older_than_minutes=2.5)

        assert self.flags_of("i-1").error == "Timed out after 2.5 minutes waiting for processing callback"

    def test_negative_window_rejected(self):
        with pytest.raises(ValidationError):
            self.reconciler.reconcile(older_than_minutes=-1)

    def test_failed_write_is_reported(self):
        self.add_invoice("i-1", minutes_old=30)
        self.add_invoice("i-2", minutes_old=30)
        self.store.inject_failure('update_invoice_flags', 'i-1')

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.failed_ids == ["i-1"]
        assert report.marked_ids == ["i-2"]
        assert self.flags_of("i-1").is_processing

    def add_raw_invoice(self, invoice_id, minutes_old, flags):
        self.store.invoices[invoice_id] = {
            'id': invoice_id, 'draw_request_id': 'd-1', 'status': 'pending',
            'created_at': format_timestamp(NOW - timedelta(minutes=minutes_old)),
            'flags': json.dumps(flags),
        }

    def test_processing_row_with_start_time_is_marked(self):
        self.add_raw_invoice("i-1", minutes_old=30, flags={
            'status_detail': 'processing', 'processing_started_at': '2024-03-01T11:30:00.000Z',
        })

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.marked_ids == ["i-1"]
        flags = self.flags_of("i-1")
        assert flags.status_detail is StatusDetail.ERROR
        assert flags.processing_started_at == datetime(2024, 3, 1, 11, 30, tzinfo=timezone.utc)
        assert json.loads(self.store.invoices["i-1"]['flags'])['processing_started_at'] == \
            '2024-03-01T11:30:00+00:00'

    def test_match_outcome_rows_are_skipped(self):
        self.add_invoice("i-1", minutes_old=30)
        self.add_raw_invoice("i-2", minutes_old=30, flags={
            'status_detail': 'auto_single', 'confidence': 0.91, 'n8n_execution_id': 'exec-7',
            'completed_at': '2024-03-01T11:40:00Z', 'candidates_considered': 1,
        })
        self.add_raw_invoice("i-3", minutes_old=30, flags={
            'status_detail': 'multiple_candidates', 'confidence': 0, 'candidates_considered': 2,
            'top_candidates': [{'category': 'Framing', 'score': 0.62, 'amountVariance': 0.1},
                               {'category': 'Roofing', 'score': 0.58, 'amountVariance': None}],
        })

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 3
        assert report.marked_ids == ["i-1"]
        assert report.skipped == 2
        assert report.unreadable_ids == []
        assert self.flags_of("i-2").status_detail is StatusDetail.AUTO_SINGLE

    def test_unreadable_row_does_not_abort_scan(self):
        self.add_raw_invoice("i-1", minutes_old=30, flags={'status_detail': 'processing'})
        self.add_raw_invoice("i-2", minutes_old=30, flags={'status_detail': 'teleported'})
        self.store.invoices["i-3"] = {
            'id': 'i-3', 'draw_request_id': 'd-1', 'status': 'pending',
            'created_at': format_timestamp(NOW - timedelta(minutes=30)), 'flags': '{not json',
        }

        report = self.reconciler.reconcile(older_than_minutes=10)

        assert report.scanned == 3
        assert report.marked_ids == ["i-1"]
        assert report.skipped == 2
        assert report.unreadable_ids == ["i-2", "i-3"]
        assert self.store.invoices["i-3"]['flags'] == '{not json'

    def test_retry_candidates_ignore_unreadable_rows(self):
        self.add_invoice("i-1", minutes_old=30)
        self.reconciler.reconcile(older_than_minutes=10, auto_retry_once=True)
        self.add_raw_invoice("i-2", minutes_old=30, flags={'mystery': True})

        assert [invoice.id for invoice in self.reconciler.retry_candidates()] == ["i-1"]

    def test_payload_shape(self):
        self.add_invoice("i-1", minutes_old=30)

        data = self.reconciler.reconcile(older_than_minutes=10).to_dict()

        assert data == {
            'success': True,
            'drawRequestId': None,
            'cutoff': '2024-03-01T11:50:00+00:00',
            'scanned': 1,
            'markedError': 1,
            'skipped': 0,
            'markedIds': ['i-1'],
        }
