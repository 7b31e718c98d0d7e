"""
Unit tests for the PostgREST record store with mock HTTP responses.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from draw_reconciliation.exceptions import RecordNotFoundError, StoreError
from draw_reconciliation.flags import InvoiceFlags, LineFlag, StatusDetail
from draw_reconciliation.models import AuditEvent, DrawStatus, EntityType, WireBatch, WireBatchStatus
from draw_reconciliation.store import RestRecordStore


def mock_response(status_code=200, data=None):
    response = Mock()
    response.status_code = status_code
    response.content = json.dumps(data).encode() if data is not None else b''
    response.json.return_value = data
    response.text = json.dumps(data) if data is not None else ''
    return response


class TestRestRecordStore:
    """Test cases for RestRecordStore."""

    def setup_method(self):
        self.session = Mock()
        self.session.headers = {}
        self.store = RestRecordStore("https://project.example.co/", "service-key",
                                     timeout=15, session=self.session)

    def last_call(self):
        return self.session.request.call_args.kwargs

    def test_session_headers(self):
        assert self.session.headers['apikey'] == 'service-key'
        assert self.session.headers['Authorization'] == 'Bearer service-key'
        assert self.store.rest_url == "https://project.example.co/rest/v1"

    def test_select_budget(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'b-1', 'category': 'Framing', 'current_amount': 1000, 'spent_amount': 0}
        ])

        budget = self.store.get_budget_line('b-1')

        call = self.last_call()
        assert call['method'] == 'GET'
        assert call['url'] == "https://project.example.co/rest/v1/budgets"
        assert call['params'] == {'select': '*', 'id': 'eq.b-1'}
        assert call['timeout'] == 15
        assert budget.current_amount == Decimal("1000")

    def test_select_missing_budget(self):
        self.session.request.return_value = mock_response(data=[])

        assert self.store.get_budget_line('b-x') is None

    def test_get_draw_requests_uses_in_filter(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'd-1', 'status': 'staged', 'total_amount': '1000.00'},
        ])

        draws = self.store.get_draw_requests(['d-1', 'd-2', 'd-1'])

        assert self.last_call()['params']['id'] == 'in.("d-1","d-2")'
        assert [draw.id for draw in draws] == ['d-1']

    def test_get_draw_requests_with_no_ids_skips_request(self):
        assert self.store.get_draw_requests([]) == []
        self.session.request.assert_not_called()

    def test_pending_invoices_filter(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'i-1', 'draw_request_id': 'd-1', 'status': 'pending',
             'created_at': '2024-03-01T11:00:00Z', 'flags': '{"status_detail": "processing"}'},
        ])
        cutoff = datetime(2024, 3, 1, 11, 50, tzinfo=timezone.utc)

        invoices = self.store.list_pending_invoices(cutoff, 'd-1')

        params = self.last_call()['params']
        assert params['status'] == 'eq.pending'
        assert params['created_at'] == 'lt.2024-03-01T11:50:00+00:00'
        assert params['draw_request_id'] == 'eq.d-1'
        assert invoices[0].flags.status_detail is StatusDetail.PROCESSING

    def test_conditional_draw_update(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'd-1', 'status': 'funded', 'wire_batch_id': 'wb-1',
             'funded_at': '2024-03-01T00:00:00+00:00'},
        ])
        funded_at = datetime(2024, 3, 1, tzinfo=timezone.utc)

        draw = self.store.update_draw_request_if_status(
            'd-1', DrawStatus.STAGED,
            {'status': DrawStatus.FUNDED, 'wire_batch_id': 'wb-1', 'funded_at': funded_at})

        call = self.last_call()
        assert call['method'] == 'PATCH'
        assert call['params'] == {'id': 'eq.d-1', 'status': 'eq.staged'}
        assert call['headers'] == {'Prefer': 'return=representation'}
        assert json.loads(call['data']) == {
            'status': 'funded', 'wire_batch_id': 'wb-1', 'funded_at': '2024-03-01T00:00:00+00:00'
        }
        assert draw.status is DrawStatus.FUNDED

    def test_conditional_update_guard_failure_returns_none(self):
        self.session.request.return_value = mock_response(data=[])

        assert self.store.update_draw_request_if_status('d-1', DrawStatus.STAGED,
                                                        {'status': DrawStatus.FUNDED}) is None

    def test_update_line_flags_serializes_array(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'l-1', 'draw_request_id': 'd-1', 'amount_requested': '100', 'flags': '["NO_INVOICE"]'},
        ])

        line = self.store.update_draw_line_flags('l-1', frozenset({LineFlag.NO_INVOICE}))

        assert json.loads(self.last_call()['data']) == {'flags': '["NO_INVOICE"]'}
        assert line.flags == frozenset({LineFlag.NO_INVOICE})

    def test_update_invoice_flags_missing_row(self):
        self.session.request.return_value = mock_response(data=[])

        with pytest.raises(RecordNotFoundError):
            self.store.update_invoice_flags('i-1', InvoiceFlags(status_detail=StatusDetail.ERROR))

    def test_create_wire_batch(self):
        self.session.request.return_value = mock_response(status_code=201, data=[
            {'id': 'wb-1', 'builder_id': 'builder-1', 'total_amount': 3000, 'status': 'pending'},
        ])

        batch = self.store.create_wire_batch(WireBatch(builder_id='builder-1', total_amount=Decimal("3000"),
                                                       status=WireBatchStatus.PENDING))

        call = self.last_call()
        assert call['method'] == 'POST'
        assert call['url'].endswith('/wire_batches')
        assert 'id' not in json.loads(call['data'])
        assert batch.id == 'wb-1'

    def test_insert_without_representation_fails(self):
        self.session.request.return_value = mock_response(status_code=201, data=[])

        with pytest.raises(StoreError):
            self.store.append_audit_event(AuditEvent(EntityType.DRAW_REQUEST, 'd-1', 'funded'))

    def test_audit_listing_order_and_filters(self):
        self.session.request.return_value = mock_response(data=[
            {'id': 'a-1', 'entity_type': 'budget', 'entity_id': 'b-1', 'action': 'spend_recorded',
             'new_data': {'draw_line_id': 'l-1'}, 'created_at': '2024-03-01T00:00:00Z'},
        ])

        events = self.store.list_audit_events(EntityType.BUDGET, 'b-1', 'spend_recorded', limit=5)

        params = self.last_call()['params']
        assert params['order'] == 'created_at.desc'
        assert params['entity_type'] == 'eq.budget'
        assert params['action'] == 'eq.spend_recorded'
        assert params['limit'] == '5'
        assert events[0].new_data == {'draw_line_id': 'l-1'}

    def test_http_error_raises_store_error(self):
        self.session.request.return_value = mock_response(status_code=500, data={'message': 'boom'})

        with pytest.raises(StoreError) as exc_info:
            self.store.list_budget_lines('p-1')

        assert 'HTTP 500' in str(exc_info.value)
        assert self.store.is_healthy() is False

    def test_transport_error_wrapped(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(StoreError):
            self.store.list_invoices('d-1')

    def test_connection_check(self):
        self.session.request.return_value = mock_response(data=[])

        assert self.store.test_connection().success is True

        self.session.request.return_value = mock_response(status_code=401, data={'message': 'bad key'})
        result = self.store.test_connection()
        assert result.success is False
        assert 'HTTP 401' in result.error_message
        assert self.store.get_last_health_check() is result
