"""
PostgREST-backed record store.

Talks to a PostgREST-compatible HTTP endpoint (such as a Supabase project)
with a service key. Conditional updates are expressed as PATCH requests
filtered on both id and status, so the database applies the status guard
atomically; an empty representation in the response means the guard failed.
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

import requests

from draw_reconciliation.clock import format_timestamp
from draw_reconciliation.exceptions import RecordNotFoundError, StoreError
from draw_reconciliation.flags import InvoiceFlags, LineFlag, serialize_line_flags
from draw_reconciliation.models import (
    AuditEvent, BudgetLine, DrawRequest, DrawRequestLine, DrawStatus, EntityType,
    Invoice, InvoiceStatus, StoreHealthResult, WireBatch, WireBatchStatus
)
from .base_store import BaseRecordStore

import logging
logger = logging.getLogger(__name__)


@dataclass
class RestResponse:
    """Response from a PostgREST request."""
    success: bool
    status_code: int
    data: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None
    error_message: Optional[str] = None
    response_time: float = 0.0


def _json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Decimal):
        return str(value)
    return value


def _in_filter(values: Iterable[str]) -> str:
    quoted = ','.join(f'"{value}"' for value in values)
    return f"in.({quoted})"


class RestRecordStore(BaseRecordStore):
    """
    Record store over the PostgREST HTTP interface.

    Table names follow the original schema: budgets, invoices,
    draw_request_lines, draw_requests, wire_batches, audit_events.
    """

    backend = "rest"

    def __init__(self, base_url: str, service_key: str, timeout: int = 30,
                 session: Optional[requests.Session] = None, store_id: str = "rest"):
        """
        Initialize REST store.

        Args:
            base_url: Project URL; '/rest/v1' is appended
            service_key: Service-role key sent as apikey and bearer token
            timeout: Request timeout in seconds
            session: Optional pre-configured requests session
            store_id: Identifier used in logs
        """
        super().__init__(store_id)
        self.base_url = base_url.rstrip('/')
        self.rest_url = f"{self.base_url}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'apikey': service_key,
            'Authorization': f'Bearer {service_key}',
            'Content-Type': 'application/json',
        })
        self.logger.info(f"REST store initialized for {self.base_url}")

    def _make_request(self, method: str, table: str, params: Optional[Dict[str, str]] = None,
                      payload: Optional[Dict[str, Any]] = None,
                      return_rows: bool = False) -> RestResponse:
        """
        Make an HTTP request against one table.

        Args:
            method: HTTP method
            table: Table name
            params: PostgREST filter/query parameters
            payload: JSON body for inserts and updates
            return_rows: Ask PostgREST to return the written rows

        Returns:
            RestResponse with the decoded body

        Raises:
            StoreError: On transport failures or HTTP errors
        """
        url = f"{self.rest_url}/{table}"
        headers = {'Prefer': 'return=representation'} if return_rows else {}
        start_time = time.time()

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                data=json.dumps(payload) if payload is not None else None,
                headers=headers,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            self._log_operation(f"{method} {table}", time.time() - start_time, False, str(e))
            raise self._handle_error(f"{method} {table}", e)

        duration = time.time() - start_time
        success = response.status_code < 400

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = {'raw_response': response.text}

        self._log_operation(f"{method} {table}", duration, success, f"Status: {response.status_code}")

        if not success:
            self._healthy = False
            raise StoreError(f"{method} {table} failed: HTTP {response.status_code}: {response.text[:200]}")

        self._healthy = True
        return RestResponse(success=True, status_code=response.status_code, data=data,
                            response_time=duration)

    def _select(self, table: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        query = {'select': '*'}
        query.update(params)
        response = self._make_request('GET', table, params=query)
        return response.data or []

    def _patch(self, table: str, params: Dict[str, str], changes: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = {key: _json_value(value) for key, value in changes.items()}
        response = self._make_request('PATCH', table, params=params, payload=payload, return_rows=True)
        return response.data or []

    def _insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self._make_request('POST', table, payload=row, return_rows=True)
        rows = response.data or []
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]

    def _patch_one(self, table: str, record_id: str, changes: Dict[str, Any], kind: str) -> Dict[str, Any]:
        rows = self._patch(table, {'id': f"eq.{record_id}"}, changes)
        if not rows:
            raise RecordNotFoundError(f"{kind} not found: {record_id}")
        return rows[0]

    def test_connection(self) -> StoreHealthResult:
        start_time = time.time()
        try:
            self._make_request('GET', 'wire_batches', params={'select': 'id', 'limit': '1'})
            result = StoreHealthResult(
                success=True,
                store_id=self.store_id,
                backend=self.backend,
                response_time=time.time() - start_time
            )
        except StoreError as e:
            result = StoreHealthResult(
                success=False,
                store_id=self.store_id,
                backend=self.backend,
                response_time=time.time() - start_time,
                error_message=str(e)
            )
        self._last_health_check = result
        self._healthy = result.success
        return result

    # Budgets

    def get_budget_line(self, budget_id: str) -> Optional[BudgetLine]:
        rows = self._select('budgets', {'id': f"eq.{budget_id}"})
        return BudgetLine.from_dict(rows[0]) if rows else None

    def list_budget_lines(self, project_id: str) -> List[BudgetLine]:
        rows = self._select('budgets', {'project_id': f"eq.{project_id}"})
        return [BudgetLine.from_dict(row) for row in rows]

    def update_budget_spent(self, budget_id: str, spent_amount) -> BudgetLine:
        row = self._patch_one('budgets', budget_id, {'spent_amount': Decimal(str(spent_amount))}, "Budget")
        return BudgetLine.from_dict(row)

    # Invoices

    def list_invoices(self, draw_request_id: str) -> List[Invoice]:
        rows = self._select('invoices', {'draw_request_id': f"eq.{draw_request_id}"})
        return [Invoice.from_dict(row) for row in rows]

    def list_pending_invoice_rows(self, created_before: datetime,
                                  draw_request_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {
            'status': f"eq.{InvoiceStatus.PENDING.value}",
            'created_at': f"lt.{format_timestamp(created_before)}",
        }
        if draw_request_id:
            params['draw_request_id'] = f"eq.{draw_request_id}"
        return self._select('invoices', params)

    def update_invoice_flags(self, invoice_id: str, flags: InvoiceFlags) -> Invoice:
        row = self._patch_one('invoices', invoice_id, {'flags': flags.to_json()}, "Invoice")
        return Invoice.from_dict(row)

    # Draw lines

    def list_draw_lines(self, draw_request_id: str) -> List[DrawRequestLine]:
        rows = self._select('draw_request_lines', {'draw_request_id': f"eq.{draw_request_id}"})
        return [DrawRequestLine.from_dict(row) for row in rows]

    def update_draw_line_flags(self, line_id: str, flags: FrozenSet[LineFlag]) -> DrawRequestLine:
        row = self._patch_one('draw_request_lines', line_id,
                              {'flags': serialize_line_flags(flags)}, "Draw line")
        return DrawRequestLine.from_dict(row)

    # Draw requests

    def get_draw_requests(self, draw_ids: Iterable[str]) -> List[DrawRequest]:
        ids = list(dict.fromkeys(draw_ids))
        if not ids:
            return []
        rows = self._select('draw_requests', {'id': _in_filter(ids)})
        return [DrawRequest.from_dict(row) for row in rows]

    def list_draw_requests_for_batch(self, batch_id: str) -> List[DrawRequest]:
        rows = self._select('draw_requests', {'wire_batch_id': f"eq.{batch_id}"})
        return [DrawRequest.from_dict(row) for row in rows]

    def update_draw_request_if_status(self, draw_id: str, expected_status: DrawStatus,
                                      changes: Dict[str, Any]) -> Optional[DrawRequest]:
        rows = self._patch('draw_requests',
                           {'id': f"eq.{draw_id}", 'status': f"eq.{expected_status.value}"},
                           changes)
        return DrawRequest.from_dict(rows[0]) if rows else None

    # Wire batches

    def create_wire_batch(self, batch: WireBatch) -> WireBatch:
        return WireBatch.from_dict(self._insert('wire_batches', batch.to_dict()))

    def get_wire_batch(self, batch_id: str) -> Optional[WireBatch]:
        rows = self._select('wire_batches', {'id': f"eq.{batch_id}"})
        return WireBatch.from_dict(rows[0]) if rows else None

    def update_wire_batch_if_status(self, batch_id: str, expected_status: WireBatchStatus,
                                    changes: Dict[str, Any]) -> Optional[WireBatch]:
        rows = self._patch('wire_batches',
                           {'id': f"eq.{batch_id}", 'status': f"eq.{expected_status.value}"},
                           changes)
        return WireBatch.from_dict(rows[0]) if rows else None

    # Audit log

    def append_audit_event(self, event: AuditEvent) -> AuditEvent:
        return AuditEvent.from_dict(self._insert('audit_events', event.to_dict()))

    def list_audit_events(self, entity_type: Optional[EntityType] = None,
                          entity_id: Optional[str] = None,
                          action: Optional[str] = None,
                          limit: Optional[int] = None) -> List[AuditEvent]:
        params = {'order': 'created_at.desc'}
        if entity_type is not None:
            params['entity_type'] = f"eq.{entity_type.value}"
        if entity_id is not None:
            params['entity_id'] = f"eq.{entity_id}"
        if action is not None:
            params['action'] = f"eq.{action}"
        if limit is not None:
            params['limit'] = str(limit)
        return [AuditEvent.from_dict(row) for row in self._select('audit_events', params)]
