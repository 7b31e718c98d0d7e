"""
Request-level operations of the draw reconciliation engine.

DrawEngineService turns loosely-typed request payloads into calls on the
matching, reconciliation and funding components, and turns their results
back into JSON-ready dictionaries. Failures are raised as DrawEngineError
subclasses whose to_dict() is the error payload returned to callers.
"""

import hmac
from typing import Any, Dict, Iterable, List, Optional, Union

from draw_reconciliation.audit import AuditLog
from draw_reconciliation.clock import Clock, SystemClock
from draw_reconciliation.config import EngineSettings, SettingsValidator
from draw_reconciliation.exceptions import (
    AuthorizationError, BatchNotFoundError, ConfigurationError, ValidationError
)
from draw_reconciliation.funding import BudgetSpendRecorder, WireBatchFunder
from draw_reconciliation.funding.wire_batch import DEFAULT_SUBMIT_ACTOR
from draw_reconciliation.matching import CategoryMatcher
from draw_reconciliation.models import BudgetLine, EntityType
from draw_reconciliation.reconciliation import InvoiceFlagReconciler, StuckProcessReconciler
from draw_reconciliation.store import BaseRecordStore, InMemoryRecordStore, RestRecordStore

import logging
logger = logging.getLogger(__name__)

FUND_ACTION = 'fund'
SUBMIT_ACTION = 'submit_for_wire'
CANCEL_ACTION = 'cancel'


def build_store(settings: EngineSettings, clock: Optional[Clock] = None) -> BaseRecordStore:
    """
    Create the record store named by the settings.

    Raises:
        ConfigurationError: Unknown backend or incomplete REST settings
    """
    if settings.store_backend == 'memory':
        return InMemoryRecordStore(clock=clock)
    if settings.store_backend == 'rest':
        if not settings.rest_url or not settings.rest_service_key:
            raise ConfigurationError("rest store requires rest_url and rest_service_key")
        return RestRecordStore(settings.rest_url, settings.rest_service_key,
                               timeout=settings.rest_timeout)
    raise ConfigurationError(f"Unknown store backend: {settings.store_backend}")


def verify_webhook_secret(expected: Optional[str], provided: Optional[str]):
    """
    Check a caller-provided webhook secret.

    Fails closed: when no secret is configured every call is rejected.

    Raises:
        AuthorizationError: Secret missing, unset on the server, or wrong
    """
    if not expected:
        logger.error("Webhook secret is not configured; rejecting call")
        raise AuthorizationError("Unauthorized")
    if not provided or not hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8')):
        logger.warning("Rejected call with missing or invalid webhook secret")
        raise AuthorizationError("Unauthorized")


def _optional_str(request: Dict[str, Any], key: str) -> Optional[str]:
    value = request.get(key)
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", reason="invalid_field")
    return value


class DrawEngineService:
    """
    Facade over the engine components, sharing one store, clock and audit log.
    """

    def __init__(self, store: BaseRecordStore, settings: Optional[EngineSettings] = None,
                 clock: Optional[Clock] = None):
        """
        Initialize the service.

        Args:
            store: Record store for every component
            settings: Engine settings (defaults if None)
            clock: Time source (wall clock if None)
        """
        self.logger = logging.getLogger(f"{__name__}.DrawEngineService")
        self.store = store
        self.settings = settings or EngineSettings()
        self.clock = clock or SystemClock()

        self.audit = AuditLog(store)
        self.matcher = CategoryMatcher(default_threshold=self.settings.match_threshold)
        self.flag_reconciler = InvoiceFlagReconciler(store)
        self.stuck_reconciler = StuckProcessReconciler(
            store, clock=self.clock, default_older_than_minutes=self.settings.stuck_after_minutes)
        spend_recorder = BudgetSpendRecorder(store, self.audit) if self.settings.record_budget_spend else None
        self.funder = WireBatchFunder(store, clock=self.clock, audit=self.audit,
                                      spend_recorder=spend_recorder)

    @classmethod
    def from_settings(cls, settings: EngineSettings, clock: Optional[Clock] = None) -> 'DrawEngineService':
        """Build a service and its store from settings, refusing invalid settings."""
        validation = SettingsValidator().validate(settings)
        for warning in validation.warnings:
            logger.warning(f"Settings: {warning}")
        if not validation.is_valid:
            raise ConfigurationError(f"Invalid settings: {'; '.join(validation.errors)}",
                                     errors=validation.errors)
        return cls(build_store(settings, clock), settings, clock)

    def reconcile_stuck_invoices(self, request: Optional[Dict[str, Any]],
                                 provided_secret: Optional[str]) -> Dict[str, Any]:
        """
        Error out invoices stuck in processing.

        Args:
            request: {drawRequestId?, olderThanMinutes?, autoRetryOnce?}
            provided_secret: Webhook secret supplied by the caller

        Returns:
            {success, drawRequestId, cutoff, scanned, markedError, skipped, markedIds}

        Raises:
            AuthorizationError: Secret check failed
            ValidationError: Malformed request fields
        """
        verify_webhook_secret(self.settings.webhook_secret, provided_secret)
        request = request or {}

        draw_request_id = _optional_str(request, 'drawRequestId')
        older_than = request.get('olderThanMinutes')
        if older_than is not None and (isinstance(older_than, bool) or not isinstance(older_than, (int, float))):
            raise ValidationError("olderThanMinutes must be a number", reason="invalid_field")
        auto_retry_once = request.get('autoRetryOnce') is True

        report = self.stuck_reconciler.reconcile(draw_request_id, older_than, auto_retry_once)
        return report.to_dict()

    def fund_wire_batch(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a wire batch from staged draws.

        `action` selects the workflow: 'fund' (default) creates a funded
        batch dated `funded_at`; 'submit_for_wire' creates a pending batch
        to be confirmed later.

        Returns:
            FundingResult payload {success, batch_id, funded_at, draw_count, total_amount, ...}

        Raises:
            ValidationError, PreconditionError: As raised by WireBatchFunder
        """
        action = request.get('action') or FUND_ACTION
        builder_id = request.get('builder_id')
        draw_ids = request.get('draw_ids')
        if not builder_id:
            raise ValidationError("builder_id is required")
        if not isinstance(draw_ids, list):
            raise ValidationError("draw_ids array is required")

        if action == SUBMIT_ACTION:
            actor = _optional_str(request, 'submitted_by') or DEFAULT_SUBMIT_ACTOR
            result = self.funder.submit_for_wire(builder_id, draw_ids, actor=actor)
        elif action == FUND_ACTION:
            actor = _optional_str(request, 'funded_by') or self.settings.default_actor
            result = self.funder.fund(
                builder_id, draw_ids, request.get('funded_at'),
                wire_reference=_optional_str(request, 'wire_reference'),
                notes=_optional_str(request, 'notes'),
                actor=actor,
            )
        else:
            raise ValidationError(f"Unknown action: {action}", reason="invalid_action")
        return result.to_dict()

    def update_wire_batch(self, batch_id: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """
        Confirm or cancel a pending batch.

        Args:
            batch_id: Pending batch
            request: {action: 'fund'|'cancel', funded_at?, wire_reference?, notes?, funded_by?}

        Raises:
            ValidationError: Unknown action or malformed fields
            BatchNotFoundError, InvalidBatchStatusError: Batch missing or not pending
        """
        action = request.get('action')
        actor = _optional_str(request, 'funded_by') or self.settings.default_actor
        if action == FUND_ACTION:
            result = self.funder.confirm_funding(
                batch_id,
                funded_at=request.get('funded_at'),
                wire_reference=_optional_str(request, 'wire_reference'),
                notes=_optional_str(request, 'notes'),
                funded_by=actor,
            )
        elif action == CANCEL_ACTION:
            result = self.funder.cancel_batch(batch_id, actor=actor)
        else:
            raise ValidationError(f"Unknown action: {action}", reason="invalid_action")
        return result.to_dict()

    def get_wire_batch(self, batch_id: str) -> Dict[str, Any]:
        """Batch row with its linked draws."""
        batch = self.store.get_wire_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Wire batch not found: {batch_id}")
        data = batch.to_dict()
        data['draws'] = [draw.to_dict() for draw in self.store.list_draw_requests_for_batch(batch_id)]
        return data

    def find_best_budget_match(self, category: str,
                               candidates: Iterable[Union[BudgetLine, Dict[str, Any]]],
                               threshold: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """
        Best budget for a category label among the given candidates.

        Returns:
            {budget, score, matched_on}, or None when nothing reaches the threshold
        """
        budgets = [c if isinstance(c, BudgetLine) else BudgetLine.from_dict(c) for c in candidates or []]
        match = self.matcher.find_best_match(category or '', budgets, threshold)
        return match.to_dict() if match else None

    def match_project_budget(self, category: str, project_id: str,
                             threshold: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Best budget for a category label among a project's budget lines."""
        budgets = self.store.list_budget_lines(project_id)
        return self.find_best_budget_match(category, budgets, threshold)

    def preview_budget_import(self, categories: List[str], project_id: str,
                              threshold: Optional[float] = None) -> Dict[str, Any]:
        """
        Match imported category labels to a project's budget lines without
        writing anything.

        Returns:
            {project_id, matched, unmatched, matches: [{category, match}]}
        """
        if not project_id:
            raise ValidationError("project_id is required")
        labels = [label for label in categories or [] if label and label.strip()]
        if not labels:
            raise ValidationError("categories must contain at least one label")

        results = self.matcher.match_all(labels, self.store.list_budget_lines(project_id), threshold)
        matches = [{'category': label, 'match': match.to_dict() if match else None}
                   for label, match in results.items()]
        return {
            'project_id': project_id,
            'matched': sum(1 for entry in matches if entry['match'] is not None),
            'unmatched': [entry['category'] for entry in matches if entry['match'] is None],
            'matches': matches,
        }

    def reconcile_invoice_flags(self, draw_request_id: str) -> Dict[str, Any]:
        """Recompute NO_INVOICE flags for one draw."""
        if not draw_request_id:
            raise ValidationError("draw_request_id is required")
        return self.flag_reconciler.reconcile(draw_request_id).to_dict()

    def retry_candidates(self, draw_request_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Invoices waiting for their single automatic retry."""
        return [invoice.to_dict() for invoice in self.stuck_reconciler.retry_candidates(draw_request_id)]

    def audit_history(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """Audit events for one entity, newest first."""
        try:
            kind = EntityType(entity_type)
        except ValueError:
            raise ValidationError(f"Unknown entity type: {entity_type}", reason="invalid_field")
        return [event.to_dict() for event in self.audit.history(kind, entity_id)]

    def recent_audit_events(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent audit events across all entities."""
        if limit <= 0:
            raise ValidationError("limit must be positive", reason="invalid_field")
        return [event.to_dict() for event in self.audit.recent(limit)]

    def health(self) -> Dict[str, Any]:
        """Store connectivity and settings validation summary."""
        store_health = self.store.test_connection()
        validation = SettingsValidator().validate(self.settings)
        return {
            'status': 'ok' if store_health.success and validation.is_valid else 'degraded',
            'store': store_health.to_dict(),
            'settings': validation.to_dict(),
        }
