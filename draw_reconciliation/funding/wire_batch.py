"""
Wire batch funding.

Aggregates staged draws for one builder into a single wire batch and moves
them to funded (directly, or via submit-for-wire followed by a funding
confirmation), writing an audit event for every draw and for the batch.

All preconditions are checked before anything is written, so a rejected
request never leaves a batch behind. Once the batch exists the per-draw
loop is best-effort: a draw that fails to update is logged and reported in
the result instead of rolling the batch back.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from draw_reconciliation.audit import AuditLog
from draw_reconciliation.clock import Clock, SystemClock, format_timestamp, parse_timestamp
from draw_reconciliation.exceptions import (
    BatchNotFoundError, DrawCountMismatchError, DrawEngineError, InvalidBatchStatusError,
    InvalidDrawStatusError, ValidationError
)
from draw_reconciliation.models import (
    DrawRequest, DrawStatus, EntityType, FundingResult, WireBatch, WireBatchStatus
)
from draw_reconciliation.store.base_store import BaseRecordStore
from .budget_spend import BudgetSpendRecorder

import logging
logger = logging.getLogger(__name__)

DEFAULT_FUNDING_ACTOR = "user"
DEFAULT_SUBMIT_ACTOR = "loan_officer"


class WireBatchFunder:
    """
    Creates wire batches and advances their draws.

    Draw transitions use the store's conditional update, so a draw that was
    moved out of the expected status by a concurrent caller is not funded
    twice; it shows up in the result's failed_draw_ids instead.
    """

    def __init__(self, store: BaseRecordStore, clock: Optional[Clock] = None,
                 audit: Optional[AuditLog] = None,
                 spend_recorder: Optional[BudgetSpendRecorder] = None):
        """
        Initialize wire batch funder.

        Args:
            store: Record store for draws, batches and audit events
            clock: Time source (wall clock if None)
            audit: Audit log (one over `store` if None)
            spend_recorder: Optional budget spend recorder run after each funded draw
        """
        self.store = store
        self.clock = clock or SystemClock()
        self.audit = audit or AuditLog(store)
        self.spend_recorder = spend_recorder
        self.logger = logging.getLogger(f"{__name__}.WireBatchFunder")

    def fund(self, builder_id: str, draw_ids: Sequence[str], funded_at: Any,
             wire_reference: Optional[str] = None, notes: Optional[str] = None,
             actor: str = DEFAULT_FUNDING_ACTOR) -> FundingResult:
        """
        Fund staged draws directly into a new funded batch.

        Args:
            builder_id: Builder receiving the wire
            draw_ids: Draws to fund; all must exist and be staged
            funded_at: Funding date (ISO-8601 string or datetime)
            wire_reference: Optional bank wire reference
            notes: Optional free-text notes
            actor: Recorded as the funder in the audit trail

        Returns:
            FundingResult

        Raises:
            ValidationError: Missing builder/draws/date or unparseable date
            DrawCountMismatchError: Some draw ids do not exist
            InvalidDrawStatusError: Some draws are not staged
        """
        self._validate_request(builder_id, draw_ids)
        if funded_at is None or funded_at == "":
            raise ValidationError("funded_at date is required for direct funding")
        funded_at = parse_timestamp(funded_at, 'funded_at')

        draws = self._load_draws(draw_ids, DrawStatus.STAGED, verb="fund")
        total_amount = self._total(draws)

        batch = self.store.create_wire_batch(WireBatch(
            builder_id=builder_id,
            total_amount=total_amount,
            status=WireBatchStatus.FUNDED,
            submitted_at=funded_at,
            funded_at=funded_at,
            funded_by=actor,
            wire_reference=wire_reference or None,
            notes=notes or None,
        ))
        self.logger.info(f"Created funded wire batch {batch.id} for builder {builder_id}: "
                         f"{len(draws)} draws, total {total_amount}")

        result = FundingResult(
            batch_id=batch.id,
            status=WireBatchStatus.FUNDED,
            draw_count=len(draws),
            total_amount=total_amount,
            funded_at=funded_at,
        )

        for draw in draws:
            self._advance_draw(
                result, draw.id, DrawStatus.STAGED, DrawStatus.FUNDED,
                changes={'status': DrawStatus.FUNDED, 'wire_batch_id': batch.id, 'funded_at': funded_at},
                action='funded', actor=actor,
                new_data={
                    'status': DrawStatus.FUNDED.value,
                    'funded_at': format_timestamp(funded_at),
                    'wire_batch_id': batch.id,
                },
            )

        summary = {
            'builder_id': builder_id,
            'draw_count': len(draws),
            'total_amount': float(total_amount),
            'funded_at': format_timestamp(funded_at),
            'wire_reference': wire_reference,
        }
        self._record_batch_event(result, 'created_and_funded', actor, summary)
        return result

    def submit_for_wire(self, builder_id: str, draw_ids: Sequence[str],
                        actor: str = DEFAULT_SUBMIT_ACTOR) -> FundingResult:
        """
        Group staged draws into a pending batch awaiting wire confirmation.

        Draws move staged -> pending_wire and are linked to the batch.

        Raises:
            ValidationError, DrawCountMismatchError, InvalidDrawStatusError:
                as for fund()
        """
        self._validate_request(builder_id, draw_ids)
        draws = self._load_draws(draw_ids, DrawStatus.STAGED, verb="submit")
        total_amount = self._total(draws)
        submitted_at = self.clock.now()

        batch = self.store.create_wire_batch(WireBatch(
            builder_id=builder_id,
            total_amount=total_amount,
            status=WireBatchStatus.PENDING,
            submitted_at=submitted_at,
            submitted_by=actor,
        ))
        self.logger.info(f"Created pending wire batch {batch.id} for builder {builder_id}: "
                         f"{len(draws)} draws, total {total_amount}")

        result = FundingResult(
            batch_id=batch.id,
            status=WireBatchStatus.PENDING,
            draw_count=len(draws),
            total_amount=total_amount,
            submitted_at=submitted_at,
        )

        for draw in draws:
            self._advance_draw(
                result, draw.id, DrawStatus.STAGED, DrawStatus.PENDING_WIRE,
                changes={'status': DrawStatus.PENDING_WIRE, 'wire_batch_id': batch.id},
                action='submitted_for_wire', actor=actor,
                new_data={'status': DrawStatus.PENDING_WIRE.value, 'wire_batch_id': batch.id},
            )

        self._record_batch_event(result, 'created', actor, {
            'builder_id': builder_id,
            'draw_count': len(draws),
            'total_amount': float(total_amount),
            'status': WireBatchStatus.PENDING.value,
        })
        return result

    def confirm_funding(self, batch_id: str, funded_at: Any = None,
                        wire_reference: Optional[str] = None, notes: Optional[str] = None,
                        funded_by: Optional[str] = None) -> FundingResult:
        """
        Record that a pending batch's wire went out.

        The batch moves pending -> funded and each of its pending_wire draws
        moves to funded.

        Args:
            batch_id: Pending batch to fund
            funded_at: Funding date (now if None)
            wire_reference: Optional bank wire reference
            notes: Optional free-text notes
            funded_by: Actor recorded on the batch and audit trail

        Raises:
            BatchNotFoundError: Unknown batch id
            InvalidBatchStatusError: Batch is not pending
            ValidationError: Unparseable funded_at
        """
        funded_at = parse_timestamp(funded_at, 'funded_at') if funded_at else self.clock.now()
        actor = funded_by or DEFAULT_FUNDING_ACTOR

        batch = self._pending_batch(batch_id)
        updated = self.store.update_wire_batch_if_status(batch_id, WireBatchStatus.PENDING, {
            'status': WireBatchStatus.FUNDED,
            'funded_at': funded_at,
            'funded_by': actor,
            'wire_reference': wire_reference or None,
            'notes': notes or None,
        })
        if updated is None:
            raise InvalidBatchStatusError(f"Wire batch {batch_id} is no longer pending")

        draws = self.store.list_draw_requests_for_batch(batch_id)
        result = FundingResult(
            batch_id=batch_id,
            status=WireBatchStatus.FUNDED,
            draw_count=len(draws),
            total_amount=batch.total_amount,
            funded_at=funded_at,
            submitted_at=batch.submitted_at,
        )

        for draw in draws:
            self._advance_draw(
                result, draw.id, DrawStatus.PENDING_WIRE, DrawStatus.FUNDED,
                changes={'status': DrawStatus.FUNDED, 'funded_at': funded_at},
                action='funded', actor=actor,
                new_data={'status': DrawStatus.FUNDED.value, 'funded_at': format_timestamp(funded_at)},
            )

        self._record_batch_event(result, 'funded', actor, {
            'status': WireBatchStatus.FUNDED.value,
            'funded_at': format_timestamp(funded_at),
            'wire_reference': wire_reference,
        })
        return result

    def cancel_batch(self, batch_id: str, actor: str = DEFAULT_FUNDING_ACTOR) -> FundingResult:
        """
        Cancel a pending batch and return its draws to staged.

        Raises:
            BatchNotFoundError: Unknown batch id
            InvalidBatchStatusError: Batch is not pending
        """
        batch = self._pending_batch(batch_id)
        if self.store.update_wire_batch_if_status(
                batch_id, WireBatchStatus.PENDING, {'status': WireBatchStatus.CANCELLED}) is None:
            raise InvalidBatchStatusError(f"Wire batch {batch_id} is no longer pending")

        draws = self.store.list_draw_requests_for_batch(batch_id)
        result = FundingResult(
            batch_id=batch_id,
            status=WireBatchStatus.CANCELLED,
            draw_count=len(draws),
            total_amount=batch.total_amount,
            submitted_at=batch.submitted_at,
        )

        for draw in draws:
            self._advance_draw(
                result, draw.id, DrawStatus.PENDING_WIRE, DrawStatus.STAGED,
                changes={'status': DrawStatus.STAGED, 'wire_batch_id': None},
                action='wire_cancelled', actor=actor,
                new_data={'status': DrawStatus.STAGED.value, 'wire_batch_id': None},
            )

        self._record_batch_event(result, 'cancelled', actor, {'status': WireBatchStatus.CANCELLED.value})
        return result

    def _validate_request(self, builder_id: str, draw_ids: Sequence[str]):
        if not builder_id:
            raise ValidationError("builder_id is required")
        if not draw_ids or isinstance(draw_ids, str) or not all(isinstance(d, str) and d for d in draw_ids):
            raise ValidationError("draw_ids array is required")

    def _load_draws(self, draw_ids: Sequence[str], required: DrawStatus, verb: str) -> List[DrawRequest]:
        """Resolve every requested draw and check they are all in `required` status."""
        draws = self.store.get_draw_requests(draw_ids)
        if len(draws) != len(draw_ids):
            found = {draw.id for draw in draws}
            missing = [draw_id for draw_id in draw_ids if draw_id not in found]
            self.logger.warning(f"Wire batch request rejected: expected {len(draw_ids)} draws, "
                                f"found {len(draws)}")
            raise DrawCountMismatchError(len(draw_ids), len(draws), missing)

        invalid = [draw.id for draw in draws if draw.status is not required]
        if invalid:
            self.logger.warning(f"Wire batch request rejected: draws not {required.value}: {invalid}")
            raise InvalidDrawStatusError(invalid, required.value, verb=verb)
        return draws

    def _pending_batch(self, batch_id: str) -> WireBatch:
        batch = self.store.get_wire_batch(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Wire batch not found: {batch_id}")
        if batch.status is not WireBatchStatus.PENDING:
            raise InvalidBatchStatusError(
                f"Wire batch {batch_id} is {batch.status.value}, expected pending")
        return batch

    @staticmethod
    def _total(draws: List[DrawRequest]) -> Decimal:
        return sum((draw.total_amount for draw in draws), Decimal("0"))

    def _advance_draw(self, result: FundingResult, draw_id: str, from_status: DrawStatus,
                      to_status: DrawStatus, changes: Dict[str, Any], action: str, actor: str,
                      new_data: Dict[str, Any]):
        """Move one draw and audit it; failures are recorded on the result, not raised."""
        try:
            updated = self.store.update_draw_request_if_status(draw_id, from_status, changes)
        except DrawEngineError as e:
            self.logger.error(f"Error updating draw {draw_id} in batch {result.batch_id}: {e}")
            result.failed_draw_ids.append(draw_id)
            return

        if updated is None:
            self.logger.error(f"Draw {draw_id} left {from_status.value} before batch "
                              f"{result.batch_id} could move it to {to_status.value}")
            result.failed_draw_ids.append(draw_id)
            return

        result.updated_draw_ids.append(draw_id)
        try:
            self.audit.record(EntityType.DRAW_REQUEST, draw_id, action, actor,
                              old_data={'status': from_status.value}, new_data=new_data)
        except DrawEngineError as e:
            self.logger.error(f"Failed to write {action} audit event for draw {draw_id}: {e}")

        if to_status is DrawStatus.FUNDED and self.spend_recorder is not None:
            try:
                self.spend_recorder.record_for_draw(draw_id, actor)
            except DrawEngineError as e:
                self.logger.error(f"Budget spend recording failed for funded draw {draw_id}: {e}")

    def _record_batch_event(self, result: FundingResult, action: str, actor: str,
                            new_data: Dict[str, Any]):
        if result.failed_draw_ids:
            new_data['failed_draw_ids'] = list(result.failed_draw_ids)
            self.logger.error(
                f"Wire batch {result.batch_id} needs manual reconciliation: "
                f"{len(result.failed_draw_ids)} draw(s) not updated: {result.failed_draw_ids}"
            )
        try:
            self.audit.record(EntityType.WIRE_BATCH, result.batch_id, action, actor, new_data=new_data)
        except DrawEngineError as e:
            self.logger.error(f"Failed to write {action} audit event for wire batch {result.batch_id}: {e}")
