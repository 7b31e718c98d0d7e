"""
Audit trail for draw, batch and budget changes.

Audit events are append-only: this module only ever inserts and reads them.
"""

from typing import Any, Dict, List, Optional

from draw_reconciliation.models import AuditEvent, EntityType
from draw_reconciliation.store.base_store import BaseRecordStore

import logging
logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "system"


class AuditLog:
    """Writes and queries audit events through a record store."""

    def __init__(self, store: BaseRecordStore):
        self.store = store
        self.logger = logging.getLogger(f"{__name__}.AuditLog")

    def record(self, entity_type: EntityType, entity_id: str, action: str,
               actor: Optional[str] = None,
               old_data: Optional[Dict[str, Any]] = None,
               new_data: Optional[Dict[str, Any]] = None) -> AuditEvent:
        """
        Append one audit event.

        Raises:
            StoreError: If the event could not be persisted
        """
        event = AuditEvent(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor or DEFAULT_ACTOR,
            old_data=old_data,
            new_data=new_data,
        )
        saved = self.store.append_audit_event(event)
        self.logger.debug(f"Audit {entity_type.value}/{entity_id}: {action} by {event.actor}")
        return saved

    def history(self, entity_type: EntityType, entity_id: str) -> List[AuditEvent]:
        """All events for one entity, newest first."""
        return self.store.list_audit_events(entity_type=entity_type, entity_id=entity_id)

    def recent(self, limit: int = 50) -> List[AuditEvent]:
        """Most recent events across all entities."""
        return self.store.list_audit_events(limit=limit)

    def has_event(self, entity_type: EntityType, entity_id: str, action: str,
                  **new_data_match: Any) -> bool:
        """
        Check whether an event exists whose new_data contains the given items.

        Used to make follow-up writes idempotent.
        """
        for event in self.store.list_audit_events(entity_type=entity_type,
                                                  entity_id=entity_id, action=action):
            data = event.new_data or {}
            if all(data.get(key) == value for key, value in new_data_match.items()):
                return True
        return False
