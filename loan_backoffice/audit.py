"""
Audit Trail Module

Hash-chained audit log with SHA-256 for tamper detection. Every mutating
back office operation records who did what here. Recording is best-effort:
a failing audit sink never fails the operation that triggered it.
"""

import hashlib
import json
import logging
import threading
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .storage import StorageInterface, StorageRecord


logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Actions written to the audit log"""
    CREATE_APPLICATION = "CREATE_APPLICATION"
    UPDATE_APPLICATION_STATUS = "UPDATE_APPLICATION_STATUS"
    DELETE_APPLICATION = "DELETE_APPLICATION"
    CREATE_TRANSACTION = "CREATE_TRANSACTION"
    UPDATE_TRANSACTION = "UPDATE_TRANSACTION"
    DELETE_TRANSACTION = "DELETE_TRANSACTION"
    MARK_REPAYMENT_PAID = "MARK_REPAYMENT_PAID"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    actor_id: Optional[str]
    action: str
    detail: str
    previous_hash: str
    current_hash: str

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'actor_id': self.actor_id,
            'action': self.action,
            'detail': self.detail,
            'previous_hash': self.previous_hash,
        }

        # Create deterministic JSON string
        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditEvent':
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return cls(**data)


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_logs",
                 enabled: bool = True):
        self.storage = storage
        self.table_name = table_name
        self.enabled = enabled
        self._lock = threading.Lock()

    def _last_hash(self) -> str:
        """Hash of the most recent audit event, or empty for a fresh chain"""
        events = self.storage.load_all(self.table_name)
        if not events:
            return ""
        latest = max(events, key=lambda e: e['id'])
        return latest.get('current_hash', "")

    def log_event(self, actor_id: Optional[Any], action: AuditAction, detail: str) -> AuditEvent:
        """
        Append an audit event to the chain

        Args:
            actor_id: Operator who performed the action
            action: What was done
            detail: Free-text description

        Returns:
            Created AuditEvent
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            event = AuditEvent(
                id=self.storage.next_id(self.table_name),
                created_at=now,
                updated_at=now,
                actor_id=str(actor_id) if actor_id is not None else None,
                action=action.value if isinstance(action, AuditAction) else str(action),
                detail=detail,
                previous_hash=self._last_hash(),
                current_hash=""
            )
            event.current_hash = event.calculate_hash()
            self.storage.save(self.table_name, event.id, event.to_dict())
            return event

    def record(self, actor_id: Optional[Any], action: AuditAction, detail: str) -> Optional[AuditEvent]:
        """
        Fire-and-forget variant of log_event used by the core.
        Failures are logged and swallowed.
        """
        if not self.enabled:
            return None
        try:
            return self.log_event(actor_id, action, detail)
        except Exception:
            logger.exception("Failed to write audit event %s", getattr(action, 'value', action))
            return None

    def get_all_events(self, limit: Optional[int] = None) -> List[AuditEvent]:
        """All audit events in chain order; with a limit, the most recent N"""
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.id)
        if limit:
            events = events[-limit:]
        return events

    def get_events_by_action(self, action: AuditAction) -> List[AuditEvent]:
        return [e for e in self.get_all_events() if e.action == action.value]

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_events': 0,
            'hash_errors': [],
            'chain_breaks': [],
        }

        events = self.get_all_events()
        result['total_events'] = len(events)

        previous_hash = ""
        for position, event in enumerate(events):
            if not event.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_hash': event.calculate_hash(),
                    'actual_hash': event.current_hash
                })
            if event.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({
                    'event_id': event.id,
                    'position': position,
                    'expected_previous_hash': previous_hash,
                    'actual_previous_hash': event.previous_hash
                })
            previous_hash = event.current_hash

        return result

    def count_events(self) -> int:
        return self.storage.count(self.table_name)
