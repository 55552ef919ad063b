"""
Audit Trail Module

Hash-chained immutable audit log with SHA-256 for tamper detection.
Every ledger state change, and every rejected attempt at one, is logged here.

The chain head lives in the store next to the events, so an event written
inside a unit of work that later rolls back takes the head with it and the
chain stays continuous.
"""

import hashlib
import json
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Any
from enum import Enum
from decimal import Decimal
import uuid

from .errors import ContentionError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class AuditEventType(Enum):
    """Types of audit events"""
    # User events
    USER_REGISTERED = "user_registered"
    USER_STATUS_CHANGED = "user_status_changed"

    # Account events
    ACCOUNT_OPENED = "account_opened"
    ACCOUNT_DEPOSIT = "account_deposit"
    ACCOUNT_FROZEN = "account_frozen"
    ACCOUNT_UNFROZEN = "account_unfrozen"

    # Transfer events
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_REJECTED = "transfer_rejected"

    # Trading events
    STOCK_BOUGHT = "stock_bought"
    STOCK_SOLD = "stock_sold"
    TRADE_REJECTED = "trade_rejected"

    # Stock administration events
    STOCK_CREATED = "stock_created"
    STOCK_PRICE_UPDATED = "stock_price_updated"
    STOCK_DELETED = "stock_deleted"

    # Generic rejection (deposits, admin actions)
    OPERATION_REJECTED = "operation_rejected"


@dataclass
class AuditEvent(StorageRecord):
    """
    Immutable audit event with hash chaining for tamper detection
    """
    event_type: AuditEventType
    entity_type: str  # user, account, transfer, stock, stock_transaction
    entity_id: str
    sequence: int
    previous_hash: str
    current_hash: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None  # Principal who initiated the action

    def __post_init__(self):
        if self.metadata:
            self.metadata = _serialize_metadata(self.metadata)

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this event
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'sequence': self.sequence,
            'previous_hash': self.previous_hash,
            'user_id': self.user_id,
            'metadata': self.metadata
        }

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()


def _serialize_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """Convert metadata values to JSON-serializable format"""
    def convert_value(value):
        if isinstance(value, Decimal):
            return str(value)
        elif isinstance(value, datetime):
            return value.isoformat()
        elif isinstance(value, Enum):
            return value.value
        elif isinstance(value, dict):
            return {k: convert_value(v) for k, v in value.items()}
        elif isinstance(value, (list, tuple)):
            return [convert_value(v) for v in value]
        return value

    return {k: convert_value(v) for k, v in metadata.items()}


class AuditTrail:
    """
    Hash-chained audit trail for tamper detection
    """

    HEAD_ID = "head"

    def __init__(
        self,
        storage: StorageInterface,
        table_name: str = "audit_events",
        clock: Optional[Callable[[], datetime]] = None,
        enabled: bool = True,
        timeout: Optional[float] = None
    ):
        self.storage = storage
        self.table_name = table_name
        self.head_table = f"{table_name}_head"
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.enabled = enabled
        self.timeout = timeout  # Bounded wait for the store; None waits indefinitely
        self.logger = get_logger("summit.audit")

    def _head(self) -> Dict[str, Any]:
        return self.storage.load(self.head_table, self.HEAD_ID) or {"sequence": 0, "hash": ""}

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None
    ) -> Optional[AuditEvent]:
        """
        Log an audit event with hash chaining

        Joins the caller's unit of work when called inside ``storage.atomic()``.

        Args:
            event_type: Type of audit event
            entity_type: Type of entity being audited
            entity_id: ID of the entity
            metadata: Additional event-specific data
            user_id: ID of the principal who initiated the action

        Returns:
            Created AuditEvent, or None when audit logging is disabled

        Raises:
            ContentionError: The store was not acquired within the timeout
        """
        if not self.enabled:
            return None

        with self.storage.atomic(timeout=self.timeout):
            head = self._head()
            now = self.clock()

            event = AuditEvent(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                sequence=head["sequence"] + 1,
                previous_hash=head["hash"],
                current_hash="",
                metadata=metadata or {},
                user_id=user_id
            )
            event.current_hash = event.calculate_hash()

            self.storage.save(self.table_name, event.id, event.to_dict())
            self.storage.save(self.head_table, self.HEAD_ID, {
                "id": self.HEAD_ID,
                "sequence": event.sequence,
                "hash": event.current_hash
            })

        return event

    def log_rejection(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: str,
        action: str,
        error: Exception,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[AuditEvent]:
        """
        Record a mutation attempt that was refused; nothing in the ledger changed

        A busy store is not waited on past the timeout: the rejection is then
        logged and left out of the trail.
        """
        details = dict(metadata or {})
        details.update({
            "action": action,
            "error_code": getattr(error, "code", "internal"),
            "reason": str(error)
        })
        try:
            return self.log_event(event_type, entity_type, entity_id, metadata=details, user_id=user_id)
        except ContentionError:
            log_action(
                self.logger, "warning", "Store busy, rejection not written to audit trail",
                user_id=user_id, action=action, resource=f"{entity_type}:{entity_id}",
                error_code=details["error_code"]
            )
            return None

    def _all_events(self) -> List[AuditEvent]:
        events = [AuditEvent.from_dict(data) for data in self.storage.load_all(self.table_name)]
        events.sort(key=lambda e: e.sequence)
        return events

    def get_events_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        limit: Optional[int] = None
    ) -> List[AuditEvent]:
        """Get audit events for one entity, oldest first"""
        events_data = self.storage.find(self.table_name, {
            'entity_type': entity_type,
            'entity_id': entity_id
        })
        events = sorted((AuditEvent.from_dict(d) for d in events_data), key=lambda e: e.sequence)

        if limit:
            events = events[-limit:]  # Most recent N events
        return events

    def get_events_by_type(self, event_type: AuditEventType, limit: Optional[int] = None) -> List[AuditEvent]:
        """Get audit events of one type, oldest first"""
        events_data = self.storage.find(self.table_name, {'event_type': event_type.value})
        events = sorted((AuditEvent.from_dict(d) for d in events_data), key=lambda e: e.sequence)

        if limit:
            events = events[-limit:]
        return events

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
            'chain_breaks': []
        }

        events = self._all_events()
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
        """Get total number of audit events"""
        return self.storage.count(self.table_name)
