"""
Test suite for audit module

Tests hash-chained audit trail, tamper detection, integrity verification,
and rollback behaviour of events written inside a unit of work.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from summit_ledger.errors import InsufficientFundsError
from summit_ledger.storage import InMemoryStorage
from summit_ledger.audit import AuditTrail, AuditEvent, AuditEventType


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def test_hash_covers_fields(self):
        now = datetime.now(timezone.utc)
        event = AuditEvent(
            id="AUDIT001",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.ACCOUNT_OPENED,
            entity_type="account",
            entity_id="ACC001",
            sequence=1,
            previous_hash="",
            current_hash="",
            metadata={"initial_deposit": Decimal("100.00")},
            user_id="USER001"
        )
        event.current_hash = event.calculate_hash()

        assert event.metadata["initial_deposit"] == "100.00"
        assert len(event.current_hash) == 64
        assert event.verify_hash()

        event.entity_id = "ACC002"
        assert not event.verify_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)

    def test_events_are_chained(self):
        first = self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1")
        second = self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1",
                                            metadata={"amount": Decimal("5.00")})

        assert first.sequence == 1
        assert first.previous_hash == ""
        assert second.sequence == 2
        assert second.previous_hash == first.current_hash
        assert self.audit_trail.count_events() == 2

    def test_integrity_of_untouched_chain(self):
        for index in range(5):
            self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", f"A{index}")

        result = self.audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampered_metadata_is_detected(self):
        event = self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1",
                                           metadata={"amount": "5.00"})
        self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1",
                                   metadata={"amount": "6.00"})

        data = self.storage.load("audit_events", event.id)
        data["metadata"]["amount"] = "5000.00"
        self.storage.save("audit_events", event.id, data)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert [e["event_id"] for e in result["hash_errors"]] == [event.id]

    def test_deleted_event_breaks_the_chain(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1")
        middle = self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1")

        self.storage.delete("audit_events", middle.id)

        result = self.audit_trail.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_event_rolled_back_with_its_unit(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1")
                raise RuntimeError("boom")

        after = self.audit_trail.log_event(AuditEventType.ACCOUNT_DEPOSIT, "account", "A1")
        assert after.sequence == 2
        assert self.audit_trail.count_events() == 2
        assert self.audit_trail.verify_integrity()["valid"]

    def test_log_rejection_records_error_code(self):
        error = InsufficientFundsError("Insufficient funds in account")
        event = self.audit_trail.log_rejection(
            AuditEventType.TRANSFER_REJECTED, "account", "A1", "transfer", error,
            user_id="U1", metadata={"amount": Decimal("10.00")}
        )

        assert event.metadata == {
            "amount": "10.00",
            "action": "transfer",
            "error_code": "insufficient_funds",
            "reason": "Insufficient funds in account"
        }
        assert event.user_id == "U1"

    def test_queries_by_entity_and_type(self):
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A2")
        self.audit_trail.log_event(AuditEventType.ACCOUNT_FROZEN, "account", "A1")

        a1_events = self.audit_trail.get_events_for_entity("account", "A1")
        assert [e.event_type for e in a1_events] == [AuditEventType.ACCOUNT_OPENED, AuditEventType.ACCOUNT_FROZEN]
        assert len(self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_OPENED)) == 2
        assert len(self.audit_trail.get_events_for_entity("account", "A1", limit=1)) == 1

    def test_disabled_trail_writes_nothing(self):
        trail = AuditTrail(self.storage, enabled=False)
        assert trail.log_event(AuditEventType.ACCOUNT_OPENED, "account", "A1") is None
        assert trail.count_events() == 0
