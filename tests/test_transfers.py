"""
Test suite for the transfer engine

Covers validation, conservation of funds, freeze and ownership rules,
idempotent retries, direction classification and concurrent transfers.
"""

import pytest
import re
import threading
from decimal import Decimal
from datetime import datetime, timezone

from summit_ledger.audit import AuditEventType
from summit_ledger.config import LedgerConfig
from summit_ledger.errors import (
    AccountFrozenError, ConflictError, InsufficientFundsError, InvalidArgumentError,
    NotFoundError, PermissionDeniedError
)
from summit_ledger.storage import InMemoryStorage
from summit_ledger.system import LedgerSystem
from summit_ledger.transfers import (
    Transfer, TransferDirection, TransferStatus, classify_transfer
)
from summit_ledger.users import Principal, Role


ADMIN = Principal(user_id="admin-1", role=Role.ADMIN)


def make_ledger() -> LedgerSystem:
    return LedgerSystem(storage=InMemoryStorage(), config=LedgerConfig(use_sqlite=False, seed_stocks=False))


def make_transfer(from_account_id: str, to_account_id: str) -> Transfer:
    now = datetime.now(timezone.utc)
    return Transfer(
        id="T1", created_at=now, updated_at=now,
        transaction_reference="TXN-20251202-AAAAAA",
        from_account_id=from_account_id, to_account_id=to_account_id,
        amount=Decimal("1.00"), description="test",
        status=TransferStatus.COMPLETED
    )


class TestClassifyTransfer:
    """Direction is a pure projection of the viewer's accounts"""

    def test_both_sides_owned_is_transfer(self):
        assert classify_transfer(make_transfer("A", "B"), {"A", "B"}) == TransferDirection.TRANSFER

    def test_receiving_side_owned_is_credit(self):
        assert classify_transfer(make_transfer("A", "B"), {"B"}) == TransferDirection.CREDIT

    def test_sending_side_owned_is_debit(self):
        assert classify_transfer(make_transfer("A", "B"), {"A"}) == TransferDirection.DEBIT

    def test_unrelated_viewer_defaults_to_debit(self):
        assert classify_transfer(make_transfer("A", "B"), set()) == TransferDirection.DEBIT


class TestTransfer:
    """Executing transfers"""

    def setup_method(self):
        self.ledger = make_ledger()
        self.alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        self.bob = self.ledger.users.register_user("bob@example.com", "Bob", "Jones")
        self.as_alice = self.alice.as_principal()
        self.as_bob = self.bob.as_principal()
        self.alice_checking = self.ledger.accounts.open_account(self.alice.id, "CHECKING", "1000.00", self.as_alice)
        self.alice_savings = self.ledger.accounts.open_account(self.alice.id, "SAVINGS", "0.00", self.as_alice)
        self.bob_checking = self.ledger.accounts.open_account(self.bob.id, "CHECKING", "50.00", self.as_bob)

    def balance(self, account) -> Decimal:
        return self.ledger.accounts.find_account(account.id).balance

    def total(self) -> Decimal:
        return sum(a.balance for a in self.ledger.accounts.get_all_accounts(ADMIN))

    def test_transfer_moves_money(self):
        transfer = self.ledger.transfers.transfer(
            self.alice_checking.id, self.bob_checking.id, "250.00", "Rent", self.as_alice
        )

        assert transfer.status == TransferStatus.COMPLETED
        assert transfer.amount == Decimal("250.00")
        assert re.fullmatch(r"TXN-\d{8}-[A-Z0-9]{6}", transfer.transaction_reference)
        assert self.balance(self.alice_checking) == Decimal("750.00")
        assert self.balance(self.bob_checking) == Decimal("300.00")
        assert self.total() == Decimal("1050.00")

        events = self.ledger.audit_trail.get_events_for_entity("transfer", transfer.id)
        assert [e.event_type for e in events] == [AuditEventType.TRANSFER_COMPLETED]

    def test_own_accounts_transfer(self):
        self.ledger.transfers.transfer(
            self.alice_checking.id, self.alice_savings.id, "100", "Saving up", self.as_alice
        )
        views = self.ledger.transfers.list_user_transfers(self.as_alice)

        assert [v.direction for v in views] == [TransferDirection.TRANSFER]

    @pytest.mark.parametrize("amount", ["0", "-10", "abc", "1e30", "10.005"])
    def test_invalid_amount(self, amount):
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, amount, "x", self.as_alice
            )

    def test_rejected_amount_moves_nothing(self):
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "10.005", "x", self.as_alice
            )

        assert self.balance(self.alice_checking) == Decimal("1000.00")
        assert self.balance(self.bob_checking) == Decimal("50.00")
        assert self.ledger.storage.count("transfers") == 0

    def test_same_account(self):
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.alice_checking.id, "1", "x", self.as_alice
            )

    def test_blank_description(self):
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "1", "   ", self.as_alice
            )

    def test_unknown_destination(self):
        with pytest.raises(NotFoundError):
            self.ledger.transfers.transfer(self.alice_checking.id, "missing", "1", "x", self.as_alice)
        assert self.balance(self.alice_checking) == Decimal("1000.00")

    def test_only_owner_can_send(self):
        with pytest.raises(PermissionDeniedError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "1", "x", self.as_bob
            )

    def test_admin_can_send_from_any_account(self):
        self.ledger.transfers.transfer(self.alice_checking.id, self.bob_checking.id, "1", "fix", ADMIN)
        assert self.balance(self.bob_checking) == Decimal("51.00")

    def test_insufficient_funds_changes_nothing(self):
        with pytest.raises(InsufficientFundsError):
            self.ledger.transfers.transfer(
                self.bob_checking.id, self.alice_checking.id, "50.01", "x", self.as_bob
            )

        assert self.balance(self.bob_checking) == Decimal("50.00")
        assert self.balance(self.alice_checking) == Decimal("1000.00")
        assert self.ledger.storage.count("transfers") == 0

        rejected = self.ledger.audit_trail.get_events_by_type(AuditEventType.TRANSFER_REJECTED)
        assert rejected[-1].metadata["error_code"] == "insufficient_funds"

    def test_exact_balance_can_be_sent(self):
        self.ledger.transfers.transfer(self.bob_checking.id, self.alice_checking.id, "50.00", "all", self.as_bob)
        assert self.balance(self.bob_checking) == Decimal("0.00")

    @pytest.mark.parametrize("frozen_side", ["source", "destination"])
    def test_frozen_account_blocks_transfer(self, frozen_side):
        target = self.alice_checking if frozen_side == "source" else self.bob_checking
        self.ledger.accounts.freeze(target.id, ADMIN)

        with pytest.raises(AccountFrozenError):
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "10", "x", self.as_alice
            )
        assert self.balance(self.alice_checking) == Decimal("1000.00")
        assert self.balance(self.bob_checking) == Decimal("50.00")

    def test_failure_after_debit_rolls_back(self, monkeypatch):
        def broken_credit(account, amount):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(self.ledger.accounts, "credit", broken_credit)

        with pytest.raises(Exception) as exc_info:
            self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "10", "x", self.as_alice
            )
        assert exc_info.value.code == "internal"
        assert self.balance(self.alice_checking) == Decimal("1000.00")
        assert self.ledger.storage.count("transfers") == 0

    def test_references_are_unique(self):
        references = set()
        for _ in range(20):
            transfer = self.ledger.transfers.transfer(
                self.alice_checking.id, self.bob_checking.id, "1", "x", self.as_alice
            )
            references.add(transfer.transaction_reference)
        assert len(references) == 20


class TestTransferIdempotency:

    def setup_method(self):
        self.ledger = make_ledger()
        self.alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        self.as_alice = self.alice.as_principal()
        self.source = self.ledger.accounts.open_account(self.alice.id, "CHECKING", "100", self.as_alice)
        self.target = self.ledger.accounts.open_account(self.alice.id, "SAVINGS", "0", self.as_alice)

    def test_replay_returns_original_transfer(self):
        first = self.ledger.transfers.transfer(
            self.source.id, self.target.id, "10", "x", self.as_alice, idempotency_key="key-1"
        )
        second = self.ledger.transfers.transfer(
            self.source.id, self.target.id, "10", "x", self.as_alice, idempotency_key="key-1"
        )

        assert second.id == first.id
        assert second.transaction_reference == first.transaction_reference
        assert self.ledger.accounts.find_account(self.source.id).balance == Decimal("90.00")
        assert self.ledger.storage.count("transfers") == 1

    def test_key_reuse_with_different_request_is_a_conflict(self):
        self.ledger.transfers.transfer(
            self.source.id, self.target.id, "10", "x", self.as_alice, idempotency_key="key-1"
        )
        with pytest.raises(ConflictError):
            self.ledger.transfers.transfer(
                self.source.id, self.target.id, "11", "x", self.as_alice, idempotency_key="key-1"
            )
        assert self.ledger.accounts.find_account(self.source.id).balance == Decimal("90.00")

    def test_failed_attempt_does_not_consume_key(self):
        with pytest.raises(InsufficientFundsError):
            self.ledger.transfers.transfer(
                self.source.id, self.target.id, "500", "x", self.as_alice, idempotency_key="key-2"
            )
        self.ledger.accounts.deposit(self.source.id, "500", self.as_alice)

        transfer = self.ledger.transfers.transfer(
            self.source.id, self.target.id, "500", "x", self.as_alice, idempotency_key="key-2"
        )
        assert transfer.status == TransferStatus.COMPLETED


class TestTransferQueries:

    def setup_method(self):
        self.ledger = make_ledger()
        self.alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        self.bob = self.ledger.users.register_user("bob@example.com", "Bob", "Jones")
        self.carol = self.ledger.users.register_user("carol@example.com", "Carol", "White")
        self.as_alice = self.alice.as_principal()
        self.as_bob = self.bob.as_principal()
        self.alice_account = self.ledger.accounts.open_account(self.alice.id, "CHECKING", "100", self.as_alice)
        self.bob_account = self.ledger.accounts.open_account(self.bob.id, "CHECKING", "100", self.as_bob)

        self.first = self.ledger.transfers.transfer(
            self.alice_account.id, self.bob_account.id, "10", "first", self.as_alice
        )
        self.second = self.ledger.transfers.transfer(
            self.bob_account.id, self.alice_account.id, "3", "second", self.as_bob
        )

    def test_lookup_by_reference(self):
        found = self.ledger.transfers.get_transfer_by_reference(self.first.transaction_reference, self.as_bob)
        assert found.id == self.first.id

        with pytest.raises(PermissionDeniedError):
            self.ledger.transfers.get_transfer_by_reference(
                self.first.transaction_reference, self.carol.as_principal()
            )
        with pytest.raises(NotFoundError):
            self.ledger.transfers.get_transfer_by_reference("TXN-00000000-XXXXXX", ADMIN)

    def test_user_history_is_newest_first_with_direction(self):
        views = self.ledger.transfers.list_user_transfers(self.as_alice)

        assert [v.transfer.id for v in views] == [self.second.id, self.first.id]
        assert [v.direction for v in views] == [TransferDirection.CREDIT, TransferDirection.DEBIT]

    def test_account_history_and_limit(self):
        transfers = self.ledger.transfers.list_account_transfers(self.bob_account.id, self.as_bob)
        assert {t.id for t in transfers} == {self.first.id, self.second.id}

        assert len(self.ledger.transfers.list_account_transfers(self.bob_account.id, self.as_bob, limit=1)) == 1
        with pytest.raises(PermissionDeniedError):
            self.ledger.transfers.list_account_transfers(self.bob_account.id, self.as_alice)

    @pytest.mark.parametrize("limit", [0, -1])
    def test_limit_below_one_is_rejected(self, limit):
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.list_user_transfers(self.as_alice, limit=limit)
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.list_account_transfers(self.alice_account.id, self.as_alice, limit=limit)
        with pytest.raises(InvalidArgumentError):
            self.ledger.transfers.list_all_transfers(ADMIN, limit=limit)

    def test_admin_listing(self):
        assert len(self.ledger.transfers.list_all_transfers(ADMIN)) == 2
        with pytest.raises(PermissionDeniedError):
            self.ledger.transfers.list_all_transfers(self.as_alice)


class TestConcurrentTransfers:
    """Opposite-direction transfers under contention"""

    def test_opposite_transfers_complete_and_conserve_funds(self):
        ledger = make_ledger()
        alice = ledger.users.register_user("alice@example.com", "Alice", "Smith")
        bob = ledger.users.register_user("bob@example.com", "Bob", "Jones")
        a = ledger.accounts.open_account(alice.id, "CHECKING", "1000.00", alice.as_principal())
        b = ledger.accounts.open_account(bob.id, "CHECKING", "1000.00", bob.as_principal())
        errors = []

        def send(source, target, principal):
            try:
                for _ in range(50):
                    ledger.transfers.transfer(source.id, target.id, "1.00", "ping", principal)
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=send, args=(a, b, alice.as_principal())),
            threading.Thread(target=send, args=(b, a, bob.as_principal())),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert not errors
        assert ledger.storage.count("transfers") == 100
        assert ledger.accounts.find_account(a.id).balance == Decimal("1000.00")
        assert ledger.accounts.find_account(b.id).balance == Decimal("1000.00")
        assert ledger.audit_trail.verify_integrity()["valid"]

    def test_concurrent_overdraw_attempts_never_go_negative(self):
        ledger = make_ledger()
        alice = ledger.users.register_user("alice@example.com", "Alice", "Smith")
        source = ledger.accounts.open_account(alice.id, "CHECKING", "100.00", alice.as_principal())
        target = ledger.accounts.open_account(alice.id, "SAVINGS", "0.00", alice.as_principal())
        outcomes = []
        lock = threading.Lock()

        def drain():
            try:
                ledger.transfers.transfer(source.id, target.id, "30.00", "drain", alice.as_principal())
                result = "ok"
            except InsufficientFundsError:
                result = "insufficient"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=drain) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert outcomes.count("ok") == 3
        assert outcomes.count("insufficient") == 7
        assert ledger.accounts.find_account(source.id).balance == Decimal("10.00")
        assert ledger.accounts.find_account(target.id).balance == Decimal("90.00")
