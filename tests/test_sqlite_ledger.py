"""
End-to-end ledger scenarios on the SQLite backend
"""

import pytest
import os
import tempfile
import threading
from decimal import Decimal

from summit_ledger.config import LedgerConfig
from summit_ledger.errors import InsufficientFundsError
from summit_ledger.storage import SQLiteStorage
from summit_ledger.system import LedgerSystem, create_storage
from summit_ledger.users import Principal, Role


ADMIN = Principal(user_id="admin-1", role=Role.ADMIN)


class TestSQLiteLedger:

    def setup_method(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmp_dir.name, "ledger.db")
        self.config = LedgerConfig(database_url=f"sqlite:///{self.db_path}", use_sqlite=True, seed_stocks=False)
        self.ledger = LedgerSystem(config=self.config)

    def teardown_method(self):
        self.ledger.close()
        self.tmp_dir.cleanup()

    def test_storage_selected_from_config(self):
        assert isinstance(self.ledger.storage, SQLiteStorage)
        assert self.ledger.storage.db_path == self.db_path

    def test_memory_url_selects_in_memory_storage(self):
        storage = create_storage(LedgerConfig(database_url="memory://"))
        assert type(storage).__name__ == "InMemoryStorage"

    def test_unsupported_url(self):
        with pytest.raises(ValueError):
            create_storage(LedgerConfig(database_url="postgresql://localhost/ledger", use_sqlite=True))

    def test_session_survives_reopen(self):
        alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        as_alice = alice.as_principal()
        checking = self.ledger.accounts.open_account(alice.id, "CHECKING", "1000.00", as_alice)
        savings = self.ledger.accounts.open_account(alice.id, "SAVINGS", "0.00", as_alice)
        transfer = self.ledger.transfers.transfer(checking.id, savings.id, "250.00", "Save", as_alice)
        self.ledger.admin.create_stock("AAPL", "Apple Inc.", "100.00", 50, ADMIN)
        self.ledger.trading.buy(checking.id, "AAPL", 3, as_alice)

        with pytest.raises(InsufficientFundsError):
            self.ledger.transfers.transfer(savings.id, checking.id, "999.00", "Too much", as_alice)

        self.ledger.close()
        self.ledger = LedgerSystem(config=self.config)

        assert self.ledger.accounts.find_account(checking.id).balance == Decimal("450.00")
        assert self.ledger.accounts.find_account(savings.id).balance == Decimal("250.00")
        found = self.ledger.transfers.get_transfer_by_reference(transfer.transaction_reference, as_alice)
        assert found.amount == Decimal("250.00")
        assert self.ledger.trading.find_position(checking.id, "AAPL").total_shares == 3
        assert self.ledger.trading.get_stock("AAPL").available_shares == 47
        assert self.ledger.audit_trail.verify_integrity()["valid"]

    def test_concurrent_transfers_on_sqlite(self):
        alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        as_alice = alice.as_principal()
        a = self.ledger.accounts.open_account(alice.id, "CHECKING", "100.00", as_alice)
        b = self.ledger.accounts.open_account(alice.id, "SAVINGS", "100.00", as_alice)
        errors = []

        def send(source, target):
            try:
                for _ in range(20):
                    self.ledger.transfers.transfer(source.id, target.id, "1.00", "ping", as_alice)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=send, args=(a, b)), threading.Thread(target=send, args=(b, a))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(30)

        assert not errors
        total = self.ledger.accounts.find_account(a.id).balance + self.ledger.accounts.find_account(b.id).balance
        assert total == Decimal("200.00")
        assert self.ledger.storage.count("transfers") == 40
