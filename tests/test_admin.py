"""
Test suite for the admin control service
"""

import pytest
from decimal import Decimal

from summit_ledger.admin import DEFAULT_STOCK_CATALOG
from summit_ledger.audit import AuditEventType
from summit_ledger.config import LedgerConfig
from summit_ledger.errors import (
    ConflictError, InvalidArgumentError, NotFoundError, PermissionDeniedError
)
from summit_ledger.storage import InMemoryStorage
from summit_ledger.system import LedgerSystem
from summit_ledger.users import Principal, Role, UserStatus


ADMIN = Principal(user_id="admin-1", role=Role.ADMIN)


def make_ledger(**overrides) -> LedgerSystem:
    config = LedgerConfig(**{"use_sqlite": False, "seed_stocks": False, **overrides})
    return LedgerSystem(storage=InMemoryStorage(), config=config)


class TestStockAdministration:

    def setup_method(self):
        self.ledger = make_ledger()
        self.admin = self.ledger.admin
        self.alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        self.as_alice = self.alice.as_principal()

    def test_create_stock(self):
        stock = self.admin.create_stock("msft", "Microsoft Corporation", "378.25", 1000, ADMIN,
                                        sector="Technology", description="Software")

        assert stock.symbol == "MSFT"
        assert stock.current_price == Decimal("378.25")
        assert stock.available_shares == stock.total_shares == 1000
        assert stock.price_version == 1
        assert self.ledger.trading.get_stock("MSFT").sector == "Technology"

        events = self.ledger.audit_trail.get_events_for_entity("stock", "MSFT")
        assert [e.event_type for e in events] == [AuditEventType.STOCK_CREATED]

    def test_duplicate_symbol(self):
        self.admin.create_stock("MSFT", "Microsoft", "1", 1, ADMIN)
        with pytest.raises(ConflictError):
            self.admin.create_stock("msft", "Microsoft again", "2", 2, ADMIN)

        rejected = self.ledger.audit_trail.get_events_by_type(AuditEventType.OPERATION_REJECTED)
        assert rejected[-1].metadata["error_code"] == "conflict"

    @pytest.mark.parametrize("symbol,name,price,shares", [
        ("BRK.B", "Berkshire", "1", 1),
        ("", "Nothing", "1", 1),
        ("ABC", "", "1", 1),
        ("ABC", "Abc", "0", 1),
        ("ABC", "Abc", "-3", 1),
        ("ABC", "Abc", "1", 0),
        ("ABC", "Abc", "1", 2.5),
    ])
    def test_invalid_stock(self, symbol, name, price, shares):
        with pytest.raises(InvalidArgumentError):
            self.admin.create_stock(symbol, name, price, shares, ADMIN)

    def test_update_price_bumps_version(self):
        self.admin.create_stock("MSFT", "Microsoft", "100", 10, ADMIN)
        updated = self.admin.update_price("MSFT", "101.50", ADMIN)

        assert updated.current_price == Decimal("101.50")
        assert updated.price_version == 2
        assert self.ledger.trading.get_stock("MSFT").price_version == 2

        with pytest.raises(InvalidArgumentError):
            self.admin.update_price("MSFT", "0", ADMIN)
        with pytest.raises(NotFoundError):
            self.admin.update_price("NOPE", "1", ADMIN)

    def test_delete_stock_nobody_holds(self):
        self.admin.create_stock("MSFT", "Microsoft", "100", 10, ADMIN)
        self.admin.delete_stock("MSFT", ADMIN)

        with pytest.raises(NotFoundError):
            self.ledger.trading.get_stock("MSFT")

    def test_delete_held_stock_is_a_conflict(self):
        self.admin.create_stock("MSFT", "Microsoft", "10", 10, ADMIN)
        account = self.ledger.accounts.open_account(self.alice.id, "CHECKING", "100", self.as_alice)
        self.ledger.trading.buy(account.id, "MSFT", 1, self.as_alice)

        with pytest.raises(ConflictError):
            self.admin.delete_stock("MSFT", ADMIN)
        assert self.ledger.trading.get_stock("MSFT")

        self.ledger.trading.sell(account.id, "MSFT", 1, self.as_alice)
        self.admin.delete_stock("MSFT", ADMIN)

    def test_customers_cannot_administer_stocks(self):
        with pytest.raises(PermissionDeniedError):
            self.admin.create_stock("MSFT", "Microsoft", "1", 1, self.as_alice)
        self.admin.create_stock("MSFT", "Microsoft", "1", 1, ADMIN)
        with pytest.raises(PermissionDeniedError):
            self.admin.update_price("MSFT", "2", self.as_alice)
        with pytest.raises(PermissionDeniedError):
            self.admin.delete_stock("MSFT", self.as_alice)

    def test_seed_stocks_once(self):
        created = self.admin.seed_stocks(ADMIN)
        assert len(created) == len(DEFAULT_STOCK_CATALOG)
        assert self.admin.seed_stocks(ADMIN) == []
        assert len(self.ledger.trading.list_stocks()) == len(DEFAULT_STOCK_CATALOG)

    def test_seed_from_configuration(self):
        ledger = make_ledger(seed_stocks=True)
        assert len(ledger.trading.list_stocks()) == len(DEFAULT_STOCK_CATALOG)


class TestAdminListings:

    def setup_method(self):
        self.ledger = make_ledger()
        self.admin = self.ledger.admin
        self.alice = self.ledger.users.register_user("alice@example.com", "Alice", "Smith")
        self.as_alice = self.alice.as_principal()
        self.account = self.ledger.accounts.open_account(self.alice.id, "CHECKING", "100", self.as_alice)

    def test_freeze_through_admin(self):
        assert self.admin.freeze_account(self.account.id, ADMIN).frozen
        assert not self.admin.unfreeze_account(self.account.id, ADMIN).frozen
        with pytest.raises(PermissionDeniedError):
            self.admin.freeze_account(self.account.id, self.as_alice)

    def test_listings_require_admin(self):
        assert [u.id for u in self.admin.list_users(ADMIN)] == [self.alice.id]
        assert [a.id for a in self.admin.list_all_accounts(ADMIN)] == [self.account.id]
        assert self.admin.list_all_transfers(ADMIN) == []
        assert self.admin.list_all_stock_transactions(ADMIN) == []

        for listing in (self.admin.list_users, self.admin.list_all_accounts,
                        self.admin.list_all_transfers, self.admin.list_all_stock_transactions):
            with pytest.raises(PermissionDeniedError):
                listing(self.as_alice)

    def test_set_user_status_by_name(self):
        user = self.admin.set_user_status(self.alice.id, "suspended", ADMIN)
        assert user.status == UserStatus.SUSPENDED
        with pytest.raises(InvalidArgumentError):
            self.admin.set_user_status(self.alice.id, "BANISHED", ADMIN)

    def test_audit_report_after_a_session(self):
        other = self.ledger.accounts.open_account(self.alice.id, "SAVINGS", "0", self.as_alice)
        self.ledger.transfers.transfer(self.account.id, other.id, "25", "move", self.as_alice)
        self.admin.create_stock("MSFT", "Microsoft", "5", 10, ADMIN)
        self.ledger.trading.buy(other.id, "MSFT", 2, self.as_alice)
        with pytest.raises(Exception):
            self.ledger.trading.buy(other.id, "MSFT", 100, self.as_alice)

        report = self.admin.audit_report(ADMIN)
        assert report["valid"]
        assert report["total_events"] == self.ledger.audit_trail.count_events()
        with pytest.raises(PermissionDeniedError):
            self.admin.audit_report(self.as_alice)

    def test_operational_metrics(self):
        bob = self.ledger.users.register_user("bob@example.com", "Bob", "Jones")
        bob_account = self.ledger.accounts.open_account(bob.id, "SAVINGS", "50.50", bob.as_principal())
        self.ledger.transfers.transfer(self.account.id, bob_account.id, "1.00", "gift", self.as_alice)
        self.admin.freeze_account(bob_account.id, ADMIN)
        self.admin.set_user_status(bob.id, "SUSPENDED", ADMIN)
        self.admin.register_user("ops@example.com", "Ops", "Admin", ADMIN, role="admin")
        self.admin.create_stock("MSFT", "Microsoft", "5", 2, ADMIN)
        self.admin.create_stock("AAPL", "Apple", "1", 10, ADMIN)
        self.ledger.trading.buy(self.account.id, "MSFT", 2, self.as_alice)

        metrics = self.admin.operational_metrics(ADMIN)

        assert metrics["users"] == {"total": 3, "customers": 2, "active": 2}
        assert metrics["accounts"] == {
            "total": 2, "active": 1, "frozen": 1, "total_balance": Decimal("140.50")
        }
        assert metrics["transactions"] == {"transfers": 1, "stock_trades": 1, "total": 2}
        assert metrics["stocks"] == {"total": 2, "available": 1}

        with pytest.raises(PermissionDeniedError):
            self.admin.operational_metrics(self.as_alice)

    def test_register_user_through_admin(self):
        user = self.admin.register_user("ops@example.com", "Ops", "Admin", ADMIN, role="ADMIN")
        assert user.role == Role.ADMIN
        assert self.ledger.users.get_user(user.id).email == "ops@example.com"

        with pytest.raises(InvalidArgumentError):
            self.admin.register_user("x@example.com", "X", "Y", ADMIN, role="WIZARD")
        with pytest.raises(PermissionDeniedError):
            self.admin.register_user("y@example.com", "Y", "Z", self.as_alice)
