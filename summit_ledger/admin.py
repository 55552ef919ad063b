"""
Admin Control Service

Privileged operations: account freezes, the stock universe (create, reprice,
delete, seed) and ledger-wide listings. Every entry point requires the ADMIN
role.
"""

from decimal import Decimal
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Union

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import ConflictError, InternalError, InvalidArgumentError, LedgerError
from .locking import LockManager, stock_key
from .logging_config import get_logger, log_action
from .money import ZERO, require_positive, to_amount, to_price
from .storage import StorageInterface
from .trading import Stock, StockTradingEngine, StockTransaction, normalize_symbol
from .transfers import Transfer, TransferEngine
from .users import Principal, Role, User, UserManager, UserStatus, require_admin


# Initial stock universe: (symbol, company, price, total shares, sector)
DEFAULT_STOCK_CATALOG = [
    ("AAPL", "Apple Inc.", "189.50", 1000000, "Technology"),
    ("MSFT", "Microsoft Corporation", "378.25", 1000000, "Technology"),
    ("GOOGL", "Alphabet Inc.", "141.80", 1000000, "Technology"),
    ("AMZN", "Amazon.com Inc.", "178.35", 1000000, "Consumer Cyclical"),
    ("NVDA", "NVIDIA Corporation", "495.20", 1000000, "Technology"),
    ("META", "Meta Platforms Inc.", "353.95", 1000000, "Communication Services"),
    ("TSLA", "Tesla Inc.", "242.65", 1000000, "Consumer Cyclical"),
    ("NFLX", "Netflix Inc.", "486.90", 500000, "Communication Services"),
    ("ADBE", "Adobe Inc.", "582.10", 500000, "Technology"),
    ("INTC", "Intel Corporation", "43.75", 2000000, "Technology"),
    ("AMD", "Advanced Micro Devices Inc.", "138.40", 1000000, "Technology"),
    ("PYPL", "PayPal Holdings Inc.", "61.20", 1000000, "Financial Services"),
    ("COST", "Costco Wholesale Corporation", "712.30", 300000, "Consumer Defensive"),
    ("PEP", "PepsiCo Inc.", "168.45", 800000, "Consumer Defensive"),
    ("CSCO", "Cisco Systems Inc.", "50.15", 1500000, "Technology"),
]


class AdminControlService:
    """Privileged ledger operations"""

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        account_manager: AccountManager,
        transfer_engine: TransferEngine,
        trading_engine: StockTradingEngine,
        audit_trail: AuditTrail,
        lock_manager: LockManager,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.users = user_manager
        self.accounts = account_manager
        self.transfers = transfer_engine
        self.trading = trading_engine
        self.audit_trail = audit_trail
        self.locks = lock_manager
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("summit.admin")

    # Accounts

    def freeze_account(self, account_id: str, principal: Principal) -> Account:
        return self.accounts.freeze(account_id, principal)

    def unfreeze_account(self, account_id: str, principal: Principal) -> Account:
        return self.accounts.unfreeze(account_id, principal)

    # Stocks

    def create_stock(
        self,
        symbol: str,
        company_name: str,
        current_price: Union[Decimal, int, str],
        total_shares: int,
        principal: Principal,
        sector: Optional[str] = None,
        description: Optional[str] = None
    ) -> Stock:
        """
        List a new stock with its full share count available

        Raises:
            PermissionDeniedError: Caller is not an admin
            InvalidArgumentError: Bad symbol, blank company name, price <= 0, shares <= 0
            ConflictError: Symbol already exists
        """
        require_admin(principal, "create_stock")
        symbol = normalize_symbol(symbol)
        if not (company_name or "").strip():
            raise InvalidArgumentError("Company name is required")
        price = require_positive(to_price(current_price), "Price")
        if isinstance(total_shares, bool) or not isinstance(total_shares, int) or total_shares <= 0:
            raise InvalidArgumentError("Total shares must be a positive whole number")

        with self._stock_unit("create_stock", symbol, principal):
            if self.trading.find_stock(symbol):
                raise ConflictError(f"Stock already exists: {symbol}")

            now = self.clock()
            stock = Stock(
                id=symbol,
                created_at=now,
                updated_at=now,
                symbol=symbol,
                company_name=company_name.strip(),
                current_price=price,
                total_shares=total_shares,
                available_shares=total_shares,
                sector=sector,
                description=description
            )
            self.trading.save_stock(stock)

            self.audit_trail.log_event(
                event_type=AuditEventType.STOCK_CREATED,
                entity_type="stock",
                entity_id=symbol,
                metadata={"company_name": stock.company_name, "price": price, "total_shares": total_shares},
                user_id=principal.user_id
            )

        log_action(self.logger, "info", f"Stock created: {symbol}",
                   user_id=principal.user_id, action="create_stock", resource=f"stock:{symbol}")
        return stock

    def update_price(self, symbol: str, new_price: Union[Decimal, int, str], principal: Principal) -> Stock:
        """
        Set a stock's current price

        Recorded trades and cost bases are untouched; price_version is bumped.
        """
        require_admin(principal, "update_price")
        symbol = normalize_symbol(symbol)
        price = require_positive(to_price(new_price), "Price")

        with self._stock_unit("update_price", symbol, principal):
            stock = self.trading.require_stock(symbol)
            old_price = stock.current_price
            stock.current_price = price
            stock.price_version += 1
            stock.updated_at = self.clock()
            self.trading.save_stock(stock)

            self.audit_trail.log_event(
                event_type=AuditEventType.STOCK_PRICE_UPDATED,
                entity_type="stock",
                entity_id=symbol,
                metadata={"old_price": old_price, "new_price": price, "price_version": stock.price_version},
                user_id=principal.user_id
            )

        log_action(self.logger, "info", f"Price of {symbol} set to {price}",
                   user_id=principal.user_id, action="update_price", resource=f"stock:{symbol}")
        return stock

    def delete_stock(self, symbol: str, principal: Principal) -> None:
        """
        Remove a stock nobody holds

        Raises:
            NotFoundError: Unknown symbol
            ConflictError: Some account still holds shares
        """
        require_admin(principal, "delete_stock")
        symbol = normalize_symbol(symbol)

        with self._stock_unit("delete_stock", symbol, principal):
            self.trading.require_stock(symbol)
            holders = [p for p in self.trading.positions_for_symbol(symbol) if p.total_shares > 0]
            if holders:
                raise ConflictError(
                    f"Cannot delete {symbol}: {len(holders)} account(s) still hold shares",
                    details={"symbol": symbol, "holders": len(holders)}
                )
            self.storage.delete(self.trading.stocks_table, symbol)

            self.audit_trail.log_event(
                event_type=AuditEventType.STOCK_DELETED,
                entity_type="stock",
                entity_id=symbol,
                user_id=principal.user_id
            )

        log_action(self.logger, "info", f"Stock deleted: {symbol}",
                   user_id=principal.user_id, action="delete_stock", resource=f"stock:{symbol}")

    def seed_stocks(self, principal: Principal, catalog: Optional[Iterable[tuple]] = None) -> List[Stock]:
        """
        Load the initial stock universe

        Skipped entirely when any stock already exists.
        """
        require_admin(principal, "seed_stocks")
        if self.trading.list_stocks():
            log_action(self.logger, "info", "Stock universe already present, seeding skipped",
                       user_id=principal.user_id, action="seed_stocks")
            return []

        created = []
        for symbol, company_name, price, total_shares, sector in (catalog or DEFAULT_STOCK_CATALOG):
            created.append(self.create_stock(symbol, company_name, price, total_shares, principal, sector=sector))
        return created

    # Listings

    def register_user(
        self,
        email: str,
        first_name: str,
        last_name: str,
        principal: Principal,
        role: Union[Role, str] = Role.CUSTOMER
    ) -> User:
        """Enroll a user whose bearer tokens carry the returned id as ``sub``"""
        require_admin(principal, "register_user")
        if not isinstance(role, Role):
            try:
                role = Role(str(role).upper())
            except ValueError:
                raise InvalidArgumentError(f"Unknown role: {role}")
        user = self.users.register_user(email, first_name, last_name, role=role)
        log_action(self.logger, "info", f"User enrolled as {role.value}",
                   user_id=principal.user_id, action="register_user", resource=f"user:{user.id}")
        return user

    def list_users(self, principal: Principal) -> List[User]:
        return self.users.list_users(principal)

    def set_user_status(self, user_id: str, status: Union[UserStatus, str], principal: Principal) -> User:
        if not isinstance(status, UserStatus):
            try:
                status = UserStatus(str(status).upper())
            except ValueError:
                raise InvalidArgumentError(f"Unknown user status: {status}")
        return self.users.set_user_status(user_id, status, principal)

    def list_all_accounts(self, principal: Principal) -> List[Account]:
        return self.accounts.get_all_accounts(principal)

    def list_all_transfers(self, principal: Principal, limit: Optional[int] = None) -> List[Transfer]:
        return self.transfers.list_all_transfers(principal, limit)

    def list_all_stock_transactions(self, principal: Principal, limit: Optional[int] = None) -> List[StockTransaction]:
        return self.trading.list_all_stock_transactions(principal, limit)

    def audit_report(self, principal: Principal) -> Dict[str, object]:
        """Audit chain verification summary"""
        require_admin(principal, "audit_report")
        return self.audit_trail.verify_integrity()

    def operational_metrics(self, principal: Principal) -> Dict[str, Dict[str, object]]:
        """
        Ledger-wide counts for an operations dashboard

        Read as one snapshot: users, accounts (with frozen count and total
        balance), transfers and trades, and the stock universe.
        """
        require_admin(principal, "operational_metrics")

        with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
            users = self.users.list_users(principal)
            accounts = self.accounts.get_all_accounts(principal)
            stocks = self.trading.list_stocks()
            transfer_count = self.storage.count(self.transfers.table_name)
            trade_count = self.storage.count(self.trading.transactions_table)

        frozen = sum(1 for account in accounts if account.frozen)
        return {
            "users": {
                "total": len(users),
                "customers": sum(1 for user in users if user.role == Role.CUSTOMER),
                "active": sum(1 for user in users if user.status == UserStatus.ACTIVE),
            },
            "accounts": {
                "total": len(accounts),
                "active": len(accounts) - frozen,
                "frozen": frozen,
                "total_balance": to_amount(sum((account.balance for account in accounts), ZERO)),
            },
            "transactions": {
                "transfers": transfer_count,
                "stock_trades": trade_count,
                "total": transfer_count + trade_count,
            },
            "stocks": {
                "total": len(stocks),
                "available": sum(1 for stock in stocks if stock.available_shares > 0),
            },
        }

    # Helpers

    @contextmanager
    def _stock_unit(self, action: str, symbol: str, principal: Principal):
        """Stock lock plus one unit of work, with rejection auditing"""
        timeout = self.config.lock_timeout_seconds
        try:
            with self.locks.acquire([stock_key(symbol)], timeout=timeout):
                with self.storage.atomic(timeout=timeout):
                    yield
        except LedgerError as e:
            log_action(self.logger, "warning", f"{action} rejected: {e}",
                       user_id=principal.user_id, action=action,
                       resource=f"stock:{symbol}", error_code=e.code)
            self.audit_trail.log_rejection(
                AuditEventType.OPERATION_REJECTED, "stock", symbol, action, e,
                user_id=principal.user_id
            )
            raise
        except Exception as e:
            log_action(self.logger, "error", f"{action} failed", user_id=principal.user_id,
                       action=action, resource=f"stock:{symbol}", exc_info=True)
            raise InternalError(f"{action} failed") from e
