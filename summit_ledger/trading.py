"""
Stock Trading Engine

Buys and sells shares against an account balance and a stock's available
share pool. Every trade takes the account lock, then the stock lock, and runs
as one unit of work: the balance, the stock's inventory, the position and the
trade record change together or not at all.

Positions carry a weighted-average cost basis (6 places); realized P/L is
computed at sale time against that basis, unrealized P/L against the current
price.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
import uuid

from .accounts import AccountManager, AccountType, ensure_access, ensure_active
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    InsufficientHoldingsError, InsufficientInventoryError, InternalError,
    InvalidArgumentError, LedgerError, NotFoundError, PermissionDeniedError
)
from .idempotency import IdempotencyRegistry, request_fingerprint, validate_key
from .locking import LockManager, account_key, idempotency_key as idempotency_lock_key, stock_key
from .logging_config import get_logger, log_action
from .money import ZERO, quantize, to_amount, to_cost_basis, MONEY_PLACES
from .references import ReferenceGenerator, STOCK_TRADE_PREFIX
from .storage import StorageInterface, StorageManager, StorageRecord
from .users import Principal, require_admin


class TradeType(Enum):
    """Side of a stock trade"""
    BUY = "BUY"
    SELL = "SELL"


@dataclass
class Stock(StorageRecord):
    """
    Tradable stock; the record id is the symbol

    available_shares is the pool customers can still buy from and always
    stays within [0, total_shares].
    """
    symbol: str
    company_name: str
    current_price: Decimal
    total_shares: int
    available_shares: int
    sector: Optional[str] = None
    description: Optional[str] = None
    price_version: int = 1


@dataclass
class Position(StorageRecord):
    """Shares of one stock held by one account; id is ``account_id:symbol``"""
    account_id: str
    symbol: str
    total_shares: int
    average_cost_basis: Decimal

    @staticmethod
    def key(account_id: str, symbol: str) -> str:
        return f"{account_id}:{symbol}"

    def cost(self) -> Decimal:
        return self.average_cost_basis * self.total_shares

    def market_value(self, price: Decimal) -> Decimal:
        return price * self.total_shares

    def unrealized_profit_loss(self, price: Decimal) -> Decimal:
        return (price - self.average_cost_basis) * self.total_shares


@dataclass
class StockTransaction(StorageRecord):
    """Immutable record of one executed trade"""
    transaction_reference: str
    account_id: str
    symbol: str
    trade_type: TradeType
    quantity: int
    price_per_share: Decimal
    total_amount: Decimal
    profit_loss: Optional[Decimal] = None  # SELL only
    idempotency_key: Optional[str] = None

    @property
    def timestamp(self) -> datetime:
        return self.created_at


@dataclass
class PortfolioItem:
    """Valued position"""
    account_id: str
    symbol: str
    company_name: str
    quantity: int
    average_cost_basis: Decimal
    current_price: Decimal
    market_value: Decimal
    profit_loss: Decimal
    profit_loss_percent: Decimal


@dataclass
class Portfolio:
    """Valued positions of one account or one user"""
    items: List[PortfolioItem] = field(default_factory=list)

    @property
    def total_value(self) -> Decimal:
        return to_amount(sum((item.market_value for item in self.items), ZERO))

    @property
    def total_cost(self) -> Decimal:
        return to_amount(sum((item.average_cost_basis * item.quantity for item in self.items), ZERO))

    @property
    def total_profit_loss(self) -> Decimal:
        return to_amount(sum((item.profit_loss for item in self.items), ZERO))

    @property
    def total_profit_loss_percent(self) -> Decimal:
        return profit_loss_percent(self.total_profit_loss, self.total_cost)


def profit_loss_percent(profit_loss: Decimal, cost: Decimal) -> Decimal:
    """Percentage return on cost; 0 when there is no cost"""
    if cost == ZERO:
        return quantize(ZERO, MONEY_PLACES)
    return quantize(profit_loss / cost * Decimal("100"), MONEY_PLACES)


def normalize_symbol(symbol: str) -> str:
    """Upper-case a ticker symbol and check it is alphanumeric"""
    normalized = (symbol or "").strip().upper()
    if not normalized or not normalized.isalnum() or not normalized.isascii():
        raise InvalidArgumentError(f"Invalid stock symbol: {symbol!r}")
    return normalized


def require_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidArgumentError("Quantity must be a whole number of shares")
    if quantity <= 0:
        raise InvalidArgumentError("Quantity must be greater than zero")
    return quantity


class StockTradingEngine:
    """
    Executes buys and sells and values portfolios
    """

    BUY_OPERATION = "buy"
    SELL_OPERATION = "sell"

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        audit_trail: AuditTrail,
        lock_manager: LockManager,
        reference_generator: ReferenceGenerator,
        idempotency: IdempotencyRegistry,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.records = StorageManager(storage)
        self.account_manager = account_manager
        self.audit_trail = audit_trail
        self.locks = lock_manager
        self.references = reference_generator
        self.idempotency = idempotency
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.stocks_table = "stocks"
        self.positions_table = "positions"
        self.transactions_table = "stock_transactions"
        self.logger = get_logger("summit.trading")

    # Trades

    def buy(
        self,
        account_id: str,
        symbol: str,
        quantity: int,
        principal: Principal,
        idempotency_key: Optional[str] = None
    ) -> StockTransaction:
        """
        Buy shares at the current price

        Raises:
            InvalidArgumentError: Bad symbol or quantity
            NotFoundError: Unknown account or stock
            PermissionDeniedError: Caller does not own the account
            AccountFrozenError: Account frozen
            InsufficientInventoryError: Not enough available shares
            InsufficientFundsError: Balance below the total cost
            ConflictError: Idempotency key reused for a different request
        """
        return self._trade(TradeType.BUY, account_id, symbol, quantity, principal, idempotency_key)

    def sell(
        self,
        account_id: str,
        symbol: str,
        quantity: int,
        principal: Principal,
        idempotency_key: Optional[str] = None
    ) -> StockTransaction:
        """
        Sell held shares at the current price

        Raises:
            InvalidArgumentError: Bad symbol or quantity
            NotFoundError: Unknown account or stock
            PermissionDeniedError: Caller does not own the account
            AccountFrozenError: Account frozen
            InsufficientHoldingsError: Position smaller than quantity
            ConflictError: Idempotency key reused for a different request
        """
        return self._trade(TradeType.SELL, account_id, symbol, quantity, principal, idempotency_key)

    def _trade(
        self,
        trade_type: TradeType,
        account_id: str,
        symbol: str,
        quantity: int,
        principal: Principal,
        idempotency_key: Optional[str]
    ) -> StockTransaction:
        symbol = normalize_symbol(symbol)
        quantity = require_quantity(quantity)
        if not account_id:
            raise InvalidArgumentError("Account is required")
        operation = self.BUY_OPERATION if trade_type == TradeType.BUY else self.SELL_OPERATION
        key = validate_key(idempotency_key)
        fingerprint = request_fingerprint(operation, {
            "account": account_id, "symbol": symbol, "quantity": quantity, "user": principal.user_id
        })

        lock_keys = [account_key(account_id), stock_key(symbol)]
        if key:
            lock_keys.append(idempotency_lock_key(key))

        try:
            with self.locks.acquire(lock_keys, timeout=self.config.lock_timeout_seconds):
                with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
                    if key:
                        existing_id = self.idempotency.lookup(key, operation, fingerprint)
                        if existing_id:
                            replay = self.records.load_record(StockTransaction, self.transactions_table, existing_id)
                            if not replay:
                                raise InternalError(f"Idempotency key points at missing trade {existing_id}")
                            return replay

                    account = self.account_manager.require_account(account_id)
                    ensure_access(account, principal, "trade from")
                    ensure_active(account)
                    stock = self.require_stock(symbol)

                    if trade_type == TradeType.BUY:
                        trade = self._apply_buy(account, stock, quantity)
                    else:
                        trade = self._apply_sell(account, stock, quantity)

                    now = self.clock()
                    trade.id = str(uuid.uuid4())
                    trade.created_at = now
                    trade.updated_at = now
                    trade.transaction_reference = self.references.issue(STOCK_TRADE_PREFIX, self._reference_taken)
                    trade.idempotency_key = key
                    self.records.save_record(trade, self.transactions_table)
                    if key:
                        self.idempotency.remember(key, operation, fingerprint, trade.id, now)

                    metadata = {
                        "reference": trade.transaction_reference,
                        "account_id": account.id,
                        "symbol": symbol,
                        "quantity": quantity,
                        "price_per_share": trade.price_per_share,
                        "total_amount": trade.total_amount,
                        "price_version": stock.price_version
                    }
                    if trade.profit_loss is not None:
                        metadata["profit_loss"] = trade.profit_loss
                    self.audit_trail.log_event(
                        event_type=AuditEventType.STOCK_BOUGHT if trade_type == TradeType.BUY else AuditEventType.STOCK_SOLD,
                        entity_type="stock_transaction",
                        entity_id=trade.id,
                        metadata=metadata,
                        user_id=principal.user_id
                    )
        except LedgerError as e:
            log_action(
                self.logger, "warning", f"{trade_type.value} rejected: {e}",
                user_id=principal.user_id, action=operation, resource=f"account:{account_id}",
                error_code=e.code, extra={"symbol": symbol, "quantity": quantity}
            )
            self.audit_trail.log_rejection(
                AuditEventType.TRADE_REJECTED, "account", account_id, operation, e,
                user_id=principal.user_id, metadata={"symbol": symbol, "quantity": quantity}
            )
            raise
        except Exception as e:
            log_action(self.logger, "error", f"{trade_type.value} failed", user_id=principal.user_id,
                       action=operation, resource=f"account:{account_id}", exc_info=True)
            raise InternalError(f"{trade_type.value} failed") from e

        log_action(
            self.logger, "info", f"{trade_type.value} executed: {trade.transaction_reference}",
            user_id=principal.user_id, action=operation, resource=f"stock_transaction:{trade.id}",
            extra={"symbol": symbol, "quantity": quantity, "total_amount": str(trade.total_amount)}
        )
        return trade

    def _apply_buy(self, account, stock: Stock, quantity: int) -> StockTransaction:
        if stock.available_shares < quantity:
            raise InsufficientInventoryError(
                f"Only {stock.available_shares} shares of {stock.symbol} are available",
                details={"symbol": stock.symbol, "available": stock.available_shares, "requested": quantity}
            )

        price = stock.current_price
        total_cost = to_amount(price * quantity)
        self.account_manager.debit(account, total_cost)

        stock.available_shares -= quantity
        self._touch_stock(stock)

        position = self.find_position(account.id, stock.symbol)
        if position is None:
            now = self.clock()
            position = Position(
                id=Position.key(account.id, stock.symbol),
                created_at=now,
                updated_at=now,
                account_id=account.id,
                symbol=stock.symbol,
                total_shares=quantity,
                average_cost_basis=to_cost_basis(price, self.config.cost_basis_precision)
            )
        else:
            new_total = position.total_shares + quantity
            weighted = (position.average_cost_basis * position.total_shares + price * quantity) / new_total
            position.average_cost_basis = to_cost_basis(weighted, self.config.cost_basis_precision)
            position.total_shares = new_total
            position.updated_at = self.clock()
        self.records.save_record(position, self.positions_table)

        return StockTransaction(
            id="", created_at=self.clock(), updated_at=self.clock(),
            transaction_reference="",
            account_id=account.id,
            symbol=stock.symbol,
            trade_type=TradeType.BUY,
            quantity=quantity,
            price_per_share=price,
            total_amount=total_cost
        )

    def _apply_sell(self, account, stock: Stock, quantity: int) -> StockTransaction:
        position = self.find_position(account.id, stock.symbol)
        held = position.total_shares if position else 0
        if held < quantity:
            raise InsufficientHoldingsError(
                f"Account holds {held} shares of {stock.symbol}",
                details={"symbol": stock.symbol, "held": held, "requested": quantity}
            )

        price = stock.current_price
        proceeds = to_amount(price * quantity)
        realized = to_amount((price - position.average_cost_basis) * quantity)
        self.account_manager.credit(account, proceeds)

        stock.available_shares = min(stock.total_shares, stock.available_shares + quantity)
        self._touch_stock(stock)

        position.total_shares -= quantity
        if position.total_shares == 0:
            self.records.delete_record(self.positions_table, position.id)
        else:
            position.updated_at = self.clock()
            self.records.save_record(position, self.positions_table)

        return StockTransaction(
            id="", created_at=self.clock(), updated_at=self.clock(),
            transaction_reference="",
            account_id=account.id,
            symbol=stock.symbol,
            trade_type=TradeType.SELL,
            quantity=quantity,
            price_per_share=price,
            total_amount=proceeds,
            profit_loss=realized
        )

    # Stock queries

    def find_stock(self, symbol: str) -> Optional[Stock]:
        return self.records.load_record(Stock, self.stocks_table, normalize_symbol(symbol))

    def require_stock(self, symbol: str) -> Stock:
        stock = self.find_stock(symbol)
        if not stock:
            raise NotFoundError(f"Stock not found: {symbol}")
        return stock

    def get_stock(self, symbol: str) -> Stock:
        return self.require_stock(symbol)

    def list_stocks(self) -> List[Stock]:
        """All stocks ordered by company name"""
        stocks = self.records.load_all_records(Stock, self.stocks_table)
        return sorted(stocks, key=lambda s: (s.company_name.lower(), s.symbol))

    def list_available_stocks(self) -> List[Stock]:
        return [stock for stock in self.list_stocks() if stock.available_shares > 0]

    def save_stock(self, stock: Stock) -> None:
        self.records.save_record(stock, self.stocks_table)

    # Positions and portfolios

    def find_position(self, account_id: str, symbol: str) -> Optional[Position]:
        return self.records.load_record(Position, self.positions_table, Position.key(account_id, symbol))

    def get_position(self, account_id: str, symbol: str, principal: Principal) -> Optional[Position]:
        account = self.account_manager.require_account(account_id)
        ensure_access(account, principal, "view")
        return self.find_position(account_id, normalize_symbol(symbol))

    def positions_for_symbol(self, symbol: str) -> List[Position]:
        return self.records.find_records(Position, self.positions_table, {"symbol": symbol})

    def get_portfolio(self, account_id: str, principal: Principal) -> Portfolio:
        """Valued positions of one account"""
        account = self.account_manager.require_account(account_id)
        ensure_access(account, principal, "view")
        with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
            return Portfolio(items=self._value_positions([account.id]))

    def get_user_portfolio(self, principal: Principal) -> Portfolio:
        """Valued positions across every account of the principal"""
        with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
            account_ids = sorted(self.account_manager.user_account_ids(principal.user_id))
            return Portfolio(items=self._value_positions(account_ids))

    def get_total_wealth(self, principal: Principal) -> Dict[str, Decimal]:
        """Cash by account type plus stock market value"""
        with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
            accounts = self.account_manager.get_accounts_for_user(principal.user_id, principal)
            checking = sum((a.balance for a in accounts if a.account_type == AccountType.CHECKING), ZERO)
            savings = sum((a.balance for a in accounts if a.account_type == AccountType.SAVINGS), ZERO)
            stock_value = Portfolio(items=self._value_positions([a.id for a in accounts])).total_value

        return {
            "checking_balance": to_amount(checking),
            "savings_balance": to_amount(savings),
            "stock_value": stock_value,
            "total_wealth": to_amount(checking + savings + stock_value)
        }

    def _value_positions(self, account_ids: List[str]) -> List[PortfolioItem]:
        items = []
        for account_id in account_ids:
            positions = self.records.find_records(Position, self.positions_table, {"account_id": account_id})
            for position in sorted(positions, key=lambda p: p.symbol):
                stock = self.records.load_record(Stock, self.stocks_table, position.symbol)
                if stock is None:
                    # Stocks with open positions cannot be deleted
                    raise InternalError(f"Position {position.id} references missing stock")
                profit_loss = to_amount(position.unrealized_profit_loss(stock.current_price))
                items.append(PortfolioItem(
                    account_id=account_id,
                    symbol=stock.symbol,
                    company_name=stock.company_name,
                    quantity=position.total_shares,
                    average_cost_basis=position.average_cost_basis,
                    current_price=stock.current_price,
                    market_value=to_amount(position.market_value(stock.current_price)),
                    profit_loss=profit_loss,
                    profit_loss_percent=profit_loss_percent(profit_loss, position.cost())
                ))
        return items

    # Trade history

    def list_stock_transactions(self, principal: Principal, account_id: Optional[str] = None,
                                limit: Optional[int] = None) -> List[StockTransaction]:
        """Trades of one account, or of all the principal's accounts, newest first"""
        if account_id:
            account = self.account_manager.require_account(account_id)
            ensure_access(account, principal, "view")
            account_ids = [account_id]
        else:
            account_ids = sorted(self.account_manager.user_account_ids(principal.user_id))

        trades = []
        for owned_id in account_ids:
            trades.extend(self.records.find_records(StockTransaction, self.transactions_table, {"account_id": owned_id}))
        return self._newest_first(trades, limit)

    def get_stock_transaction_by_reference(self, reference: str, principal: Principal) -> StockTransaction:
        trade = self.records.find_one(StockTransaction, self.transactions_table, {"transaction_reference": reference})
        if not trade:
            raise NotFoundError(f"Stock transaction not found with reference: {reference}")
        if not principal.is_admin and trade.account_id not in self.account_manager.user_account_ids(principal.user_id):
            raise PermissionDeniedError("You do not have permission to view this transaction")
        return trade

    def list_all_stock_transactions(self, principal: Principal, limit: Optional[int] = None) -> List[StockTransaction]:
        require_admin(principal, "list_all_stock_transactions")
        return self._newest_first(self.records.load_all_records(StockTransaction, self.transactions_table), limit)

    # Helpers

    def _newest_first(self, trades: List[StockTransaction], limit: Optional[int]) -> List[StockTransaction]:
        if limit is None:
            limit = self.config.default_history_limit
        elif limit < 1:
            raise InvalidArgumentError(f"limit must be at least 1, got {limit}")
        return sorted(reversed(trades), key=lambda t: t.created_at, reverse=True)[:limit]

    def _touch_stock(self, stock: Stock) -> None:
        stock.updated_at = self.clock()
        self.save_stock(stock)

    def _reference_taken(self, reference: str) -> bool:
        return bool(self.storage.find(self.transactions_table, {"transaction_reference": reference}))
