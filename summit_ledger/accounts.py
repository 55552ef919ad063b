"""
Account Management Module

Opens checking and savings accounts, applies deposits, and enforces
ownership and freeze rules. This module owns the balance field: the transfer
and trading engines move money only through ``debit``/``credit`` while
holding the account's lock inside their own unit of work.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Union
from enum import Enum
import secrets
import uuid

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    AccountFrozenError, ConflictError, InsufficientFundsError, InternalError,
    InvalidArgumentError, LedgerError, NotFoundError, PermissionDeniedError
)
from .locking import LockManager, account_key
from .logging_config import get_logger, log_action
from .money import ZERO, mask_account_number, parse_amount, require_positive, to_amount
from .storage import StorageInterface, StorageManager, StorageRecord
from .users import Principal, UserManager, require_admin


class AccountType(Enum):
    """Deposit account products"""
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"


@dataclass
class Account(StorageRecord):
    """
    Customer deposit account

    Balance is a 2-place Decimal and never negative.
    """
    user_id: str
    account_number: str
    account_type: AccountType
    balance: Decimal = ZERO
    frozen: bool = False

    @property
    def masked_number(self) -> str:
        """Display form, e.g. ****4521"""
        return mask_account_number(self.account_number)

    @property
    def status(self) -> str:
        return "FROZEN" if self.frozen else "ACTIVE"

    def can_transact(self) -> bool:
        """Check if account can take balance-mutating operations"""
        return not self.frozen

    def owned_by(self, principal: Principal) -> bool:
        return self.user_id == principal.user_id


def ensure_active(account: Account, role: str = "Account") -> None:
    """Raise AccountFrozenError if the account is frozen"""
    if not account.can_transact():
        raise AccountFrozenError(
            f"{role} account is frozen. Please contact support.",
            details={"account_id": account.id}
        )


def ensure_access(account: Account, principal: Principal, action: str) -> None:
    """Raise PermissionDeniedError unless the principal owns the account or is an admin"""
    if not (principal.is_admin or account.owned_by(principal)):
        raise PermissionDeniedError(
            f"You do not have permission to {action} this account",
            details={"account_id": account.id, "user_id": principal.user_id}
        )


class AccountManager:
    """
    Manages account lifecycle, balances and freeze state
    """

    ACCOUNT_NUMBER_DIGITS = 10

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        user_manager: UserManager,
        lock_manager: LockManager,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.records = StorageManager(storage)
        self.audit_trail = audit_trail
        self.user_manager = user_manager
        self.locks = lock_manager
        self.config = config or get_config()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.accounts_table = "accounts"
        self.logger = get_logger("summit.accounts")

    # Commands

    def open_account(
        self,
        user_id: str,
        account_type: Union[AccountType, str],
        initial_deposit: Union[Decimal, int, str],
        principal: Principal
    ) -> Account:
        """
        Open a new account

        Args:
            user_id: Owner of the account
            account_type: CHECKING or SAVINGS
            initial_deposit: Opening balance, >= 0 (and >= the configured minimum when one is set)
            principal: Caller; must be the owner or an admin

        Returns:
            Created Account, not frozen

        Raises:
            InvalidArgumentError: Bad account type or initial deposit
            NotFoundError: Unknown user
            PermissionDeniedError: Caller is neither owner nor admin, or owner is suspended
        """
        account_type = self._parse_account_type(account_type)
        deposit = parse_amount(initial_deposit, "initial_deposit")
        if deposit < ZERO:
            raise InvalidArgumentError("Initial deposit cannot be negative")
        minimum = to_amount(self.config.min_initial_deposit, "min_initial_deposit")
        if minimum > ZERO and deposit < minimum:
            raise InvalidArgumentError(f"Initial deposit must be at least {minimum}")

        with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
            user = self.user_manager.get_user(user_id)
            if not (principal.is_admin or principal.user_id == user.id):
                raise PermissionDeniedError("You can only open accounts for yourself")
            if user.is_suspended:
                raise PermissionDeniedError(f"User {user.id} is suspended")

            now = self.clock()
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                user_id=user.id,
                account_number=self._generate_account_number(),
                account_type=account_type,
                balance=deposit,
                frozen=False
            )
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_OPENED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "user_id": user.id,
                    "account_number": account.account_number,
                    "account_type": account_type.value,
                    "initial_deposit": deposit
                },
                user_id=principal.user_id
            )

        log_action(
            self.logger, "info", f"Account opened: {account.masked_number}",
            user_id=principal.user_id, action="open_account", resource=f"account:{account.id}",
            extra={"account_type": account_type.value, "initial_deposit": str(deposit)}
        )
        return account

    def deposit(self, account_id: str, amount: Union[Decimal, int, str], principal: Principal) -> Account:
        """
        Deposit money into an account

        Raises:
            InvalidArgumentError: amount <= 0, or a non-savings account when deposits are savings-only
            NotFoundError: Unknown account
            PermissionDeniedError: Caller is neither owner nor admin
            AccountFrozenError: Account is frozen
        """
        amount = require_positive(parse_amount(amount), "Deposit amount")

        try:
            with self.locks.acquire([account_key(account_id)]):
                with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
                    account = self.require_account(account_id)
                    ensure_access(account, principal, "deposit into")
                    ensure_active(account)
                    if self.config.deposit_savings_only and account.account_type != AccountType.SAVINGS:
                        raise InvalidArgumentError(
                            f"Only savings accounts can receive deposits. Account type: {account.account_type.value}"
                        )

                    self.credit(account, amount)

                    self.audit_trail.log_event(
                        event_type=AuditEventType.ACCOUNT_DEPOSIT,
                        entity_type="account",
                        entity_id=account.id,
                        metadata={"amount": amount, "balance": account.balance},
                        user_id=principal.user_id
                    )
        except LedgerError as e:
            self._reject("deposit", account_id, principal, e, {"amount": amount})
            raise
        except Exception as e:
            log_action(self.logger, "error", "Deposit failed", user_id=principal.user_id,
                       action="deposit", resource=f"account:{account_id}", exc_info=True)
            raise InternalError("Deposit failed") from e

        log_action(
            self.logger, "info", "Deposit applied",
            user_id=principal.user_id, action="deposit", resource=f"account:{account_id}",
            extra={"amount": str(amount)}
        )
        return account

    def freeze(self, account_id: str, principal: Principal) -> Account:
        """Freeze an account (admin only); freezing a frozen account is a no-op"""
        return self._set_frozen(account_id, True, principal)

    def unfreeze(self, account_id: str, principal: Principal) -> Account:
        """Unfreeze an account (admin only); unfreezing an active account is a no-op"""
        return self._set_frozen(account_id, False, principal)

    # Balance primitives, called with the account lock held inside a unit of work

    def debit(self, account: Account, amount: Decimal) -> Account:
        """Subtract ``amount`` from a locked account and persist it"""
        if account.balance < amount:
            raise InsufficientFundsError(
                "Insufficient funds in account",
                details={"account_id": account.id, "balance": str(account.balance), "requested": str(amount)}
            )
        account.balance = to_amount(account.balance - amount)
        account.updated_at = self.clock()
        self._save_account(account)
        return account

    def credit(self, account: Account, amount: Decimal) -> Account:
        """Add ``amount`` to a locked account and persist it"""
        account.balance = to_amount(account.balance + amount)
        account.updated_at = self.clock()
        self._save_account(account)
        return account

    # Queries

    def find_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID without authorization (internal use)"""
        return self.records.load_record(Account, self.accounts_table, account_id)

    def require_account(self, account_id: str) -> Account:
        account = self.find_account(account_id)
        if not account:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    def get_account(self, account_id: str, principal: Principal) -> Account:
        """Get an account the principal owns (or any account, for admins)"""
        account = self.require_account(account_id)
        ensure_access(account, principal, "view")
        return account

    def get_account_by_number(self, account_number: str, principal: Principal) -> Account:
        account = self.records.find_one(Account, self.accounts_table, {"account_number": account_number})
        if not account:
            raise NotFoundError(f"Account not found: {mask_account_number(account_number)}")
        ensure_access(account, principal, "view")
        return account

    def get_accounts_for_user(self, user_id: str, principal: Principal) -> List[Account]:
        """Accounts of one user, oldest first"""
        if not (principal.is_admin or principal.user_id == user_id):
            raise PermissionDeniedError("You can only list your own accounts")
        self.user_manager.get_user(user_id)
        return self._accounts_of(user_id)

    def get_all_accounts(self, principal: Principal) -> List[Account]:
        """Every account in the ledger, oldest first (admin only)"""
        require_admin(principal, "get_all_accounts")
        accounts = self.records.load_all_records(Account, self.accounts_table)
        return sorted(accounts, key=lambda a: a.created_at)

    def user_account_ids(self, user_id: str) -> Set[str]:
        return {account.id for account in self._accounts_of(user_id)}

    # Helpers

    def _accounts_of(self, user_id: str) -> List[Account]:
        accounts = self.records.find_records(Account, self.accounts_table, {"user_id": user_id})
        return sorted(accounts, key=lambda a: a.created_at)

    def _set_frozen(self, account_id: str, frozen: bool, principal: Principal) -> Account:
        action = "freeze" if frozen else "unfreeze"
        require_admin(principal, action)

        with self.locks.acquire([account_key(account_id)]):
            with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
                account = self.require_account(account_id)
                if account.frozen == frozen:
                    return account

                account.frozen = frozen
                account.updated_at = self.clock()
                self._save_account(account)

                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_FROZEN if frozen else AuditEventType.ACCOUNT_UNFROZEN,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={"account_number": account.account_number},
                    user_id=principal.user_id
                )

        log_action(self.logger, "info", f"Account {action} applied",
                   user_id=principal.user_id, action=action, resource=f"account:{account_id}")
        return account

    def _reject(self, action: str, account_id: str, principal: Principal, error: LedgerError, metadata: dict) -> None:
        log_action(
            self.logger, "warning", f"{action} rejected: {error}",
            user_id=principal.user_id, action=action, resource=f"account:{account_id}",
            error_code=error.code
        )
        self.audit_trail.log_rejection(
            AuditEventType.OPERATION_REJECTED, "account", account_id, action, error,
            user_id=principal.user_id, metadata=metadata
        )

    def _parse_account_type(self, account_type: Union[AccountType, str]) -> AccountType:
        if isinstance(account_type, AccountType):
            return account_type
        try:
            return AccountType(str(account_type).upper())
        except ValueError:
            raise InvalidArgumentError(f"Unknown account type: {account_type}")

    def _generate_account_number(self) -> str:
        """Generate a unique 10-digit account number"""
        for _ in range(self.config.reference_max_attempts):
            number = f"{secrets.randbelow(10 ** self.ACCOUNT_NUMBER_DIGITS):0{self.ACCOUNT_NUMBER_DIGITS}d}"
            if not self.storage.find(self.accounts_table, {"account_number": number}):
                return number
        raise ConflictError("Could not allocate a unique account number")

    def _save_account(self, account: Account) -> None:
        self.records.save_record(account, self.accounts_table)
