"""
Transfer Engine

Moves money between two accounts as one all-or-nothing unit: both account
locks are taken in ascending id order, the debit and the credit are applied
inside a single ``storage.atomic()`` block, and a COMPLETED transfer record
with a fresh ``TXN-YYYYMMDD-XXXXXX`` reference is written alongside them.

Direction (CREDIT / DEBIT / TRANSFER) is never stored; it is projected per
viewer by ``classify_transfer``.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Collection, List, Optional, Union
from enum import Enum
import uuid

from .accounts import AccountManager, ensure_access, ensure_active
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    InternalError, InvalidArgumentError, LedgerError, NotFoundError, PermissionDeniedError
)
from .idempotency import IdempotencyRegistry, request_fingerprint, validate_key
from .locking import LockManager, account_key, idempotency_key as idempotency_lock_key
from .logging_config import get_logger, log_action
from .money import parse_amount, require_positive
from .references import ReferenceGenerator, TRANSFER_PREFIX
from .storage import StorageInterface, StorageManager, StorageRecord
from .users import Principal, require_admin


class TransferStatus(Enum):
    """States of a transfer"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TransferDirection(Enum):
    """Viewer-relative classification of a transfer"""
    CREDIT = "CREDIT"      # Money arrived in one of the viewer's accounts
    DEBIT = "DEBIT"        # Money left one of the viewer's accounts
    TRANSFER = "TRANSFER"  # Both sides belong to the viewer


@dataclass
class Transfer(StorageRecord):
    """
    Money movement between two accounts

    Immutable once COMPLETED or FAILED.
    """
    transaction_reference: str
    from_account_id: str
    to_account_id: str
    amount: Decimal
    description: str
    status: TransferStatus = TransferStatus.PENDING
    idempotency_key: Optional[str] = None

    @property
    def timestamp(self) -> datetime:
        return self.created_at


@dataclass(frozen=True)
class TransferView:
    """A transfer as seen by one viewer"""
    transfer: Transfer
    direction: TransferDirection


def classify_transfer(transfer: Transfer, viewer_account_ids: Collection[str]) -> TransferDirection:
    """
    Classify a transfer relative to the viewer's accounts

    Both sides owned -> TRANSFER; only the receiving side -> CREDIT;
    anything else -> DEBIT.
    """
    is_sender = transfer.from_account_id in viewer_account_ids
    is_receiver = transfer.to_account_id in viewer_account_ids

    if is_sender and is_receiver:
        return TransferDirection.TRANSFER
    if is_receiver:
        return TransferDirection.CREDIT
    return TransferDirection.DEBIT


class TransferEngine:
    """
    Validates and executes account-to-account transfers
    """

    OPERATION = "transfer"

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
        self.table_name = "transfers"
        self.logger = get_logger("summit.transfers")

    def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Union[Decimal, int, str],
        description: str,
        principal: Principal,
        idempotency_key: Optional[str] = None
    ) -> Transfer:
        """
        Transfer money between two accounts

        Args:
            from_account_id: Account to debit; the principal must own it unless admin
            to_account_id: Account to credit
            amount: Positive amount
            description: Non-blank memo
            principal: Caller
            idempotency_key: Optional client key; a replay returns the original transfer

        Returns:
            COMPLETED Transfer

        Raises:
            InvalidArgumentError: Bad amount, blank description, or same source and destination
            NotFoundError: Either account unknown
            PermissionDeniedError: Caller does not own the source account
            AccountFrozenError: Either account frozen
            InsufficientFundsError: Source balance below amount
            ConflictError: Idempotency key reused for a different request
            ContentionError: Locks not acquired in time
        """
        amount = require_positive(parse_amount(amount), "Transfer amount")
        if not from_account_id or not to_account_id:
            raise InvalidArgumentError("Both source and destination accounts are required")
        if from_account_id == to_account_id:
            raise InvalidArgumentError("Cannot transfer to the same account")
        if not description or not description.strip():
            raise InvalidArgumentError("Description is required and cannot be blank")
        description = description.strip()
        key = validate_key(idempotency_key)
        fingerprint = request_fingerprint(self.OPERATION, {
            "from": from_account_id, "to": to_account_id, "amount": str(amount),
            "description": description, "user": principal.user_id
        })

        lock_keys = [account_key(from_account_id), account_key(to_account_id)]
        if key:
            lock_keys.append(idempotency_lock_key(key))

        try:
            with self.locks.acquire(lock_keys, timeout=self.config.lock_timeout_seconds):
                with self.storage.atomic(timeout=self.config.lock_timeout_seconds):
                    if key:
                        existing_id = self.idempotency.lookup(key, self.OPERATION, fingerprint)
                        if existing_id:
                            replay = self._require_transfer(existing_id)
                            log_action(self.logger, "info", "Transfer replayed for idempotency key",
                                       user_id=principal.user_id, action="transfer",
                                       resource=f"transfer:{replay.id}")
                            return replay

                    source = self.account_manager.require_account(from_account_id)
                    destination = self.account_manager.require_account(to_account_id)
                    ensure_access(source, principal, "transfer from")
                    ensure_active(source, "Source")
                    ensure_active(destination, "Destination")

                    self.account_manager.debit(source, amount)
                    self.account_manager.credit(destination, amount)

                    now = self.clock()
                    transfer = Transfer(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        transaction_reference=self.references.issue(TRANSFER_PREFIX, self._reference_taken),
                        from_account_id=source.id,
                        to_account_id=destination.id,
                        amount=amount,
                        description=description,
                        status=TransferStatus.COMPLETED,
                        idempotency_key=key
                    )
                    self.records.save_record(transfer, self.table_name)
                    if key:
                        self.idempotency.remember(key, self.OPERATION, fingerprint, transfer.id, now)

                    self.audit_trail.log_event(
                        event_type=AuditEventType.TRANSFER_COMPLETED,
                        entity_type="transfer",
                        entity_id=transfer.id,
                        metadata={
                            "reference": transfer.transaction_reference,
                            "from_account": source.id,
                            "to_account": destination.id,
                            "amount": amount
                        },
                        user_id=principal.user_id
                    )
        except LedgerError as e:
            self._reject(from_account_id, to_account_id, amount, principal, e)
            raise
        except Exception as e:
            log_action(self.logger, "error", "Transfer failed", user_id=principal.user_id,
                       action="transfer", resource=f"account:{from_account_id}", exc_info=True)
            raise InternalError("Transfer failed") from e

        log_action(
            self.logger, "info", f"Transfer completed: {transfer.transaction_reference}",
            user_id=principal.user_id, action="transfer", resource=f"transfer:{transfer.id}",
            extra={"from_account": from_account_id, "to_account": to_account_id, "amount": str(amount)}
        )
        return transfer

    # Queries

    def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        return self.records.load_record(Transfer, self.table_name, transfer_id)

    def get_transfer_by_reference(self, reference: str, principal: Principal) -> Transfer:
        """
        Look up a transfer by reference

        Visible to admins and to the owner of either side.
        """
        transfer = self.records.find_one(Transfer, self.table_name, {"transaction_reference": reference})
        if not transfer:
            raise NotFoundError(f"Transaction not found with reference: {reference}")

        if not principal.is_admin:
            owned = self.account_manager.user_account_ids(principal.user_id)
            if transfer.from_account_id not in owned and transfer.to_account_id not in owned:
                raise PermissionDeniedError("You do not have permission to view this transaction")
        return transfer

    def list_account_transfers(self, account_id: str, principal: Principal,
                               limit: Optional[int] = None) -> List[Transfer]:
        """Transfers touching one account, newest first"""
        account = self.account_manager.require_account(account_id)
        ensure_access(account, principal, "view")

        outgoing = self.records.find_records(Transfer, self.table_name, {"from_account_id": account_id})
        incoming = self.records.find_records(Transfer, self.table_name, {"to_account_id": account_id})
        return self._newest_first(outgoing + incoming, limit)

    def list_user_transfers(self, principal: Principal, limit: Optional[int] = None) -> List[TransferView]:
        """Transfers touching any of the principal's accounts, classified for that principal"""
        account_ids = self.account_manager.user_account_ids(principal.user_id)
        found = {}
        for account_id in account_ids:
            for field_name in ("from_account_id", "to_account_id"):
                for transfer in self.records.find_records(Transfer, self.table_name, {field_name: account_id}):
                    found[transfer.id] = transfer

        transfers = self._newest_first(list(found.values()), limit)
        return [TransferView(t, classify_transfer(t, account_ids)) for t in transfers]

    def list_all_transfers(self, principal: Principal, limit: Optional[int] = None) -> List[Transfer]:
        """Every transfer, newest first (admin only)"""
        require_admin(principal, "list_all_transfers")
        return self._newest_first(self.records.load_all_records(Transfer, self.table_name), limit)

    # Helpers

    def _newest_first(self, transfers: List[Transfer], limit: Optional[int]) -> List[Transfer]:
        if limit is None:
            limit = self.config.default_history_limit
        elif limit < 1:
            raise InvalidArgumentError(f"limit must be at least 1, got {limit}")
        # Insertion order breaks timestamp ties, so reverse before the stable sort
        ordered = sorted(reversed(transfers), key=lambda t: t.created_at, reverse=True)
        return ordered[:limit]

    def _require_transfer(self, transfer_id: str) -> Transfer:
        transfer = self.get_transfer(transfer_id)
        if not transfer:
            raise InternalError(f"Idempotency key points at missing transfer {transfer_id}")
        return transfer

    def _reference_taken(self, reference: str) -> bool:
        return bool(self.storage.find(self.table_name, {"transaction_reference": reference}))

    def _reject(self, from_account_id: str, to_account_id: str, amount: Decimal,
                principal: Principal, error: LedgerError) -> None:
        log_action(
            self.logger, "warning", f"Transfer rejected: {error}",
            user_id=principal.user_id, action="transfer", resource=f"account:{from_account_id}",
            error_code=error.code,
            extra={"to_account": to_account_id, "amount": str(amount)}
        )
        self.audit_trail.log_rejection(
            AuditEventType.TRANSFER_REJECTED, "account", from_account_id, "transfer", error,
            user_id=principal.user_id,
            metadata={"to_account": to_account_id, "amount": amount}
        )
