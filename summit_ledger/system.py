"""
Ledger System

Composition root: wires every service onto one store, one lock manager, one
audit trail, one reference generator and one clock.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

from .accounts import AccountManager
from .admin import AdminControlService
from .audit import AuditTrail
from .config import LedgerConfig, get_config
from .idempotency import IdempotencyRegistry
from .locking import LockManager
from .logging_config import get_logger
from .references import ReferenceGenerator
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .trading import StockTradingEngine
from .transfers import TransferEngine
from .users import SYSTEM_PRINCIPAL, UserManager


SQLITE_PREFIX = "sqlite:///"


def create_storage(config: LedgerConfig) -> StorageInterface:
    """Pick the storage backend from configuration"""
    if not config.use_sqlite or config.database_url in ("memory://", ""):
        return InMemoryStorage()
    if config.database_url.startswith(SQLITE_PREFIX):
        return SQLiteStorage(config.database_url[len(SQLITE_PREFIX):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {config.database_url}")


class LedgerSystem:
    """All ledger services over shared infrastructure"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[LedgerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        reference_generator: Optional[ReferenceGenerator] = None
    ):
        self.config = config or get_config()
        self.storage = storage if storage is not None else create_storage(self.config)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("summit.system")

        self.audit_trail = AuditTrail(
            self.storage, clock=self.clock, enabled=self.config.enable_audit_logging,
            timeout=self.config.lock_timeout_seconds
        )
        self.locks = LockManager(default_timeout=self.config.lock_timeout_seconds)
        self.references = reference_generator or ReferenceGenerator(
            clock=self.clock, max_attempts=self.config.reference_max_attempts
        )
        self.idempotency = IdempotencyRegistry(self.storage)

        self.users = UserManager(
            self.storage, self.audit_trail, clock=self.clock, timeout=self.config.lock_timeout_seconds
        )
        self.accounts = AccountManager(
            self.storage, self.audit_trail, self.users, self.locks, config=self.config, clock=self.clock
        )
        self.transfers = TransferEngine(
            self.storage, self.accounts, self.audit_trail, self.locks,
            self.references, self.idempotency, config=self.config, clock=self.clock
        )
        self.trading = StockTradingEngine(
            self.storage, self.accounts, self.audit_trail, self.locks,
            self.references, self.idempotency, config=self.config, clock=self.clock
        )
        self.admin = AdminControlService(
            self.storage, self.users, self.accounts, self.transfers, self.trading,
            self.audit_trail, self.locks, config=self.config, clock=self.clock
        )

        if self.config.seed_stocks:
            self.admin.seed_stocks(SYSTEM_PRINCIPAL)

        self.logger.info("Ledger system initialized", extra={"extra": {"storage": type(self.storage).__name__}})

    def close(self) -> None:
        self.storage.close()
