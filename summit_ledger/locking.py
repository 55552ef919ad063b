"""
Keyed Lock Manager

Row-scoped critical sections for the ledger. Every lock is identified by a
``(kind, key)`` pair and a set of locks is always taken in one global order,
so two operations that touch the same rows in opposite roles (A->B and B->A
transfers, a trade and a price update) cannot deadlock. Waits are bounded:
a timeout releases everything already held and raises ContentionError.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ContentionError
from .logging_config import get_logger, log_action


LockKey = Tuple[str, str]

IDEMPOTENCY = "idempotency"
ACCOUNT = "account"
STOCK = "stock"

# Acquisition rank per lock kind; lower ranks are always taken first
LOCK_ORDER = {
    IDEMPOTENCY: 0,
    ACCOUNT: 1,
    STOCK: 2,
}


def account_key(account_id: str) -> LockKey:
    return (ACCOUNT, account_id)


def stock_key(symbol: str) -> LockKey:
    return (STOCK, symbol)


def idempotency_key(key: str) -> LockKey:
    return (IDEMPOTENCY, key)


def lock_sort_key(key: LockKey) -> Tuple[int, str]:
    kind, value = key
    return (LOCK_ORDER.get(kind, len(LOCK_ORDER)), value)


class _KeyedLock:
    """A lock plus the number of threads holding or waiting for it"""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class LockManager:
    """
    Hands out keyed locks and acquires groups of them in global order

    A key's lock exists only while some thread holds or waits for it, so the
    registry stays as small as the set of rows currently in use.
    """

    def __init__(self, default_timeout: float = 5.0):
        self.default_timeout = default_timeout
        self._locks: Dict[LockKey, _KeyedLock] = {}
        self._registry_lock = threading.Lock()
        self.logger = get_logger("summit.locking")

    @property
    def active_keys(self) -> int:
        """Number of keys currently held or waited on"""
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, key: LockKey) -> _KeyedLock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyedLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: LockKey, entry: _KeyedLock) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def ordered(self, keys: Iterable[LockKey]) -> List[LockKey]:
        """Deduplicate and sort keys into acquisition order"""
        return sorted(set(keys), key=lock_sort_key)

    @contextmanager
    def acquire(self, keys: Iterable[Optional[LockKey]], timeout: Optional[float] = None):
        """
        Hold every lock in ``keys`` for the duration of the block

        Args:
            keys: Lock keys; None entries are ignored
            timeout: Overall wait budget in seconds (defaults to the manager's)

        Raises:
            ContentionError: If any lock could not be acquired in time
        """
        budget = self.default_timeout if timeout is None else timeout
        deadline = time.monotonic() + budget
        held: List[Tuple[LockKey, _KeyedLock]] = []

        try:
            for key in self.ordered(k for k in keys if k is not None):
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key, entry)
                    log_action(
                        self.logger, "warning", "Lock wait exceeded",
                        action="acquire_lock", resource=f"{key[0]}:{key[1]}",
                        error_code=ContentionError.code,
                        extra={"timeout_seconds": budget}
                    )
                    raise ContentionError(
                        f"Timed out waiting for {key[0]} {key[1]}",
                        details={"lock": f"{key[0]}:{key[1]}"}
                    )
                held.append((key, entry))
            yield
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key, entry)
