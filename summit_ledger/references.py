"""
Transaction Reference Generator

Issues human-readable, globally unique references such as
``TXN-20251202-A3F9B2`` (transfers) and ``STK-20251202-7QK2ZD`` (stock
trades). Each candidate is checked against the store's reference index and
against the most recent references handed out by this process; collisions are
retried with a fresh suffix.
"""

import secrets
import string
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import ConflictError


TRANSFER_PREFIX = "TXN"
STOCK_TRADE_PREFIX = "STK"

SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 6
RECENT_LIMIT = 10000  # Issued references remembered in-process


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


class ReferenceGenerator:
    """Collision-checked reference issuance"""

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        suffix_source: Callable[[], str] = random_suffix,
        max_attempts: int = 10,
        recent_limit: int = RECENT_LIMIT
    ):
        self.clock = clock
        self.suffix_source = suffix_source
        self.max_attempts = max_attempts
        self.recent_limit = recent_limit
        self._issued: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def candidate(self, prefix: str) -> str:
        date_part = self.clock().strftime("%Y%m%d")
        return f"{prefix}-{date_part}-{self.suffix_source()}"

    def issue(self, prefix: str, is_taken: Optional[Callable[[str], bool]] = None) -> str:
        """
        Issue a unique reference

        Args:
            prefix: Reference prefix (TXN, STK)
            is_taken: Lookup against the persisted reference index

        Returns:
            A reference not previously issued or persisted

        Raises:
            ConflictError: If every attempt collided
        """
        with self._lock:
            for _ in range(self.max_attempts):
                reference = self.candidate(prefix)
                if reference in self._issued:
                    continue
                if is_taken is not None and is_taken(reference):
                    continue
                self._issued[reference] = None
                if len(self._issued) > self.recent_limit:
                    self._issued.popitem(last=False)
                return reference

        raise ConflictError(
            f"Could not issue a unique {prefix} reference after {self.max_attempts} attempts"
        )
