"""
Ledger Error Taxonomy

Every failure the core surfaces is a LedgerError subclass with a stable
``code``. The HTTP adapter maps codes to status codes; the core itself never
deals in transport concerns.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for all ledger core errors"""

    code = "internal"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.code, "detail": self.message}
        if self.details:
            result["details"] = self.details
        return result


class InvalidArgumentError(LedgerError, ValueError):
    """Malformed or out-of-range input; the caller's fault"""
    code = "invalid_argument"


class NotFoundError(LedgerError):
    """Unknown user, account, stock, transfer or reference"""
    code = "not_found"


class PermissionDeniedError(LedgerError):
    """Principal is not allowed to perform the operation"""
    code = "permission_denied"


class AccountFrozenError(LedgerError):
    """A touched account is frozen"""
    code = "account_frozen"


class InsufficientFundsError(LedgerError):
    """Account balance does not cover the debit"""
    code = "insufficient_funds"


class InsufficientInventoryError(LedgerError):
    """Stock does not have enough available shares"""
    code = "insufficient_inventory"


class InsufficientHoldingsError(LedgerError):
    """Position does not hold enough shares to sell"""
    code = "insufficient_holdings"


class ConflictError(LedgerError):
    """Uniqueness violation or state that forbids the change"""
    code = "conflict"


class ContentionError(LedgerError):
    """Lock or transaction wait exceeded its bound"""
    code = "contention"
    retryable = True


class InternalError(LedgerError):
    """Store failure or broken invariant"""
    code = "internal"
