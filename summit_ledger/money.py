"""
Money and Price Arithmetic Module

Fixed-point helpers for balances, share prices and cost basis. Every
monetary value in the ledger is a Decimal; binary floats are converted via
their string form and never used for arithmetic.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

from .errors import InvalidArgumentError

# Set global decimal context for financial precision
getcontext().prec = 28

MONEY_PLACES = 2      # Balances, transfer amounts, trade totals
PRICE_PLACES = 2      # Stock prices
COST_BASIS_PLACES = 6  # Weighted-average cost basis

ZERO = Decimal('0')
MAX_AMOUNT = Decimal("999999999999999.99")  # Largest accepted input amount

Numeric = Union[Decimal, int, float, str]


def to_decimal(value: Numeric, field: str = "value") -> Decimal:
    """
    Convert a numeric input to Decimal

    Raises:
        InvalidArgumentError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise InvalidArgumentError(f"{field} must be a number")

    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidArgumentError(f"{field} is not a valid number: {value!r}")

    if not result.is_finite():
        raise InvalidArgumentError(f"{field} must be finite")
    return result


def quantize(value: Decimal, places: int) -> Decimal:
    """
    Round to a fixed number of decimal places (ROUND_HALF_UP)

    Raises:
        InvalidArgumentError: If the rounded value does not fit the decimal context
    """
    try:
        return value.quantize(Decimal('0.1') ** places, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidArgumentError(f"Value out of range: {value}")


def to_amount(value: Numeric, field: str = "amount") -> Decimal:
    """Convert to a 2-place money amount"""
    return quantize(to_decimal(value, field), MONEY_PLACES)


def parse_amount(value: Numeric, field: str = "amount") -> Decimal:
    """
    Convert a caller-supplied money amount without rounding it

    Raises:
        InvalidArgumentError: More than 2 decimal places, or above MAX_AMOUNT
    """
    result = to_decimal(value, field)
    if abs(result) > MAX_AMOUNT:
        raise InvalidArgumentError(f"{field} exceeds the maximum of {MAX_AMOUNT}")
    amount = quantize(result, MONEY_PLACES)
    if amount != result:
        raise InvalidArgumentError(f"{field} cannot have more than {MONEY_PLACES} decimal places")
    return amount


def to_price(value: Numeric, field: str = "price") -> Decimal:
    """Convert to a 2-place share price"""
    return quantize(to_decimal(value, field), PRICE_PLACES)


def to_cost_basis(value: Decimal, places: int = COST_BASIS_PLACES) -> Decimal:
    return quantize(value, places)


def require_positive(value: Decimal, field: str = "amount") -> Decimal:
    if value <= ZERO:
        raise InvalidArgumentError(f"{field} must be greater than zero")
    return value


def mask_account_number(account_number: str) -> str:
    """Display form of an account number: ****1234"""
    if not account_number:
        return ""
    return "****" + account_number[-4:]
