"""
Summit Ledger

Ledger and trading core for a retail bank with a brokerage side: account
balances, money transfers and stock positions kept consistent under
concurrent access, with Decimal money and a hash-chained audit trail.
"""

__version__ = "1.0.0"
