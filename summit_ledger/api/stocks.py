"""
Stock trading endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .auth import get_ledger_system, get_principal
from .schemas import (
    TradeRequest, portfolio_to_dict, stock_to_dict, stock_transaction_to_dict
)
from ..system import LedgerSystem
from ..users import Principal


router = APIRouter()


@router.get("")
def list_stocks(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """All listed stocks by company name"""
    return {"stocks": [stock_to_dict(s) for s in system.trading.list_stocks()]}


@router.get("/available")
def list_available_stocks(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Stocks with shares left to buy"""
    return {"stocks": [stock_to_dict(s) for s in system.trading.list_available_stocks()]}


@router.get("/portfolio")
def get_portfolio(
    account_id: Optional[str] = None,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Valued positions of one account, or of all the caller's accounts"""
    if account_id:
        portfolio = system.trading.get_portfolio(account_id, principal)
    else:
        portfolio = system.trading.get_user_portfolio(principal)
    return portfolio_to_dict(portfolio)


@router.get("/wealth")
def get_total_wealth(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Cash plus stock value"""
    wealth = system.trading.get_total_wealth(principal)
    return {name: str(value) for name, value in wealth.items()}


@router.post("/buy", status_code=status.HTTP_201_CREATED)
def buy_stock(
    request: TradeRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    trade = system.trading.buy(
        request.account_id, request.symbol, request.quantity, principal,
        idempotency_key=request.idempotency_key
    )
    return stock_transaction_to_dict(trade)


@router.post("/sell", status_code=status.HTTP_201_CREATED)
def sell_stock(
    request: TradeRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    trade = system.trading.sell(
        request.account_id, request.symbol, request.quantity, principal,
        idempotency_key=request.idempotency_key
    )
    return stock_transaction_to_dict(trade)


@router.get("/transactions")
def list_stock_transactions(
    account_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Trade history, newest first"""
    trades = system.trading.list_stock_transactions(principal, account_id=account_id, limit=limit)
    return {"transactions": [stock_transaction_to_dict(t) for t in trades]}


@router.get("/transactions/{reference}")
def get_stock_transaction(
    reference: str,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    trade = system.trading.get_stock_transaction_by_reference(reference, principal)
    return stock_transaction_to_dict(trade)


@router.get("/{symbol}")
def get_stock(
    symbol: str,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return stock_to_dict(system.trading.get_stock(symbol))
