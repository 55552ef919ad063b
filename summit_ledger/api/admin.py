"""
Admin endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .auth import get_ledger_system, get_principal
from .schemas import (
    CreateStockRequest, FreezeRequest, RegisterUserRequest, UpdatePriceRequest, UserStatusRequest,
    account_to_dict, stock_to_dict, stock_transaction_to_dict, transfer_to_dict, user_to_dict
)
from ..system import LedgerSystem
from ..users import Principal


router = APIRouter()


@router.post("/freeze")
def freeze_account(
    request: FreezeRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return account_to_dict(system.admin.freeze_account(request.account_id, principal))


@router.post("/unfreeze")
def unfreeze_account(
    request: FreezeRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return account_to_dict(system.admin.unfreeze_account(request.account_id, principal))


@router.get("/users")
def list_users(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"users": [user_to_dict(u) for u in system.admin.list_users(principal)]}


@router.post("/users", status_code=status.HTTP_201_CREATED)
def register_user(
    request: RegisterUserRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Enroll a user; tokens for them carry the returned id as ``sub``"""
    user = system.admin.register_user(
        email=request.email,
        first_name=request.first_name,
        last_name=request.last_name,
        principal=principal,
        role=request.role
    )
    return user_to_dict(user)


@router.post("/users/{user_id}/status")
def set_user_status(
    user_id: str,
    request: UserStatusRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return user_to_dict(system.admin.set_user_status(user_id, request.status, principal))


@router.get("/accounts")
def list_all_accounts(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"accounts": [account_to_dict(a) for a in system.admin.list_all_accounts(principal)]}


@router.get("/transfers")
def list_all_transfers(
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    transfers = system.admin.list_all_transfers(principal, limit)
    return {"transfers": [transfer_to_dict(t) for t in transfers]}


@router.get("/stock-transactions")
def list_all_stock_transactions(
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    trades = system.admin.list_all_stock_transactions(principal, limit)
    return {"transactions": [stock_transaction_to_dict(t) for t in trades]}


@router.post("/stocks", status_code=status.HTTP_201_CREATED)
def create_stock(
    request: CreateStockRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    stock = system.admin.create_stock(
        symbol=request.symbol,
        company_name=request.company_name,
        current_price=request.current_price,
        total_shares=request.total_shares,
        principal=principal,
        sector=request.sector,
        description=request.description
    )
    return stock_to_dict(stock)


@router.post("/stocks/{symbol}/price")
def update_price(
    symbol: str,
    request: UpdatePriceRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return stock_to_dict(system.admin.update_price(symbol, request.price, principal))


@router.delete("/stocks/{symbol}")
def delete_stock(
    symbol: str,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    system.admin.delete_stock(symbol, principal)
    return {"symbol": symbol.upper(), "message": "Stock deleted"}


@router.get("/audit")
def audit_report(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Audit chain verification"""
    return system.admin.audit_report(principal)


@router.get("/metrics")
def operational_metrics(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Ledger-wide operational counts"""
    metrics = system.admin.operational_metrics(principal)
    metrics["accounts"]["total_balance"] = str(metrics["accounts"]["total_balance"])
    return metrics
