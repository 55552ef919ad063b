"""
Account management endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import get_ledger_system, get_principal
from .schemas import DepositRequest, OpenAccountRequest, account_to_dict
from ..system import LedgerSystem
from ..users import Principal


router = APIRouter()


@router.post("/open", status_code=status.HTTP_201_CREATED)
def open_account(
    request: OpenAccountRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Open a checking or savings account"""
    account = system.accounts.open_account(
        user_id=request.user_id or principal.user_id,
        account_type=request.account_type,
        initial_deposit=request.initial_deposit,
        principal=principal
    )
    return account_to_dict(account)


@router.get("")
def list_accounts(
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the caller's accounts, oldest first"""
    accounts = system.accounts.get_accounts_for_user(principal.user_id, principal)
    return {"accounts": [account_to_dict(a) for a in accounts]}


@router.get("/{account_id}")
def get_account(
    account_id: str,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get account details"""
    return account_to_dict(system.accounts.get_account(account_id, principal))


@router.post("/{account_id}/deposit")
def deposit(
    account_id: str,
    request: DepositRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Deposit money into an account"""
    account = system.accounts.deposit(account_id, request.amount, principal)
    return account_to_dict(account)
