"""
Transfer endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .auth import get_ledger_system, get_principal
from .schemas import TransferRequest, transfer_to_dict, transfer_view_to_dict
from ..system import LedgerSystem
from ..transfers import classify_transfer
from ..users import Principal


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_transfer(
    request: TransferRequest,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Move money between two accounts"""
    transfer = system.transfers.transfer(
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        amount=request.amount,
        description=request.description,
        principal=principal,
        idempotency_key=request.idempotency_key
    )
    return transfer_to_dict(transfer)


@router.get("")
def list_transfers(
    account_id: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transfer history of one account, or of all the caller's accounts with direction"""
    if account_id:
        transfers = system.transfers.list_account_transfers(account_id, principal, limit)
        owner = system.accounts.get_account(account_id, principal).user_id
        owned = system.accounts.user_account_ids(owner)
        return {"transfers": [transfer_to_dict(t, classify_transfer(t, owned).value) for t in transfers]}

    views = system.transfers.list_user_transfers(principal, limit)
    return {"transfers": [transfer_view_to_dict(v) for v in views]}


@router.get("/{reference}")
def get_transfer(
    reference: str,
    principal: Principal = Depends(get_principal),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Look up a transfer by reference"""
    return transfer_to_dict(system.transfers.get_transfer_by_reference(reference, principal))
