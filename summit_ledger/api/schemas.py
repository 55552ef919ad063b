"""
Pydantic schemas for API requests and response serializers
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..trading import PortfolioItem, Portfolio, Stock, StockTransaction
from ..transfers import Transfer, TransferView
from ..users import User


# Account schemas
class OpenAccountRequest(BaseModel):
    account_type: str = Field(..., description="CHECKING or SAVINGS")
    initial_deposit: str = Field("0.00", description="Decimal amount as string")
    user_id: Optional[str] = Field(None, description="Owner; defaults to the caller")


class DepositRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")


# Transfer schemas
class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    description: str
    idempotency_key: Optional[str] = None


# Trading schemas
class TradeRequest(BaseModel):
    account_id: str
    symbol: str
    quantity: int = Field(..., description="Whole number of shares")
    idempotency_key: Optional[str] = None


# Admin schemas
class FreezeRequest(BaseModel):
    account_id: str


class CreateStockRequest(BaseModel):
    symbol: str
    company_name: str
    current_price: str = Field(..., description="Decimal price as string")
    total_shares: int
    sector: Optional[str] = None
    description: Optional[str] = None


class UpdatePriceRequest(BaseModel):
    price: str = Field(..., description="Decimal price as string")


class RegisterUserRequest(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str = Field("CUSTOMER", description="CUSTOMER or ADMIN")


class UserStatusRequest(BaseModel):
    status: str = Field(..., description="ACTIVE, SUSPENDED or PENDING_VERIFICATION")


# Response serializers

def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "user_id": account.user_id,
        "account_number": account.account_number,
        "masked_number": account.masked_number,
        "account_type": account.account_type.value,
        "balance": str(account.balance),
        "status": account.status,
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat()
    }


def transfer_to_dict(transfer: Transfer, direction: Optional[str] = None) -> Dict[str, Any]:
    result = {
        "id": transfer.id,
        "transaction_reference": transfer.transaction_reference,
        "from_account_id": transfer.from_account_id,
        "to_account_id": transfer.to_account_id,
        "amount": str(transfer.amount),
        "description": transfer.description,
        "status": transfer.status.value,
        "timestamp": transfer.timestamp.isoformat()
    }
    if direction:
        result["direction"] = direction
    return result


def transfer_view_to_dict(view: TransferView) -> Dict[str, Any]:
    return transfer_to_dict(view.transfer, view.direction.value)


def stock_to_dict(stock: Stock) -> Dict[str, Any]:
    return {
        "symbol": stock.symbol,
        "company_name": stock.company_name,
        "current_price": str(stock.current_price),
        "total_shares": stock.total_shares,
        "available_shares": stock.available_shares,
        "sector": stock.sector,
        "description": stock.description,
        "price_version": stock.price_version
    }


def stock_transaction_to_dict(trade: StockTransaction) -> Dict[str, Any]:
    return {
        "id": trade.id,
        "transaction_reference": trade.transaction_reference,
        "account_id": trade.account_id,
        "symbol": trade.symbol,
        "type": trade.trade_type.value,
        "quantity": trade.quantity,
        "price_per_share": str(trade.price_per_share),
        "total_amount": str(trade.total_amount),
        "profit_loss": str(trade.profit_loss) if trade.profit_loss is not None else None,
        "timestamp": trade.timestamp.isoformat()
    }


def portfolio_item_to_dict(item: PortfolioItem) -> Dict[str, Any]:
    return {
        "account_id": item.account_id,
        "symbol": item.symbol,
        "company_name": item.company_name,
        "quantity": item.quantity,
        "average_cost_basis": str(item.average_cost_basis),
        "current_price": str(item.current_price),
        "market_value": str(item.market_value),
        "profit_loss": str(item.profit_loss),
        "profit_loss_percent": str(item.profit_loss_percent)
    }


def portfolio_to_dict(portfolio: Portfolio) -> Dict[str, Any]:
    return {
        "positions": [portfolio_item_to_dict(item) for item in portfolio.items],
        "total_value": str(portfolio.total_value),
        "total_profit_loss": str(portfolio.total_profit_loss),
        "total_profit_loss_percent": str(portfolio.total_profit_loss_percent)
    }


def user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "role": user.role.value,
        "status": user.status.value,
        "created_at": user.created_at.isoformat()
    }
