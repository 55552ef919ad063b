"""
Authentication and system dependencies
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..logging_config import get_logger
from ..system import LedgerSystem
from ..users import Principal, Role


logger = get_logger("summit.api.auth")

# JWT Security
security = HTTPBearer(auto_error=False)

_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Shared ledger system, built from configuration on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def set_ledger_system(system: Optional[LedgerSystem]) -> None:
    global _ledger_system
    _ledger_system = system


def get_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    system: LedgerSystem = Depends(get_ledger_system)
) -> Principal:
    """Dependency that validates the bearer JWT and returns the calling principal"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        role = Role(str(payload.get("role", Role.CUSTOMER.value)).upper())
    except ValueError:
        logger.warning("Token carried unknown role", extra={"user_id": user_id})
        raise HTTPException(status_code=401, detail="Invalid token")

    return Principal(user_id=user_id, role=role)
