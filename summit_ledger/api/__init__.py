"""
Summit Ledger API Application Factory
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import (
    AccountFrozenError, ConflictError, ContentionError, InsufficientFundsError,
    InsufficientHoldingsError, InsufficientInventoryError, InvalidArgumentError,
    LedgerError, NotFoundError, PermissionDeniedError
)
from ..logging_config import get_logger
from .accounts import router as accounts_router
from .admin import router as admin_router
from .stocks import router as stocks_router
from .transfers import router as transfers_router


logger = get_logger("summit.api")

STATUS_BY_ERROR = {
    InvalidArgumentError: 400,
    InsufficientFundsError: 400,
    InsufficientInventoryError: 400,
    InsufficientHoldingsError: 400,
    AccountFrozenError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    ContentionError: 503,
}


def status_for(error: LedgerError) -> int:
    """HTTP status for a ledger error kind"""
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(error, error_type):
            return status_code
    return 500


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message},
        headers=headers
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Summit Ledger API",
        description="Ledger and trading core: accounts, transfers and stock positions",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])
    app.include_router(stocks_router, prefix="/stocks", tags=["Stocks"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "summit_ledger_api",
            "version": __version__
        }

    return app


app = create_app()
