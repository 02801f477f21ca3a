from fastapi import FastAPI, HTTPException, Request, Depends, status
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import structlog
import time
from contextlib import asynccontextmanager
from typing import List

from models import Action, ActionResponse, AccountData, ErrorResponse, HealthResponse, TransactionData
from engine import MultiThreadedEngine, get_engine
from errors import (
    AccountMissingError,
    ClientMismatchError,
    NoAmountError,
    TransactionMissingError,
    TransactionUsedError,
    UpdateError,
)
from config import configure_logging, get_settings

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

ERROR_STATUS = {
    TransactionMissingError: status.HTTP_404_NOT_FOUND,
    AccountMissingError: status.HTTP_404_NOT_FOUND,
    TransactionUsedError: status.HTTP_409_CONFLICT,
    ClientMismatchError: status.HTTP_409_CONFLICT,
    NoAmountError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}

# Rate limiting
limiter = Limiter(key_func=get_remote_address)

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Ledger API")
    yield
    # Shutdown
    logger.info("Shutting down Ledger API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Ledger that applies deposits, withdrawals, disputes, resolves and chargebacks "
                "submitted concurrently by independent producers",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time=round(process_time, 4)
    )

    return response

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get ledger statistics"
)
async def health_check(engine: MultiThreadedEngine = Depends(get_engine)):
    accounts_count, transactions_count = engine.counts()
    return HealthResponse(
        status="healthy",
        accounts_count=accounts_count,
        transactions_processed=transactions_count
    )

# Main action endpoint
@app.post(
    "/actions",
    response_model=ActionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Apply Action",
    description="Apply a deposit, withdrawal, dispute, resolve or chargeback to the ledger",
    responses={
        201: {"description": "Action applied; failed arithmetic is reported on the transaction"},
        404: {"description": "Referenced transaction or account does not exist"},
        409: {"description": "Transaction id already used, or client mismatch"},
        422: {"description": "Validation error or missing amount"},
        429: {"description": "Rate limit exceeded"},
    }
)
@limiter.limit(settings.rate_limit)
async def apply_action(
    request: Request,
    action: Action,
    engine: MultiThreadedEngine = Depends(get_engine)
):
    try:
        transaction = engine.process(action)
    except UpdateError as e:
        raise HTTPException(
            status_code=ERROR_STATUS.get(type(e), status.HTTP_400_BAD_REQUEST),
            detail=str(e),
            headers={"X-Error-Code": e.error_code},
        )

    return ActionResponse(transaction=transaction)

@app.get(
    "/accounts",
    response_model=List[AccountData],
    summary="List Accounts",
    description="Snapshot of every client account, in no particular order"
)
async def list_accounts(engine: MultiThreadedEngine = Depends(get_engine)):
    return engine.accounts()

@app.get(
    "/transactions/failed",
    response_model=List[TransactionData],
    summary="List Failed Transactions"
)
async def list_failed_transactions(engine: MultiThreadedEngine = Depends(get_engine)):
    return engine.failed_transactions()

@app.get("/transactions/{tx}", response_model=TransactionData, summary="Get Transaction")
async def get_transaction(tx: int, engine: MultiThreadedEngine = Depends(get_engine)):
    transaction = engine.transaction(tx)
    if transaction is None:
        raise HTTPException(
            status_code=404,
            detail=f"Transaction {tx} does not exist",
            headers={"X-Error-Code": TransactionMissingError.error_code},
        )
    return transaction

# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    headers = exc.headers or {}
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=headers.get("X-Error-Code", f"HTTP_{exc.status_code}")
        ).model_dump(mode="json")
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )

# Root endpoint
@app.get("/", include_in_schema=False)
async def root():
    return {"message": settings.app_name, "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
