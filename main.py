from fastapi import FastAPI, HTTPException, Request, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import structlog
import time
import io
from contextlib import asynccontextmanager
from typing import List

from models import AccountsRequest, AccountsResponse, Account, Transaction, ErrorResponse, HealthResponse
from services import LedgerService, LedgerError, NoAvailableFundsToWithdraw, get_ledger_service
from repositories import (
    StatsRepository,
    TransactionParseError,
    get_account_sink,
    get_stats_repository,
    get_transaction_source,
)
from config import get_settings
from logging_config import configure_logging

settings = get_settings()

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)
RATE_LIMIT = f"{settings.rate_limit_per_minute}/minute"

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Account Ledger API")
    yield
    # Shutdown
    logger.info("Shutting down Account Ledger API")

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Replays batches of client transactions into account snapshots",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > settings.max_request_size:
        logger.warning(
            "Request body too large",
            url=str(request.url),
            content_length=int(content_length)
        )
        return JSONResponse(
            status_code=413,
            content=ErrorResponse(
                detail="Request body too large",
                error_code="HTTP_413"
            ).model_dump(mode="json")
        )

    if settings.enable_request_logging:
        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            client_ip=request.client.host if request.client else None
        )

    response = await call_next(request)

    if settings.enable_request_logging:
        process_time = time.time() - start_time
        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            process_time=round(process_time, 4)
        )

    return response


def replay_batch(
    transactions: List[Transaction],
    service: LedgerService,
    stats_repo: StatsRepository
) -> List[Account]:
    accounts = service.from_transactions(transactions)
    stats_repo.record_batch(len(transactions))
    return sorted(accounts, key=lambda account: account.client)

# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get processing statistics"
)
async def health_check(stats_repo: StatsRepository = Depends(get_stats_repository)):
    return HealthResponse(
        status="healthy",
        batches_processed=stats_repo.get_batches_count(),
        transactions_processed=stats_repo.get_transactions_count()
    )

# JSON batch endpoint
@app.post(
    "/accounts",
    response_model=AccountsResponse,
    summary="Replay Transactions",
    description="Replay a JSON batch of transactions and return one account per client",
    responses={
        200: {"description": "Batch replayed successfully"},
        400: {"description": "A client withdrew more than it deposited"},
        422: {"description": "Validation error"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal server error"}
    }
)
@limiter.limit(RATE_LIMIT)
async def replay_transactions(
    request: Request,
    payload: AccountsRequest,
    service: LedgerService = Depends(get_ledger_service),
    stats_repo: StatsRepository = Depends(get_stats_repository)
):
    # identical transactions collapse the same way CSV rows do
    transactions = list(dict.fromkeys(payload.transactions))

    logger.info(
        "Batch request received",
        transactions=len(transactions),
        duplicates=len(payload.transactions) - len(transactions)
    )

    accounts = replay_batch(transactions, service, stats_repo)
    return AccountsResponse(accounts=accounts)

# CSV batch endpoint
@app.post(
    "/accounts/csv",
    summary="Replay Transactions CSV",
    description="Replay a `type,client,tx,amount` CSV body and return a `client,available,held,total,locked` CSV",
    response_class=Response,
    responses={
        200: {"description": "Batch replayed successfully", "content": {"text/csv": {}}},
        400: {"description": "A client withdrew more than it deposited"},
        413: {"description": "Request body too large"},
        422: {"description": "Malformed CSV"},
        429: {"description": "Rate limit exceeded"}
    }
)
@limiter.limit(RATE_LIMIT)
async def replay_transactions_csv(
    request: Request,
    service: LedgerService = Depends(get_ledger_service),
    stats_repo: StatsRepository = Depends(get_stats_repository)
):
    body = await request.body()
    if len(body) > settings.max_request_size:
        raise HTTPException(status_code=413, detail="Request body too large")

    transactions = get_transaction_source().read(io.BytesIO(body))
    accounts = replay_batch(transactions, service, stats_repo)

    output = io.StringIO()
    get_account_sink().write(accounts, output)
    return Response(content=output.getvalue(), media_type="text/csv")

# Business error handlers
@app.exception_handler(NoAvailableFundsToWithdraw)
async def no_available_funds_handler(request: Request, exc: NoAvailableFundsToWithdraw):
    logger.warning("Transaction batch rejected", client=exc.client, url=str(request.url))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            detail=str(exc),
            error_code="NO_AVAILABLE_FUNDS"
        ).model_dump(mode="json")
    )

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("Transaction batch rejected", error=str(exc), url=str(request.url))
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            detail=str(exc),
            error_code="LEDGER_ERROR"
        ).model_dump(mode="json")
    )

@app.exception_handler(TransactionParseError)
async def parse_error_handler(request: Request, exc: TransactionParseError):
    logger.warning("Malformed transactions CSV", line=exc.line, error=exc.message)
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            detail=str(exc),
            error_code="PARSE_ERROR"
        ).model_dump(mode="json")
    )

# Global exception handler
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}"
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
