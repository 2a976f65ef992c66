from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.concurrency import run_in_threadpool
import structlog
import io
import time
from contextlib import asynccontextmanager
from typing import List

from models import AccountSnapshot, ErrorResponse, HealthResponse
from services import replay
from csv_io import read_transactions
from exceptions import LedgerError
from config import get_settings
from logging_config import configure_logging

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

# Rate limiting
limiter = Limiter(key_func=get_remote_address)

# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ledger replay API", version=settings.app_version)
    yield
    logger.info("Shutting down ledger replay API")

app = FastAPI(
    title=settings.app_name,
    description="Replays CSV transaction logs (deposits, withdrawals, disputes) into client account balances",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        client_ip=request.client.host if request.client else None
    )

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

@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
)
async def health_check():
    return HealthResponse(status="healthy", version=settings.app_version)

@app.post(
    "/replay",
    response_model=List[AccountSnapshot],
    summary="Replay Transactions",
    description="Replay a CSV transaction log (header: type, client, tx, amount) and return final account balances",
    responses={
        200: {"description": "One entry per client seen in the log"},
        400: {"description": "Body is not UTF-8 text"},
        413: {"description": "Body exceeds the configured size limit"},
        422: {"description": "Malformed record, amount or transaction type"},
        429: {"description": "Rate limit exceeded"},
    }
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def replay_transactions(request: Request):
    declared_size = request.headers.get("content-length")
    if declared_size is not None and declared_size.isdigit() and int(declared_size) > settings.max_request_size:
        logger.warning("Replay body too large", size=int(declared_size), limit=settings.max_request_size)
        raise HTTPException(status_code=413, detail="Request body too large")

    # Content-Length may be absent (chunked uploads), so the buffered size is checked too.
    body = await request.body()
    if len(body) > settings.max_request_size:
        logger.warning("Replay body too large", size=len(body), limit=settings.max_request_size)
        raise HTTPException(status_code=413, detail="Request body too large")

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be UTF-8 encoded CSV"
        )

    try:
        snapshots = await run_in_threadpool(
            replay,
            read_transactions(io.StringIO(text, newline=""), delimiter=settings.csv_delimiter)
        )
    except LedgerError as e:
        logger.warning("Replay rejected", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))

    return snapshots

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
