"""
ledger_bank/app.py

FastAPI application entrypoint for the ledger-bank service.

This module wires together:
- Logging configuration (file-based under LOG_DIR)
- CORS and request-logging middleware
- Error handlers mapping ledger failures to JSON bodies
- Domain routers under ledger_bank.api (accounts, transactions & transfers)
"""

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException
from starlette.requests import Request

from . import settings
from .api.accounts import router as accounts_router
from .api.transactions import router as transactions_router
from .db.session import engine, init_models
from .logging_config import get_logger, setup_logging
from .services.errors import LedgerError

# Configure logging before creating the app
setup_logging()
logger = get_logger("ledger_bank")

app = FastAPI(title="Ledger Bank API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Lightweight request logger to help trace ledger traffic.
    """
    logger.info(
        "HTTP %s %s from %s",
        request.method,
        request.url.path,
        request.client.host if request.client else "?",
    )
    response = await call_next(request)
    logger.info("HTTP %s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("Rejected %s %s: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning("Invalid request body for %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=422,
        content={"error": "Invalid request", "details": jsonable_errors(exc)},
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Server error processing request"})


def jsonable_errors(exc: RequestValidationError):
    return [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.get("/api/health")
async def health():
    """
    Simple health check endpoint.
    """
    return {"status": "healthy"}


# Include domain routers
app.include_router(accounts_router, prefix="/api")
app.include_router(transactions_router, prefix="/api")


@app.on_event("startup")
async def on_startup():
    logger.info("Ledger-bank starting up")
    if settings.AUTO_CREATE_TABLES:
        await init_models()


@app.on_event("shutdown")
async def on_shutdown():
    try:
        await engine.dispose()
    except Exception:
        logger.exception("Error disposing engine on shutdown")
    logger.info("Ledger-bank shutting down")
