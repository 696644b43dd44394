"""FastAPI application for the LineScout API.

Provides the main application instance with routers, CORS and exception
handlers configured. Every error leaves the API as a JSON body with
``ok: false``.
"""

import logging
import sys
import time as _time
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("linescout").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from linescout.api.routes import (
    agent_inbox,
    conversations,
    handoffs,
    paid_chat,
    payments,
    payouts,
    settings,
    wallets,
)
from linescout.config import get_config
from linescout.db.connection import close_db, init_db
from linescout.errors import DomainError, LineScoutError

logger = logging.getLogger(__name__)

_startup_time: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release the pool on shutdown."""
    global _startup_time
    _startup_time = _time.time()
    init_db()
    yield
    close_db()


app = FastAPI(
    title="LineScout API",
    description="Sourcing conversations, handoffs, quote payments and wallets",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS allowlist comes from config. If empty, CORS is disabled (same-origin only).
allowed_origins = get_config().server.allowed_origins
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Render a domain exception with the HTTP status it carries."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(LineScoutError)
async def linescout_error_handler(request: Request, exc: LineScoutError) -> JSONResponse:
    """Handle LineScoutError exceptions with consistent format.

    Retryable errors (upstream outages) map to 502, the rest to 500.
    """
    logger.error("%s on %s %s", exc, request.method, request.url.path)
    return JSONResponse(
        status_code=502 if exc.is_retryable else 500,
        content={
            "ok": False,
            "error": exc.message,
            "error_code": exc.code,
            "remediation": exc.remediation,
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": f"{field}: {message}" if field else message,
            "error_code": "E-1001",
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "Server error", "error_code": "E-5001"},
    )


# Include routers
app.include_router(conversations.router, prefix="/api/v1")
app.include_router(agent_inbox.router, prefix="/api/v1")
app.include_router(handoffs.router, prefix="/api/v1")
app.include_router(paid_chat.router, prefix="/api/v1")
app.include_router(payments.router, prefix="/api/v1")
app.include_router(wallets.router, prefix="/api/v1")
app.include_router(payouts.router, prefix="/api/v1")
app.include_router(settings.router, prefix="/api/v1")


@app.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status, version and uptime.
    """
    try:
        version = _pkg_version("linescout")
    except Exception:
        version = "unknown"
    uptime = int(_time.time() - _startup_time) if _startup_time else 0
    return {"status": "healthy", "version": version, "uptime_seconds": uptime}
