"""
Shadow Work Navigator FastAPI Application Entry Point.

Run with: uvicorn navigator.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from navigator.api.routes import auth, billing, llm, runs, threads
from navigator.config import get_settings, sanitize_error
from navigator.errors import (
    NavigatorError,
    StorageConflictError,
    UpstreamError,
    code_for_status,
    error_body,
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    if settings.environment == "production" and not _memberstack_key_allowed():
        logger.error("MEMBERSTACK_SECRET_KEY is not a live key; requests will be refused")
    yield


app = FastAPI(
    title=settings.app_name,
    description="Shadow work journaling API",
    version="0.1.0",
    lifespan=lifespan,
)


# =============================================================================
# ERROR ENVELOPE
# =============================================================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = getattr(exc, "code", None) or code_for_status(exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail), getattr(exc, "details", None)),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("BAD_REQUEST", message, errors),
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.warning("Upstream %s failed on %s: %s", exc.service, request.url.path, exc)
    details = {"service": exc.service, "retryable": exc.retryable}
    if isinstance(exc.details, dict):
        details.update(exc.details)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content=error_body("UPSTREAM_ERROR", str(exc), details),
    )


@app.exception_handler(StorageConflictError)
async def storage_conflict_handler(request: Request, exc: StorageConflictError) -> JSONResponse:
    logger.error("Unresolved storage conflict on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", sanitize_error(exc)),
    )


@app.exception_handler(NavigatorError)
async def navigator_error_handler(request: Request, exc: NavigatorError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("BAD_REQUEST", str(exc)),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", sanitize_error(exc)),
    )


# =============================================================================
# MIDDLEWARE
# =============================================================================


def _memberstack_key_allowed() -> bool:
    return settings.memberstack_secret_key.startswith("sk_live_") or settings.allow_test_memberstack_key


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Stripe-Signature", "X-PAID-ADMIN-TOKEN"],
)


@app.middleware("http")
async def edge_policies(request: Request, call_next):
    """
    Reject disallowed origins before CORS runs, and refuse service in
    production with a non-live Memberstack key.
    """
    origin = request.headers.get("origin")
    if origin is not None and origin not in settings.allowed_origins:
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=error_body("FORBIDDEN", "Origin not allowed"),
        )

    if (
        request.method != "OPTIONS"
        and settings.environment == "production"
        and not _memberstack_key_allowed()
    ):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("INTERNAL_ERROR", "Memberstack live key required in production"),
        )

    return await call_next(request)


# Include routers
app.include_router(auth.router)
app.include_router(billing.router)
app.include_router(runs.router)
app.include_router(threads.router)
app.include_router(llm.router)


@app.get("/")
async def root() -> dict[str, bool]:
    return {"ok": True}


@app.get("/health")
async def health_check() -> dict[str, bool]:
    """Health check endpoint."""
    return {"ok": True}
