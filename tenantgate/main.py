"""tenantgate FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenantgate import __version__
from tenantgate.api.middleware import RequestLoggingMiddleware
from tenantgate.api.routes import auth, health, usage
from tenantgate.config.settings import settings
from tenantgate.multitenancy.context import TenantMiddleware
from tenantgate.multitenancy.errors import (
    AuthServiceError,
    ConfigurationError,
    InvalidRequest,
    ProfileNotFound,
    QuotaExceeded,
    TenantGateError,
    TenantMismatch,
    Unauthenticated,
    UpstreamUnavailable,
    UsageRecordCorrupted,
)
from tenantgate.multitenancy.registry import get_registry

logger = logging.getLogger("tenantgate.api")

# Most specific class first; lookup walks the exception's MRO.
ERROR_STATUS_CODES: dict[type[TenantGateError], int] = {
    TenantMismatch: 401,
    Unauthenticated: 401,
    ProfileNotFound: 404,
    QuotaExceeded: 429,
    AuthServiceError: 400,
    InvalidRequest: 400,
    UpstreamUnavailable: 503,
    ConfigurationError: 500,
    UsageRecordCorrupted: 500,
}


def status_code_for(exc: TenantGateError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logging.basicConfig(level=settings.LOG_LEVEL)
    if not settings.SUPABASE_URL:
        logger.warning("SUPABASE_URL is not set; tenant clients cannot be created")
    yield
    get_registry().clear()
    app.state.enforcers.clear()


app = FastAPI(
    title="tenantgate",
    version=__version__,
    lifespan=lifespan,
)
app.state.enforcers = {}

app.add_middleware(TenantMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for _router in (health.router, auth.router, usage.router):
    app.include_router(_router)


# --- Exception handlers ---

@app.exception_handler(TenantGateError)
async def tenantgate_error_handler(request: Request, exc: TenantGateError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code == 500:
        # Operator-facing detail stays in the log.
        logger.error("path=%s error=%s detail=%s", request.url.path, exc.code, exc)
        return JSONResponse(
            status_code=500,
            content={"error": exc.code, "detail": "Tenant is misconfigured. Contact support."},
        )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PermissionError)
async def permission_error_handler(request: Request, exc: PermissionError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("path=%s unhandled error", request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})
