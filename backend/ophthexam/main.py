from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from ophthexam.api.v1.api import FUNCTIONS_PREFIX, api_router, functions_api_router
from ophthexam.core.config import get_settings
from ophthexam.core.cors import ScopedCORSMiddleware
from ophthexam.core.errors import CORS_HEADERS, EdgeFunctionError
from ophthexam.core.logging import configure_logging
from ophthexam.core.rate_limit import limiter
from ophthexam.core.startup_guardrails import validate_startup_security_guardrails
from ophthexam.db.init_db import init_db
from ophthexam.services.audit import record_auth_failure

settings = get_settings()
configure_logging(settings)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    validate_startup_security_guardrails(settings)
    init_db()
    logger.info("startup_complete", environment=settings.environment, storage_mode=settings.resolved_storage_mode)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter

app.add_middleware(
    ScopedCORSMiddleware,
    exclude_prefixes=(FUNCTIONS_PREFIX,),
    allow_origins=settings.cors_allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "apikey", "x-client-info"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    record_auth_failure(
        reason="RATE_LIMIT_EXCEEDED",
        metadata={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "retry_hint": "Please retry after the rate limit window.",
        },
    )


@app.exception_handler(EdgeFunctionError)
async def edge_function_error_handler(request: Request, exc: EdgeFunctionError):
    if exc.status_code >= 500:
        logger.error("edge_function_error", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, **exc.extra},
        headers=CORS_HEADERS,
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok", "app": settings.app_name, "version": settings.app_version}


app.include_router(api_router)
app.include_router(functions_api_router)
