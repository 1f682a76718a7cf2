"""FastAPI application for MartialBase.

Endpoints:
  GET    /health                                   - Health check
  GET    /people/me                                - Person ID of the calling identity
  GET    /people/{id}                              - Get a person
  GET    /people/{id}/organisations                - Organisations a person belongs to
  GET    /people/{id}/schools                      - Schools a person attends
  GET    /organisations                            - Organisations visible to the caller
  GET    /organisations/{id}                       - Get an organisation
  GET    /organisations/{id}/people                - Organisation members (admin)
  DELETE /organisations/{id}/people/{person_id}    - Remove a member (admin)
  PUT    /organisations/{id}/parent                - Change parent organisation (admin)
  DELETE /organisations/{id}/parent                - Remove parent organisation (admin)
  GET    /schools/{id}                             - Get a school
  GET    /schools/{id}/students                    - School students (secretary)
  GET    /admin/roles                              - Role catalog (system admin)
  GET    /admin/users/{id}/roles                   - Roles of a user account (system admin)
  GET    /admin/users/{id}/invitationcode          - Issue an invitation code (system admin)
  DELETE /admin/users/{id}/login                   - Disassociate external login (system admin)
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import martialbase
from martialbase.api.routes import admin, organisations, people, schools
from martialbase.config import settings
from martialbase.exceptions import MartialBaseError
from martialbase.logging_config import log_startup_info, setup_logging
from martialbase.storage.database import Database

logger = logging.getLogger("martialbase")
_audit_logger = logging.getLogger("martialbase.audit")

# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------
_rate_limit_enabled = settings.rate_limit.lower() != "none"
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit] if _rate_limit_enabled else [],
    enabled=_rate_limit_enabled,
)

_STARTUP_TIME: float = 0.0

_db = Database(os.environ.get("MB_DB_PATH", settings.db_path))


def _is_production() -> bool:
    return os.environ.get("MB_ENVIRONMENT", settings.environment).lower() == "production"


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _STARTUP_TIME
    _STARTUP_TIME = time.monotonic()
    setup_logging()
    await _db.connect()
    log_startup_info()
    yield
    logger.info("Closing database connection")
    await _db.close()
    logger.info("Shutdown complete")


_OPENAPI_TAGS = [
    {"name": "Health", "description": "Health checks and version info"},
    {"name": "People", "description": "People and their memberships"},
    {"name": "Organisations", "description": "Organisations, members and hierarchy"},
    {"name": "Schools", "description": "Schools and students"},
    {"name": "Admin", "description": "User account administration"},
]

app = FastAPI(
    title="MartialBase API",
    description="Management of martial-arts organisations, schools and people.",
    version=martialbase.__version__,
    lifespan=lifespan,
    openapi_tags=_OPENAPI_TAGS,
)

app.state.db = _db
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(MartialBaseError)
async def martialbase_error_handler(request: Request, exc: MartialBaseError) -> JSONResponse:
    """Translate typed errors into JSON; production responses omit the message."""
    request_id = getattr(request.state, "request_id", "unknown")
    content: dict = {
        "error": exc.error_type,
        "code": int(exc.code) if exc.code is not None else None,
        "request_id": request_id,
    }
    if not _is_production():
        content["message"] = exc.message
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After header on rate limit."""
    request_id = getattr(request.state, "request_id", "unknown")
    _audit_logger.warning(
        "Rate limit exceeded: %s %s from %s",
        request.method,
        request.url.path,
        get_remote_address(request),
        extra={"event_category": "audit", "action": "rate_limit_exceeded"},
    )
    response = JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "code": None,
            "message": str(exc.detail),
            "request_id": request_id,
        },
    )
    response.headers["Retry-After"] = "60"
    return response


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        "Unhandled error on %s %s",
        request.method,
        request.url.path,
        exc_info=exc,
        extra={"request_id": request_id, "path": request.url.path, "method": request.method},
    )
    content: dict = {"error": "internal_error", "code": None, "request_id": request_id}
    if not _is_production():
        content["message"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next) -> Response:
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Cache-Control"] = "no-store"
    return response


# Also sets request_id on state for the error handlers.
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    request_id = str(uuid4())[:8]
    request.state.request_id = request_id
    start = time.monotonic()
    response: Response = await call_next(request)
    elapsed_ms = round((time.monotonic() - start) * 1000, 1)
    person_id = getattr(request.state, "requesting_person_id", None)
    logger.info(
        "%s %s %s %.1fms [%s]",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
            "person_id": str(person_id) if person_id else None,
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------
_instrumentator = Instrumentator(
    excluded_handlers=["/metrics"],
    should_respect_env_var=False,
)
_instrumentator.instrument(app).expose(app, endpoint="/metrics", tags=["Health"])


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"], summary="Health check")
@limiter.exempt
async def health():
    uptime_s = time.monotonic() - _STARTUP_TIME if _STARTUP_TIME > 0 else 0
    return {
        "status": "ok",
        "version": martialbase.__version__,
        "uptime_seconds": round(uptime_s, 1),
    }


app.include_router(people.router)
app.include_router(organisations.router)
app.include_router(schools.router)
app.include_router(admin.router)
