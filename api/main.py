"""
api/main.py -- FastAPI application entry point for EdgeGate.

Run with:      uvicorn asgi:app
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- app-wide limits; per-route limits run in the @limiter.limit wrapper
  3. log_requests          -- one access-log line per request

Lifespan builds the gate from settings once at startup: codec (cookie key),
policy (exemption set), verifier (transport), origin client. All of them are
immutable after startup and shared by every request without locking.

The gate's HTML routes and the catch-all proxy live in web/routes.py and are
mounted by asgi.py, after the health endpoint below.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from auth.tokens import build_codec
from core.config import get_settings
from core.gate import Gate
from core.origin import OriginClient
from core.policy import AssessmentPolicy
from core.verifier import build_verifier

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("edgegate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the gate on startup, release pooled connections on shutdown."""
    settings = get_settings()
    app.state.settings = settings
    app.state.gate = Gate(
        codec=build_codec(settings),
        policy=AssessmentPolicy(
            settings.exempted_services,
            tolerance_seconds=settings.freshness_tolerance_seconds,
        ),
        verifier=build_verifier(settings),
    )
    app.state.origin = OriginClient(settings.origin_url, timeout=settings.origin_timeout_seconds)
    logger.info(
        "EdgeGate starting (scheme=%s, verifier=%s, origin=%s, exempted=%s)",
        settings.cookie_scheme,
        settings.verifier_mode,
        settings.origin_url,
        sorted(settings.exempted_services),
    )

    yield

    logger.info("EdgeGate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EdgeGate",
    description="Challenge-and-verify access gate in front of an origin service.",
    version=__version__,
    lifespan=lifespan,
    # The gate proxies every path; its own schema is not public.
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a client hammers the verification endpoint."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the verification body is not {"captchaData": "<bundle>"}."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error=ErrorDetail(
                code="bad_request",
                message="Request body must be JSON with a captchaData string.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTPException raised by route handlers.

    Handlers raise with detail=ErrorDetail(...).model_dump(); use that dict
    directly rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors. The traceback goes to the log, never the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered before the catch-all gate route so load balancers can probe the
# gate itself without a session cookie. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/_gate/health", include_in_schema=False)
async def health(request: Request) -> HealthResponse:
    """Return gate liveness, version and active strategies."""
    settings = request.app.state.settings
    return HealthResponse(
        version=__version__,
        cookie_scheme=settings.cookie_scheme,
        verifier_mode=settings.verifier_mode,
    )
