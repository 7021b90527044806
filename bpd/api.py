#!/usr/bin/env python3
"""
api.py — BPD Support API Server

Read-only support endpoints over the BPD cashback program database,
plus support-token revocation. Every citizen endpoint takes the target
citizen from the x-citizen-id header: a fiscal code, or a support token
whose signed payload carries the fiscal code.

Endpoints:
    GET    /api/v1/bpd/citizen               → Citizen profile + payment methods
    GET    /api/v1/bpd/citizen/awards        → Award history
    GET    /api/v1/bpd/citizen/transactions  → Transaction history (audited)
    DELETE /api/v1/bpd/support-token         → Revoke a support token (audited, admin only)
    GET    /health                           → Liveness probe
    GET    /ready                            → Readiness probe

Run:
    uvicorn bpd.api:create_app --factory

Configuration: see bpd.config.

Requires: fastapi, uvicorn, slowapi, sqlalchemy, pyjwt, redis, azure-data-tables
"""

import json
import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from bpd import handlers
from bpd.auth import AuthenticatedActor, get_current_actor
from bpd.config import Settings, load_settings
from bpd.constants import CITIZEN_ID_HEADER
from bpd.dependencies import Dependencies, build_dependencies
from bpd.outcomes import to_response
from bpd.security import (
    RequestIdMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)

API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Logging configuration — structured JSON to stdout
# ---------------------------------------------------------------------------

_log_level = logging.DEBUG if os.getenv("ENV", "prod") == "dev" else logging.INFO
logging.basicConfig(
    level=_log_level,
    format="%(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("bpd.api")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _deps(request: Request) -> Dependencies:
    return request.app.state.deps


# ---------------------------------------------------------------------------
# App construction
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    deps: Dependencies | None = None,
) -> FastAPI:
    """Build the API.

    settings defaults to load_settings() (raises ConfigError on gaps).
    deps, when given, is used as-is and never closed by the app;
    otherwise shared clients are built in the lifespan and closed on shutdown.
    """
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        owns_deps = app.state.deps is None
        if owns_deps:
            app.state.deps = build_dependencies(settings)
        logger.info(json.dumps({
            "event": "startup",
            "env": settings.env,
            "cors_origins": len(settings.allowed_origins),
            "rate_limit": settings.rate_limit,
            "rate_limit_backend": "redis" if settings.redis_rate_limit else "memory",
        }))

        yield

        if owns_deps:
            await app.state.deps.aclose()
            app.state.deps = None
        logger.info(json.dumps({"event": "shutdown"}))

    docs_kwargs = (
        {"docs_url": "/docs", "redoc_url": "/redoc"}
        if settings.env == "dev"
        else {"docs_url": None, "redoc_url": None, "openapi_url": None}
    )
    app = FastAPI(
        title="BPD Support API",
        description="Support operations over the BPD cashback program",
        version=API_VERSION,
        lifespan=_lifespan,
        **docs_kwargs,
    )
    app.state.deps = deps

    # -----------------------------------------------------------------------
    # Rate limiter
    # -----------------------------------------------------------------------

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        storage_uri=settings.redis_url if settings.redis_rate_limit else "memory://",
        strategy="fixed-window",
    )
    app.state.limiter = limiter

    # -----------------------------------------------------------------------
    # Middleware (last registered = outermost)
    # Execution order: RequestId → RequestSizeLimit → SecurityHeaders → CORS
    # -----------------------------------------------------------------------

    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.allowed_origins),
            allow_credentials=False,
            allow_methods=["GET", "DELETE", "OPTIONS"],
            allow_headers=["Authorization", CITIZEN_ID_HEADER],
            expose_headers=["X-Request-ID"],
            max_age=3600,
        )
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=(settings.env == "prod"))
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # -----------------------------------------------------------------------
    # Error handlers — never leak internals
    # -----------------------------------------------------------------------

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded. Try again later."},
            headers={"Retry-After": "60"},
        )

    @app.exception_handler(Exception)
    async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(json.dumps({
            "event": "unhandled_exception",
            "exception_type": type(exc).__name__,
            "request_id": _request_id(request),
            "path": request.url.path,
        }))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error."},
        )

    # -----------------------------------------------------------------------
    # Probes
    # -----------------------------------------------------------------------

    @app.get("/health", include_in_schema=False)
    async def health(request: Request) -> JSONResponse:
        """Liveness probe. No I/O, always 200."""
        return JSONResponse(
            status_code=200,
            content={"status": "ok", "version": API_VERSION},
        )

    @app.get("/ready", include_in_schema=False)
    async def ready(request: Request) -> JSONResponse:
        """Readiness probe. 200 once shared clients are wired, 503 before."""
        wired = request.app.state.deps is not None
        return JSONResponse(
            status_code=200 if wired else 503,
            content={
                "ready": wired,
                "version": API_VERSION,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    # -----------------------------------------------------------------------
    # Citizen endpoints
    # -----------------------------------------------------------------------

    @app.get("/api/v1/bpd/citizen", dependencies=[Depends(get_current_actor)])
    @limiter.limit(settings.rate_limit)
    async def get_bpd_citizen(
        request: Request,
        citizen_id: Optional[str] = Header(default=None, alias=CITIZEN_ID_HEADER),
    ) -> JSONResponse:
        """Citizen profile with enrolled payment methods."""
        outcome = await handlers.get_citizen(
            _deps(request), citizen_id, request_id=_request_id(request),
        )
        return to_response(outcome)

    @app.get("/api/v1/bpd/citizen/awards", dependencies=[Depends(get_current_actor)])
    @limiter.limit(settings.rate_limit)
    async def get_bpd_awards(
        request: Request,
        citizen_id: Optional[str] = Header(default=None, alias=CITIZEN_ID_HEADER),
    ) -> JSONResponse:
        """Award history for every award period the citizen took part in."""
        outcome = await handlers.get_awards(
            _deps(request), citizen_id, request_id=_request_id(request),
        )
        return to_response(outcome)

    @app.get("/api/v1/bpd/citizen/transactions")
    @limiter.limit(settings.rate_limit)
    async def get_bpd_transactions(
        request: Request,
        actor: AuthenticatedActor = Depends(get_current_actor),
        citizen_id: Optional[str] = Header(default=None, alias=CITIZEN_ID_HEADER),
    ) -> JSONResponse:
        """Transaction history. Every call is written to the audit log first."""
        outcome = await handlers.get_transactions(
            _deps(request), actor, citizen_id, request_id=_request_id(request),
        )
        return to_response(outcome)

    @app.delete("/api/v1/bpd/support-token")
    @limiter.limit(settings.rate_limit)
    async def delete_support_token(
        request: Request,
        actor: AuthenticatedActor = Depends(get_current_actor),
        citizen_id: Optional[str] = Header(default=None, alias=CITIZEN_ID_HEADER),
    ) -> JSONResponse:
        """Revoke the support token in x-citizen-id until it expires."""
        outcome = await handlers.blacklist_support_token(
            _deps(request), actor, citizen_id, request_id=_request_id(request),
        )
        return to_response(outcome)

    return app


# ---------------------------------------------------------------------------
# Entry point (development only)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    os.environ.setdefault("ENV", "dev")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)  # noqa: S104
