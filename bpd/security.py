"""
bpd.security — HTTP hardening middleware for the BPD support API.

Provides:
    - RequestIdMiddleware: server-generated X-Request-ID on every request/response
    - SecurityHeadersMiddleware: OWASP-recommended response headers
    - RequestSizeLimitMiddleware: rejects oversized request bodies / headers
    - structured request logging with masked client IPs
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger("bpd.security")


# ---------------------------------------------------------------------------
# Request-ID middleware
# ---------------------------------------------------------------------------

class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a unique request ID to every request and echo it in response.

    The ID is always generated here, never taken from the client: it is
    the audit-log RowKey. A client-supplied X-Request-ID is kept only as
    a correlation id in the access log.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        t0 = time.monotonic()
        response = await call_next(request)
        latency_ms = round((time.monotonic() - t0) * 1000, 1)
        response.headers["X-Request-ID"] = request_id
        _log_request(
            request, response.status_code, latency_ms, request_id,
            correlation_id=request.headers.get("x-request-id"),
        )
        return response


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------

# Responses carry citizen data or probe results; none of them may be cached.
RESPONSE_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Resource-Policy": "same-site",
    "Cache-Control": "no-store",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains; preload"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Stamp RESPONSE_HEADERS on every response, plus HSTS when enabled (prod only)."""

    def __init__(self, app: Any, *, enable_hsts: bool = False) -> None:
        super().__init__(app)
        self.headers = dict(RESPONSE_HEADERS)
        if enable_hsts:
            self.headers["Strict-Transport-Security"] = HSTS_VALUE

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers.update(self.headers)
        return response


# ---------------------------------------------------------------------------
# Request size limit middleware
# ---------------------------------------------------------------------------

MAX_BODY_BYTES = 1024       # BPD endpoints are header-only
MAX_HEADER_BYTES = 16_384   # room for a bearer token plus a support token


def _reject(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail})


def oversize_rejection(headers: Headers) -> JSONResponse | None:
    """The rejection for an oversized or malformed request, or None if it may proceed."""
    if sum(len(k) + len(v) for k, v in headers.raw) > MAX_HEADER_BYTES:
        return _reject(431, "Request headers too large")

    declared = headers.get("content-length")
    if declared is None:
        return None
    if not declared.isdigit():
        return _reject(400, "Invalid Content-Length")
    if int(declared) > MAX_BODY_BYTES:
        return _reject(413, "Request body too large")
    return None


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized headers (431) and bodies (413) before routing."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        rejection = oversize_rejection(request.headers)
        if rejection is not None:
            return rejection
        return await call_next(request)


# ---------------------------------------------------------------------------
# Structured request logging
# ---------------------------------------------------------------------------

def mask_ip(ip: str | None) -> str:
    """Truncate IP for privacy — keep first two octets of IPv4, prefix of IPv6."""
    if not ip:
        return "unknown"
    if ":" in ip:
        parts = ip.split(":")
        return ":".join(parts[:4]) + "::*"
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.*.*"
    return "unknown"


def _log_request(
    request: Request,
    status_code: int,
    latency_ms: float,
    request_id: str,
    correlation_id: str | None = None,
) -> None:
    """Emit a structured JSON log line for the request."""
    log_data = {
        "event": "http_request",
        "method": request.method,
        "path": request.url.path,
        "status": status_code,
        "latency_ms": latency_ms,
        "client_ip": mask_ip(request.client.host if request.client else None),
        "request_id": request_id,
    }
    if correlation_id:
        log_data["correlation_id"] = correlation_id[:64]
    # INFO for normal, WARNING for 4xx, ERROR for 5xx
    if status_code >= 500:
        logger.error(json.dumps(log_data))
    elif status_code >= 400:
        logger.warning(json.dumps(log_data))
    else:
        logger.info(json.dumps(log_data))
