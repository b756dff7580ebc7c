"""
salesflow.observability.middleware

HTTP middleware for request-scoped logging context.

Responsibilities:
- Generate/propagate request IDs.
- Bind request metadata (and the caller's tenant, when sent) into structlog contextvars.
- Emit one `request_completed` line per request with status and duration.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from salesflow.observability.logging import get_logger

log = get_logger(__name__)

# Health checks are polled constantly; they get no access line.
_SILENT_PATHS = frozenset({"/healthz", "/readyz"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        bound = {"request_id": request_id, "path": request.url.path, "method": request.method}
        tenant = request.headers.get("x-tenant-id")
        if tenant:
            bound["tenant"] = tenant

        # Restores the previous values on exit: in-process gateway calls re-enter
        # this middleware inside the calling request's context.
        with structlog.contextvars.bound_contextvars(**bound):
            started = time.perf_counter()
            response: Response = await call_next(request)
            if request.url.path not in _SILENT_PATHS:
                log.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                )

        response.headers["x-request-id"] = request_id
        return response
