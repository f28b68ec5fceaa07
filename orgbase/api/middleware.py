"""Request-logging middleware for FastAPI."""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("orgbase.api")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a request ID and log method/path/status/duration/tenant.

    An incoming ``X-Request-ID`` is reused so ids can be traced across
    services; otherwise a new one is generated.
    """

    async def dispatch(self, request: Request, call_next):  # noqa: ANN001
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        # Set by the tenant dependency once resolution succeeded.
        tenant = getattr(request.state, "tenant", None)
        logger.info(
            "method=%s path=%s status_code=%s duration_ms=%.1f tenant=%s request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            tenant.tenant_slug if tenant is not None else "-",
            request_id,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
