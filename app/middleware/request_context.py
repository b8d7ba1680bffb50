"""Correlation IDs for log lines.

Every log line carries a ``request_id``.  For HTTP traffic it comes from
the X-Request-ID header (or a fresh UUID) and is echoed on the response.
A renewal pass run by the worker binds its own ``renewal-<uuid>`` ID, so
all per-subscription lines of one pass can be pulled out of the logs
together.

The ID lives in a ContextVar: FastAPI runs many requests on one thread,
and each asyncio task sees its own copy.  Tasks spawned by the renewal
pass inherit the pass's ID.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


def bind_request_id(value: str | None = None, *, prefix: str = "") -> str:
    """Set the correlation ID for the current context and return it."""
    req_id = value or f"{prefix}{uuid.uuid4()}"
    request_id_var.set(req_id)
    return req_id


class _RequestContextFilter(logging.Filter):
    """Attach the current correlation ID to every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Installed once on the root logger so every logger inherits it.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request ID, time the request, log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = bind_request_id(request.headers.get("x-request-id"))

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
