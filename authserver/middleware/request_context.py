"""Request context middleware — a unique ID per request, on every log line.

Handlers run concurrently on one event loop, so the ID lives in a
ContextVar (per-task) rather than a thread-local.  A logging filter on
the root logger copies it onto every LogRecord, where _JsonFormatter
picks it up as a top-level `request_id` key.
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

# Echoed client IDs are length-capped so a caller can't bloat log lines.
_MAX_REQUEST_ID_LEN = 128


class _RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


# Install on the root logger once, even across module reloads.
root_logger = logging.getLogger()
if not any(isinstance(f, _RequestContextFilter) for f in root_logger.filters):
    root_logger.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, log one summary line.

    The ID comes from X-Request-ID when the caller sent one, else a UUID4,
    and is returned in the X-Request-ID response header.  Only the path is
    logged: /oauth/authorize carries the PKCE challenge and `state` in its
    query string.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id", "")[:_MAX_REQUEST_ID_LEN]
        req_id = req_id or str(uuid.uuid4())
        ctx_token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
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
        finally:
            request_id_var.reset(ctx_token)
