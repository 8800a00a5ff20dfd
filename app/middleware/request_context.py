"""Request context middleware: a unique ID for every request.

Webhook senders retry aggressively, so the same purchase may be in flight
several times at once.  The request id separates those interleaved log
lines; the dedup key (logged by the pipeline) ties them back together.

The id lives in a ContextVar rather than a thread-local: FastAPI serves
concurrent requests on the same thread, and each asyncio task gets its
own copy of the context.  Tasks spawned during a request (such as the
welcome-notification sender) inherit it.
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


class _RequestContextFilter(logging.Filter):
    """Injects the current request id into every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        return True


def install_log_filter() -> None:
    # Handler-level so records from every logger pass through it;
    # logger-level filters are not consulted for propagated records.
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, _RequestContextFilter) for f in handler.filters):
            handler.addFilter(_RequestContextFilter())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, times the request, logs a completion line.

    1. Reads X-Request-ID (if the sender provided one) or generates a UUID
    2. Stores it in a ContextVar for the rest of the request
    3. Logs method, path, status and duration on completion
    4. Echoes X-Request-ID on the response
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        try:
            return await self._timed(request, call_next, req_id)
        finally:
            request_id_var.reset(token)

    async def _timed(
        self, request: Request, call_next: RequestResponseEndpoint, req_id: str
    ) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s -> %d (%.1fms)",
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
