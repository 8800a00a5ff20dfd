"""Prometheus metrics middleware, instruments every HTTP request.

For each request:
  1. Increments the ACTIVE_REQUESTS gauge (decrement on completion)
  2. Times the request
  3. On completion: increments REQUEST_COUNT and observes REQUEST_DURATION

The endpoint label is the template of the route the router matched
("/v1/courses/{course_id}/validate"), read from the request scope after
the handler ran, not the raw path: course ids are unbounded and would
otherwise create one time series per course.  Requests no route matched
share the "<unmatched>" label.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

_UNMATCHED = "<unmatched>"


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is None:
        return _UNMATCHED
    return getattr(route, "path", _UNMATCHED)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            endpoint = _endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
