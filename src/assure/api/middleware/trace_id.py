"""Trace ID middleware: one id per request, carried into logs and enqueued jobs."""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from assure.services.id_generator import generate_id

TRACE_HEADER = "X-Trace-Id"


class TraceIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        trace_id = request.headers.get(TRACE_HEADER) or request.headers.get("X-Request-Id") or generate_id("trc_")
        request.state.trace_id = trace_id

        with structlog.contextvars.bound_contextvars(trace_id=trace_id, path=request.url.path):
            response = await call_next(request)
        response.headers[TRACE_HEADER] = trace_id
        return response
