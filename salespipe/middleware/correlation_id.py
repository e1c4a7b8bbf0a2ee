from __future__ import annotations

import re

from opentelemetry import trace
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salespipe.context import correlation_scope


CORRELATION_HEADER = "x-correlation-id"
REQUEST_ID_HEADER = "x-request-id"

_VALID_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def inbound_correlation_id(headers: Headers) -> str | None:
    """First well-formed id from ``X-Correlation-Id`` then ``X-Request-Id``."""
    for name in (CORRELATION_HEADER, REQUEST_ID_HEADER):
        value = headers.get(name)
        if value and _VALID_ID.fullmatch(value):
            return value
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        with correlation_scope(inbound_correlation_id(request.headers)) as correlation_id:
            request.state.correlation_id = correlation_id
            span = trace.get_current_span()
            if span.is_recording():
                span.set_attribute("correlation_id", correlation_id)
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
