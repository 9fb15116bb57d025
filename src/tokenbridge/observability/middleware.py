"""
tokenbridge.observability.middleware

HTTP middleware for request-scoped logging context.

Responsibilities:
- Accept a well-formed caller request id or mint one.
- Bind request metadata (including the exchange provider) into structlog contextvars.
- Emit one access log line per request with status and latency.
"""

from __future__ import annotations

import re
import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tokenbridge.observability.logging import get_logger

log = get_logger(__name__)

_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")
_EXCHANGE_PATH = re.compile(r"^/(?P<provider>[a-z0-9][a-z0-9_-]*)/exchange$")


def _request_id(request: Request) -> str:
    # Caller ids end up in every log line; anything unexpected is replaced.
    supplied = request.headers.get("x-request-id", "")
    return supplied if _REQUEST_ID.match(supplied) else str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every request has a request id
    - Binds request-scoped contextvars for structured logs
    - Logs `request_completed` once the response is ready
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = _request_id(request)
        request.state.request_id = request_id

        context = {"request_id": request_id, "path": request.url.path, "method": request.method}
        match = _EXCHANGE_PATH.match(request.url.path)
        if match:
            context["provider"] = match["provider"]

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**context)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            log.info(
                "request_completed",
                status=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 1),
            )
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers["x-request-id"] = request_id
        return response


# --- Module Notes -----------------------------------------------------------
# Paired with `observability.logging.configure_logging`: engine components log
# without threading request metadata through their call signatures.
