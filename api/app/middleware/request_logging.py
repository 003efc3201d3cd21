# api/app/middleware/request_logging.py
"""
Tags every request with an X-Request-ID and logs one line per request.

A caller-supplied X-Request-ID is echoed back, so a trigger sent to
/v1/events can be traced from the client through to the API log.
"""
from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(
            level,
            "[%s] %s %s status=%d key=%s %.0fms",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            "yes" if request.headers.get("X-Api-Key") else "no",
            elapsed_ms,
        )
        return response
