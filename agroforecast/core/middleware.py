"""
Request middleware: correlation IDs, timing and one log line per request.

Response headers:
    X-Request-ID      echoed from the caller or generated
    X-Process-Time    wall time spent in the app
    X-Model-Version   forecast model version that served the request

The request ID is placed in the log context for the duration of the
request, so predictor and cache logs carry the same ``[req:…]`` tag.
Requests slower than ``slow_request_ms`` (ensemble training, comprehensive
analyses on long histories) are logged at WARNING.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from agroforecast.core.config import settings
from agroforecast.core.logging_config import reset_request_context, set_request_context

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


def _level_for(status_code: int, duration_ms: float, slow_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400 or duration_ms >= slow_ms:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, slow_request_ms: Optional[float] = None):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms or settings.SLOW_REQUEST_MS

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        token = set_request_context(
            request_id=request_id, client_ip=client_ip, endpoint=path, method=request.method,
        )
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{(time.perf_counter() - start) * 1000:.1f}ms"
            response.headers["X-Model-Version"] = settings.MODEL_VERSION
            return response
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            if status_code >= 500 or not path.startswith(_QUIET_PREFIXES):
                logger.log(
                    _level_for(status_code, duration_ms, self.slow_request_ms),
                    "%s %s -> %d (%.1fms) [%s]",
                    request.method, path, status_code, duration_ms, client_ip,
                    extra={"duration_ms": duration_ms, "status_code": status_code, "endpoint": path},
                )
            reset_request_context(token)
