"""Request ID and access log middleware.

Each request gets an ID (the caller's X-Request-ID, or a fresh UUID)
held in request_id_var, so every log line emitted while handling it
carries the same [request_id] no matter which module logs.  The ID is
echoed back in the X-Request-ID response header.

The access line also names the caller: require_user() leaves the
authenticated user's id on request.state.  Anonymous and rejected
requests log "-".
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from onboarding.core.logging import request_id_var

logger = logging.getLogger(__name__)


def caller_of(request: Request) -> str:
    return getattr(request.state, "user_id", None) or "-"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag the request with an ID, then log method, path, caller and timing."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        token = request_id_var.set(req_id)
        try:
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)
            user_id = caller_of(request)

            logger.info(
                "%s %s -> %d (%.1fms) user=%s",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                user_id,
                extra={
                    "request_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "user_id": user_id,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            response.headers["X-Request-ID"] = req_id
            return response
        finally:
            request_id_var.reset(token)
