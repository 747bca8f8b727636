"""Map domain errors to HTTP responses.

Register once with register_exception_handlers(app).  Routers let
DomainError subclasses propagate; this is the only place that turns
them into status codes.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from onboarding.core.errors import DomainError

logger = logging.getLogger(__name__)

_ERROR_CODE_STATUS: dict[str, int] = {
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 422,
    "INVALID_STATE_TRANSITION": 409,
    "VERSION_IN_USE": 409,
    "CONCURRENCY_CONFLICT": 409,
    "ALREADY_ASSIGNED": 409,
}


def _domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, DomainError)
    status_code = _ERROR_CODE_STATUS.get(exc.error_code, 400)
    logger.warning(
        "%s %s rejected: %s (%s)",
        request.method,
        request.url.path,
        exc.error_code,
        exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
