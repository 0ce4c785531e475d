"""
Error taxonomy and the JSON error envelope.

Validation and not-found errors are raised by the store and registry and
rendered as `{"error": {"code", "message", "status"}}`. Delivery and
side-effect failures never reach this module; they are reported as booleans
or logged where they happen.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from molthub_shared.schemas.common import APIResponse, ErrorBody

log = structlog.get_logger()


class NotifyError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NotifyError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(NotifyError):
    code = "NOT_FOUND"
    status_code = 404


class AuthenticationError(NotifyError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401


class ForbiddenError(NotifyError):
    code = "FORBIDDEN"
    status_code = 403


def error_response(code: str, message: str, status: int) -> JSONResponse:
    body = APIResponse(error=ErrorBody(code=code, message=message, status=status))
    return JSONResponse(status_code=status, content=body.model_dump(exclude_none=True))


async def _notify_error_handler(request: Request, exc: NotifyError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("api.error", path=request.url.path, code=exc.code, message=exc.message)
    return error_response(exc.code, exc.message, exc.status_code)


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    return error_response("VALIDATION_ERROR", message, 422)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotifyError, _notify_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
