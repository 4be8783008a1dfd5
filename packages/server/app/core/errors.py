"""
Error taxonomy and exception handlers.

Services raise these like any HTTPException. The handlers render every error
with the same envelope: {"error": {"code", "message", "status"}}.
Unexpected exceptions are logged and rendered as a generic 500.
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

log = structlog.get_logger()


class ServiceError(HTTPException):
    status_code: int = 500
    code: str = "internal_error"
    default_detail: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class UnauthorizedError(ServiceError):
    status_code = 401
    code = "unauthorized"
    default_detail = "Authentication required"


class ForbiddenError(ServiceError):
    status_code = 403
    code = "forbidden"
    default_detail = "Insufficient permissions"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"
    default_detail = "Not found"


class ConflictError(ServiceError):
    status_code = 409
    code = "conflict"
    default_detail = "Resource already exists"


class InvalidOperationError(ServiceError):
    status_code = 409
    code = "invalid_operation"
    default_detail = "Operation not allowed"


class ValidationFailedError(ServiceError):
    status_code = 422
    code = "validation_error"
    default_detail = "Invalid input data"


class RateLimitedError(ServiceError):
    status_code = 429
    code = "rate_limited"
    default_detail = "Rate limit exceeded"


class UpstreamError(ServiceError):
    status_code = 502
    code = "upstream_error"
    default_detail = "Upstream service unavailable"


_STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limited",
}


def error_body(code: str, message: str, status: int, field_errors: Optional[dict] = None) -> dict:
    error = {"code": code, "message": message, "status": status}
    if field_errors:
        error["field_errors"] = field_errors
    return {"error": error}


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, str(exc.detail), exc.status_code),
        headers=exc.headers,
    )


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _STATUS_CODES.get(exc.status_code, "error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"] if part != "body") or "body"
        field_errors.setdefault(loc, []).append(err["msg"])
    return JSONResponse(
        status_code=422,
        content=error_body("validation_error", "Invalid input data", 422, field_errors),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content=error_body("internal_error", "Internal server error", 500),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
