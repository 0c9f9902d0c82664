"""Exception handlers rendering a consistent error body."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import AppException, RateLimitExceededException

logger = logging.getLogger(__name__)

# Fallback codes for plain HTTPExceptions raised by FastAPI itself (e.g. HTTPBearer)
STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "validation_error",
    status.HTTP_401_UNAUTHORIZED: "not_authenticated",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    status.HTTP_409_CONFLICT: "conflict",
    status.HTTP_429_TOO_MANY_REQUESTS: "rate_limited",
}


def error_body(detail, code: str, **extra) -> dict:
    """Build the error response body."""
    return {"detail": detail, "code": code, **extra}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render domain exceptions with their stable code."""
    extra = {}
    if isinstance(exc, RateLimitExceededException):
        extra["retry_after"] = exc.retry_after
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, exc.code, **extra),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework HTTP exceptions with a code derived from the status."""
    if isinstance(exc, AppException):
        return await app_exception_handler(request, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.detail, STATUS_CODES.get(exc.status_code, "error")),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request schema failures are caller errors: 400 with field details."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Validation error", "validation_error", errors=jsonable_encoder(exc.errors())),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected failures and hide internals from the caller."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error", "internal_error"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register the standard error handlers on the app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
