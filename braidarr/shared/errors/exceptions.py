"""Base application exceptions with stable error codes."""

from fastapi import HTTPException, status


class AppException(HTTPException):
    """HTTP exception carrying a stable, machine-readable error code."""

    code: str = "error"

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code is not None:
            self.code = code


class ValidationException(AppException):
    """Raised when input is well-formed but semantically invalid."""

    code = "validation_error"

    def __init__(self, detail: str = "Validation error"):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class NotFoundException(AppException):
    """Raised when a resource does not exist (or is not visible to the caller)."""

    code = "not_found"

    def __init__(self, detail: str = "Not found"):
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class ConflictException(AppException):
    """Raised when a resource already exists."""

    code = "conflict"

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class ForbiddenException(AppException):
    """Raised when the caller is authenticated but not allowed."""

    code = "forbidden"

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class RateLimitExceededException(AppException):
    """Raised when a rate limit tier is exhausted."""

    code = "rate_limited"

    def __init__(self, retry_after: int, detail: str = "Too many requests. Please try again later."):
        self.retry_after = retry_after
        super().__init__(
            detail=detail,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={"Retry-After": str(retry_after)},
        )
