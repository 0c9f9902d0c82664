"""API key exceptions."""

from fastapi import status

from braidarr.shared.errors.exceptions import AppException, NotFoundException, ValidationException


class InvalidApiKey(AppException):
    """Raised for any API key that does not authenticate.

    Malformed, unknown, revoked, expired and orphaned keys are indistinguishable to the caller.
    """

    code = "invalid_api_key"

    def __init__(self):
        super().__init__(
            detail="Invalid or expired API key",
            status_code=status.HTTP_401_UNAUTHORIZED,
            headers={"WWW-Authenticate": "ApiKey"},
        )


class ApiKeyNotFound(NotFoundException):
    """Raised when the key does not exist or belongs to someone else."""

    def __init__(self):
        super().__init__(detail="API key not found")


class ApiKeyLimitReached(ValidationException):
    """Raised when the owner already has the maximum number of active keys."""

    def __init__(self, limit: int):
        super().__init__(detail=f"Maximum number of active API keys ({limit}) reached")
