"""Authentication exceptions."""

from fastapi import status

from braidarr.shared.errors.exceptions import AppException, ForbiddenException


class AuthenticationException(AppException):
    """Base authentication exception."""

    code = "not_authenticated"

    def __init__(self, detail: str = "Authentication failed"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotAuthenticatedException(AuthenticationException):
    """Raised when no credential was presented."""

    def __init__(self):
        super().__init__(detail="Not authenticated")


class InvalidCredentialsException(AuthenticationException):
    """Raised when email or password is incorrect.

    Unknown email and wrong password are reported identically.
    """

    code = "invalid_credentials"

    def __init__(self):
        super().__init__(detail="Invalid email or password")


class InvalidTokenException(AuthenticationException):
    """Raised when a token is unknown, revoked or already rotated."""

    code = "invalid_token"

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(detail=detail)


class TokenExpiredException(AuthenticationException):
    """Raised when a token has expired."""

    code = "token_expired"

    def __init__(self):
        super().__init__(detail="Token has expired")


class InvalidSignatureException(AuthenticationException):
    """Raised when a token signature does not verify."""

    code = "invalid_signature"

    def __init__(self):
        super().__init__(detail="Invalid token signature")


class MalformedTokenException(AuthenticationException):
    """Raised when a token cannot be decoded or lacks required claims."""

    code = "malformed_token"

    def __init__(self, detail: str = "Malformed token"):
        super().__init__(detail=detail)


class RefreshTokenReusedException(InvalidTokenException):
    """Raised when an already-rotated refresh token is presented again."""

    def __init__(self):
        super().__init__(detail="Refresh token has already been used")


class AccountInactiveException(AppException):
    """Raised when the account is deactivated."""

    code = "account_inactive"

    def __init__(self):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail="Account is inactive")


class AccountPendingException(AppException):
    """Raised when the account has not been verified yet."""

    code = "account_pending"

    def __init__(self):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail="Account is pending verification")


class InvalidActionTokenException(AppException):
    """Raised when a reset or verification token is unknown or already used."""

    code = "invalid_token"

    def __init__(self, detail: str = "Invalid or already used token"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class ActionTokenExpiredException(AppException):
    """Raised when a reset or verification token is stale."""

    code = "token_expired"

    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="Token has expired")


class InsufficientRoleException(ForbiddenException):
    """Raised when user lacks required role."""

    def __init__(self, required_roles: list[str]):
        roles_str = ", ".join(required_roles)
        super().__init__(detail=f"User does not have required role(s): {roles_str}")


class InsufficientScopeException(ForbiddenException):
    """Raised when the principal's scopes do not grant the action."""

    def __init__(self, resource: str, action: str):
        super().__init__(detail=f"Insufficient scope: {resource}:{action} required")
