"""User-related exceptions."""

from fastapi import status

from braidarr.shared.errors.exceptions import AppException, ConflictException, NotFoundException


class UserNotFound(NotFoundException):
    """Raised when user is not found."""

    def __init__(self):
        super().__init__(detail="User not found")


class UserAlreadyExists(ConflictException):
    """Raised when trying to create a user that already exists."""

    def __init__(self, field: str = "user"):
        super().__init__(detail=f"{field.capitalize()} already registered")


class UsernameAlreadyExists(UserAlreadyExists):
    """Raised when username already exists."""

    def __init__(self):
        super().__init__(field="username")


class EmailAlreadyExists(UserAlreadyExists):
    """Raised when email already exists."""

    def __init__(self):
        super().__init__(field="email")


class IncorrectPassword(AppException):
    """Raised when password is incorrect."""

    code = "validation_error"

    def __init__(self):
        super().__init__(detail="Current password is incorrect", status_code=status.HTTP_400_BAD_REQUEST)


class CannotModifyOwnStatus(AppException):
    """Raised when an admin tries to change their own status."""

    code = "validation_error"

    def __init__(self):
        super().__init__(detail="Cannot change your own account status", status_code=status.HTTP_400_BAD_REQUEST)
