"""Authentication schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from braidarr.features.user.schemas import UserResponse
from braidarr.shared.validators.password import validate_password_strength
from braidarr.shared.validators.username import validate_username


# Request schemas
class RegisterRequest(BaseModel):
    """Registration request.

    Note: Uses email-validator library via Pydantic's EmailStr for RFC 5322 compliant email validation.
    """

    email: EmailStr
    username: str = Field(..., min_length=3, max_length=30, description="3-30 characters: letters, digits, _ and -")
    password: str = Field(
        ..., min_length=8, description="Password (minimum 8 characters, must include uppercase, lowercase, and digit)"
    )
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)

    @field_validator("username")
    @classmethod
    def check_username(cls, value: str) -> str:
        """Validate username format using shared validator."""
        return validate_username(value)

    @field_validator("password")
    @classmethod
    def check_password_strength(cls, value: str) -> str:
        """Validate password strength using shared validator."""
        return validate_password_strength(value)


class LoginRequest(BaseModel):
    """Login request.

    The password is not checked for strength here: a weak password simply fails
    to match, and rejecting it early would tell the caller something.
    """

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class RefreshTokenRequest(BaseModel):
    """Refresh token request; the token may instead come from the refresh cookie."""

    refresh_token: str | None = None


class LogoutRequest(BaseModel):
    """Logout request; every field is optional."""

    refresh_token: str | None = None


class PasswordResetRequest(BaseModel):
    """Start a password reset."""

    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    """Complete a password reset.

    Password strength is checked by the service so that a weak password is a
    400 ``validation_error`` like every other semantic failure of this flow.
    """

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=256)


class VerifyEmailRequest(BaseModel):
    """Consume an email verification token."""

    token: str = Field(..., min_length=1)


# Response schemas
class TokenResponse(BaseModel):
    """Session credential pair."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    issued_at: datetime
    access_expires_at: datetime
    csrf_token: str


class AuthResponse(TokenResponse):
    """Credential pair plus the authenticated principal."""

    user: UserResponse


class ClaimsResponse(BaseModel):
    """Verified access token claims."""

    valid: bool = True
    user_id: int
    email: str | None = None
    role: str
    session_id: str
    issued_at: datetime
    expires_at: datetime


class CSRFTokenResponse(BaseModel):
    """CSRF token for the current session."""

    csrf_token: str
    header_name: str


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str
