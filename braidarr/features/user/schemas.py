"""User schemas (DTOs)."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from braidarr.shared.scopes.scopes import Scope
from braidarr.shared.validators.password import validate_password_strength

from .models import UserRole, UserStatus


# Request schemas
class PasswordChangeRequest(BaseModel):
    """Password change request."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    confirm_new_password: str = Field(..., min_length=8)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value):
        """Validate password strength using shared validator."""
        return validate_password_strength(value)

    @field_validator("confirm_new_password")
    @classmethod
    def passwords_match(cls, value, info):
        """Validate that new_password and confirm_new_password match."""
        if "new_password" in info.data and value != info.data["new_password"]:
            raise ValueError("New passwords do not match")
        return value


class UserStatusUpdateRequest(BaseModel):
    """Change a user's account status (admin only)."""

    status: UserStatus


# Response schemas
class UserResponse(BaseModel):
    """Public principal fields. Never carries password material."""

    id: int
    email: EmailStr
    username: str
    first_name: str | None = None
    last_name: str | None = None
    role: UserRole
    status: UserStatus
    email_verified_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PrincipalResponse(BaseModel):
    """Authenticated principal with the scopes it acts under."""

    user: UserResponse
    auth_method: str
    scopes: list[Scope]
    api_key_id: int | None = None
