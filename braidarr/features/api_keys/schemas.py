"""API key schemas (DTOs)."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

from braidarr.config.settings import settings
from braidarr.shared.scopes.scopes import Scope, ScopeDescription, validate_scope_catalogue


def _aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# Request schemas
class ApiKeyCreateRequest(BaseModel):
    """Create an API key."""

    name: str = Field(
        ..., min_length=settings.api_key_min_name_length, max_length=settings.api_key_max_name_length
    )
    scopes: list[Scope] = Field(..., min_length=1)
    expires_at: datetime | None = Field(None, description="Defaults to the configured key lifetime")

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if len(value) < settings.api_key_min_name_length:
            raise ValueError(f"Name must be at least {settings.api_key_min_name_length} characters")
        return value

    @field_validator("scopes")
    @classmethod
    def known_scopes(cls, value: list[Scope]) -> list[Scope]:
        """Scopes must reference catalogued resources and actions."""
        return validate_scope_catalogue(value)

    @field_validator("expires_at")
    @classmethod
    def expires_at_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


class ApiKeyUpdateRequest(BaseModel):
    """Update an API key. Omitted fields are left unchanged."""

    name: str | None = Field(
        None, min_length=settings.api_key_min_name_length, max_length=settings.api_key_max_name_length
    )
    scopes: list[Scope] | None = Field(None, min_length=1)
    expires_at: datetime | None = None
    is_active: bool | None = None

    @field_validator("scopes")
    @classmethod
    def known_scopes(cls, value: list[Scope] | None) -> list[Scope] | None:
        """Scopes must reference catalogued resources and actions."""
        if value is None:
            return value
        return validate_scope_catalogue(value)

    @field_validator("expires_at")
    @classmethod
    def expires_at_aware(cls, value: datetime | None) -> datetime | None:
        return _aware(value)


# Response schemas
class ApiKeyResponse(BaseModel):
    """API key metadata. Only the display prefix of the key is ever included."""

    id: int
    name: str
    key_prefix: str
    scopes: list[Scope]
    is_active: bool
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    last_used_ip: str | None = None
    revoked_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Creation response: the only time the plaintext key is returned."""

    key: str
    warning: str = "Store this key securely. It will not be shown again."


class ApiKeyListResponse(BaseModel):
    """API key list response."""

    keys: list[ApiKeyResponse]
    total: int


class ApiKeyUsageResponse(BaseModel):
    """Usage statistics of one key."""

    api_key_id: int
    total_requests: int
    requests_today: int
    requests_this_month: int
    last_used_at: datetime | None = None


class ScopeCatalogueResponse(BaseModel):
    """Resources and actions a key can be scoped to."""

    scopes: list[ScopeDescription]
