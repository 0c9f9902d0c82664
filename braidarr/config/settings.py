"""Application settings and configuration."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application (hardcoded constants)
    app_name: str = "Braidarr"
    app_version: str = "0.1.0"

    # Environment-specific settings
    debug: bool = False
    environment: str  # development, staging, production

    # Database (SQLAlchemy async URL)
    database_url: str
    database_pool_size: int = 10
    database_max_overflow: int = 20
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    database_echo: bool = False

    # API
    api_prefix: str = "/api/v1"
    host: str = "127.0.0.1"
    port: int = 8000

    # CORS (comma-separated origins)
    cors_allow_origins: str = ""
    cors_allow_credentials: bool = True

    # Security
    secret_key: str
    refresh_secret_key: str | None = None
    jwt_algorithm: str = "HS256"
    jwt_issuer: str = "braidarr"
    jwt_audience: str = "braidarr-client"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7

    # Session cookies
    access_cookie_name: str = "access_token"
    refresh_cookie_name: str = "refresh_token"
    cookie_samesite: str = "lax"
    cookie_secure: bool | None = None  # None = secure everywhere but development
    csrf_header_name: str = "X-CSRF-Token"

    # Account lifecycle
    require_email_verification: bool = False
    password_reset_expire_minutes: int = 15
    email_verification_expire_hours: int = 24
    public_base_url: str = "http://localhost:3000"

    # API keys
    api_key_prefix: str = "sk_"
    api_key_max_per_user: int = 10
    api_key_default_expiration_days: int = 365  # 0 = keys never expire by default
    api_key_min_name_length: int = 3
    api_key_max_name_length: int = 100

    # Rate limiting (limits notation, tiers separated by ";")
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    rate_limit_global: str = "300/minute"
    rate_limit_login: str = "5/minute;20/hour;100/day"  # per IP and email
    rate_limit_login_ip: str = "20/minute;200/hour"  # per IP, across emails
    rate_limit_register: str = "3/minute;10/hour"
    rate_limit_refresh: str = "30/minute"
    rate_limit_password_reset: str = "3/minute;10/hour"
    rate_limit_api_key: str = "100/minute;1000/hour;10000/day"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"development", "staging", "production"}
        env = str(v).lower()
        if env not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}, got {env}")
        return env

    @field_validator("cookie_samesite", mode="before")
    @classmethod
    def validate_samesite(cls, v: str) -> str:
        """Validate the SameSite cookie attribute."""
        value = str(v).lower()
        if value not in {"lax", "strict", "none"}:
            raise ValueError(f"cookie_samesite must be lax, strict or none, got {value}")
        return value

    @property
    def refresh_signing_key(self) -> str:
        """Key used to sign refresh tokens (falls back to the main secret)."""
        return self.refresh_secret_key or self.secret_key

    @property
    def secure_cookies(self) -> bool:
        """Whether session cookies carry the Secure attribute."""
        if self.cookie_secure is not None:
            return self.cookie_secure
        return self.environment != "development"

    @property
    def cors_origins(self) -> list[str]:
        """CORS origins as a list, trailing slashes removed."""
        return [o.strip().rstrip("/") for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def rate_limit_tiers(self) -> dict[str, str]:
        """Rate limit tiers per operation class."""
        return {
            "login": self.rate_limit_login,
            "login_ip": self.rate_limit_login_ip,
            "register": self.rate_limit_register,
            "refresh": self.rate_limit_refresh,
            "password_reset": self.rate_limit_password_reset,
            "api_key": self.rate_limit_api_key,
        }


settings = Settings()  # type: ignore[call-arg]
