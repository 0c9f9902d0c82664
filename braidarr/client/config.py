"""Client settings."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Settings of the API client, loaded from ``BRAIDARR_*`` environment variables."""

    base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    refresh_timeout_seconds: float = 10.0
    credentials_path: Path | None = None  # None = keep credentials in memory only
    csrf_header_name: str = "X-CSRF-Token"

    model_config = SettingsConfigDict(
        env_prefix="BRAIDARR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
