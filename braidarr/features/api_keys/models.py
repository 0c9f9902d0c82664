"""API key models."""

from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from braidarr.database.base import Base, TimestampMixin, UTCDateTime, utcnow
from braidarr.shared.scopes.scopes import Scope, parse_scopes


class ApiKey(Base, TimestampMixin):
    """Scoped credential for machine clients.

    The plaintext key is never stored: only its display prefix, a per-key salt
    and the salted SHA-256 hash. Keys are revoked, never deleted, so their
    usage history survives.
    """

    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Credential material
    key_prefix: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    key_salt: Mapped[str] = mapped_column(String(32), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Authorization: [{"resource": ..., "actions": [...]}]
    scopes: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1", index=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Last use
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_used_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)

    @property
    def scope_list(self) -> list[Scope]:
        """Stored scopes as ``Scope`` objects."""
        return parse_scopes(self.scopes)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Whether the key is past its expiry."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class ApiKeyUsage(Base):
    """One authenticated call made with an API key."""

    __tablename__ = "api_key_usage"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    api_key_id: Mapped[int] = mapped_column(
        ForeignKey("api_keys.id", ondelete="CASCADE"), nullable=False, index=True
    )
    endpoint: Mapped[str] = mapped_column(String(500), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False, index=True)
