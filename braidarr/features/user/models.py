"""User domain models."""

from datetime import datetime
from enum import StrEnum

from pwdlib import PasswordHash
from sqlalchemy import Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from braidarr.database.base import Base, TimestampMixin, UTCDateTime
from braidarr.shared.scopes.scopes import Scope


class UserRole(StrEnum):
    """User roles.

    ADMIN: Full access, including user administration and settings writes.
    USER: Curates lists, sources, indexers and media; manages own API keys.
    """

    ADMIN = "admin"
    USER = "user"


class UserStatus(StrEnum):
    """User account status."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


# Scopes granted to session principals, evaluated by the same matcher as API keys
ROLE_SCOPES: dict[UserRole, list[Scope]] = {
    UserRole.ADMIN: [Scope(resource="*", actions=["*"])],
    UserRole.USER: [
        Scope(resource="users", actions=["read"]),
        Scope(resource="lists", actions=["*"]),
        Scope(resource="sources", actions=["*"]),
        Scope(resource="indexers", actions=["*"]),
        Scope(resource="media", actions=["*"]),
        Scope(resource="plex", actions=["*"]),
        Scope(resource="settings", actions=["read"]),
        Scope(resource="stats", actions=["read"]),
        Scope(resource="api_keys", actions=["*"]),
    ],
}


pwd_hasher = PasswordHash.recommended()


class User(Base, TimestampMixin):
    """User model for authentication and authorization."""

    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identity (globally unique)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Authentication
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Authorization
    role: Mapped[str] = mapped_column(
        Enum(UserRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.USER.value,
        server_default=UserRole.USER.value,
    )

    # Status
    status: Mapped[str] = mapped_column(
        Enum(UserStatus, native_enum=False, length=50, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserStatus.ACTIVE.value,
        server_default=UserStatus.ACTIVE.value,
        index=True,
    )

    # Audit
    email_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def is_active(self) -> bool:
        """Computed property: user is active if status is ACTIVE."""
        return self.status == UserStatus.ACTIVE.value

    @property
    def scopes(self) -> list[Scope]:
        """Capability scopes derived from the role."""
        return ROLE_SCOPES.get(UserRole(self.role), [])

    def verify_password(self, plain_password: str) -> bool:
        """Verify a password against the hash using Argon2.

        Salt is automatically extracted from the hash by pwdlib.
        """
        return pwd_hasher.verify(plain_password, self.hashed_password)

    def verify_and_update_password(self, plain_password: str) -> bool:
        """Verify a password and upgrade the stored hash if its parameters are outdated."""
        valid, updated_hash = pwd_hasher.verify_and_update(plain_password, self.hashed_password)
        if valid and updated_hash is not None:
            self.hashed_password = updated_hash
        return valid

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using Argon2.

        Salt is automatically generated and embedded in the returned hash.
        """
        return pwd_hasher.hash(password)

    def has_role(self, role: UserRole) -> bool:
        """Check if user has a specific role."""
        return self.role == role.value
