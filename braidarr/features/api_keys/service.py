"""API key service layer."""

import hashlib
import hmac
import logging
import re
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.config.settings import settings
from braidarr.features.auth.exceptions import InsufficientScopeException
from braidarr.features.user.models import User
from braidarr.features.user.service import UserService
from braidarr.shared.errors.exceptions import ValidationException
from braidarr.shared.scopes.scopes import AVAILABLE_SCOPES, Scope, ScopeDescription, scopes_allow

from .exceptions import ApiKeyLimitReached, ApiKeyNotFound, InvalidApiKey
from .models import ApiKey, ApiKeyUsage
from .schemas import ApiKeyCreateRequest, ApiKeyUpdateRequest, ApiKeyUsageResponse

logger = logging.getLogger(__name__)

KEY_RANDOM_BYTES = 32
PREFIX_HEX_CHARS = 8
SALT_BYTES = 16

API_KEY_PATTERN = re.compile(rf"^{re.escape(settings.api_key_prefix)}[0-9a-f]{{{KEY_RANDOM_BYTES * 2}}}$")


def generate_api_key() -> tuple[str, str]:
    """Generate a new plaintext key.

    Returns:
        Tuple of (key, display prefix)

    """
    key = f"{settings.api_key_prefix}{secrets.token_hex(KEY_RANDOM_BYTES)}"
    return key, key[: len(settings.api_key_prefix) + PREFIX_HEX_CHARS]


def hash_api_key(key: str, salt: str) -> str:
    """Salted SHA-256 of a plaintext key (``salt`` is hex)."""
    return hashlib.sha256(bytes.fromhex(salt) + key.encode()).hexdigest()


def is_valid_key_format(key: str) -> bool:
    """Whether ``key`` looks like a key this service issued."""
    return bool(API_KEY_PATTERN.fullmatch(key))


class ApiKeyService:
    """Service for API key issuance, verification and management."""

    @staticmethod
    async def create(session: AsyncSession, owner: User, data: ApiKeyCreateRequest) -> tuple[ApiKey, str]:
        """Create a key for ``owner``.

        Returns:
            Tuple of (record, plaintext key). The plaintext is not recoverable afterwards.

        Raises:
            ValidationException: Expiry not in the future
            ApiKeyLimitReached: Owner already holds the maximum number of active keys

        """
        now = datetime.now(UTC)

        if data.expires_at is not None:
            if data.expires_at <= now:
                raise ValidationException(detail="Expiration date must be in the future")
            expires_at = data.expires_at
        elif settings.api_key_default_expiration_days > 0:
            expires_at = now + timedelta(days=settings.api_key_default_expiration_days)
        else:
            expires_at = None

        count_stmt = select(func.count()).select_from(ApiKey).where(ApiKey.owner_id == owner.id, ApiKey.is_active)
        active_count = (await session.execute(count_stmt)).scalar_one()
        if active_count >= settings.api_key_max_per_user:
            raise ApiKeyLimitReached(settings.api_key_max_per_user)

        key, prefix = generate_api_key()
        salt = secrets.token_hex(SALT_BYTES)

        api_key = ApiKey(
            owner_id=owner.id,
            name=data.name,
            key_prefix=prefix,
            key_salt=salt,
            key_hash=hash_api_key(key, salt),
            scopes=[scope.model_dump() for scope in data.scopes],
            is_active=True,
            expires_at=expires_at,
        )
        session.add(api_key)
        await session.flush()
        await session.refresh(api_key)

        logger.info(f"API key created: {prefix}... ({api_key.name}) for user {owner.username}")
        return api_key, key

    @staticmethod
    async def verify(
        session: AsyncSession,
        presented_key: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        endpoint: str | None = None,
        method: str | None = None,
    ) -> tuple[ApiKey, User]:
        """Authenticate a presented key and record its use.

        Every failure raises the same ``InvalidApiKey``.

        Returns:
            Tuple of (key record, owner)

        """
        if not presented_key or not is_valid_key_format(presented_key):
            raise InvalidApiKey()

        prefix = presented_key[: len(settings.api_key_prefix) + PREFIX_HEX_CHARS]
        stmt = select(ApiKey).where(ApiKey.key_prefix == prefix, ApiKey.is_active)
        candidates = (await session.execute(stmt)).scalars().all()

        api_key = None
        for candidate in candidates:
            if hmac.compare_digest(hash_api_key(presented_key, candidate.key_salt), candidate.key_hash):
                api_key = candidate
                break

        if api_key is None or not api_key.is_active or api_key.revoked_at is not None:
            logger.warning(f"Rejected API key {prefix}...: unknown or inactive")
            raise InvalidApiKey()

        now = datetime.now(UTC)
        if api_key.is_expired(now):
            logger.warning(f"Rejected API key {prefix}...: expired")
            raise InvalidApiKey()

        owner = await UserService.get_user(session, api_key.owner_id)
        if owner is None or not owner.is_active:
            logger.warning(f"Rejected API key {prefix}...: owner missing or inactive")
            raise InvalidApiKey()

        api_key.last_used_at = now
        api_key.last_used_ip = ip_address
        if endpoint is not None:
            await ApiKeyService.record_usage(session, api_key, endpoint, method or "GET", ip_address, user_agent)

        return api_key, owner

    @staticmethod
    async def record_usage(
        session: AsyncSession,
        api_key: ApiKey,
        endpoint: str,
        method: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Append a usage row for the key."""
        session.add(
            ApiKeyUsage(
                api_key_id=api_key.id,
                endpoint=endpoint[:500],
                method=method.upper(),
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None,
            )
        )

    @staticmethod
    def authorize(scopes: list[Scope], resource: str, action: str) -> None:
        """Check that ``scopes`` grant ``action`` on ``resource``.

        Raises:
            InsufficientScopeException: No scope grants the action

        """
        if not scopes_allow(scopes, resource, action):
            raise InsufficientScopeException(resource, action)

    @staticmethod
    async def list_keys(session: AsyncSession, owner: User) -> list[ApiKey]:
        """All keys of ``owner``, newest first (revoked ones included)."""
        stmt = select(ApiKey).where(ApiKey.owner_id == owner.id).order_by(ApiKey.created_at.desc(), ApiKey.id.desc())
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def get_key(session: AsyncSession, owner: User, key_id: int) -> ApiKey:
        """Get one of ``owner``'s keys.

        Raises:
            ApiKeyNotFound: Unknown id or another owner's key

        """
        stmt = select(ApiKey).where(ApiKey.id == key_id, ApiKey.owner_id == owner.id)
        result = await session.execute(stmt)
        api_key = result.scalar_one_or_none()
        if api_key is None:
            raise ApiKeyNotFound()
        return api_key

    @staticmethod
    async def update(session: AsyncSession, owner: User, key_id: int, data: ApiKeyUpdateRequest) -> ApiKey:
        """Update name, scopes, expiry or active flag of a key.

        Raises:
            ApiKeyNotFound: Unknown id or another owner's key
            ValidationException: Expiry not in the future, or reactivating a revoked key

        """
        api_key = await ApiKeyService.get_key(session, owner, key_id)

        if data.name is not None:
            api_key.name = data.name.strip()
        if data.scopes is not None:
            api_key.scopes = [scope.model_dump() for scope in data.scopes]
        if data.expires_at is not None:
            if data.expires_at <= datetime.now(UTC):
                raise ValidationException(detail="Expiration date must be in the future")
            api_key.expires_at = data.expires_at
        if data.is_active is not None:
            if data.is_active and api_key.revoked_at is not None:
                raise ValidationException(detail="A revoked API key cannot be reactivated")
            api_key.is_active = data.is_active

        await session.flush()
        await session.refresh(api_key)
        logger.info(f"API key updated: {api_key.key_prefix}... by user {owner.username}")
        return api_key

    @staticmethod
    async def revoke(session: AsyncSession, owner: User, key_id: int) -> ApiKey:
        """Revoke a key. The record and its usage history are kept."""
        api_key = await ApiKeyService.get_key(session, owner, key_id)

        if api_key.revoked_at is None:
            api_key.is_active = False
            api_key.revoked_at = datetime.now(UTC)
            logger.info(f"API key revoked: {api_key.key_prefix}... by user {owner.username}")

        return api_key

    @staticmethod
    async def usage_stats(session: AsyncSession, owner: User, key_id: int) -> ApiKeyUsageResponse:
        """Request counts of a key: overall, today and this month (UTC)."""
        api_key = await ApiKeyService.get_key(session, owner, key_id)

        now = datetime.now(UTC)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_month = start_of_day.replace(day=1)

        async def count_since(since: datetime | None) -> int:
            stmt = select(func.count()).select_from(ApiKeyUsage).where(ApiKeyUsage.api_key_id == api_key.id)
            if since is not None:
                stmt = stmt.where(ApiKeyUsage.created_at >= since)
            return (await session.execute(stmt)).scalar_one()

        return ApiKeyUsageResponse(
            api_key_id=api_key.id,
            total_requests=await count_since(None),
            requests_today=await count_since(start_of_day),
            requests_this_month=await count_since(start_of_month),
            last_used_at=api_key.last_used_at,
        )

    @staticmethod
    def available_scopes() -> list[ScopeDescription]:
        """The scope catalogue."""
        return AVAILABLE_SCOPES
