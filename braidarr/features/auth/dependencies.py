"""Authentication dependencies for FastAPI."""

from dataclasses import dataclass, field

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.config.settings import settings
from braidarr.database.dependencies import get_db_session
from braidarr.features.api_keys.service import ApiKeyService
from braidarr.features.user.models import User, UserRole, UserStatus
from braidarr.features.user.service import UserService
from braidarr.shared.rate_limit.dependencies import client_ip
from braidarr.shared.rate_limit.limiter import rate_limiter
from braidarr.shared.scopes.scopes import Scope

from .exceptions import (
    AccountInactiveException,
    AccountPendingException,
    InsufficientRoleException,
    InvalidTokenException,
    NotAuthenticatedException,
)
from .jwt_utils import TokenClaims, verify_access_token

security = HTTPBearer(auto_error=False)

API_KEY_HEADERS = ("X-API-Key", "apikey")
API_KEY_QUERY_PARAMS = ("apikey", "api_key")


@dataclass
class Principal:
    """Authenticated caller: a session user or an API key acting for its owner."""

    user: User
    auth_method: str  # "session" or "api_key"
    scopes: list[Scope] = field(default_factory=list)
    session_id: str | None = None
    api_key_id: int | None = None


async def get_access_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str | None:
    """Access token from the bearer header, falling back to the session cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.access_cookie_name)


async def get_current_claims(token: str | None = Depends(get_access_token)) -> TokenClaims:
    """Verified claims of the presented access token.

    Raises:
        NotAuthenticatedException: No token presented
        TokenExpiredException, InvalidSignatureException, MalformedTokenException: Verification failed

    """
    if not token:
        raise NotAuthenticatedException()
    return verify_access_token(token)


async def get_current_user(
    claims: TokenClaims = Depends(get_current_claims),
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """Get the current authenticated user from the access token.

    Raises:
        InvalidTokenException: If the token's user no longer exists

    """
    user = await UserService.get_user(session, claims.user_id)

    if user is None:
        raise InvalidTokenException(detail="User not found")

    return user


def ensure_active(user: User) -> User:
    """Reject deactivated and unverified accounts."""
    if user.status == UserStatus.INACTIVE:
        raise AccountInactiveException()
    if user.status == UserStatus.PENDING:
        raise AccountPendingException()
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    """Get current user, rejecting inactive and pending accounts."""
    return ensure_active(current_user)


def require_role(*required_roles: UserRole):
    """Dependency factory to require specific roles.

    Usage:
        Depends(require_role(UserRole.ADMIN))
    """

    async def role_checker(current_user: User = Depends(get_current_active_user)) -> User:
        if not any(current_user.has_role(role) for role in required_roles):
            raise InsufficientRoleException([r.value for r in required_roles])
        return current_user

    return role_checker


def extract_api_key(request: Request) -> str | None:
    """API key from the supported headers or query parameters."""
    for header in API_KEY_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()
    for param in API_KEY_QUERY_PARAMS:
        value = request.query_params.get(param)
        if value:
            return value.strip()
    return None


async def get_principal(
    request: Request,
    token: str | None = Depends(get_access_token),
    session: AsyncSession = Depends(get_db_session),
) -> Principal:
    """Authenticate by API key when one is presented, otherwise by session.

    API key callers are rate limited per key.
    """
    api_key_value = extract_api_key(request)
    if api_key_value:
        api_key, owner = await ApiKeyService.verify(
            session,
            api_key_value,
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            endpoint=request.url.path,
            method=request.method,
        )
        rate_limiter.admit("api_key", str(api_key.id))
        return Principal(user=owner, auth_method="api_key", scopes=api_key.scope_list, api_key_id=api_key.id)

    claims = await get_current_claims(token)
    user = ensure_active(await get_current_user(claims, session))
    return Principal(user=user, auth_method="session", scopes=user.scopes, session_id=claims.sid)


def require_scope(resource: str, action: str):
    """Dependency factory authorizing the caller's scopes for one action.

    Usage:
        Depends(require_scope("lists", "read"))
    """

    async def scope_checker(principal: Principal = Depends(get_principal)) -> Principal:
        ApiKeyService.authorize(principal.scopes, resource, action)
        return principal

    return scope_checker
