"""JWT utilities for authentication."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidSignatureError, InvalidTokenError
from pydantic import BaseModel, ValidationError

from braidarr.config.settings import settings

from .exceptions import InvalidSignatureException, InvalidTokenException, MalformedTokenException, TokenExpiredException

ACCESS_REQUIRED_CLAIMS = ["sub", "role", "jti", "sid", "type", "exp", "iat"]
REFRESH_REQUIRED_CLAIMS = ["sub", "jti", "sid", "type", "exp"]


class TokenClaims(BaseModel):
    """Verified access token claims."""

    sub: str
    email: str | None = None
    role: str
    sid: str
    jti: str
    iat: datetime
    exp: datetime

    @property
    def user_id(self) -> int:
        return int(self.sub)


def new_token_id() -> str:
    """Random unique token identifier (``jti`` / session id)."""
    return uuid.uuid4().hex


def create_access_token(
    data: dict[str, Any], expires_delta: timedelta | None = None, issued_at: datetime | None = None
) -> str:
    """Create a JWT access token.

    Every token gets a fresh ``jti``, so no two access tokens are ever identical.

    Args:
        data: Payload data to encode in the token (``sub``, ``email``, ``role``, ``sid``)
        expires_delta: Optional expiration time delta
        issued_at: Issue time (defaults to now)

    Returns:
        Encoded JWT token string

    """
    to_encode = data.copy()
    now = issued_at or datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "jti": new_token_id(),
            "type": "access",
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
    )

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_refresh_token(
    data: dict[str, Any], expires_delta: timedelta | None = None, issued_at: datetime | None = None
) -> tuple[str, str, datetime]:
    """Create a JWT refresh token (longer expiration, separate signing key).

    Args:
        data: Payload data to encode in the token (``sub``, ``sid``)
        expires_delta: Optional expiration time delta
        issued_at: Issue time (defaults to now)

    Returns:
        Tuple of (encoded token, jti, expiry)

    """
    to_encode = data.copy()
    now = issued_at or datetime.now(UTC)
    expire = now + (expires_delta or timedelta(days=settings.refresh_token_expire_days))
    token_id = new_token_id()

    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "jti": token_id,
            "type": "refresh",
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
    )

    encoded = jwt.encode(to_encode, settings.refresh_signing_key, algorithm=settings.jwt_algorithm)
    return encoded, token_id, expire


def _decode(token: str, key: str, required: list[str]) -> dict[str, Any]:
    return jwt.decode(
        token,
        key,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
        options={"require": required},
    )


def verify_access_token(token: str) -> TokenClaims:
    """Verify signature, expiry and claims of an access token.

    Raises:
        TokenExpiredException: The token is past its expiry
        InvalidSignatureException: The signature does not verify
        MalformedTokenException: Undecodable, wrong type or missing claims

    """
    try:
        payload = _decode(token, settings.secret_key, ACCESS_REQUIRED_CLAIMS)
    except ExpiredSignatureError as err:
        raise TokenExpiredException() from err
    except InvalidSignatureError as err:
        raise InvalidSignatureException() from err
    except InvalidTokenError as err:
        raise MalformedTokenException() from err

    if payload.get("type") != "access":
        raise MalformedTokenException(detail="Invalid token type, expected access")

    try:
        return TokenClaims.model_validate(payload)
    except ValidationError as err:
        raise MalformedTokenException(detail="Invalid token payload") from err


def decode_refresh_token(token: str) -> dict[str, Any]:
    """Decode and verify a refresh token.

    Raises:
        TokenExpiredException: The token is past its expiry
        InvalidTokenException: Anything else wrong with the token

    """
    try:
        payload = _decode(token, settings.refresh_signing_key, REFRESH_REQUIRED_CLAIMS)
    except ExpiredSignatureError as err:
        raise TokenExpiredException() from err
    except InvalidTokenError as err:
        raise InvalidTokenException(detail="Invalid refresh token") from err

    if payload.get("type") != "refresh":
        raise InvalidTokenException(detail="Invalid token type, expected refresh")

    return payload
