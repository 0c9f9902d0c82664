"""Authentication router (session lifecycle endpoints)."""

import logging

from fastapi import APIRouter, Body, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.config.settings import settings
from braidarr.database.dependencies import get_db_session
from braidarr.features.user.models import User
from braidarr.features.user.schemas import PrincipalResponse, UserResponse
from braidarr.shared.csrf.csrf import csrf_manager
from braidarr.shared.csrf.csrf_middleware import session_id_from_cookies
from braidarr.shared.rate_limit.dependencies import client_ip, enforce_rate_limit, rate_limit

from .dependencies import Principal, get_access_token, get_current_active_user, get_current_claims, get_principal
from .exceptions import InvalidTokenException
from .jwt_utils import TokenClaims
from .notifications import EmailSender, get_email_sender
from .schemas import (
    AuthResponse,
    ClaimsResponse,
    CSRFTokenResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenResponse,
    VerifyEmailRequest,
)
from .service import AuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])

PASSWORD_RESET_MESSAGE = "If an account exists for this email, a password reset link has been sent"


def set_session_cookies(response: Response, tokens: TokenResponse) -> None:
    """Attach both session tokens as HttpOnly cookies."""
    response.set_cookie(
        settings.access_cookie_name,
        tokens.access_token,
        max_age=tokens.expires_in,
        httponly=True,
        secure=settings.secure_cookies,
        samesite=settings.cookie_samesite,
        path="/",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        tokens.refresh_token,
        max_age=settings.refresh_token_expire_days * 24 * 3600,
        httponly=True,
        secure=settings.secure_cookies,
        samesite=settings.cookie_samesite,
        path="/",
    )


def clear_session_cookies(response: Response) -> None:
    """Expire both session cookies."""
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.delete_cookie(
            name, path="/", httponly=True, secure=settings.secure_cookies, samesite=settings.cookie_samesite
        )


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("register"))],
)
async def register(
    data: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """Register a new account and open a session.

    - **email**: Email address
    - **username**: 3-30 characters: letters, digits, `_` and `-`
    - **password**: Minimum 8 characters, must include uppercase, lowercase, and digit
    """
    user, tokens = await AuthService.register(
        session, data, email_sender, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    await session.commit()

    set_session_cookies(response, tokens)
    return AuthResponse(**tokens.model_dump(), user=UserResponse.model_validate(user))


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("login_ip"))])
async def login(
    data: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
):
    """Login with email and password.

    Returns the credential pair (also set as HttpOnly cookies) and the CSRF token
    to send with state-changing requests.
    """
    enforce_rate_limit("login", request, data.email)

    user, tokens = await AuthService.login(
        session,
        data.email,
        data.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    await session.commit()

    set_session_cookies(response, tokens)
    return AuthResponse(**tokens.model_dump(), user=UserResponse.model_validate(user))


@router.post("/refresh", response_model=TokenResponse, dependencies=[Depends(rate_limit("refresh"))])
async def refresh_token(
    request: Request,
    response: Response,
    data: RefreshTokenRequest | None = Body(default=None),
    session: AsyncSession = Depends(get_db_session),
):
    """Exchange a refresh token (body or cookie) for a new credential pair.

    The presented refresh token is retired; presenting it again ends the session.
    """
    token = (data.refresh_token if data else None) or request.cookies.get(settings.refresh_cookie_name)
    if not token:
        raise InvalidTokenException(detail="Refresh token missing")

    tokens = await AuthService.refresh(
        session, token, ip_address=client_ip(request), user_agent=request.headers.get("user-agent")
    )
    await session.commit()

    set_session_cookies(response, tokens)
    return tokens


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    data: LogoutRequest | None = Body(default=None),
    access_token: str | None = Depends(get_access_token),
    session: AsyncSession = Depends(get_db_session),
):
    """Logout: revoke the current session if one can be identified. Always succeeds."""
    refresh = (data.refresh_token if data else None) or request.cookies.get(settings.refresh_cookie_name)
    await AuthService.logout(session, access_token=access_token, refresh_token=refresh)
    await session.commit()

    clear_session_cookies(response)
    return MessageResponse(message="Successfully logged out")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke every session of the current user."""
    count = await AuthService.logout_all(session, current_user)
    await session.commit()

    clear_session_cookies(response)
    return MessageResponse(message=f"Logged out of {count} session(s)")


@router.get("/verify", response_model=ClaimsResponse)
async def verify(claims: TokenClaims = Depends(get_current_claims)):
    """Verify the presented access token and return its claims."""
    return ClaimsResponse(
        user_id=claims.user_id,
        email=claims.email,
        role=claims.role,
        session_id=claims.sid,
        issued_at=claims.iat,
        expires_at=claims.exp,
    )


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_active_user)):
    """Get the current session user."""
    return UserResponse.model_validate(current_user)


@router.get("/whoami", response_model=PrincipalResponse)
async def whoami(principal: Principal = Depends(get_principal)):
    """Describe the caller, authenticated by session or API key, and its scopes."""
    return PrincipalResponse(
        user=UserResponse.model_validate(principal.user),
        auth_method=principal.auth_method,
        scopes=principal.scopes,
        api_key_id=principal.api_key_id,
    )


@router.get("/csrf-token", response_model=CSRFTokenResponse)
async def csrf_token(request: Request, access_token: str | None = Depends(get_access_token)):
    """CSRF token of the current session."""
    session_id = session_id_from_cookies(request)
    if session_id is None:
        session_id = (await get_current_claims(access_token)).sid
    return CSRFTokenResponse(csrf_token=csrf_manager.issue(session_id), header_name=settings.csrf_header_name)


@router.post("/password/reset", response_model=MessageResponse)
async def password_reset(
    data: PasswordResetRequest,
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    """Request a password reset link. The response is the same whether or not the account exists."""
    enforce_rate_limit("password_reset", request, data.email)

    await AuthService.reset_password_request(session, data.email, email_sender)
    await session.commit()
    return MessageResponse(message=PASSWORD_RESET_MESSAGE)


@router.post("/password/confirm", response_model=MessageResponse)
async def password_confirm(data: PasswordResetConfirmRequest, session: AsyncSession = Depends(get_db_session)):
    """Set a new password with a reset token. Every session of the account is ended."""
    await AuthService.reset_password_confirm(session, data.token, data.new_password)
    await session.commit()
    return MessageResponse(message="Password has been reset")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(data: VerifyEmailRequest, session: AsyncSession = Depends(get_db_session)):
    """Confirm an email address with a verification token."""
    await AuthService.verify_email(session, data.token)
    await session.commit()
    return MessageResponse(message="Email verified")
