"""Authentication service layer."""

import functools
import hashlib
import logging
import secrets
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.config.settings import settings
from braidarr.features.user.models import User, UserStatus, pwd_hasher
from braidarr.features.user.service import UserService
from braidarr.shared.csrf.csrf import csrf_manager
from braidarr.shared.errors.exceptions import ValidationException
from braidarr.shared.validators.password import validate_password_strength

from .exceptions import (
    AccountInactiveException,
    AccountPendingException,
    ActionTokenExpiredException,
    AuthenticationException,
    InvalidActionTokenException,
    InvalidCredentialsException,
    InvalidTokenException,
    RefreshTokenReusedException,
    TokenExpiredException,
)
from .jwt_utils import create_access_token, create_refresh_token, decode_refresh_token, new_token_id, verify_access_token
from .models import ActionToken, ActionTokenPurpose, LoginAttempt, RefreshToken
from .notifications import EmailSender, redact_email
from .schemas import RegisterRequest, TokenResponse

logger = logging.getLogger(__name__)


@functools.cache
def _dummy_password_hash() -> str:
    """Hash verified against when the email is unknown, so both paths cost one Argon2 check."""
    return pwd_hasher.hash(secrets.token_urlsafe(16))


def hash_action_token(token: str) -> str:
    """SHA-256 of a reset/verification token as stored in the database."""
    return hashlib.sha256(token.encode()).hexdigest()


class AuthService:
    """Service for session authentication and token management."""

    @staticmethod
    async def register(
        session: AsyncSession,
        data: RegisterRequest,
        email_sender: EmailSender,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[User, TokenResponse]:
        """Register a principal and open a session for it.

        With email verification required the account starts ``pending`` and a
        verification token is handed to the email sender.

        Raises:
            EmailAlreadyExists: If email is taken
            UsernameAlreadyExists: If username is taken

        """
        status = UserStatus.PENDING if settings.require_email_verification else UserStatus.ACTIVE
        user = await UserService.create_user(
            session,
            email=data.email,
            username=data.username,
            password=data.password,
            first_name=data.first_name,
            last_name=data.last_name,
            status=status,
        )

        if status == UserStatus.PENDING:
            token = await AuthService._issue_action_token(
                session,
                user,
                ActionTokenPurpose.EMAIL_VERIFICATION,
                timedelta(hours=settings.email_verification_expire_hours),
            )
            await email_sender.send_email_verification(user.email, token)

        tokens = await AuthService.create_tokens(session, user, ip_address=ip_address, user_agent=user_agent)
        return user, tokens

    @staticmethod
    async def login(
        session: AsyncSession,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> tuple[User, TokenResponse]:
        """Authenticate with email and password.

        Unknown email and wrong password fail identically. Account status is
        only reported once the password has matched.

        Raises:
            InvalidCredentialsException: Unknown email or wrong password
            AccountInactiveException: Account is deactivated
            AccountPendingException: Account awaits email verification

        """
        email = email.lower()
        user = await UserService.get_user_by_email(session, email)

        if user is None:
            pwd_hasher.verify(password, _dummy_password_hash())
            await AuthService._record_failed_attempt(session, email, None, ip_address, user_agent)
            logger.warning(f"Failed login for {redact_email(email)}: unknown email")
            raise InvalidCredentialsException()

        if not user.verify_and_update_password(password):
            await AuthService._record_failed_attempt(session, email, user.id, ip_address, user_agent)
            logger.warning(f"Failed login for {redact_email(email)}: wrong password")
            raise InvalidCredentialsException()

        if user.status == UserStatus.INACTIVE:
            await AuthService._record_failed_attempt(session, email, user.id, ip_address, user_agent)
            logger.warning(f"Login attempt for inactive account: {user.username}")
            raise AccountInactiveException()

        if user.status == UserStatus.PENDING:
            await AuthService._record_failed_attempt(session, email, user.id, ip_address, user_agent)
            logger.info(f"Login attempt for pending account: {user.username}")
            raise AccountPendingException()

        user.last_login_at = datetime.now(UTC)
        session.add(
            LoginAttempt(email=email, ip_address=ip_address, user_agent=user_agent, success=True, user_id=user.id)
        )

        tokens = await AuthService.create_tokens(session, user, ip_address=ip_address, user_agent=user_agent)
        logger.info(f"User logged in: {user.username}")
        return user, tokens

    @staticmethod
    async def _record_failed_attempt(
        session: AsyncSession, email: str, user_id: int | None, ip_address: str | None, user_agent: str | None
    ) -> None:
        # Committed here: the request session rolls back once the error propagates
        session.add(
            LoginAttempt(email=email, ip_address=ip_address, user_agent=user_agent, success=False, user_id=user_id)
        )
        await session.commit()

    @staticmethod
    async def create_tokens(
        session: AsyncSession,
        user: User,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenResponse:
        """Issue a credential pair for a user.

        Args:
            session: Database session
            user: Principal the pair is issued to
            session_id: Existing session to continue (rotation); a new one is opened when omitted
            ip_address: Requester's IP address (optional)
            user_agent: Requester's User-Agent header (optional)

        Returns:
            TokenResponse with both tokens, their timing and the session's CSRF token

        """
        tokens, _ = AuthService._issue_pair(session, user, session_id, ip_address, user_agent)
        return tokens

    @staticmethod
    def _issue_pair(
        session: AsyncSession,
        user: User,
        session_id: str | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> tuple[TokenResponse, str]:
        """Build a credential pair and stage its refresh record; returns the pair and the refresh ``jti``."""
        sid = session_id or new_token_id()
        # JWT timestamps have second precision
        now = datetime.now(UTC).replace(microsecond=0)
        access_delta = timedelta(minutes=settings.access_token_expire_minutes)

        access_token = create_access_token(
            {"sub": str(user.id), "email": user.email, "role": str(user.role), "sid": sid},
            expires_delta=access_delta,
            issued_at=now,
        )
        refresh_token_str, token_id, refresh_expires_at = create_refresh_token(
            {"sub": str(user.id), "sid": sid}, issued_at=now
        )

        session.add(
            RefreshToken(
                user_id=user.id,
                session_id=sid,
                token_id=token_id,
                expires_at=refresh_expires_at,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

        tokens = TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token_str,
            expires_in=int(access_delta.total_seconds()),
            issued_at=now,
            access_expires_at=now + access_delta,
            csrf_token=csrf_manager.issue(sid),
        )
        return tokens, token_id

    @staticmethod
    async def refresh(
        session: AsyncSession,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenResponse:
        """Rotate a refresh token into a new credential pair for the same session.

        The old token is retired with a compare-and-set update, so of two
        concurrent refreshes with one token only one succeeds. Presenting a
        token that was already rotated revokes the whole session family.

        Raises:
            TokenExpiredException: The refresh token is past its expiry
            InvalidTokenException: Unknown, revoked or already rotated token

        """
        payload = decode_refresh_token(refresh_token)

        stmt = (
            select(RefreshToken)
            .where(RefreshToken.token_id == payload["jti"])
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        stored = result.scalar_one_or_none()

        if stored is None:
            raise InvalidTokenException(detail="Refresh token not found")

        if stored.revoked:
            if stored.replaced_by is not None:
                revoked = await AuthService.revoke_session(session, stored.session_id)
                await session.commit()
                logger.warning(
                    f"Refresh token reuse detected for user {stored.user_id}; "
                    f"revoked {revoked} token(s) of session {stored.session_id}"
                )
                raise RefreshTokenReusedException()
            raise InvalidTokenException(detail="Refresh token has been revoked")

        if stored.expires_at <= datetime.now(UTC):
            raise TokenExpiredException()

        user = await UserService.get_user(session, stored.user_id)
        if user is None or not user.is_active:
            raise InvalidTokenException(detail="User not found or inactive")

        tokens, replacement_id = AuthService._issue_pair(
            session, user, stored.session_id, ip_address, user_agent
        )

        rotate = (
            update(RefreshToken)
            .where(RefreshToken.id == stored.id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(UTC), replaced_by=replacement_id)
            .execution_options(synchronize_session=False)
        )
        rotated = await session.execute(rotate)
        if rotated.rowcount != 1:
            # Another request rotated this token first
            raise InvalidTokenException(detail="Refresh token has already been used")

        logger.info(f"Refresh token rotated for user {user.username} (session {stored.session_id})")
        return tokens

    @staticmethod
    async def revoke_session(session: AsyncSession, session_id: str) -> int:
        """Revoke every live refresh token of one session family."""
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.session_id == session_id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount

    @staticmethod
    async def revoke_all_sessions(session: AsyncSession, user_id: int) -> int:
        """Revoke every live refresh token of a user."""
        stmt = (
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True, revoked_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        logger.info(f"Revoked {result.rowcount} refresh token(s) of user {user_id}")
        return result.rowcount

    @staticmethod
    async def logout(session: AsyncSession, access_token: str | None = None, refresh_token: str | None = None) -> bool:
        """End the session identified by either token. Never fails.

        Returns:
            True if a live session was revoked

        """
        session_id = None

        if refresh_token:
            try:
                session_id = decode_refresh_token(refresh_token)["sid"]
            except AuthenticationException:
                pass

        if session_id is None and access_token:
            try:
                session_id = verify_access_token(access_token).sid
            except AuthenticationException:
                pass

        if session_id is None:
            return False

        revoked = await AuthService.revoke_session(session, session_id)
        if revoked:
            logger.info(f"Session {session_id} logged out")
        return revoked > 0

    @staticmethod
    async def logout_all(session: AsyncSession, user: User) -> int:
        """Revoke every session of the user."""
        count = await AuthService.revoke_all_sessions(session, user.id)
        logger.info(f"User {user.username} logged out of all sessions")
        return count

    @staticmethod
    async def _issue_action_token(
        session: AsyncSession, user: User, purpose: ActionTokenPurpose, lifetime: timedelta
    ) -> str:
        """Create a single-use token, retiring earlier unused ones of the same purpose."""
        now = datetime.now(UTC)
        await session.execute(
            update(ActionToken)
            .where(
                ActionToken.user_id == user.id,
                ActionToken.purpose == purpose.value,
                ActionToken.used_at.is_(None),
            )
            .values(used_at=now)
            .execution_options(synchronize_session=False)
        )

        token = secrets.token_urlsafe(32)
        session.add(
            ActionToken(
                user_id=user.id,
                purpose=purpose.value,
                token_hash=hash_action_token(token),
                expires_at=now + lifetime,
            )
        )
        return token

    @staticmethod
    async def _consume_action_token(session: AsyncSession, token: str, purpose: ActionTokenPurpose) -> ActionToken:
        stmt = (
            select(ActionToken)
            .where(
                ActionToken.token_hash == hash_action_token(token),
                ActionToken.purpose == purpose.value,
            )
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        stored = result.scalar_one_or_none()

        if stored is None or stored.used_at is not None:
            raise InvalidActionTokenException()
        if stored.expires_at <= datetime.now(UTC):
            raise ActionTokenExpiredException()

        stored.used_at = datetime.now(UTC)
        return stored

    @staticmethod
    async def reset_password_request(session: AsyncSession, email: str, email_sender: EmailSender) -> None:
        """Send a password reset link if the account exists.

        The caller always gets the same answer, so account existence is not revealed.
        """
        user = await UserService.get_user_by_email(session, email)
        if user is None:
            logger.info(f"Password reset requested for unknown email {redact_email(email)}")
            return

        token = await AuthService._issue_action_token(
            session,
            user,
            ActionTokenPurpose.PASSWORD_RESET,
            timedelta(minutes=settings.password_reset_expire_minutes),
        )
        await email_sender.send_password_reset(user.email, token)
        logger.info(f"Password reset requested for user {user.username}")

    @staticmethod
    async def reset_password_confirm(session: AsyncSession, token: str, new_password: str) -> User:
        """Set a new password with a reset token and end every session of the principal.

        Raises:
            ValidationException: New password is too weak
            InvalidActionTokenException: Unknown or already used token
            ActionTokenExpiredException: Stale token

        """
        try:
            validate_password_strength(new_password)
        except ValueError as err:
            raise ValidationException(detail=str(err)) from err

        stored = await AuthService._consume_action_token(session, token, ActionTokenPurpose.PASSWORD_RESET)

        user = await UserService.get_user(session, stored.user_id)
        if user is None:
            raise InvalidActionTokenException()

        await UserService.set_password(user, new_password)
        await AuthService.revoke_all_sessions(session, user.id)
        return user

    @staticmethod
    async def verify_email(session: AsyncSession, token: str) -> User:
        """Consume a verification token and activate a pending principal.

        Raises:
            InvalidActionTokenException: Unknown or already used token
            ActionTokenExpiredException: Stale token

        """
        stored = await AuthService._consume_action_token(session, token, ActionTokenPurpose.EMAIL_VERIFICATION)

        user = await UserService.get_user(session, stored.user_id)
        if user is None:
            raise InvalidActionTokenException()

        user.email_verified_at = datetime.now(UTC)
        if user.status == UserStatus.PENDING:
            user.status = UserStatus.ACTIVE.value
        logger.info(f"Email verified for user {user.username}")
        return user

    @staticmethod
    async def cleanup_expired_tokens(session: AsyncSession) -> int:
        """Delete expired refresh and action tokens."""
        now = datetime.now(UTC)
        refresh_result = await session.execute(delete(RefreshToken).where(RefreshToken.expires_at <= now))
        action_result = await session.execute(
            delete(ActionToken).where(or_(ActionToken.expires_at <= now, ActionToken.used_at.is_not(None)))
        )
        removed = refresh_result.rowcount + action_result.rowcount
        if removed:
            logger.info(f"Removed {removed} expired token(s)")
        return removed
