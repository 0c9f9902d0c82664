"""Tests for the auth service layer.
Covers: AuthService login/refresh/logout, JWT helpers, refresh token rotation.
"""

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from sqlalchemy import Update, func, select, update

from braidarr.config.settings import settings
from braidarr.features.auth.exceptions import (
    AccountInactiveException,
    AccountPendingException,
    InvalidCredentialsException,
    InvalidSignatureException,
    InvalidTokenException,
    MalformedTokenException,
    RefreshTokenReusedException,
    TokenExpiredException,
)
from braidarr.features.auth.jwt_utils import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    verify_access_token,
)
from braidarr.features.auth.models import LoginAttempt, RefreshToken
from braidarr.features.auth.service import AuthService
from braidarr.features.user.models import UserRole, UserStatus
from braidarr.shared.csrf.csrf import csrf_manager


async def _refresh_record(session, refresh_token: str) -> RefreshToken:
    jti = decode_refresh_token(refresh_token)["jti"]
    stmt = select(RefreshToken).where(RefreshToken.token_id == jti).execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one()


# JWT helpers


class TestAccessTokens:
    def test_claims_round_trip(self):
        token = create_access_token({"sub": "42", "email": "a@example.com", "role": "user", "sid": "s1"})
        claims = verify_access_token(token)

        assert claims.user_id == 42
        assert claims.email == "a@example.com"
        assert claims.role == "user"
        assert claims.sid == "s1"
        assert claims.exp > claims.iat

    def test_every_token_is_unique(self):
        data = {"sub": "1", "role": "user", "sid": "s1"}
        now = datetime.now(UTC).replace(microsecond=0)
        first = create_access_token(data, issued_at=now)
        second = create_access_token(data, issued_at=now)
        assert first != second

    def test_expired_token(self):
        token = create_access_token({"sub": "1", "role": "user", "sid": "s1"}, expires_delta=timedelta(seconds=-5))
        with pytest.raises(TokenExpiredException):
            verify_access_token(token)

    def test_wrong_signature(self):
        payload = {
            "sub": "1",
            "role": "admin",
            "sid": "s1",
            "jti": "forged",
            "type": "access",
            "iat": datetime.now(UTC),
            "exp": datetime.now(UTC) + timedelta(minutes=5),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
        token = jwt.encode(payload, "another-secret-key-that-is-long-enough-for-hs256", algorithm="HS256")
        with pytest.raises(InvalidSignatureException):
            verify_access_token(token)

    def test_garbage_is_malformed(self):
        with pytest.raises(MalformedTokenException):
            verify_access_token("not-a-jwt")

    def test_missing_claim_is_malformed(self):
        payload = {
            "sub": "1",
            "jti": "x",
            "type": "access",
            "iat": datetime.now(UTC),
            "exp": datetime.now(UTC) + timedelta(minutes=5),
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
        }
        token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
        with pytest.raises(MalformedTokenException):
            verify_access_token(token)

    def test_refresh_token_is_not_an_access_token(self):
        token, _, _ = create_refresh_token({"sub": "1", "sid": "s1"})
        with pytest.raises((InvalidSignatureException, MalformedTokenException)):
            verify_access_token(token)


class TestRefreshTokens:
    def test_decode(self):
        token, jti, expires_at = create_refresh_token({"sub": "7", "sid": "s7"})
        payload = decode_refresh_token(token)
        assert payload["jti"] == jti
        assert payload["sid"] == "s7"
        assert expires_at > datetime.now(UTC)

    def test_expired(self):
        token, _, _ = create_refresh_token({"sub": "7", "sid": "s7"}, expires_delta=timedelta(seconds=-5))
        with pytest.raises(TokenExpiredException):
            decode_refresh_token(token)

    def test_access_token_rejected(self):
        token = create_access_token({"sub": "1", "role": "user", "sid": "s1"})
        with pytest.raises(InvalidTokenException):
            decode_refresh_token(token)


# AuthService.login


class TestLogin:
    async def test_success(self, session, make_user):
        await make_user(email="login@example.com")
        user, tokens = await AuthService.login(session, "login@example.com", "TestPass123")

        assert user.email == "login@example.com"
        assert user.last_login_at is not None
        assert verify_access_token(tokens.access_token).user_id == user.id

    async def test_email_is_case_insensitive(self, session, make_user):
        await make_user(email="case@example.com")
        user, _ = await AuthService.login(session, "CASE@Example.com", "TestPass123")
        assert user.email == "case@example.com"

    async def test_unknown_email_and_wrong_password_fail_identically(self, session, make_user):
        await make_user(email="known@example.com")

        with pytest.raises(InvalidCredentialsException) as unknown:
            await AuthService.login(session, "ghost@example.com", "TestPass123")
        with pytest.raises(InvalidCredentialsException) as wrong:
            await AuthService.login(session, "known@example.com", "WrongPass123")

        assert unknown.value.detail == wrong.value.detail
        assert unknown.value.status_code == wrong.value.status_code

    async def test_inactive_account_reported_after_password_check(self, session, make_user):
        await make_user(email="off@example.com", status=UserStatus.INACTIVE)

        with pytest.raises(AccountInactiveException):
            await AuthService.login(session, "off@example.com", "TestPass123")
        with pytest.raises(InvalidCredentialsException):
            await AuthService.login(session, "off@example.com", "WrongPass123")

    async def test_pending_account(self, session, make_user):
        await make_user(email="pending@example.com", status=UserStatus.PENDING)
        with pytest.raises(AccountPendingException):
            await AuthService.login(session, "pending@example.com", "TestPass123")

    async def test_attempts_are_recorded(self, session, make_user):
        await make_user(email="audit@example.com")

        with pytest.raises(InvalidCredentialsException):
            await AuthService.login(session, "audit@example.com", "WrongPass123")
        await AuthService.login(session, "audit@example.com", "TestPass123")

        rows = (await session.execute(select(LoginAttempt).order_by(LoginAttempt.id))).scalars().all()
        assert [row.success for row in rows] == [False, True]
        assert all(row.email == "audit@example.com" for row in rows)


# AuthService.create_tokens


class TestCreateTokens:
    async def test_returns_token_response(self, session, make_user):
        user = await make_user(role=UserRole.ADMIN)
        tokens = await AuthService.create_tokens(session, user)

        assert tokens.access_token
        assert tokens.refresh_token
        assert tokens.token_type == "bearer"
        assert tokens.expires_in == settings.access_token_expire_minutes * 60
        assert tokens.access_expires_at - tokens.issued_at == timedelta(seconds=tokens.expires_in)

        claims = verify_access_token(tokens.access_token)
        assert claims.role == "admin"
        assert tokens.csrf_token == csrf_manager.issue(claims.sid)

    async def test_stores_refresh_record(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user, ip_address="10.0.0.1", user_agent="pytest")
        await session.commit()

        record = await _refresh_record(session, tokens.refresh_token)
        assert record.user_id == user.id
        assert record.revoked is False
        assert record.ip_address == "10.0.0.1"
        assert record.session_id == verify_access_token(tokens.access_token).sid

    async def test_each_login_is_a_new_session(self, session, make_user):
        user = await make_user()
        first = await AuthService.create_tokens(session, user)
        second = await AuthService.create_tokens(session, user)

        assert verify_access_token(first.access_token).sid != verify_access_token(second.access_token).sid


# AuthService.refresh


class TestRefresh:
    async def test_rotates_within_session(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        rotated = await AuthService.refresh(session, tokens.refresh_token)
        await session.commit()

        assert rotated.access_token != tokens.access_token
        assert rotated.refresh_token != tokens.refresh_token
        assert verify_access_token(rotated.access_token).sid == verify_access_token(tokens.access_token).sid
        assert rotated.csrf_token == tokens.csrf_token

        old = await _refresh_record(session, tokens.refresh_token)
        assert old.revoked is True
        assert old.replaced_by == decode_refresh_token(rotated.refresh_token)["jti"]

    async def test_reuse_revokes_the_family(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        rotated = await AuthService.refresh(session, tokens.refresh_token)
        await session.commit()

        with pytest.raises(RefreshTokenReusedException):
            await AuthService.refresh(session, tokens.refresh_token)

        with pytest.raises(InvalidTokenException):
            await AuthService.refresh(session, rotated.refresh_token)

    async def test_unknown_token(self, session):
        token, _, _ = create_refresh_token({"sub": "1", "sid": "nope"})
        with pytest.raises(InvalidTokenException):
            await AuthService.refresh(session, token)

    async def test_inactive_user_cannot_refresh(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        user.status = UserStatus.INACTIVE.value
        await session.commit()

        with pytest.raises(InvalidTokenException):
            await AuthService.refresh(session, tokens.refresh_token)

    async def test_expired_record(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        record = await _refresh_record(session, tokens.refresh_token)
        record.expires_at = datetime.now(UTC) - timedelta(minutes=1)
        await session.commit()

        with pytest.raises(TokenExpiredException):
            await AuthService.refresh(session, tokens.refresh_token)

    async def test_concurrent_rotation_loses_compare_and_set(self, session, make_user, monkeypatch):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        record = await _refresh_record(session, tokens.refresh_token)
        record_id, session_id = record.id, record.session_id
        execute = session.execute
        raced: list[bool] = []

        async def execute_with_competitor(statement, *args, **kwargs):
            # A competing refresh retires the token between the lookup and the rotation
            if isinstance(statement, Update) and not raced:
                raced.append(True)
                await execute(
                    update(RefreshToken)
                    .where(RefreshToken.id == record_id)
                    .values(revoked=True, revoked_at=datetime.now(UTC))
                    .execution_options(synchronize_session=False)
                )
            return await execute(statement, *args, **kwargs)

        monkeypatch.setattr(session, "execute", execute_with_competitor)

        with pytest.raises(InvalidTokenException, match="already been used"):
            await AuthService.refresh(session, tokens.refresh_token)

        monkeypatch.undo()
        await session.rollback()

        assert raced == [True]
        count = await session.scalar(
            select(func.count()).select_from(RefreshToken).where(RefreshToken.session_id == session_id)
        )
        assert count == 1


# AuthService.logout


class TestLogout:
    async def test_logout_with_refresh_token(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        assert await AuthService.logout(session, refresh_token=tokens.refresh_token) is True
        await session.commit()

        with pytest.raises(InvalidTokenException):
            await AuthService.refresh(session, tokens.refresh_token)

    async def test_logout_with_access_token(self, session, make_user):
        user = await make_user()
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        assert await AuthService.logout(session, access_token=tokens.access_token) is True

    async def test_logout_never_fails(self, session):
        assert await AuthService.logout(session) is False
        assert await AuthService.logout(session, access_token="garbage", refresh_token="garbage") is False

    async def test_logout_only_ends_one_session(self, session, make_user):
        user = await make_user()
        first = await AuthService.create_tokens(session, user)
        second = await AuthService.create_tokens(session, user)
        await session.commit()

        await AuthService.logout(session, refresh_token=first.refresh_token)
        await session.commit()

        rotated = await AuthService.refresh(session, second.refresh_token)
        assert rotated.access_token

    async def test_logout_all(self, session, make_user):
        user = await make_user()
        await AuthService.create_tokens(session, user)
        await AuthService.create_tokens(session, user)
        await session.commit()

        assert await AuthService.logout_all(session, user) == 2
        await session.commit()

        live = await session.execute(
            select(func.count()).select_from(RefreshToken).where(RefreshToken.revoked.is_(False))
        )
        assert live.scalar_one() == 0


class TestCleanup:
    async def test_removes_expired_tokens(self, session, make_user):
        user = await make_user()
        session.add(
            RefreshToken(
                user_id=user.id,
                session_id="old",
                token_id="expired-jti",
                expires_at=datetime.now(UTC) - timedelta(days=1),
            )
        )
        tokens = await AuthService.create_tokens(session, user)
        await session.commit()

        assert await AuthService.cleanup_expired_tokens(session) == 1
        await session.commit()

        remaining = (await session.execute(select(RefreshToken))).scalars().all()
        assert [r.token_id for r in remaining] == [decode_refresh_token(tokens.refresh_token)["jti"]]
