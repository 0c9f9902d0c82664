"""Test configuration and fixtures.

Each test runs against its own in-memory SQLite database:
1. .env.test is loaded before the application is imported
2. A fresh engine and schema are created per test (one shared connection via StaticPool)
3. The application's session factory is pointed at that engine, so request
   sessions and the test's own session see the same data
4. Rate limit counters are cleared between tests
"""

from pathlib import Path

from dotenv import load_dotenv

# Settings are read at import time
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from braidarr.config.settings import settings  # noqa: E402
from braidarr.database import client as db_client  # noqa: E402
from braidarr.database.base import Base  # noqa: E402
from braidarr.features.auth.dependencies import get_current_active_user, get_current_user  # noqa: E402
from braidarr.features.auth.notifications import get_email_sender  # noqa: E402
from braidarr.features.user.models import User, UserRole, UserStatus  # noqa: E402
from braidarr.main import app  # noqa: E402
from braidarr.shared.rate_limit.limiter import limiter, rate_limiter  # noqa: E402

API = settings.api_prefix
DEFAULT_PASSWORD = "TestPass123"


# Database Setup - Function Scope (Fresh Database Per Test)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(autouse=True)
async def session_factory(db_engine: AsyncEngine) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Point the application's session factory at the test database."""
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

    original = (db_client._engine, db_client._async_session_factory)
    db_client._engine = db_engine
    db_client._async_session_factory = factory

    yield factory

    db_client._engine, db_client._async_session_factory = original
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Database session for the test body (separate from request sessions)."""
    async with session_factory() as async_session:
        yield async_session


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Start every test with empty rate limit counters."""
    rate_limiter.reset()
    limiter.reset()
    yield
    rate_limiter.reset()


# Email Delivery


class FakeEmailSender:
    """Captures outgoing lifecycle emails, tokens included."""

    def __init__(self):
        self.password_resets: list[tuple[str, str]] = []
        self.verifications: list[tuple[str, str]] = []

    async def send_password_reset(self, to_email: str, token: str) -> None:
        self.password_resets.append((to_email, token))

    async def send_email_verification(self, to_email: str, token: str) -> None:
        self.verifications.append((to_email, token))


@pytest.fixture(autouse=True)
def email_sender() -> FakeEmailSender:
    """Replace the email sender dependency with a capturing fake."""
    sender = FakeEmailSender()
    app.dependency_overrides[get_email_sender] = lambda: sender
    return sender


# FastAPI Client


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP test client.

    This client is unauthenticated by default. Use login() for a real session,
    or auth_client / admin_client to bypass token handling.
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Test User Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create test users with custom fields.

    Usage:
        user = await make_user()                              # active regular user
        admin = await make_user(role=UserRole.ADMIN)          # admin
        pending = await make_user(status=UserStatus.PENDING)  # unverified account

    The user is committed so request sessions can see it.
    """
    counter = 0

    async def _factory(
        email=None,
        username=None,
        password=DEFAULT_PASSWORD,
        role=UserRole.USER,
        status=UserStatus.ACTIVE,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"
        if username is None:
            username = f"testuser{counter}"

        user = User(
            email=email,
            username=username,
            hashed_password=User.hash_password(password),
            role=role.value,
            status=status.value,
            **kwargs,
        )

        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user

    return _factory


@pytest.fixture
def login(client: AsyncClient):
    """Log in through the API and return the response body.

    The client keeps the session cookies the response sets.
    """

    async def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        response = await client.post(f"{API}/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login


@pytest.fixture
def auth_headers():
    """Headers for a bearer request that also passes the CSRF check."""

    def _headers(tokens: dict) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {tokens['access_token']}",
            settings.csrf_header_name: tokens["csrf_token"],
        }

    return _headers


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient, make_user):
    """Authenticated client with a regular user.

    Overrides the auth dependency directly - no JWT issued, no login endpoint hit.

    Returns:
        tuple: (client, user) - both the HTTP client and the authenticated user

    """
    user = await make_user()

    async def override_get_current_user():
        return user

    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_current_active_user] = override_get_current_user

    yield client, user


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, make_user):
    """Authenticated client with an admin user.

    Same as auth_client but the user has ADMIN role.

    Returns:
        tuple: (client, user) - both the HTTP client and the admin user

    """
    user = await make_user(role=UserRole.ADMIN)

    async def override_get_current_user():
        return user

    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_current_active_user] = override_get_current_user

    yield client, user
