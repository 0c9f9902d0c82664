"""User service layer."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import EmailAlreadyExists, IncorrectPassword, UsernameAlreadyExists
from .models import User, UserRole, UserStatus

logger = logging.getLogger(__name__)


class UserService:
    """Service for user operations."""

    @staticmethod
    async def create_user(
        session: AsyncSession,
        email: str,
        username: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.ACTIVE,
    ) -> User:
        """Create a new user.

        Args:
            session: Database session
            email: Email address (stored lower-cased)
            username: Unique username
            password: Plain text password, hashed with Argon2
            first_name: Optional first name
            last_name: Optional last name
            role: Role to assign
            status: Initial account status

        Returns:
            Created User object

        Raises:
            UsernameAlreadyExists: If username already exists
            EmailAlreadyExists: If email already exists

        """
        email = email.lower()

        if await UserService.get_user_by_email(session, email):
            raise EmailAlreadyExists()

        stmt = select(User).where(func.lower(User.username) == username.lower())
        result = await session.execute(stmt)
        if result.scalar_one_or_none():
            raise UsernameAlreadyExists()

        user = User(
            email=email,
            username=username,
            first_name=first_name,
            last_name=last_name,
            hashed_password=User.hash_password(password),
            role=role.value,
            status=status.value,
        )

        session.add(user)
        await session.flush()
        logger.info(f"New user registered: {user.username} (id={user.id}, status={user.status})")

        return user

    @staticmethod
    async def get_user(session: AsyncSession, user_id: int) -> User | None:
        """Get user by ID."""
        stmt = select(User).where(User.id == user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
        """Get user by email (case-insensitive)."""
        stmt = select(User).where(User.email == email.lower())
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def change_password(user: User, current_password: str, new_password: str) -> bool:
        """Change user password.

        Raises:
            IncorrectPassword: If current password is incorrect

        """
        if not user.verify_password(current_password):
            raise IncorrectPassword()

        user.hashed_password = User.hash_password(new_password)

        logger.info(f"Password changed for user: {user.username}")
        return True

    @staticmethod
    async def set_password(user: User, new_password: str) -> None:
        """Replace the password without checking the current one (reset flow)."""
        user.hashed_password = User.hash_password(new_password)
        logger.info(f"Password reset for user: {user.username}")

    @staticmethod
    async def set_status(user: User, status: UserStatus) -> User:
        """Change the account status."""
        user.status = status.value
        logger.info(f"Status of user {user.username} set to {status.value}")
        return user
