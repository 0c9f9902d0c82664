"""User management router (API endpoints)."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.database.dependencies import get_db_session
from braidarr.features.auth.dependencies import Principal, get_current_active_user, require_role, require_scope
from braidarr.features.auth.service import AuthService

from .exceptions import CannotModifyOwnStatus, UserNotFound
from .models import User, UserRole, UserStatus
from .schemas import PasswordChangeRequest, UserResponse, UserStatusUpdateRequest
from .service import UserService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["User Management"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(principal: Principal = Depends(require_scope("users", "read"))):
    """Get current user information (session or API key with `users:read`)."""
    return UserResponse.model_validate(principal.user)


@router.post("/me/change-password")
async def change_password(
    data: PasswordChangeRequest,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Change current user's password."""
    await UserService.change_password(current_user, data.current_password, data.new_password)
    await session.commit()
    return {"message": "Password changed successfully"}


# Admin endpoints
@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    data: UserStatusUpdateRequest,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    session: AsyncSession = Depends(get_db_session),
):
    """Activate or deactivate a user (admin only).

    Leaving the active state ends every session of the user.
    """
    if current_user.id == user_id:
        raise CannotModifyOwnStatus()

    user = await UserService.get_user(session, user_id)

    if not user:
        raise UserNotFound()

    user = await UserService.set_status(user, data.status)
    if data.status != UserStatus.ACTIVE:
        await AuthService.revoke_all_sessions(session, user.id)
    await session.commit()

    logger.info(f"Status of {user.username} set to {data.status.value} by admin {current_user.username}")
    return UserResponse.model_validate(user)
