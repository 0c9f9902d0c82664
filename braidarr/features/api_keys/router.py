"""API key management router (owner-scoped endpoints)."""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from braidarr.database.dependencies import get_db_session
from braidarr.features.auth.dependencies import get_current_active_user
from braidarr.features.user.models import User

from .schemas import (
    ApiKeyCreatedResponse,
    ApiKeyCreateRequest,
    ApiKeyListResponse,
    ApiKeyResponse,
    ApiKeyUpdateRequest,
    ApiKeyUsageResponse,
    ScopeCatalogueResponse,
)
from .service import ApiKeyService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api-keys", tags=["API Keys"])


@router.get("", response_model=ApiKeyListResponse)
async def list_api_keys(
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """List the current user's API keys (display prefix only)."""
    keys = await ApiKeyService.list_keys(session, current_user)
    return ApiKeyListResponse(keys=[ApiKeyResponse.model_validate(k) for k in keys], total=len(keys))


@router.get("/scopes", response_model=ScopeCatalogueResponse)
async def list_available_scopes(current_user: User = Depends(get_current_active_user)):
    """List the resources and actions keys can be scoped to."""
    return ScopeCatalogueResponse(scopes=ApiKeyService.available_scopes())


@router.post("", response_model=ApiKeyCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    data: ApiKeyCreateRequest,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Create an API key.

    The full key is returned in this response only. Store it securely.
    """
    api_key, plaintext = await ApiKeyService.create(session, current_user, data)
    await session.commit()

    response = ApiKeyResponse.model_validate(api_key)
    return ApiKeyCreatedResponse(**response.model_dump(), key=plaintext)


@router.get("/{key_id}", response_model=ApiKeyResponse)
async def get_api_key(
    key_id: int,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Get one of the current user's API keys."""
    api_key = await ApiKeyService.get_key(session, current_user, key_id)
    return ApiKeyResponse.model_validate(api_key)


@router.get("/{key_id}/usage", response_model=ApiKeyUsageResponse)
async def get_api_key_usage(
    key_id: int,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Usage statistics of one of the current user's API keys."""
    return await ApiKeyService.usage_stats(session, current_user, key_id)


@router.patch("/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    key_id: int,
    data: ApiKeyUpdateRequest,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Update name, scopes, expiry or active flag of an API key."""
    api_key = await ApiKeyService.update(session, current_user, key_id, data)
    await session.commit()
    return ApiKeyResponse.model_validate(api_key)


@router.delete("/{key_id}", response_model=ApiKeyResponse)
async def revoke_api_key(
    key_id: int,
    current_user: User = Depends(get_current_active_user),
    session: AsyncSession = Depends(get_db_session),
):
    """Revoke an API key. It stops authenticating immediately; its usage history is kept."""
    api_key = await ApiKeyService.revoke(session, current_user, key_id)
    await session.commit()
    return ApiKeyResponse.model_validate(api_key)
