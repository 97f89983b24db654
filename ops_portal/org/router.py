"""User router — permission catalog, effective permissions, overrides, status."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.dependencies import get_current_actor, require_permission
from ops_portal.auth.permissions import Actor
from ops_portal.common.constants import PERMISSION_CATEGORIES, Permission
from ops_portal.database import get_sessions
from ops_portal.org.schemas import (
    EffectivePermissionsOut,
    PermissionCategoryOut,
    PermissionOverridesUpdate,
    UserOut,
    UserStatusUpdate,
)
from ops_portal.org.service import UserService

router = APIRouter(prefix="", tags=["users"])


@router.get("/permissions/catalog", response_model=list[PermissionCategoryOut])
async def permission_catalog(actor: Actor = Depends(get_current_actor)):
    """Permission keys grouped for settings screens."""
    return [PermissionCategoryOut(**category) for category in PERMISSION_CATEGORIES]


@router.get("/me/permissions", response_model=EffectivePermissionsOut)
async def my_permissions(
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await UserService.get_effective_permissions(sessions, actor, actor.id)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: uuid.UUID,
    actor: Actor = Depends(require_permission(Permission.view_profile)),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await UserService.get_user(sessions, actor, user_id)


@router.get("/{user_id}/permissions", response_model=EffectivePermissionsOut)
async def user_permissions(
    user_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await UserService.get_effective_permissions(sessions, actor, user_id)


@router.put("/{user_id}/permissions", response_model=UserOut)
async def update_permissions(
    user_id: uuid.UUID,
    body: PermissionOverridesUpdate,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Replace the user's permission overrides (admin only)."""
    return await UserService.update_permission_overrides(
        sessions, actor, user_id, body.overrides,
    )


@router.put("/{user_id}/status", response_model=UserOut)
async def set_status(
    user_id: uuid.UUID,
    body: UserStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await UserService.set_status(sessions, actor, user_id, body.status)
