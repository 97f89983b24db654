"""Notifications router — the caller's inbox."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.dependencies import get_current_actor
from ops_portal.auth.permissions import Actor
from ops_portal.database import get_sessions
from ops_portal.notifications.schemas import NotificationListResponse, NotificationResponse
from ops_portal.notifications.service import NotificationService

router = APIRouter(prefix="", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    unread_only: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    async with sessions() as db:
        return await NotificationService.list_for_user(db, actor.id, unread_only=unread_only)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    async with sessions() as db:
        async with db.begin():
            notification = await NotificationService.mark_read(db, notification_id, actor.id)
            return NotificationResponse.model_validate(notification)


@router.put("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    async with sessions() as db:
        async with db.begin():
            updated = await NotificationService.mark_all_read(db, actor.id)
    return {"updated": updated}
