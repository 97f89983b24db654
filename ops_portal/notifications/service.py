"""Notification service — persistence plus best-effort post-commit dispatch."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.common.constants import NotificationType, UserRole, UserStatus
from ops_portal.common.exceptions import NotFoundException, UnauthorizedException
from ops_portal.notifications.models import Notification
from ops_portal.notifications.schemas import NotificationListResponse, NotificationResponse
from ops_portal.org.models import User

logger = logging.getLogger(__name__)


# ── Core service ────────────────────────────────────────────────────


class NotificationService:
    """Async notification operations."""

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        *,
        recipient_id: uuid.UUID,
        type: NotificationType = NotificationType.info,
        title: str,
        message: str,
        action_url: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[uuid.UUID] = None,
    ) -> Notification:
        """Create a new notification and flush to DB."""
        notification = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        unread_only: bool = False,
    ) -> NotificationListResponse:
        """Notifications for a user, newest first, with the unread badge count."""
        query = (
            select(Notification)
            .where(Notification.recipient_id == user_id)
            .order_by(Notification.created_at.desc())
        )
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        rows = (await db.execute(query)).scalars().all()

        unread = (
            await db.execute(
                select(func.count())
                .select_from(Notification)
                .where(
                    Notification.recipient_id == user_id,
                    Notification.is_read.is_(False),
                )
            )
        ).scalar_one()

        return NotificationListResponse(
            data=[NotificationResponse.model_validate(n) for n in rows],
            unread=unread,
        )

    @staticmethod
    async def mark_read(
        db: AsyncSession,
        notification_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Notification:
        """Mark a single notification as read. Verifies ownership."""
        notification = await db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundException("Notification", notification_id)
        if notification.recipient_id != user_id:
            raise UnauthorizedException("You can only mark your own notifications as read.")

        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        await db.flush()
        return notification

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: uuid.UUID) -> int:
        result = await db.execute(
            update(Notification)
            .where(
                Notification.recipient_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=datetime.now(timezone.utc))
        )
        await db.flush()
        return result.rowcount  # type: ignore[return-value]


# ── Post-commit dispatch ────────────────────────────────────────────


async def dispatch_notifications(
    sessions: async_sessionmaker[AsyncSession],
    send: Callable[[AsyncSession], Awaitable[object]],
) -> bool:
    """Run ``send`` in its own transaction after the domain change committed.

    Failures are logged and swallowed; the caller's committed state stands.
    Returns whether the notifications were stored.
    """
    try:
        async with sessions() as session:
            async with session.begin():
                await send(session)
        return True
    except Exception:
        logger.exception("Notification dispatch failed; the committed change is kept")
        return False


async def find_approvers(
    db: AsyncSession,
    role: UserRole,
    department_id: Optional[uuid.UUID] = None,
) -> list[uuid.UUID]:
    """Active users holding ``role``; managers and heads are scoped to the department."""
    query = select(User.id).where(User.role == role, User.status == UserStatus.active)
    if role != UserRole.admin and department_id is not None:
        query = query.where(User.department_id == department_id)
    return list((await db.execute(query)).scalars().all())


# ── Cross-module helper dispatchers ─────────────────────────────────
# They take the committed response snapshots, never live ORM rows.


async def notify_leave_submitted(
    db: AsyncSession,
    leave,  # ops_portal.leave.schemas.LeaveRequestOut
    approver_role: UserRole,
    department_id: Optional[uuid.UUID],
) -> list[Notification]:
    """Notify the holders of the first step's role that a request awaits them."""
    created = []
    for approver_id in await find_approvers(db, approver_role, department_id):
        if approver_id == leave.employee_id:
            continue
        created.append(
            await NotificationService.create_notification(
                db,
                recipient_id=approver_id,
                type=NotificationType.action_required,
                title="New Leave Request",
                message=(
                    f"A {leave.leave_type} leave request from {leave.start_date} to "
                    f"{leave.end_date} ({leave.total_days} day(s)) requires your approval."
                ),
                action_url=f"/leave/requests/{leave.id}",
                entity_type="leave_request",
                entity_id=leave.id,
            )
        )
    return created


async def notify_leave_step_approved(
    db: AsyncSession,
    leave,  # ops_portal.leave.schemas.LeaveRequestOut
    next_role: UserRole,
    department_id: Optional[uuid.UUID],
) -> list[Notification]:
    """A step cleared; the next tier is now on the hook."""
    return await notify_leave_submitted(db, leave, next_role, department_id)


async def notify_leave_approved(db: AsyncSession, leave) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=leave.employee_id,
        type=NotificationType.approval,
        title="Leave Request Approved",
        message=(
            f"Your leave request from {leave.start_date} to "
            f"{leave.end_date} has been approved."
        ),
        action_url=f"/leave/requests/{leave.id}",
        entity_type="leave_request",
        entity_id=leave.id,
    )


async def notify_leave_rejected(
    db: AsyncSession,
    leave,
    comments: Optional[str] = None,
) -> Notification:
    message = (
        f"Your leave request from {leave.start_date} to "
        f"{leave.end_date} has been rejected."
    )
    if comments:
        message += f" Reason: {comments}"
    return await NotificationService.create_notification(
        db,
        recipient_id=leave.employee_id,
        type=NotificationType.alert,
        title="Leave Request Rejected",
        message=message,
        action_url=f"/leave/requests/{leave.id}",
        entity_type="leave_request",
        entity_id=leave.id,
    )


async def notify_leave_cancelled(
    db: AsyncSession,
    leave,
    cancelled_by: uuid.UUID,
) -> Optional[Notification]:
    """Tell the employee when somebody else cancelled their request."""
    if cancelled_by == leave.employee_id:
        return None
    return await NotificationService.create_notification(
        db,
        recipient_id=leave.employee_id,
        type=NotificationType.info,
        title="Leave Request Cancelled",
        message=(
            f"Your leave request from {leave.start_date} to "
            f"{leave.end_date} was cancelled."
        ),
        action_url=f"/leave/requests/{leave.id}",
        entity_type="leave_request",
        entity_id=leave.id,
    )


async def notify_task_assigned(
    db: AsyncSession,
    task,  # ops_portal.tasks.schemas.TaskOut
    assignee_ids: list[uuid.UUID],
) -> list[Notification]:
    created = []
    for assignee_id in assignee_ids:
        created.append(
            await NotificationService.create_notification(
                db,
                recipient_id=assignee_id,
                type=NotificationType.action_required,
                title="Task Assigned",
                message=f"You have been assigned to '{task.title}'.",
                action_url=f"/tasks/{task.id}",
                entity_type="task",
                entity_id=task.id,
            )
        )
    return created


async def notify_task_resolved(db: AsyncSession, task) -> Notification:
    return await NotificationService.create_notification(
        db,
        recipient_id=task.created_by,
        type=NotificationType.approval,
        title=f"Task {task.approval_status.value.title()}",
        message=f"Your task '{task.title}' was {task.approval_status.value}.",
        action_url=f"/tasks/{task.id}",
        entity_type="task",
        entity_id=task.id,
    )
