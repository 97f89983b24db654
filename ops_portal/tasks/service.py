"""Task service layer — creation, (re)assignment, delegation and single-round approval."""

from __future__ import annotations

import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.permissions import (
    Actor,
    ensure_active,
    ensure_authorized,
    ensure_permission,
)
from ops_portal.common.audit import create_audit_entry, utcnow
from ops_portal.common.constants import (
    ASSIGNER_ROLES,
    AssignmentLevel,
    Decision,
    Permission,
    UserRole,
    UserStatus,
)
from ops_portal.common.exceptions import (
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from ops_portal.common.uow import run_in_transaction
from ops_portal.notifications.service import (
    dispatch_notifications,
    notify_task_assigned,
    notify_task_resolved,
)
from ops_portal.org.models import User
from ops_portal.tasks.models import Task, TaskApprovalRecord, TaskAssignmentRecord
from ops_portal.tasks.schemas import TaskCreate, TaskOut
from ops_portal.workflow.engine import check_single_round, decision_status

logger = logging.getLogger(__name__)


def _assignment_level(actor: Actor) -> AssignmentLevel:
    """Admins and managers hand work out; everyone else passes it down."""
    if actor.role in (UserRole.admin, UserRole.manager):
        return AssignmentLevel.initial
    return AssignmentLevel.delegation


class TaskService:
    """Async task operations."""

    @staticmethod
    async def _load_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
        result = await db.execute(
            select(Task).where(Task.id == task_id, Task.is_active.is_(True))
        )
        task = result.scalars().first()
        if task is None:
            raise NotFoundException("Task", str(task_id))
        return task

    @staticmethod
    async def _load_users(db: AsyncSession, user_ids: Iterable[uuid.UUID]) -> list[User]:
        """Load active users, preserving the requested order."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        result = await db.execute(select(User).where(User.id.in_(ids)))
        found = {u.id: u for u in result.scalars().all()}

        missing = [str(i) for i in ids if i not in found]
        if missing:
            raise NotFoundException("User", ", ".join(missing))
        inactive = [str(i) for i in ids if found[i].status != UserStatus.active]
        if inactive:
            raise ValidationException(
                {"user_ids": [f"Inactive users cannot be assigned: {', '.join(inactive)}."]}
            )
        return [found[i] for i in ids]

    @staticmethod
    def _ensure_can_assign(actor: Actor, task: Task, users: Iterable[User]) -> None:
        """Role gate plus department scoping for department heads."""
        ensure_authorized(
            actor,
            ASSIGNER_ROLES,
            Permission.assign_task,
            "Only admins, managers and department heads with 'assign_task' can assign tasks.",
        )
        if actor.role != UserRole.department_head:
            return
        if task.department_id != actor.department_id:
            raise UnauthorizedException(
                "Department heads can only assign tasks of their own department."
            )
        outsiders = [str(u.id) for u in users if u.department_id != actor.department_id]
        if outsiders:
            raise UnauthorizedException(
                "Department heads can only assign members of their own department."
            )

    @staticmethod
    def _record_assignment(
        task: Task,
        actor: Actor,
        user_ids: Iterable[uuid.UUID],
        level: AssignmentLevel,
        instructions: Optional[str],
    ) -> None:
        now = utcnow()
        for user_id in user_ids:
            task.assignment_history.append(
                TaskAssignmentRecord(
                    assigned_by=actor.id,
                    assigned_to=user_id,
                    assignment_level=level,
                    instructions=instructions,
                    assigned_at=now,
                )
            )

    @staticmethod
    def _touch(task: Task, actor: Actor) -> None:
        # Collection-only changes do not write the row; bump it so the version check applies
        task.last_modified_by = actor.id
        task.updated_at = utcnow()

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: TaskCreate,
    ) -> TaskOut:
        ensure_active(actor)
        ensure_permission(actor, Permission.create_task)
        if data.approval_required and not data.approver_ids:
            raise ValidationException(
                {"approver_ids": ["Tasks that require approval need at least one approver."]}
            )

        async def work(db: AsyncSession):
            assignees = await TaskService._load_users(db, data.assignee_ids)
            approvers = await TaskService._load_users(db, data.approver_ids)

            task = Task(
                id=uuid.uuid4(),
                title=data.title,
                description=data.description,
                priority=data.priority,
                department_id=data.department_id or actor.department_id,
                created_by=actor.id,
                due_date=data.due_date,
                approval_required=data.approval_required,
                is_active=True,
                assignees=assignees,
                approvers=approvers,
                approval_history=[],
                assignment_history=[],
            )
            if assignees:
                # Same gate as assign(): role, permission and department scope
                TaskService._ensure_can_assign(actor, task, assignees)
            TaskService._record_assignment(
                task, actor, [u.id for u in assignees],
                _assignment_level(actor), data.instructions,
            )
            db.add(task)
            await db.flush()

            await create_audit_entry(
                db,
                action="create",
                entity_type="task",
                entity_id=task.id,
                actor_id=actor.id,
                new_values={
                    "title": task.title,
                    "assignees": [str(u.id) for u in assignees],
                    "approval_required": task.approval_required,
                },
            )
            return TaskOut.model_validate(task)

        out = await run_in_transaction(sessions, work, label="task.create")
        logger.info("Task %s created by %s", out.id, actor.id)
        if out.assignee_ids:
            await dispatch_notifications(
                sessions, lambda db: notify_task_assigned(db, out, out.assignee_ids),
            )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Assignment
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def assign(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        task_id: uuid.UUID,
        assignee_ids: list[uuid.UUID],
        *,
        instructions: Optional[str] = None,
    ) -> TaskOut:
        """Replace the assignee set; newly added members get a history entry."""

        async def work(db: AsyncSession):
            task = await TaskService._load_task(db, task_id)
            users = await TaskService._load_users(db, assignee_ids)
            TaskService._ensure_can_assign(actor, task, users)

            previous = set(task.assignee_ids)
            added = [u.id for u in users if u.id not in previous]
            task.assignees = users
            TaskService._record_assignment(
                task, actor, added, _assignment_level(actor), instructions,
            )
            TaskService._touch(task, actor)
            await db.flush()

            await create_audit_entry(
                db,
                action="assign",
                entity_type="task",
                entity_id=task.id,
                actor_id=actor.id,
                old_values={"assignees": sorted(str(i) for i in previous)},
                new_values={"assignees": [str(u.id) for u in users]},
            )
            return TaskOut.model_validate(task), added

        out, added = await run_in_transaction(sessions, work, label="task.assign")
        logger.info("Task %s reassigned by %s (%d new)", task_id, actor.id, len(added))
        if added:
            await dispatch_notifications(
                sessions, lambda db: notify_task_assigned(db, out, added),
            )
        return out

    @staticmethod
    async def delegate(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        task_id: uuid.UUID,
        from_user_id: uuid.UUID,
        to_user_id: uuid.UUID,
        *,
        instructions: Optional[str] = None,
    ) -> TaskOut:
        """Swap one assignee for another and record a delegation."""

        async def work(db: AsyncSession):
            task = await TaskService._load_task(db, task_id)
            (target,) = await TaskService._load_users(db, [to_user_id])
            TaskService._ensure_can_assign(actor, task, [target])

            current = task.assignee_ids
            if from_user_id not in current:
                raise ValidationException(
                    {"from_user_id": ["User is not assigned to this task."]}
                )
            if to_user_id in current:
                raise ValidationException(
                    {"to_user_id": ["User is already assigned to this task."]}
                )

            task.assignees = [u for u in task.assignees if u.id != from_user_id] + [target]
            TaskService._record_assignment(
                task, actor, [to_user_id], AssignmentLevel.delegation, instructions,
            )
            TaskService._touch(task, actor)
            await db.flush()

            await create_audit_entry(
                db,
                action="delegate",
                entity_type="task",
                entity_id=task.id,
                actor_id=actor.id,
                old_values={"assignee": str(from_user_id)},
                new_values={"assignee": str(to_user_id), "instructions": instructions},
            )
            return TaskOut.model_validate(task)

        out = await run_in_transaction(sessions, work, label="task.delegate")
        logger.info(
            "Task %s delegated from %s to %s by %s",
            task_id, from_user_id, to_user_id, actor.id,
        )
        await dispatch_notifications(
            sessions, lambda db: notify_task_assigned(db, out, [to_user_id]),
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Approval
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def resolve(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        task_id: uuid.UUID,
        decision: Decision,
        *,
        comments: Optional[str] = None,
    ) -> TaskOut:
        """Any listed approver settles the task; the first decision is final."""
        ensure_active(actor)

        async def work(db: AsyncSession):
            task = await TaskService._load_task(db, task_id)
            if not task.approval_required:
                raise ValidationException(
                    {"approval_required": ["This task does not require approval."]}
                )
            check_single_round(task.approver_ids, task.approval_history, actor)

            task.approval_history.append(
                TaskApprovalRecord(
                    approver_id=actor.id,
                    status=decision_status(decision),
                    comments=comments,
                )
            )
            TaskService._touch(task, actor)
            await db.flush()

            await create_audit_entry(
                db,
                action=decision.value,
                entity_type="task",
                entity_id=task.id,
                actor_id=actor.id,
                new_values={"approval_status": task.approval_status.value, "comments": comments},
            )
            return TaskOut.model_validate(task)

        out = await run_in_transaction(sessions, work, label="task.resolve")
        logger.info("Task %s %s by %s", task_id, out.approval_status.value, actor.id)
        await dispatch_notifications(sessions, lambda db: notify_task_resolved(db, out))
        return out

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_task(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        task_id: uuid.UUID,
    ) -> TaskOut:
        ensure_active(actor)
        ensure_permission(actor, Permission.view_task)
        async with sessions() as db:
            task = await TaskService._load_task(db, task_id)
            return TaskOut.model_validate(task)
