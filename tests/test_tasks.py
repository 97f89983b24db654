"""Task tests — creation, assignment scoping, delegation and single-round approval."""

from __future__ import annotations

import uuid

import pytest

from ops_portal.common.constants import (
    ApprovalStatus,
    AssignmentLevel,
    Decision,
    UserRole,
    UserStatus,
)
from ops_portal.common.exceptions import (
    AlreadyTerminalException,
    InvalidActorException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from ops_portal.notifications.service import NotificationService
from ops_portal.tasks.schemas import TaskCreate, TaskOut
from ops_portal.tasks.service import TaskService
from tests.conftest import actor_of, seed_department, seed_user


async def _create(sessions, creator, **kwargs):
    data = {"title": "Quarterly stock count", **kwargs}
    return await TaskService.create(sessions, actor_of(creator), TaskCreate(**data))


class TestCreate:

    async def test_staff_may_create_unassigned_task(self, sessions, staff):
        task = await _create(sessions, staff)
        assert task.created_by == staff.id
        assert task.assignee_ids == []
        assert task.approval_status == ApprovalStatus.pending
        assert task.department_id == staff.department_id

    def test_task_carries_only_approval_state(self):
        assert "approval_status" in TaskOut.model_fields
        assert "status" not in TaskOut.model_fields

    async def test_staff_cannot_assign_on_create(self, sessions, staff, manager):
        with pytest.raises(UnauthorizedException):
            await _create(sessions, staff, assignee_ids=[manager.id])

    async def test_manager_assignment_is_initial_and_notifies(self, sessions, manager, staff):
        task = await _create(sessions, manager, assignee_ids=[staff.id], instructions="Today")

        assert task.assignee_ids == [staff.id]
        assert [(r.assigned_to, r.assignment_level) for r in task.assignment_history] == [
            (staff.id, AssignmentLevel.initial),
        ]
        async with sessions() as db:
            inbox = await NotificationService.list_for_user(db, staff.id)
        assert [n.entity_id for n in inbox.data] == [task.id]

    async def test_approval_required_needs_approvers(self, sessions, manager):
        with pytest.raises(ValidationException):
            await _create(sessions, manager, approval_required=True)

    async def test_inactive_assignee_is_refused(self, sessions, manager, department):
        gone = await seed_user(
            sessions, department_id=department.id, status=UserStatus.inactive,
        )
        with pytest.raises(ValidationException):
            await _create(sessions, manager, assignee_ids=[gone.id])

    async def test_unknown_assignee(self, sessions, manager):
        with pytest.raises(NotFoundException):
            await _create(sessions, manager, assignee_ids=[uuid.uuid4()])


class TestAssignment:

    async def test_reassign_records_only_new_members(self, sessions, manager, staff, department):
        other = await seed_user(sessions, department_id=department.id)
        task = await _create(sessions, manager, assignee_ids=[staff.id])

        updated = await TaskService.assign(
            sessions, actor_of(manager), task.id, [staff.id, other.id],
        )

        assert updated.assignee_ids == [staff.id, other.id]
        assert [r.assigned_to for r in updated.assignment_history] == [staff.id, other.id]
        assert updated.version == task.version + 1

    async def test_staff_cannot_assign(self, sessions, manager, staff):
        task = await _create(sessions, manager)
        with pytest.raises(UnauthorizedException):
            await TaskService.assign(sessions, actor_of(staff), task.id, [staff.id])

    async def test_department_head_is_scoped_to_own_department(
        self, sessions, department_head, staff,
    ):
        finance = await seed_department(sessions, name="Finance")
        outsider = await seed_user(sessions, department_id=finance.id)
        task = await _create(sessions, department_head)

        with pytest.raises(UnauthorizedException):
            await TaskService.assign(
                sessions, actor_of(department_head), task.id, [outsider.id],
            )

        updated = await TaskService.assign(
            sessions, actor_of(department_head), task.id, [staff.id],
        )
        assert [r.assignment_level for r in updated.assignment_history] == [
            AssignmentLevel.delegation,
        ]

    async def test_department_head_cannot_create_assigned_task_elsewhere(
        self, sessions, department_head, staff,
    ):
        finance = await seed_department(sessions, name="Finance")
        outsider = await seed_user(sessions, department_id=finance.id)

        with pytest.raises(UnauthorizedException):
            await _create(
                sessions, department_head,
                department_id=finance.id, assignee_ids=[outsider.id],
            )
        with pytest.raises(UnauthorizedException):
            await _create(sessions, department_head, assignee_ids=[outsider.id])

        task = await _create(sessions, department_head, assignee_ids=[staff.id])
        assert task.assignee_ids == [staff.id]
        assert task.assignment_history[0].assignment_level == AssignmentLevel.delegation

    async def test_staff_override_does_not_open_assignment_on_create(
        self, sessions, department, manager,
    ):
        helper = await seed_user(
            sessions, department_id=department.id, overrides={"assign_task": True},
        )
        with pytest.raises(UnauthorizedException):
            await _create(sessions, helper, assignee_ids=[manager.id])

    async def test_department_head_without_assign_permission(
        self, sessions, department, staff,
    ):
        head = await seed_user(
            sessions,
            role=UserRole.department_head,
            department_id=department.id,
            overrides={"assign_task": False},
        )
        task = await _create(sessions, head)
        with pytest.raises(UnauthorizedException):
            await TaskService.assign(sessions, actor_of(head), task.id, [staff.id])

    async def test_delegate_swaps_assignee(self, sessions, manager, staff, department):
        other = await seed_user(sessions, department_id=department.id)
        task = await _create(sessions, manager, assignee_ids=[staff.id])

        updated = await TaskService.delegate(
            sessions, actor_of(manager), task.id, staff.id, other.id, instructions="Cover",
        )

        assert updated.assignee_ids == [other.id]
        last = updated.assignment_history[-1]
        assert last.assigned_to == other.id
        assert last.assignment_level == AssignmentLevel.delegation
        assert last.instructions == "Cover"

    async def test_delegate_from_unassigned_user(self, sessions, manager, staff, department):
        other = await seed_user(sessions, department_id=department.id)
        task = await _create(sessions, manager)
        with pytest.raises(ValidationException):
            await TaskService.delegate(sessions, actor_of(manager), task.id, staff.id, other.id)


class TestResolve:

    async def test_listed_approver_decides_once(self, sessions, manager, staff, department):
        approver = await seed_user(sessions, department_id=department.id)
        task = await _create(
            sessions, manager, approval_required=True, approver_ids=[approver.id],
        )

        resolved = await TaskService.resolve(
            sessions, actor_of(approver), task.id, Decision.approve, comments="Looks right",
        )
        assert resolved.approval_status == ApprovalStatus.approved
        assert resolved.approval_history[0].approver_id == approver.id

        with pytest.raises(AlreadyTerminalException):
            await TaskService.resolve(sessions, actor_of(approver), task.id, Decision.reject)

        async with sessions() as db:
            inbox = await NotificationService.list_for_user(db, manager.id)
        assert [n.title for n in inbox.data] == ["Task Approved"]

    async def test_unlisted_user_is_invalid_actor(self, sessions, manager, staff, department):
        approver = await seed_user(sessions, department_id=department.id)
        task = await _create(
            sessions, manager, approval_required=True, approver_ids=[approver.id],
        )
        with pytest.raises(InvalidActorException):
            await TaskService.resolve(sessions, actor_of(staff), task.id, Decision.approve)

    async def test_admin_may_reject(self, sessions, manager, admin, department):
        approver = await seed_user(sessions, department_id=department.id)
        task = await _create(
            sessions, manager, approval_required=True, approver_ids=[approver.id],
        )
        resolved = await TaskService.resolve(sessions, actor_of(admin), task.id, Decision.reject)
        assert resolved.approval_status == ApprovalStatus.rejected

    async def test_task_without_approval(self, sessions, manager):
        task = await _create(sessions, manager)
        with pytest.raises(ValidationException):
            await TaskService.resolve(sessions, actor_of(manager), task.id, Decision.approve)
