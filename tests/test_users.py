"""User administration tests — overrides, account status, effective permissions."""

from __future__ import annotations

import pytest

from ops_portal.common.constants import Permission, UserRole, UserStatus
from ops_portal.common.exceptions import UnauthorizedException, ValidationException
from ops_portal.org.models import User
from ops_portal.org.service import UserService
from tests.conftest import actor_of


class TestPermissionOverrides:

    async def test_admin_replaces_overrides(self, sessions, admin, staff):
        out = await UserService.update_permission_overrides(
            sessions, actor_of(admin), staff.id,
            {"view_task": False, "approve_leave": True},
        )
        assert out.permission_overrides == {"approve_leave": True, "view_task": False}

        perms = await UserService.get_effective_permissions(sessions, actor_of(staff), staff.id)
        assert Permission.approve_leave in perms.permissions
        assert Permission.view_task not in perms.permissions

    async def test_replacement_is_wholesale(self, sessions, admin, staff):
        await UserService.update_permission_overrides(
            sessions, actor_of(admin), staff.id, {"approve_leave": True},
        )
        out = await UserService.update_permission_overrides(
            sessions, actor_of(admin), staff.id, {},
        )
        assert out.permission_overrides == {}

    async def test_unknown_key_is_rejected(self, sessions, admin, staff):
        with pytest.raises(ValidationException):
            await UserService.update_permission_overrides(
                sessions, actor_of(admin), staff.id, {"launch_rockets": True},
            )

    async def test_non_admin_cannot_change_overrides(self, sessions, manager, staff):
        with pytest.raises(UnauthorizedException):
            await UserService.update_permission_overrides(
                sessions, actor_of(manager), staff.id, {"approve_leave": True},
            )


class TestAccountStatus:

    async def test_suspended_user_loses_all_permissions(self, sessions, admin, manager):
        out = await UserService.set_status(
            sessions, actor_of(admin), manager.id, UserStatus.suspended,
        )
        assert out.status == UserStatus.suspended

        perms = await UserService.get_effective_permissions(sessions, actor_of(admin), manager.id)
        assert perms.permissions == []
        assert perms.role == UserRole.manager

    async def test_admin_cannot_deactivate_self(self, sessions, admin):
        with pytest.raises(UnauthorizedException):
            await UserService.set_status(
                sessions, actor_of(admin), admin.id, UserStatus.inactive,
            )

    async def test_suspended_actor_is_refused(self, sessions, admin, staff):
        await UserService.set_status(sessions, actor_of(admin), staff.id, UserStatus.suspended)
        async with sessions() as db:
            suspended = (await db.get(User, staff.id)).to_actor()
        with pytest.raises(UnauthorizedException):
            await UserService.get_effective_permissions(sessions, suspended, staff.id)


class TestEffectivePermissions:

    async def test_staff_reads_own_defaults(self, sessions, staff):
        perms = await UserService.get_effective_permissions(sessions, actor_of(staff), staff.id)
        assert Permission.create_leave in perms.permissions
        assert Permission.approve_leave not in perms.permissions
        assert perms.overrides == {}

    async def test_reading_others_needs_manage_department(self, sessions, staff, manager):
        with pytest.raises(UnauthorizedException):
            await UserService.get_effective_permissions(sessions, actor_of(manager), staff.id)
