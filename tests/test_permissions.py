"""Permission model tests — role defaults, overrides, status gating, role gates."""

from __future__ import annotations

import uuid
from types import MappingProxyType

import pytest

from ops_portal.auth.permissions import (
    Actor,
    can_authorize,
    coerce_overrides,
    default_permissions_for_role,
    effective_permission,
    effective_permissions,
    ensure_authorized,
    ensure_permission,
    has_all_permissions,
    has_any_permission,
    has_any_role,
    has_role,
    validate_overrides,
)
from ops_portal.common.constants import (
    APPROVER_ROLES,
    ROLE_DEFAULT_PERMISSIONS,
    Permission,
    UserRole,
    UserStatus,
)
from ops_portal.common.exceptions import UnauthorizedException, ValidationException


def _actor(role=UserRole.staff, status=UserStatus.active, **overrides) -> Actor:
    return Actor(
        id=uuid.uuid4(),
        role=role,
        status=status,
        permission_overrides=MappingProxyType(
            {Permission(k): v for k, v in overrides.items()}
        ),
    )


# ═════════════════════════════════════════════════════════════════════
# Derivation
# ═════════════════════════════════════════════════════════════════════


class TestEffectivePermission:

    def test_role_defaults_apply_without_overrides(self):
        staff = _actor()
        assert effective_permission(staff, Permission.create_leave)
        assert not effective_permission(staff, Permission.approve_leave)

    def test_override_grants_missing_default(self):
        staff = _actor(approve_leave=True)
        assert effective_permission(staff, Permission.approve_leave)

    def test_override_revokes_default(self):
        manager = _actor(UserRole.manager, approve_leave=False)
        assert not effective_permission(manager, Permission.approve_leave)
        assert effective_permission(manager, Permission.manage_leaves)

    def test_admin_holds_everything_even_when_revoked(self):
        admin = _actor(UserRole.admin, manage_department=False)
        assert effective_permissions(admin) == frozenset(Permission)

    @pytest.mark.parametrize("status", [UserStatus.inactive, UserStatus.suspended])
    def test_non_active_actor_holds_nothing(self, status):
        admin = _actor(UserRole.admin, status=status)
        assert effective_permissions(admin) == frozenset()
        assert not effective_permission(admin, Permission.view_profile)
        assert not has_any_permission(admin, [Permission.view_profile])
        assert not has_any_role(admin, [UserRole.admin])

    def test_no_actor_holds_nothing(self):
        assert not effective_permission(None, Permission.view_profile)
        assert effective_permissions(None) == frozenset()

    def test_accepts_string_keys(self):
        assert effective_permission(_actor(), "view_leaves")

    def test_effective_set_matches_defaults_for_plain_roles(self):
        for role in (UserRole.manager, UserRole.department_head, UserRole.staff):
            assert effective_permissions(_actor(role)) == ROLE_DEFAULT_PERMISSIONS[role]

    def test_any_and_all(self):
        staff = _actor()
        assert has_any_permission(staff, [Permission.approve_leave, Permission.view_leaves])
        assert not has_all_permissions(staff, [Permission.approve_leave, Permission.view_leaves])
        assert has_all_permissions(staff, [Permission.create_leave, Permission.view_leaves])


# ═════════════════════════════════════════════════════════════════════
# Role gate + permission gate
# ═════════════════════════════════════════════════════════════════════


class TestCanAuthorize:

    def test_manager_bypasses_permission_check(self):
        manager = _actor(UserRole.manager, approve_leave=False)
        assert can_authorize(manager, APPROVER_ROLES, Permission.approve_leave)

    def test_department_head_needs_permission(self):
        head = _actor(UserRole.department_head, approve_leave=False)
        assert not can_authorize(head, APPROVER_ROLES, Permission.approve_leave)
        assert can_authorize(
            _actor(UserRole.department_head), APPROVER_ROLES, Permission.approve_leave,
        )

    def test_role_gate_is_never_bypassed(self):
        staff = _actor(approve_leave=True)
        assert not can_authorize(staff, APPROVER_ROLES, Permission.approve_leave)

    def test_suspended_admin_is_refused(self):
        admin = _actor(UserRole.admin, status=UserStatus.suspended)
        assert not can_authorize(admin, APPROVER_ROLES, Permission.approve_leave)

    def test_ensure_helpers_raise_unauthorized(self):
        with pytest.raises(UnauthorizedException):
            ensure_authorized(_actor(), APPROVER_ROLES, Permission.approve_leave)
        with pytest.raises(UnauthorizedException) as exc_info:
            ensure_permission(_actor(), Permission.manage_leaves)
        assert exc_info.value.status_code == 403
        assert "manage_leaves" in exc_info.value.detail


# ═════════════════════════════════════════════════════════════════════
# Override parsing
# ═════════════════════════════════════════════════════════════════════


class TestOverrides:

    def test_validate_accepts_known_boolean_keys(self):
        parsed = validate_overrides({"approve_leave": True, "view_task": False})
        assert parsed == {Permission.approve_leave: True, Permission.view_task: False}

    def test_validate_rejects_unknown_key_and_non_boolean(self):
        with pytest.raises(ValidationException) as exc_info:
            validate_overrides({"fly_plane": True, "approve_leave": "yes"})
        assert set(exc_info.value.errors) == {"fly_plane", "approve_leave"}

    def test_coerce_drops_stale_keys(self):
        parsed = coerce_overrides({"approve_leave": True, "retired_permission": True})
        assert dict(parsed) == {Permission.approve_leave: True}

    def test_coerce_handles_missing_map(self):
        assert dict(coerce_overrides(None)) == {}


class TestRoles:

    def test_has_role_requires_active_status(self):
        assert has_role(_actor(UserRole.manager), UserRole.manager)
        assert not has_role(_actor(UserRole.manager, status=UserStatus.inactive), UserRole.manager)
        assert not has_role(None, UserRole.staff)

    def test_role_defaults_table(self):
        assert default_permissions_for_role(UserRole.admin) == frozenset(Permission)
        assert Permission.approve_leave not in default_permissions_for_role(UserRole.staff)
