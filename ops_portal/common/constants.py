"""Enums and constants for Ops Portal — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Users / Roles ───────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    manager = "manager"
    department_head = "department_head"
    staff = "staff"


class UserStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


# ── Approval workflow ───────────────────────────────────────────────

class ApprovalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class Decision(str, enum.Enum):
    approve = "approve"
    reject = "reject"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class TransactionType(str, enum.Enum):
    """Ledger transaction kinds.

    ``pending`` carries reservations (positive) and their release (negative);
    every other kind moves exactly one cached balance field.
    """

    allocation = "allocation"
    pending = "pending"
    used = "used"
    adjustment = "adjustment"
    carryforward = "carryforward"


# ── Tasks ───────────────────────────────────────────────────────────

class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class AssignmentLevel(str, enum.Enum):
    initial = "initial"
    delegation = "delegation"


# ── Notifications ───────────────────────────────────────────────────

class NotificationType(str, enum.Enum):
    info = "info"
    action_required = "action_required"
    approval = "approval"
    alert = "alert"


# ── Permissions ─────────────────────────────────────────────────────

class Permission(str, enum.Enum):
    view_profile = "view_profile"
    edit_profile = "edit_profile"
    view_task = "view_task"
    create_task = "create_task"
    edit_task = "edit_task"
    assign_task = "assign_task"
    view_department = "view_department"
    manage_department = "manage_department"
    view_report = "view_report"
    create_report = "create_report"
    edit_report = "edit_report"
    approve_report = "approve_report"
    view_attendance = "view_attendance"
    manage_attendance = "manage_attendance"
    view_attendance_report = "view_attendance_report"
    view_leaves = "view_leaves"
    create_leave = "create_leave"
    edit_leave = "edit_leave"
    approve_leave = "approve_leave"
    manage_leaves = "manage_leaves"


_BASE_PERMISSIONS: frozenset[Permission] = frozenset({
    Permission.view_profile,
    Permission.edit_profile,
    Permission.view_task,
    Permission.view_department,
    Permission.view_attendance,
    Permission.view_leaves,
    Permission.create_leave,
})

_TASK_MANAGEMENT: frozenset[Permission] = frozenset({
    Permission.create_task,
    Permission.edit_task,
    Permission.assign_task,
})

_LEAVE_MANAGEMENT: frozenset[Permission] = frozenset({
    Permission.edit_leave,
    Permission.approve_leave,
    Permission.manage_leaves,
})

ROLE_DEFAULT_PERMISSIONS: dict[UserRole, frozenset[Permission]] = {
    UserRole.admin: frozenset(Permission),
    UserRole.manager: (
        _BASE_PERMISSIONS
        | _TASK_MANAGEMENT
        | _LEAVE_MANAGEMENT
        | {Permission.view_report, Permission.view_attendance_report}
    ),
    UserRole.department_head: (
        _BASE_PERMISSIONS
        | _TASK_MANAGEMENT
        | _LEAVE_MANAGEMENT
        | {
            Permission.view_report,
            Permission.create_report,
            Permission.edit_report,
            Permission.manage_attendance,
            Permission.view_attendance_report,
        }
    ),
    UserRole.staff: _BASE_PERMISSIONS | {Permission.create_task},
}

# Grouping shown on the permission settings screen
PERMISSION_CATEGORIES: list[dict] = [
    {
        "name": "Profile Management",
        "permissions": [Permission.view_profile, Permission.edit_profile],
    },
    {
        "name": "Task Management",
        "permissions": [
            Permission.view_task,
            Permission.create_task,
            Permission.edit_task,
            Permission.assign_task,
        ],
    },
    {
        "name": "Department Management",
        "permissions": [Permission.view_department, Permission.manage_department],
    },
    {
        "name": "Reports & Analytics",
        "permissions": [
            Permission.view_report,
            Permission.create_report,
            Permission.edit_report,
            Permission.approve_report,
        ],
    },
    {
        "name": "Attendance Management",
        "permissions": [
            Permission.view_attendance,
            Permission.manage_attendance,
            Permission.view_attendance_report,
        ],
    },
    {
        "name": "Leave Management",
        "permissions": [
            Permission.view_leaves,
            Permission.create_leave,
            Permission.edit_leave,
            Permission.approve_leave,
            Permission.manage_leaves,
        ],
    },
]

# Roles that may hold an approval step
APPROVER_ROLES: frozenset[UserRole] = frozenset({
    UserRole.manager,
    UserRole.department_head,
    UserRole.admin,
})

# Roles that may (re)assign tasks
ASSIGNER_ROLES: frozenset[UserRole] = frozenset({
    UserRole.admin,
    UserRole.manager,
    UserRole.department_head,
})
