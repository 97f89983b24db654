"""Common module — shared utilities for Ops Portal."""

from ops_portal.common.audit import AuditTrail, create_audit_entry
from ops_portal.common.constants import (
    APPROVER_ROLES,
    ASSIGNER_ROLES,
    PERMISSION_CATEGORIES,
    ROLE_DEFAULT_PERMISSIONS,
    ApprovalStatus,
    AssignmentLevel,
    Decision,
    LeaveStatus,
    NotificationType,
    Permission,
    TransactionType,
    UserRole,
    UserStatus,
)
from ops_portal.common.exceptions import (
    AlreadyTerminalException,
    AppException,
    ConflictError,
    InsufficientBalanceException,
    InvalidActorException,
    NotFoundException,
    OutOfOrderException,
    UnauthorizedException,
    ValidationException,
    VersionConflictException,
    register_exception_handlers,
)
from ops_portal.common.uow import run_in_transaction

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Constants / Enums
    "ApprovalStatus",
    "AssignmentLevel",
    "Decision",
    "LeaveStatus",
    "NotificationType",
    "Permission",
    "TransactionType",
    "UserRole",
    "UserStatus",
    "APPROVER_ROLES",
    "ASSIGNER_ROLES",
    "PERMISSION_CATEGORIES",
    "ROLE_DEFAULT_PERMISSIONS",
    # Exceptions
    "AlreadyTerminalException",
    "AppException",
    "ConflictError",
    "InsufficientBalanceException",
    "InvalidActorException",
    "NotFoundException",
    "OutOfOrderException",
    "UnauthorizedException",
    "ValidationException",
    "VersionConflictException",
    "register_exception_handlers",
    # Unit of work
    "run_in_transaction",
]
