"""Permission model — derives an actor's effective capabilities.

Every function here is pure: it reads an immutable ``Actor`` and the static
role-default table and never touches the database, so it is safe to call from
any request without locking.

Resolution order for a single key:
  1. inactive / suspended actor → False
  2. admin → True
  3. explicit per-user override, if present
  4. role default from ``ROLE_DEFAULT_PERMISSIONS``
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from ops_portal.common.constants import (
    ROLE_DEFAULT_PERMISSIONS,
    Permission,
    UserRole,
    UserStatus,
)
from ops_portal.common.exceptions import UnauthorizedException, ValidationException

logger = logging.getLogger(__name__)

PermissionKey = Union[Permission, str]


@dataclass(frozen=True)
class Actor:
    """Authenticated user performing an operation."""

    id: uuid.UUID
    role: UserRole
    status: UserStatus = UserStatus.active
    department_id: Optional[uuid.UUID] = None
    permission_overrides: Mapping[Permission, bool] = field(
        default_factory=lambda: MappingProxyType({}),
    )

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


# ── Override parsing ────────────────────────────────────────────────

def validate_overrides(raw: Mapping[str, Any]) -> dict[Permission, bool]:
    """Validate a user-supplied override map against the closed permission set.

    Raises:
        ValidationException: unknown keys or non-boolean values.
    """
    errors: dict[str, list[str]] = {}
    parsed: dict[Permission, bool] = {}
    for key, value in raw.items():
        try:
            permission = Permission(key)
        except ValueError:
            errors.setdefault(str(key), []).append("Unknown permission.")
            continue
        if not isinstance(value, bool):
            errors.setdefault(str(key), []).append("Override must be true or false.")
            continue
        parsed[permission] = value
    if errors:
        raise ValidationException(errors)
    return parsed


def coerce_overrides(raw: Optional[Mapping[str, Any]]) -> Mapping[Permission, bool]:
    """Read a stored override map, dropping keys no longer in the closed set."""
    parsed: dict[Permission, bool] = {}
    for key, value in (raw or {}).items():
        try:
            parsed[Permission(key)] = bool(value)
        except ValueError:
            logger.warning("Ignoring unknown stored permission override %r", key)
    return MappingProxyType(parsed)


# ── Derivation ──────────────────────────────────────────────────────

def default_permissions_for_role(role: UserRole) -> frozenset[Permission]:
    return ROLE_DEFAULT_PERMISSIONS[role]


def effective_permission(actor: Optional[Actor], permission: PermissionKey) -> bool:
    """Whether ``actor`` currently holds ``permission``."""
    key = Permission(permission)
    if actor is None or not actor.is_active:
        return False
    if actor.is_admin:
        return True
    if key in actor.permission_overrides:
        return actor.permission_overrides[key]
    return key in ROLE_DEFAULT_PERMISSIONS[actor.role]


def effective_permissions(actor: Optional[Actor]) -> frozenset[Permission]:
    """The full derived capability set of ``actor``."""
    if actor is None or not actor.is_active:
        return frozenset()
    return frozenset(p for p in Permission if effective_permission(actor, p))


def has_any_permission(actor: Optional[Actor], permissions: Iterable[PermissionKey]) -> bool:
    if actor is None or not actor.is_active:
        return False
    if actor.is_admin:
        return True
    return any(effective_permission(actor, p) for p in permissions)


def has_all_permissions(actor: Optional[Actor], permissions: Iterable[PermissionKey]) -> bool:
    if actor is None or not actor.is_active:
        return False
    if actor.is_admin:
        return True
    return all(effective_permission(actor, p) for p in permissions)


def has_role(actor: Optional[Actor], role: UserRole) -> bool:
    return actor is not None and actor.is_active and actor.role == role


def has_any_role(actor: Optional[Actor], roles: Iterable[UserRole]) -> bool:
    return actor is not None and actor.is_active and actor.role in set(roles)


def can_authorize(
    actor: Optional[Actor],
    allowed_roles: Iterable[UserRole],
    required_permission: PermissionKey,
) -> bool:
    """Role gate plus permission gate.

    Admins and managers skip the permission check but never the role check.
    """
    if actor is None or not actor.is_active:
        return False
    if actor.role not in set(allowed_roles):
        return False
    if actor.role in (UserRole.admin, UserRole.manager):
        return True
    return effective_permission(actor, required_permission)


# ── Enforcement helpers used by the domain services ────────────────

def ensure_active(actor: Actor) -> None:
    if not actor.is_active:
        raise UnauthorizedException(f"Account is {actor.status.value}.")


def ensure_permission(
    actor: Actor,
    permission: PermissionKey,
    detail: Optional[str] = None,
) -> None:
    if not effective_permission(actor, permission):
        raise UnauthorizedException(
            detail or f"Permission '{Permission(permission).value}' is required.",
        )


def ensure_authorized(
    actor: Actor,
    allowed_roles: Iterable[UserRole],
    required_permission: PermissionKey,
    detail: Optional[str] = None,
) -> None:
    roles = set(allowed_roles)
    if not can_authorize(actor, roles, required_permission):
        raise UnauthorizedException(
            detail
            or (
                f"Role '{actor.role.value}' with permission "
                f"'{Permission(required_permission).value}' is required "
                f"(allowed roles: {sorted(r.value for r in roles)})."
            ),
        )
