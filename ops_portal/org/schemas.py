"""User and permission schemas."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from ops_portal.common.constants import Permission, UserRole, UserStatus


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole
    status: UserStatus
    department_id: Optional[uuid.UUID] = None
    permission_overrides: dict[str, bool] = {}
    version: int


class PermissionOverridesUpdate(BaseModel):
    """Full replacement of a user's override map; values are checked by the service."""

    overrides: dict[str, Any]


class UserStatusUpdate(BaseModel):
    status: UserStatus


class EffectivePermissionsOut(BaseModel):
    user_id: uuid.UUID
    role: UserRole
    status: UserStatus
    permissions: list[Permission]
    overrides: dict[str, bool]


class PermissionCategoryOut(BaseModel):
    name: str
    permissions: list[Permission]
