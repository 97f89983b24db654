"""User service — permission overrides, account status and derived capabilities."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.permissions import (
    Actor,
    effective_permission,
    effective_permissions,
    ensure_active,
    validate_overrides,
)
from ops_portal.common.audit import create_audit_entry
from ops_portal.common.constants import Permission, UserStatus
from ops_portal.common.exceptions import NotFoundException, UnauthorizedException
from ops_portal.common.uow import run_in_transaction
from ops_portal.org.models import User
from ops_portal.org.schemas import EffectivePermissionsOut, UserOut

logger = logging.getLogger(__name__)


def _ensure_admin(actor: Actor, action: str) -> None:
    ensure_active(actor)
    if not actor.is_admin:
        raise UnauthorizedException(f"Only administrators can {action}.")


async def _load_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundException("User", str(user_id))
    return user


class UserService:
    """Async user administration."""

    @staticmethod
    async def get_user(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        user_id: uuid.UUID,
    ) -> UserOut:
        ensure_active(actor)
        async with sessions() as db:
            return UserOut.model_validate(await _load_user(db, user_id))

    @staticmethod
    async def update_permission_overrides(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        user_id: uuid.UUID,
        overrides: Mapping[str, Any],
    ) -> UserOut:
        """Replace the user's override map wholesale.

        Raises:
            UnauthorizedException: actor is not an active admin.
            ValidationException: unknown permission key or non-boolean value.
        """
        _ensure_admin(actor, "change permission overrides")
        parsed = validate_overrides(overrides)
        stored = {key.value: value for key, value in sorted(parsed.items())}

        async def work(db: AsyncSession):
            user = await _load_user(db, user_id)
            old = dict(user.permission_overrides or {})
            user.permission_overrides = stored
            await db.flush()
            await create_audit_entry(
                db,
                action="update_permissions",
                entity_type="user",
                entity_id=user.id,
                actor_id=actor.id,
                old_values={"permission_overrides": old},
                new_values={"permission_overrides": stored},
            )
            return UserOut.model_validate(user)

        out = await run_in_transaction(sessions, work, label="user.update_permissions")
        logger.info("Permission overrides of %s replaced by %s: %s", user_id, actor.id, stored)
        return out

    @staticmethod
    async def set_status(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        user_id: uuid.UUID,
        status: UserStatus,
    ) -> UserOut:
        """Activate, deactivate or suspend an account.

        A non-active account holds no permissions from its next request on.
        """
        _ensure_admin(actor, "change account status")
        if user_id == actor.id and status != UserStatus.active:
            raise UnauthorizedException("Administrators cannot deactivate their own account.")

        async def work(db: AsyncSession):
            user = await _load_user(db, user_id)
            old = user.status
            user.status = status
            await db.flush()
            await create_audit_entry(
                db,
                action="set_status",
                entity_type="user",
                entity_id=user.id,
                actor_id=actor.id,
                old_values={"status": old.value},
                new_values={"status": status.value},
            )
            return UserOut.model_validate(user)

        out = await run_in_transaction(sessions, work, label="user.set_status")
        logger.info("User %s status set to %s by %s", user_id, status.value, actor.id)
        return out

    @staticmethod
    async def get_effective_permissions(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        user_id: uuid.UUID,
    ) -> EffectivePermissionsOut:
        """Derived capability set. Reading another user's needs ``manage_department``."""
        ensure_active(actor)
        if user_id != actor.id and not effective_permission(actor, Permission.manage_department):
            raise UnauthorizedException("You can only view your own permissions.")

        async with sessions() as db:
            user = await _load_user(db, user_id)
            subject = user.to_actor()
            return EffectivePermissionsOut(
                user_id=user.id,
                role=user.role,
                status=user.status,
                permissions=sorted(effective_permissions(subject), key=lambda p: p.value),
                overrides={k.value: v for k, v in subject.permission_overrides.items()},
            )
