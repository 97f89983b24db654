"""Auth dependencies — bearer JWT validation and actor resolution."""

from __future__ import annotations

import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.permissions import Actor, PermissionKey, ensure_active, ensure_permission
from ops_portal.config import settings
from ops_portal.database import get_sessions
from ops_portal.org.models import User


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_actor(
    request: Request,
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
) -> Actor:
    """Validate the JWT and snapshot the user it names as an ``Actor``.

    Suspended and inactive users still resolve; every service operation
    refuses them through the permission model.
    """
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    async with sessions() as db:
        user = await db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=401, detail="User account not found.")
        return user.to_actor()


# ── Permission-based dependency ─────────────────────────────────────

def require_permission(permission: PermissionKey) -> Callable:
    """Return a FastAPI dependency that enforces one effective permission."""

    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        ensure_active(actor)
        ensure_permission(actor, permission)
        return actor

    return _check
