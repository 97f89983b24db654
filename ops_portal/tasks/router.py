"""Task router — create, assign, delegate, resolve."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.dependencies import get_current_actor
from ops_portal.auth.permissions import Actor
from ops_portal.database import get_sessions
from ops_portal.tasks.schemas import (
    TaskAssignRequest,
    TaskCreate,
    TaskDelegateRequest,
    TaskOut,
    TaskResolveRequest,
)
from ops_portal.tasks.service import TaskService

router = APIRouter(prefix="", tags=["tasks"])


@router.post("", response_model=TaskOut)
async def create_task(
    body: TaskCreate,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await TaskService.create(sessions, actor, body)


@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await TaskService.get_task(sessions, actor, task_id)


@router.put("/{task_id}/assignees", response_model=TaskOut)
async def assign_task(
    task_id: uuid.UUID,
    body: TaskAssignRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Replace the assignee set."""
    return await TaskService.assign(
        sessions, actor, task_id, body.assignee_ids, instructions=body.instructions,
    )


@router.post("/{task_id}/delegate", response_model=TaskOut)
async def delegate_task(
    task_id: uuid.UUID,
    body: TaskDelegateRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await TaskService.delegate(
        sessions, actor, task_id, body.from_user_id, body.to_user_id,
        instructions=body.instructions,
    )


@router.put("/{task_id}/resolve", response_model=TaskOut)
async def resolve_task(
    task_id: uuid.UUID,
    body: TaskResolveRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Approve or reject a task that requires approval."""
    return await TaskService.resolve(
        sessions, actor, task_id, body.decision, comments=body.comments,
    )
