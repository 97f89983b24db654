"""Task Pydantic v2 schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ops_portal.common.constants import (
    ApprovalStatus,
    AssignmentLevel,
    Decision,
    TaskPriority,
)


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.medium
    department_id: Optional[uuid.UUID] = None
    due_date: Optional[date] = None
    assignee_ids: list[uuid.UUID] = []
    instructions: Optional[str] = None
    approval_required: bool = False
    approver_ids: list[uuid.UUID] = []


class TaskAssignRequest(BaseModel):
    assignee_ids: list[uuid.UUID] = Field(..., min_length=1)
    instructions: Optional[str] = None


class TaskDelegateRequest(BaseModel):
    from_user_id: uuid.UUID
    to_user_id: uuid.UUID
    instructions: Optional[str] = None


class TaskResolveRequest(BaseModel):
    decision: Decision
    comments: Optional[str] = Field(None, max_length=1000)


class TaskApprovalRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approver_id: uuid.UUID
    status: ApprovalStatus
    comments: Optional[str] = None
    recorded_at: datetime


class TaskAssignmentRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assigned_by: uuid.UUID
    assigned_to: uuid.UUID
    assignment_level: AssignmentLevel
    instructions: Optional[str] = None
    assigned_at: datetime


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: Optional[str] = None
    priority: TaskPriority
    department_id: Optional[uuid.UUID] = None
    created_by: uuid.UUID
    due_date: Optional[date] = None
    assignee_ids: list[uuid.UUID]
    approval_required: bool
    approver_ids: list[uuid.UUID]
    approval_status: ApprovalStatus
    approval_history: list[TaskApprovalRecordOut]
    assignment_history: list[TaskAssignmentRecordOut]
    is_active: bool
    version: int
