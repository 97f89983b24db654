"""Task ORM models: Task, approval and assignment history, membership tables."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ops_portal.common.audit import utcnow
from ops_portal.common.constants import (
    ApprovalStatus,
    AssignmentLevel,
    TaskPriority,
)
from ops_portal.database import Base
from ops_portal.workflow.engine import derive_single_round_status

task_assignees = sa.Table(
    "task_assignees",
    Base.metadata,
    sa.Column(
        "task_id", UUID(as_uuid=True),
        sa.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True,
    ),
    sa.Column(
        "user_id", UUID(as_uuid=True),
        sa.ForeignKey("users.id"), primary_key=True,
    ),
)

task_approvers = sa.Table(
    "task_approvers",
    Base.metadata,
    sa.Column(
        "task_id", UUID(as_uuid=True),
        sa.ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True,
    ),
    sa.Column(
        "user_id", UUID(as_uuid=True),
        sa.ForeignKey("users.id"), primary_key=True,
    ),
)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    priority: Mapped[TaskPriority] = mapped_column(
        sa.Enum(TaskPriority, name="task_priority"),
        nullable=False,
        default=TaskPriority.medium,
    )
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("departments.id")
    )
    created_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    due_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    approval_required: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    last_modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    assignees: Mapped[list["User"]] = relationship(
        secondary=task_assignees, lazy="selectin",
    )
    approvers: Mapped[list["User"]] = relationship(
        secondary=task_approvers, lazy="selectin",
    )
    approval_history: Mapped[list[TaskApprovalRecord]] = relationship(
        back_populates="task",
        order_by="TaskApprovalRecord.recorded_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    assignment_history: Mapped[list[TaskAssignmentRecord]] = relationship(
        back_populates="task",
        order_by="TaskAssignmentRecord.assigned_at",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def approval_status(self) -> ApprovalStatus:
        """Derived from the history; the first decision wins."""
        return derive_single_round_status(self.approval_history)

    @property
    def assignee_ids(self) -> list[uuid.UUID]:
        return [u.id for u in self.assignees]

    @property
    def approver_ids(self) -> list[uuid.UUID]:
        return [u.id for u in self.approvers]


class TaskApprovalRecord(Base):
    __tablename__ = "task_approval_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    approver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        sa.Enum(ApprovalStatus, name="approval_status"), nullable=False
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    recorded_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )

    task: Mapped[Task] = relationship(back_populates="approval_history")


class TaskAssignmentRecord(Base):
    __tablename__ = "task_assignment_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    task_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    assigned_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    assigned_to: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    assignment_level: Mapped[AssignmentLevel] = mapped_column(
        sa.Enum(AssignmentLevel, name="assignment_level"), nullable=False
    )
    instructions: Mapped[Optional[str]] = mapped_column(sa.Text)
    assigned_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )

    task: Mapped[Task] = relationship(back_populates="assignment_history")
