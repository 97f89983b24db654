"""Leave ORM models: LeavePolicy, LeaveRequest, LeaveApprovalStep, LeaveBalance, LeaveTransaction."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ops_portal.common.audit import utcnow
from ops_portal.common.constants import (
    ApprovalStatus,
    LeaveStatus,
    TransactionType,
    UserRole,
)
from ops_portal.database import Base
from ops_portal.workflow.engine import ApprovalPolicy, current_step, derive_status


class LeavePolicy(Base):
    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_type: Mapped[str] = mapped_column(sa.String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    default_allocation: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    max_consecutive_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    min_advance_notice: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    allow_carry_forward: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    carry_forward_limit: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    # Longest request each tier may clear alone; admin is unbounded
    manager_max_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False)
    department_head_max_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    def approval_policy(self) -> ApprovalPolicy:
        return ApprovalPolicy.from_limits(self.manager_max_days, self.department_head_max_days)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_dates"),
        sa.CheckConstraint("total_days > 0", name="ck_leave_request_total_days"),
        sa.Index("ix_leave_requests_employee", "employee_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    leave_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    submitted_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    submitted_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    # Set at submission: the request also holds days on the shared annual quota
    counts_against_quota: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    modified_by: Mapped[Optional[uuid.UUID]] = mapped_column(
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
    steps: Mapped[list[LeaveApprovalStep]] = relationship(
        back_populates="leave_request",
        order_by="LeaveApprovalStep.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    employee: Mapped["User"] = relationship(
        foreign_keys=[employee_id], lazy="selectin",
    )

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None

    @property
    def status(self) -> LeaveStatus:
        """Derived from the approval chain; never stored."""
        return derive_status(self.steps, cancelled=self.is_cancelled)

    @property
    def current_step(self) -> Optional[LeaveApprovalStep]:
        if self.is_cancelled:
            return None
        return current_step(self.steps)


class LeaveApprovalStep(Base):
    __tablename__ = "leave_approval_steps"
    __table_args__ = (
        sa.UniqueConstraint("leave_request_id", "step_order", name="uq_leave_step_order"),
        sa.CheckConstraint("step_order >= 0", name="ck_leave_step_order"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    leave_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    order: Mapped[int] = mapped_column("step_order", sa.Integer, nullable=False)
    approver_role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"), nullable=False
    )
    approver_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        sa.Enum(ApprovalStatus, name="approval_status"),
        nullable=False,
        default=ApprovalStatus.pending,
    )
    comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    action_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    leave_request: Mapped[LeaveRequest] = relationship(back_populates="steps")


class LeaveBalance(Base):
    """Cached totals of one (employee, leave type, year) account.

    The numeric fields are always equal to folding ``transactions``; they are
    only written by ``LeaveLedger.post`` in the same flush as the new rows.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "leave_type", "year", name="uq_leave_balance"
        ),
        sa.CheckConstraint(
            "total_allocated >= 0 AND used >= 0 AND pending >= 0 AND carried_forward >= 0",
            name="ck_leave_balance_non_negative",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False
    )
    leave_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_allocated: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    used: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False, default=Decimal("0"))
    pending: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    carried_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    remaining: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    transactions: Mapped[list[LeaveTransaction]] = relationship(
        back_populates="balance",
        order_by="LeaveTransaction.seq",
        lazy="selectin",
    )


class LeaveTransaction(Base):
    """Append-only ledger entry; rows are never updated or deleted."""

    __tablename__ = "leave_transactions"
    __table_args__ = (
        sa.UniqueConstraint("balance_id", "seq", name="uq_leave_transaction_seq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    balance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_balances.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        sa.Enum(TransactionType, name="transaction_type"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(6, 1), nullable=False)
    description: Mapped[str] = mapped_column(sa.Text, nullable=False)
    leave_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_requests.id")
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow
    )

    balance: Mapped[LeaveBalance] = relationship(back_populates="transactions")


@event.listens_for(LeaveTransaction, "before_update")
def _reject_transaction_update(mapper, connection, target):
    raise RuntimeError(f"Ledger transaction {target.id} is immutable")


@event.listens_for(LeaveTransaction, "before_delete")
def _reject_transaction_delete(mapper, connection, target):
    raise RuntimeError(f"Ledger transaction {target.id} cannot be deleted")
