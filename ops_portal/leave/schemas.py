"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ops_portal.common.constants import (
    ApprovalStatus,
    Decision,
    LeaveStatus,
    TransactionType,
    UserRole,
)


# ═════════════════════════════════════════════════════════════════════
# Leave Policy
# ═════════════════════════════════════════════════════════════════════


class LeavePolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_type: str
    description: Optional[str] = None
    default_allocation: Decimal
    max_consecutive_days: Optional[int] = None
    min_advance_notice: int = 0
    allow_carry_forward: bool = False
    carry_forward_limit: Decimal
    manager_max_days: Decimal
    department_head_max_days: Decimal
    is_active: bool = True


class LeavePolicyUpsert(BaseModel):
    """Create or replace the policy of one leave type."""

    leave_type: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    default_allocation: Decimal = Field(Decimal("0"), ge=0)
    max_consecutive_days: Optional[int] = Field(None, gt=0)
    min_advance_notice: int = Field(0, ge=0)
    allow_carry_forward: bool = False
    carry_forward_limit: Decimal = Field(Decimal("0"), ge=0)
    manager_max_days: Decimal = Field(Decimal("30"), gt=0)
    department_head_max_days: Decimal = Field(Decimal("60"), gt=0)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_thresholds(self) -> LeavePolicyUpsert:
        if self.department_head_max_days < self.manager_max_days:
            raise ValueError("department_head_max_days must be at least manager_max_days")
        return self


# ═════════════════════════════════════════════════════════════════════
# Leave Balance / Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    seq: int
    type: TransactionType
    amount: Decimal
    description: str
    leave_request_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    year: int
    total_allocated: Decimal
    used: Decimal
    pending: Decimal
    carried_forward: Decimal
    remaining: Decimal


class LeaveAllocationRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=2000, le=2100)
    days: Decimal = Field(..., gt=0, decimal_places=1)
    description: Optional[str] = None


class LeaveAdjustmentRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=2000, le=2100)
    days: Decimal = Field(..., decimal_places=1)
    description: str = Field(..., min_length=1)
    override: bool = False

    @model_validator(mode="after")
    def non_zero(self) -> LeaveAdjustmentRequest:
        if self.days == 0:
            raise ValueError("days must be non-zero")
        return self


class YearInitializationRequest(BaseModel):
    employee_id: uuid.UUID
    year: int = Field(..., ge=2000, le=2100)


class CarryForwardRequest(BaseModel):
    employee_id: uuid.UUID
    leave_type: str = Field(..., min_length=1, max_length=50)
    from_year: int = Field(..., ge=2000, le=2100)


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class ApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order: int
    approver_role: UserRole
    approver_id: Optional[uuid.UUID] = None
    status: ApprovalStatus
    comments: Optional[str] = None
    action_date: Optional[datetime] = None


class LeaveRequestCreate(BaseModel):
    """Submit body. ``employee_id`` defaults to the caller."""

    employee_id: Optional[uuid.UUID] = None
    leave_type: str = Field(..., min_length=1, max_length=50)
    start_date: date
    end_date: date
    reason: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_dates(self) -> LeaveRequestCreate:
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class LeaveRescheduleRequest(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_dates(self) -> LeaveRescheduleRequest:
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class LeaveDecisionRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type: str
    start_date: date
    end_date: date
    total_days: Decimal
    reason: Optional[str] = None
    status: LeaveStatus
    steps: list[ApprovalStepOut] = []
    is_active: bool
    counts_against_quota: bool = False
    submitted_by: uuid.UUID
    submitted_at: datetime
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancellation_reason: Optional[str] = None
    version: int


class LeaveDecisionOut(BaseModel):
    """Outcome of one step decision."""

    leave: LeaveRequestOut
    order: int
    decision: Decision
    completed: bool
    balance: LeaveBalanceOut
    quota: Optional[LeaveBalanceOut] = None
