"""Leave router — submission, step decisions, cancellation, balances, policies.

All endpoints require authentication; authorization lives in ``LeaveService``.
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.dependencies import get_current_actor
from ops_portal.auth.permissions import Actor
from ops_portal.database import get_sessions
from ops_portal.leave.schemas import (
    CarryForwardRequest,
    LeaveAdjustmentRequest,
    LeaveAllocationRequest,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeaveDecisionOut,
    LeaveDecisionRequest,
    LeavePolicyOut,
    LeavePolicyUpsert,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRescheduleRequest,
    LeaveTransactionOut,
    YearInitializationRequest,
)
from ops_portal.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── POST /requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut)
async def submit_leave(
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Submit a leave request. Reserves the days and builds the approval chain."""
    return await LeaveService.submit(sessions, actor, body)


# ── GET /requests/pending-approvals ─────────────────────────────────

@router.get("/requests/pending-approvals", response_model=list[LeaveRequestOut])
async def pending_approvals(
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Requests whose current step waits on the caller's role."""
    return await LeaveService.list_pending_approvals(sessions, actor)


# ── GET /requests/{id} ──────────────────────────────────────────────

@router.get("/requests/{leave_id}", response_model=LeaveRequestOut)
async def get_leave(
    leave_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.get_leave(sessions, actor, leave_id)


# ── GET /employees/{id}/requests ────────────────────────────────────

@router.get("/employees/{employee_id}/requests", response_model=list[LeaveRequestOut])
async def employee_requests(
    employee_id: uuid.UUID,
    include_inactive: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.list_requests(
        sessions, actor, employee_id, include_inactive=include_inactive,
    )


# ── PUT /requests/{id}/steps/{order}/approve|reject ─────────────────

@router.put("/requests/{leave_id}/steps/{order}/approve", response_model=LeaveDecisionOut)
async def approve_step(
    leave_id: uuid.UUID,
    order: int,
    body: LeaveDecisionRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Approve one step. The final approval converts the reservation to used days."""
    return await LeaveService.approve_step(
        sessions, actor, leave_id, order, comments=body.comments,
    )


@router.put("/requests/{leave_id}/steps/{order}/reject", response_model=LeaveDecisionOut)
async def reject_step(
    leave_id: uuid.UUID,
    order: int,
    body: LeaveDecisionRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Reject at one step. Closes the chain and releases the reservation."""
    return await LeaveService.reject_step(
        sessions, actor, leave_id, order, comments=body.comments,
    )


# ── PUT /requests/{id}/cancel ───────────────────────────────────────

@router.put("/requests/{leave_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    leave_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.cancel(sessions, actor, leave_id, reason=body.reason)


# ── PUT /requests/{id}/dates ────────────────────────────────────────

@router.put("/requests/{leave_id}/dates", response_model=LeaveRequestOut)
async def reschedule_leave(
    leave_id: uuid.UUID,
    body: LeaveRescheduleRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.reschedule(
        sessions, actor, leave_id, body.start_date, body.end_date,
    )


# ── DELETE /requests/{id} ───────────────────────────────────────────

@router.delete("/requests/{leave_id}", response_model=LeaveRequestOut)
async def deactivate_leave(
    leave_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    """Soft-delete a decided request."""
    return await LeaveService.deactivate(sessions, actor, leave_id)


# ── Balances ────────────────────────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def list_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.list_balances(
        sessions, actor, employee_id, year or date.today().year,
    )


@router.get(
    "/balances/{employee_id}/{leave_type}/{year}/transactions",
    response_model=list[LeaveTransactionOut],
)
async def list_transactions(
    employee_id: uuid.UUID,
    leave_type: str,
    year: int,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.get_transactions(sessions, actor, employee_id, leave_type, year)


@router.post("/balances/allocate", response_model=LeaveBalanceOut)
async def allocate(
    body: LeaveAllocationRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.allocate(sessions, actor, body)


@router.post("/balances/adjust", response_model=LeaveBalanceOut)
async def adjust(
    body: LeaveAdjustmentRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.adjust(sessions, actor, body)


@router.post("/balances/initialize", response_model=list[LeaveBalanceOut])
async def initialize_year(
    body: YearInitializationRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.initialize_year(sessions, actor, body)


@router.post("/balances/carry-forward", response_model=LeaveBalanceOut)
async def carry_forward(
    body: CarryForwardRequest,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.carry_forward(sessions, actor, body)


# ── Policies ────────────────────────────────────────────────────────

@router.get("/policies", response_model=list[LeavePolicyOut])
async def list_policies(
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.list_policies(sessions)


@router.put("/policies", response_model=LeavePolicyOut)
async def upsert_policy(
    body: LeavePolicyUpsert,
    actor: Actor = Depends(get_current_actor),
    sessions: async_sessionmaker[AsyncSession] = Depends(get_sessions),
):
    return await LeaveService.upsert_policy(sessions, actor, body)
