"""Leave service layer — submission, approval chain, cancellation and the ledger.

Business logic:
  - Submission validates dates, notice, length and overlap, builds the approval
    chain from the leave type's policy and reserves the days as a pending debit
  - Step decisions run through the workflow engine; the final approval converts
    the reservation to used days, a rejection releases it
  - Cancellation and rescheduling reverse (and re-post) the pending debit
  - Leave types outside the exempt set also reserve, consume and release the
    same days on the employee's shared annual quota row, when one is open
  - Ledger administration: allocation, adjustment, yearly initialisation,
    carry forward

Every mutating operation is a single read-check-write unit executed by
``run_in_transaction``: the request, its steps, the balance row, the ledger
entries and the audit entry commit together or not at all. Notifications are
sent afterwards and never undo the committed change.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ops_portal.auth.permissions import (
    Actor,
    effective_permission,
    ensure_active,
    ensure_authorized,
    ensure_permission,
)
from ops_portal.common.audit import create_audit_entry, utcnow
from ops_portal.common.constants import (
    APPROVER_ROLES,
    Decision,
    LeaveStatus,
    Permission,
    TransactionType,
    UserStatus,
)
from ops_portal.common.exceptions import (
    AlreadyTerminalException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from ops_portal.common.uow import run_in_transaction
from ops_portal.config import settings
from ops_portal.leave.ledger import LedgerEntry, LeaveLedger
from ops_portal.leave.models import (
    LeaveApprovalStep,
    LeaveBalance,
    LeavePolicy,
    LeaveRequest,
)
from ops_portal.leave.schemas import (
    CarryForwardRequest,
    LeaveAdjustmentRequest,
    LeaveAllocationRequest,
    LeaveBalanceOut,
    LeaveDecisionOut,
    LeavePolicyOut,
    LeavePolicyUpsert,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveTransactionOut,
    YearInitializationRequest,
)
from ops_portal.notifications.service import (
    dispatch_notifications,
    notify_leave_approved,
    notify_leave_cancelled,
    notify_leave_rejected,
    notify_leave_step_approved,
    notify_leave_submitted,
)
from ops_portal.org.models import User
from ops_portal.workflow.engine import (
    ApprovalPolicy,
    apply_decision,
    build_chain,
    check_cancellable,
    check_transition,
    has_decisions,
    is_final_step,
)

logger = logging.getLogger(__name__)

_ACTIVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


def _money(value: Decimal) -> str:
    return str(Decimal(value))


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave workflow and ledger operations."""

    # ─────────────────────────────────────────────────────────────────
    # Loading helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_leave(
        db: AsyncSession,
        leave_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        stmt = select(LeaveRequest).where(LeaveRequest.id == leave_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        leave = result.scalars().first()
        if leave is None:
            raise NotFoundException("LeaveRequest", str(leave_id))
        return leave

    @staticmethod
    async def _load_employee(db: AsyncSession, employee_id: uuid.UUID) -> User:
        employee = await db.get(User, employee_id)
        if employee is None:
            raise NotFoundException("User", str(employee_id))
        return employee

    @staticmethod
    async def _get_policy(db: AsyncSession, leave_type: str) -> Optional[LeavePolicy]:
        result = await db.execute(
            select(LeavePolicy).where(LeavePolicy.leave_type == leave_type)
        )
        return result.scalars().first()

    @staticmethod
    def _approval_policy(policy: Optional[LeavePolicy]) -> ApprovalPolicy:
        if policy is not None:
            return policy.approval_policy()
        return ApprovalPolicy.from_limits(
            settings.LEAVE_MANAGER_MAX_DAYS,
            settings.LEAVE_DEPARTMENT_HEAD_MAX_DAYS,
        )

    @staticmethod
    def _ensure_owner_or_manager(actor: Actor, leave: LeaveRequest, action: str) -> None:
        ensure_active(actor)
        if leave.employee_id != actor.id:
            ensure_permission(
                actor,
                Permission.manage_leaves,
                f"Only the employee or a leave manager can {action} this request.",
            )

    @staticmethod
    def _ensure_can_view(actor: Actor, employee_id: uuid.UUID) -> None:
        ensure_active(actor)
        if employee_id == actor.id:
            ensure_permission(actor, Permission.view_leaves)
            return
        if not (
            effective_permission(actor, Permission.manage_leaves)
            or effective_permission(actor, Permission.approve_leave)
        ):
            raise UnauthorizedException("You can only view your own leave records.")

    @staticmethod
    def _ensure_ledger_admin(actor: Actor) -> None:
        ensure_active(actor)
        ensure_permission(
            actor,
            Permission.manage_leaves,
            "Managing leave balances requires the 'manage_leaves' permission.",
        )

    @staticmethod
    async def _touch(db: AsyncSession, leave: LeaveRequest, actor: Actor) -> None:
        """Write the request row ahead of any ledger posting.

        A writer that committed since the request was read makes this flush
        fail on the version check, so the unit restarts from a fresh read.
        """
        leave.modified_by = actor.id
        leave.updated_at = utcnow()
        await db.flush()

    # ─────────────────────────────────────────────────────────────────
    # Annual quota
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def draws_on_quota(leave_type: str) -> bool:
        return (
            leave_type != settings.ANNUAL_QUOTA_LEAVE_TYPE
            and leave_type not in settings.quota_exempt_leave_types
        )

    @staticmethod
    async def _open_quota(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> Optional[LeaveBalance]:
        """The quota row ``leave_type`` must also fit in, if one is open.

        Employees without a quota row for the year are held to their
        per-type balances only.
        """
        if not LeaveService.draws_on_quota(leave_type):
            return None
        return await LeaveLedger.get_balance(
            db, employee_id, settings.ANNUAL_QUOTA_LEAVE_TYPE, year, for_update=True,
        )

    @staticmethod
    async def _held_balances(db: AsyncSession, leave: LeaveRequest) -> list[LeaveBalance]:
        """Every balance row holding this request's reservation, own type first."""
        leave_types = [leave.leave_type]
        if leave.counts_against_quota:
            leave_types.append(settings.ANNUAL_QUOTA_LEAVE_TYPE)

        rows = []
        for leave_type in leave_types:
            balance = await LeaveLedger.get_balance(
                db, leave.employee_id, leave_type, leave.start_date.year, for_update=True,
            )
            if balance is None:
                raise NotFoundException(
                    "LeaveBalance",
                    f"{leave.employee_id}/{leave_type}/{leave.start_date.year}",
                )
            rows.append(balance)
        return rows

    # ─────────────────────────────────────────────────────────────────
    # Submission validation
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def compute_total_days(start_date: date, end_date: date) -> Decimal:
        """Calendar days, both ends inclusive."""
        if end_date < start_date:
            raise ValidationException(
                {"end_date": ["end_date must be on or after start_date."]}
            )
        return Decimal((end_date - start_date).days + 1)

    @staticmethod
    async def _validate_dates(
        db: AsyncSession,
        employee_id: uuid.UUID,
        policy: Optional[LeavePolicy],
        start_date: date,
        end_date: date,
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Decimal:
        total_days = LeaveService.compute_total_days(start_date, end_date)

        if policy is not None:
            if not policy.is_active:
                raise ValidationException(
                    {"leave_type": [f"Leave type '{policy.leave_type}' is not active."]}
                )
            if policy.min_advance_notice > 0:
                days_ahead = (start_date - date.today()).days
                if days_ahead < policy.min_advance_notice:
                    raise ValidationException(
                        {"start_date": [
                            f"{policy.leave_type} leave requires at least "
                            f"{policy.min_advance_notice} days advance notice."
                        ]}
                    )
            if policy.max_consecutive_days and total_days > policy.max_consecutive_days:
                raise ValidationException(
                    {"end_date": [
                        f"{policy.leave_type} leave allows a maximum of "
                        f"{policy.max_consecutive_days} consecutive days."
                    ]}
                )

        # Status is derived, so candidates are filtered after loading
        result = await db.execute(
            select(LeaveRequest).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.is_active.is_(True),
                LeaveRequest.cancelled_at.is_(None),
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            )
        )
        for other in result.scalars().all():
            if other.id != exclude_id and other.status in _ACTIVE_STATUSES:
                raise ValidationException(
                    {"dates": [
                        "A pending or approved leave request already "
                        "overlaps these dates."
                    ]}
                )
        return total_days

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """Create a pending request, build its chain and reserve the days.

        Raises:
            UnauthorizedException: missing ``create_leave``, or submitting for
                someone else without ``manage_leaves``.
            InsufficientBalanceException: the reservation would overdraw the
                balance or the annual quota; nothing is written.
        """
        ensure_active(actor)
        ensure_permission(actor, Permission.create_leave)
        if data.leave_type == settings.ANNUAL_QUOTA_LEAVE_TYPE:
            raise ValidationException(
                {"leave_type": [f"'{data.leave_type}' is the shared annual quota, not a leave type."]}
            )
        employee_id = data.employee_id or actor.id
        if employee_id != actor.id:
            ensure_permission(
                actor,
                Permission.manage_leaves,
                "Submitting leave for another employee requires 'manage_leaves'.",
            )

        async def work(db: AsyncSession):
            employee = await LeaveService._load_employee(db, employee_id)
            if employee.status != UserStatus.active:
                raise ValidationException(
                    {"employee_id": [f"Employee account is {employee.status.value}."]}
                )

            policy = await LeaveService._get_policy(db, data.leave_type)
            total_days = await LeaveService._validate_dates(
                db, employee_id, policy, data.start_date, data.end_date,
            )
            chain = build_chain(total_days, LeaveService._approval_policy(policy))
            quota = await LeaveService._open_quota(
                db, employee_id, data.leave_type, data.start_date.year,
            )

            leave = LeaveRequest(
                id=uuid.uuid4(),
                employee_id=employee_id,
                leave_type=data.leave_type,
                start_date=data.start_date,
                end_date=data.end_date,
                total_days=total_days,
                reason=data.reason,
                submitted_by=actor.id,
                is_active=True,
                counts_against_quota=quota is not None,
                steps=[
                    LeaveApprovalStep(order=tier.order, approver_role=tier.approver_role)
                    for tier in chain
                ],
            )
            db.add(leave)
            await db.flush()

            balance = await LeaveLedger.get_or_create_balance(
                db, employee_id, data.leave_type, data.start_date.year,
            )
            await LeaveLedger.reserve(db, balance, total_days, leave.id, actor_id=actor.id)
            if quota is not None:
                await LeaveLedger.reserve(db, quota, total_days, leave.id, actor_id=actor.id)

            await create_audit_entry(
                db,
                action="submit",
                entity_type="leave_request",
                entity_id=leave.id,
                actor_id=actor.id,
                new_values={
                    "leave_type": data.leave_type,
                    "start_date": data.start_date.isoformat(),
                    "end_date": data.end_date.isoformat(),
                    "total_days": _money(total_days),
                    "chain": [tier.approver_role.value for tier in chain],
                    "counts_against_quota": quota is not None,
                },
            )
            return (
                LeaveRequestOut.model_validate(leave),
                chain[0].approver_role,
                employee.department_id,
            )

        out, first_role, department_id = await run_in_transaction(
            sessions, work, label="leave.submit",
        )
        logger.info(
            "Leave %s submitted for %s: %s day(s) of %s, %d step(s)",
            out.id, out.employee_id, out.total_days, out.leave_type, len(out.steps),
        )
        await dispatch_notifications(
            sessions,
            lambda db: notify_leave_submitted(db, out, first_role, department_id),
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Step decisions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_step(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
        order: int,
        *,
        comments: Optional[str] = None,
    ) -> LeaveDecisionOut:
        return await LeaveService._decide(
            sessions, actor, leave_id, order, Decision.approve, comments,
        )

    @staticmethod
    async def reject_step(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
        order: int,
        *,
        comments: Optional[str] = None,
    ) -> LeaveDecisionOut:
        return await LeaveService._decide(
            sessions, actor, leave_id, order, Decision.reject, comments,
        )

    @staticmethod
    async def _decide(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
        order: int,
        decision: Decision,
        comments: Optional[str],
    ) -> LeaveDecisionOut:
        """Validate, post to the ledger, then record the decision.

        The ledger posting runs before the step is marked, so a failed balance
        check leaves the chain untouched.
        """
        ensure_authorized(actor, APPROVER_ROLES, Permission.approve_leave)

        async def work(db: AsyncSession):
            leave = await LeaveService._load_leave(db, leave_id, for_update=True)

            if not actor.is_admin:
                if leave.employee_id == actor.id:
                    raise UnauthorizedException("You cannot decide your own leave request.")
                if actor.department_id != leave.employee.department_id:
                    raise UnauthorizedException(
                        "You can only decide leave requests from your own department."
                    )

            step = check_transition(leave.steps, order, actor, cancelled=leave.is_cancelled)
            old_status = leave.status
            await LeaveService._touch(db, leave, actor)

            balance, *quota = await LeaveService._held_balances(db, leave)
            for row in (balance, *quota):
                if decision == Decision.reject:
                    await LeaveLedger.release(
                        db, row, leave.total_days, leave.id,
                        "Reservation released on rejection", actor_id=actor.id,
                    )
                elif is_final_step(leave.steps, step):
                    await LeaveLedger.consume(
                        db, row, leave.total_days, leave.id, actor_id=actor.id,
                    )

            result = apply_decision(leave.steps, step, actor, decision, comments=comments)
            await db.flush()

            await create_audit_entry(
                db,
                action=decision.value,
                entity_type="leave_request",
                entity_id=leave.id,
                actor_id=actor.id,
                old_values={"status": old_status.value},
                new_values={
                    "status": result.status.value,
                    "step": order,
                    "comments": comments,
                },
            )

            next_step = leave.current_step
            return (
                LeaveDecisionOut(
                    leave=LeaveRequestOut.model_validate(leave),
                    order=order,
                    decision=decision,
                    completed=result.completed,
                    balance=LeaveBalanceOut.model_validate(balance),
                    quota=LeaveBalanceOut.model_validate(quota[0]) if quota else None,
                ),
                next_step.approver_role if next_step is not None else None,
                leave.employee.department_id,
            )

        out, next_role, department_id = await run_in_transaction(
            sessions, work, label=f"leave.{decision.value}",
        )
        logger.info(
            "Leave %s step %d %s by %s (%s) → %s",
            leave_id, order, decision.value, actor.id, actor.role.value,
            out.leave.status.value,
        )

        if out.leave.status == LeaveStatus.approved:
            await dispatch_notifications(
                sessions, lambda db: notify_leave_approved(db, out.leave),
            )
        elif out.leave.status == LeaveStatus.rejected:
            await dispatch_notifications(
                sessions, lambda db: notify_leave_rejected(db, out.leave, comments),
            )
        elif next_role is not None:
            await dispatch_notifications(
                sessions,
                lambda db: notify_leave_step_approved(db, out.leave, next_role, department_id),
            )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
        *,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Cancel a pending request and release exactly its reservation."""

        async def work(db: AsyncSession):
            leave = await LeaveService._load_leave(db, leave_id, for_update=True)
            LeaveService._ensure_owner_or_manager(actor, leave, "cancel")
            check_cancellable(leave.steps, cancelled=leave.is_cancelled)

            leave.cancelled_at = utcnow()
            leave.cancelled_by = actor.id
            leave.cancellation_reason = reason
            leave.is_active = False
            await LeaveService._touch(db, leave, actor)

            for row in await LeaveService._held_balances(db, leave):
                await LeaveLedger.release(
                    db, row, leave.total_days, leave.id,
                    "Reservation released on cancellation", actor_id=actor.id,
                )

            await create_audit_entry(
                db,
                action="cancel",
                entity_type="leave_request",
                entity_id=leave.id,
                actor_id=actor.id,
                old_values={"status": LeaveStatus.pending.value},
                new_values={"status": LeaveStatus.cancelled.value, "reason": reason},
            )
            return LeaveRequestOut.model_validate(leave)

        out = await run_in_transaction(sessions, work, label="leave.cancel")
        logger.info("Leave %s cancelled by %s", leave_id, actor.id)
        await dispatch_notifications(
            sessions, lambda db: notify_leave_cancelled(db, out, actor.id),
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Reschedule
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reschedule(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
        start_date: date,
        end_date: date,
    ) -> LeaveRequestOut:
        """Move an undecided request to new dates.

        The old reservation is released and the new one posted as separate
        ledger entries, and the chain is rebuilt for the new duration.
        """

        async def work(db: AsyncSession):
            leave = await LeaveService._load_leave(db, leave_id, for_update=True)
            LeaveService._ensure_owner_or_manager(actor, leave, "reschedule")
            if leave.status != LeaveStatus.pending:
                raise AlreadyTerminalException(
                    f"Only pending requests can be rescheduled; this one is "
                    f"{leave.status.value}."
                )
            if has_decisions(leave.steps):
                raise ValidationException(
                    {"status": ["Requests with a recorded approval cannot be rescheduled."]}
                )

            policy = await LeaveService._get_policy(db, leave.leave_type)
            total_days = await LeaveService._validate_dates(
                db, leave.employee_id, policy, start_date, end_date, exclude_id=leave.id,
            )

            old_values = {
                "start_date": leave.start_date.isoformat(),
                "end_date": leave.end_date.isoformat(),
                "total_days": _money(leave.total_days),
            }

            old_days = leave.total_days
            held = await LeaveService._held_balances(db, leave)
            quota = await LeaveService._open_quota(
                db, leave.employee_id, leave.leave_type, start_date.year,
            )

            # Existing rows are reused by order to keep (request, order) unique within one flush
            chain = build_chain(total_days, LeaveService._approval_policy(policy))
            existing = {s.order: s for s in leave.steps}
            steps = []
            for tier in chain:
                step = existing.get(tier.order)
                if step is None:
                    step = LeaveApprovalStep(order=tier.order)
                step.approver_role = tier.approver_role
                steps.append(step)
            leave.steps = steps

            leave.start_date = start_date
            leave.end_date = end_date
            leave.total_days = total_days
            leave.counts_against_quota = quota is not None
            await LeaveService._touch(db, leave, actor)

            for row in held:
                await LeaveLedger.release(
                    db, row, old_days, leave.id,
                    "Reservation released on reschedule", actor_id=actor.id,
                )
            new_balance = await LeaveLedger.get_or_create_balance(
                db, leave.employee_id, leave.leave_type, start_date.year,
            )
            for row in (new_balance, *([quota] if quota is not None else [])):
                await LeaveLedger.reserve(db, row, total_days, leave.id, actor_id=actor.id)

            await create_audit_entry(
                db,
                action="reschedule",
                entity_type="leave_request",
                entity_id=leave.id,
                actor_id=actor.id,
                old_values=old_values,
                new_values={
                    "start_date": start_date.isoformat(),
                    "end_date": end_date.isoformat(),
                    "total_days": _money(total_days),
                    "chain": [tier.approver_role.value for tier in chain],
                },
            )
            return LeaveRequestOut.model_validate(leave)

        out = await run_in_transaction(sessions, work, label="leave.reschedule")
        logger.info(
            "Leave %s rescheduled to %s..%s (%s day(s))",
            leave_id, out.start_date, out.end_date, out.total_days,
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Soft delete
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def deactivate(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
    ) -> LeaveRequestOut:
        """Hide a decided request; its history and ledger entries stay."""

        async def work(db: AsyncSession):
            leave = await LeaveService._load_leave(db, leave_id)
            LeaveService._ensure_owner_or_manager(actor, leave, "remove")
            if leave.status == LeaveStatus.pending:
                raise ValidationException(
                    {"status": ["Pending requests must be cancelled, not removed."]}
                )
            if leave.is_active:
                leave.is_active = False
                await LeaveService._touch(db, leave, actor)
                await create_audit_entry(
                    db,
                    action="deactivate",
                    entity_type="leave_request",
                    entity_id=leave.id,
                    actor_id=actor.id,
                    old_values={"is_active": True},
                    new_values={"is_active": False},
                )
            return LeaveRequestOut.model_validate(leave)

        return await run_in_transaction(sessions, work, label="leave.deactivate")

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        leave_id: uuid.UUID,
    ) -> LeaveRequestOut:
        async with sessions() as db:
            leave = await LeaveService._load_leave(db, leave_id)
            LeaveService._ensure_can_view(actor, leave.employee_id)
            return LeaveRequestOut.model_validate(leave)

    @staticmethod
    async def list_requests(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        employee_id: uuid.UUID,
        *,
        include_inactive: bool = False,
    ) -> list[LeaveRequestOut]:
        LeaveService._ensure_can_view(actor, employee_id)
        async with sessions() as db:
            query = (
                select(LeaveRequest)
                .where(LeaveRequest.employee_id == employee_id)
                .order_by(LeaveRequest.start_date.desc())
            )
            if not include_inactive:
                query = query.where(LeaveRequest.is_active.is_(True))
            rows = (await db.execute(query)).scalars().all()
            return [LeaveRequestOut.model_validate(r) for r in rows]

    @staticmethod
    async def list_pending_approvals(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
    ) -> list[LeaveRequestOut]:
        """Requests whose current step waits on the actor's role.

        Admins see every request with an open step; other approvers only
        those of their own department.
        """
        ensure_authorized(actor, APPROVER_ROLES, Permission.approve_leave)
        async with sessions() as db:
            query = (
                select(LeaveRequest)
                .where(
                    LeaveRequest.is_active.is_(True),
                    LeaveRequest.cancelled_at.is_(None),
                )
                .order_by(LeaveRequest.submitted_at)
            )
            if not actor.is_admin:
                query = query.join(User, User.id == LeaveRequest.employee_id).where(
                    User.department_id == actor.department_id,
                    LeaveRequest.employee_id != actor.id,
                )
            rows = (await db.execute(query)).scalars().all()

            pending = []
            for leave in rows:
                step = leave.current_step
                if step is None:
                    continue
                if actor.is_admin or step.approver_role == actor.role:
                    pending.append(LeaveRequestOut.model_validate(leave))
            return pending

    @staticmethod
    async def list_balances(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        LeaveService._ensure_can_view(actor, employee_id)
        async with sessions() as db:
            result = await db.execute(
                select(LeaveBalance)
                .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
                .order_by(LeaveBalance.leave_type)
            )
            return [LeaveBalanceOut.model_validate(b) for b in result.scalars().all()]

    @staticmethod
    async def get_transactions(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> list[LeaveTransactionOut]:
        LeaveService._ensure_can_view(actor, employee_id)
        async with sessions() as db:
            balance = await LeaveLedger.require_balance(db, employee_id, leave_type, year)
            return [LeaveTransactionOut.model_validate(t) for t in balance.transactions]

    # ─────────────────────────────────────────────────────────────────
    # Ledger administration
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def allocate(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: LeaveAllocationRequest,
    ) -> LeaveBalanceOut:
        LeaveService._ensure_ledger_admin(actor)

        async def work(db: AsyncSession):
            await LeaveService._load_employee(db, data.employee_id)
            balance = await LeaveLedger.get_or_create_balance(
                db, data.employee_id, data.leave_type, data.year,
            )
            await LeaveLedger.post(
                db,
                balance,
                LedgerEntry(
                    TransactionType.allocation,
                    data.days,
                    data.description or f"Allocation for {data.year}",
                ),
                actor_id=actor.id,
            )
            await create_audit_entry(
                db,
                action="allocate",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor.id,
                new_values={"days": _money(data.days), "total_allocated": _money(balance.total_allocated)},
            )
            return LeaveBalanceOut.model_validate(balance)

        out = await run_in_transaction(sessions, work, label="leave.allocate")
        logger.info(
            "Allocated %s %s day(s) to %s for %d",
            data.days, data.leave_type, data.employee_id, data.year,
        )
        return out

    @staticmethod
    async def adjust(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: LeaveAdjustmentRequest,
    ) -> LeaveBalanceOut:
        """Signed correction; only admins may overdraw with ``override``."""
        LeaveService._ensure_ledger_admin(actor)
        if data.override and not actor.is_admin:
            raise UnauthorizedException("Only administrators may override the balance check.")

        async def work(db: AsyncSession):
            await LeaveService._load_employee(db, data.employee_id)
            balance = await LeaveLedger.get_or_create_balance(
                db, data.employee_id, data.leave_type, data.year,
            )
            old_remaining = balance.remaining
            await LeaveLedger.post(
                db,
                balance,
                LedgerEntry(TransactionType.adjustment, data.days, data.description),
                actor_id=actor.id,
                override=data.override,
            )
            await create_audit_entry(
                db,
                action="adjust",
                entity_type="leave_balance",
                entity_id=balance.id,
                actor_id=actor.id,
                old_values={"remaining": _money(old_remaining)},
                new_values={
                    "remaining": _money(balance.remaining),
                    "days": _money(data.days),
                    "override": data.override,
                    "description": data.description,
                },
            )
            return LeaveBalanceOut.model_validate(balance)

        out = await run_in_transaction(sessions, work, label="leave.adjust")
        logger.info(
            "Adjusted %s balance of %s for %d by %s",
            data.leave_type, data.employee_id, data.year, data.days,
        )
        return out

    @staticmethod
    async def initialize_year(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: YearInitializationRequest,
    ) -> list[LeaveBalanceOut]:
        """Open a balance per active policy, allocating its default days.

        The shared annual quota row is opened with ``ANNUAL_QUOTA_DAYS``.
        Leave types that already have a row for the year are skipped.
        """
        LeaveService._ensure_ledger_admin(actor)

        async def work(db: AsyncSession):
            await LeaveService._load_employee(db, data.employee_id)
            policies = (
                await db.execute(
                    select(LeavePolicy)
                    .where(LeavePolicy.is_active.is_(True))
                    .order_by(LeavePolicy.leave_type)
                )
            ).scalars().all()

            openings = [
                (p.leave_type, p.default_allocation, f"Annual allocation for {data.year}")
                for p in policies
            ]
            if settings.ANNUAL_QUOTA_DAYS > 0:
                openings.append((
                    settings.ANNUAL_QUOTA_LEAVE_TYPE,
                    Decimal(settings.ANNUAL_QUOTA_DAYS),
                    f"Annual leave quota for {data.year}",
                ))

            created = []
            for leave_type, days, description in openings:
                existing = await LeaveLedger.get_balance(
                    db, data.employee_id, leave_type, data.year,
                )
                if existing is not None:
                    continue
                balance = await LeaveLedger.get_or_create_balance(
                    db, data.employee_id, leave_type, data.year,
                )
                if days > 0:
                    await LeaveLedger.post(
                        db,
                        balance,
                        LedgerEntry(TransactionType.allocation, days, description),
                        actor_id=actor.id,
                    )
                await create_audit_entry(
                    db,
                    action="allocate",
                    entity_type="leave_balance",
                    entity_id=balance.id,
                    actor_id=actor.id,
                    new_values={"days": _money(days), "year": data.year},
                )
                created.append(LeaveBalanceOut.model_validate(balance))
            return created

        out = await run_in_transaction(sessions, work, label="leave.initialize_year")
        logger.info(
            "Initialised %d balance(s) for %s in %d", len(out), data.employee_id, data.year,
        )
        return out

    @staticmethod
    async def carry_forward(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: CarryForwardRequest,
    ) -> LeaveBalanceOut:
        """Move unused days of ``from_year`` into next year's carried-forward total.

        At most ``carry_forward_limit`` days move, and each (employee, leave
        type) pair is carried once per year.
        """
        LeaveService._ensure_ledger_admin(actor)
        to_year = data.from_year + 1

        async def work(db: AsyncSession):
            policy = await LeaveService._get_policy(db, data.leave_type)
            if policy is None or not policy.allow_carry_forward:
                raise ValidationException(
                    {"leave_type": [f"{data.leave_type} leave cannot be carried forward."]}
                )
            source = await LeaveLedger.require_balance(
                db, data.employee_id, data.leave_type, data.from_year,
            )
            target = await LeaveLedger.get_or_create_balance(
                db, data.employee_id, data.leave_type, to_year,
            )
            if any(t.type == TransactionType.carryforward for t in target.transactions):
                raise ValidationException(
                    {"from_year": [f"{data.from_year} has already been carried forward."]}
                )

            amount = min(max(Decimal(source.remaining), Decimal("0")), policy.carry_forward_limit)
            await LeaveLedger.post(
                db,
                target,
                LedgerEntry(
                    TransactionType.carryforward,
                    amount,
                    f"Carried forward from {data.from_year}",
                ),
                actor_id=actor.id,
            )
            await create_audit_entry(
                db,
                action="carry_forward",
                entity_type="leave_balance",
                entity_id=target.id,
                actor_id=actor.id,
                new_values={"days": _money(amount), "from_year": data.from_year},
            )
            return LeaveBalanceOut.model_validate(target)

        out = await run_in_transaction(sessions, work, label="leave.carry_forward")
        logger.info(
            "Carried forward %s %s day(s) for %s into %d",
            out.carried_forward, data.leave_type, data.employee_id, to_year,
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Policies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_policies(
        sessions: async_sessionmaker[AsyncSession],
    ) -> list[LeavePolicyOut]:
        async with sessions() as db:
            result = await db.execute(select(LeavePolicy).order_by(LeavePolicy.leave_type))
            return [LeavePolicyOut.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def upsert_policy(
        sessions: async_sessionmaker[AsyncSession],
        actor: Actor,
        data: LeavePolicyUpsert,
    ) -> LeavePolicyOut:
        LeaveService._ensure_ledger_admin(actor)

        async def work(db: AsyncSession):
            policy = await LeaveService._get_policy(db, data.leave_type)
            old_values = None
            if policy is None:
                policy = LeavePolicy(id=uuid.uuid4(), leave_type=data.leave_type)
                db.add(policy)
            else:
                old_values = LeavePolicyOut.model_validate(policy).model_dump(mode="json")
            for field, value in data.model_dump(exclude={"leave_type"}).items():
                setattr(policy, field, value)
            await db.flush()

            out = LeavePolicyOut.model_validate(policy)
            await create_audit_entry(
                db,
                action="update" if old_values else "create",
                entity_type="leave_policy",
                entity_id=policy.id,
                actor_id=actor.id,
                old_values=old_values,
                new_values=out.model_dump(mode="json"),
            )
            return out

        return await run_in_transaction(sessions, work, label="leave.upsert_policy")
