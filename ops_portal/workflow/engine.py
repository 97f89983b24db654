"""Approval workflow engine — ordered multi-step chains and single-round approval.

The engine is persistence-agnostic: it operates on any objects exposing the
``ApprovalStepLike`` attributes (the leave ORM rows in production, plain
dataclasses in tests) and on ``Actor`` values from the permission model.

Chain rules:
  - steps are decided strictly by ascending ``order``
  - a step may be decided only when every lower-order step is approved
  - the first rejection closes the chain; higher steps stay pending forever
  - the chain is approved when its final step approves
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Collection, Optional, Protocol, Sequence, TypeVar

from ops_portal.auth.permissions import Actor
from ops_portal.common.constants import ApprovalStatus, Decision, LeaveStatus, UserRole
from ops_portal.common.exceptions import (
    AlreadyTerminalException,
    InvalidActorException,
    NotFoundException,
    OutOfOrderException,
)


class ApprovalStepLike(Protocol):
    order: int
    approver_role: UserRole
    approver_id: Optional[uuid.UUID]
    status: ApprovalStatus
    comments: Optional[str]
    action_date: Optional[datetime]


class ApprovalRecordLike(Protocol):
    status: ApprovalStatus


StepT = TypeVar("StepT", bound=ApprovalStepLike)


# ═════════════════════════════════════════════════════════════════════
# Policy → chain
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ApprovalTier:
    """One authority level; ``max_days=None`` means it can clear any duration."""

    role: UserRole
    max_days: Optional[Decimal] = None


@dataclass(frozen=True)
class ApprovalPolicy:
    """Approval tiers in ascending authority order."""

    tiers: tuple[ApprovalTier, ...]

    def __post_init__(self) -> None:
        if not self.tiers:
            raise ValueError("An approval policy needs at least one tier.")
        previous: Optional[Decimal] = None
        for tier in self.tiers[:-1]:
            if tier.max_days is None:
                raise ValueError("Only the last tier may be unbounded.")
            if previous is not None and tier.max_days < previous:
                raise ValueError("Tier thresholds must be non-decreasing.")
            previous = tier.max_days

    @classmethod
    def from_limits(
        cls,
        manager_max_days: Decimal | int,
        department_head_max_days: Decimal | int,
    ) -> ApprovalPolicy:
        """Standard manager → department head → admin ladder."""
        return cls(
            tiers=(
                ApprovalTier(UserRole.manager, Decimal(manager_max_days)),
                ApprovalTier(UserRole.department_head, Decimal(department_head_max_days)),
                ApprovalTier(UserRole.admin),
            )
        )


@dataclass(frozen=True)
class StepSpec:
    order: int
    approver_role: UserRole


def build_chain(total_days: Decimal, policy: ApprovalPolicy) -> list[StepSpec]:
    """Every tier up to and including the first whose threshold covers the request."""
    if total_days <= 0:
        raise ValueError("total_days must be positive")

    chain: list[StepSpec] = []
    for order, tier in enumerate(policy.tiers):
        chain.append(StepSpec(order=order, approver_role=tier.role))
        if tier.max_days is None or total_days <= tier.max_days:
            break
    return chain


# ═════════════════════════════════════════════════════════════════════
# Derived state
# ═════════════════════════════════════════════════════════════════════


def ordered(steps: Sequence[StepT]) -> list[StepT]:
    return sorted(steps, key=lambda s: s.order)


def derive_status(steps: Sequence[ApprovalStepLike], *, cancelled: bool = False) -> LeaveStatus:
    """Parent status as a pure function of the chain."""
    if cancelled:
        return LeaveStatus.cancelled
    chain = ordered(steps)
    if any(s.status == ApprovalStatus.rejected for s in chain):
        return LeaveStatus.rejected
    if chain and chain[-1].status == ApprovalStatus.approved:
        return LeaveStatus.approved
    return LeaveStatus.pending


def current_step(steps: Sequence[StepT]) -> Optional[StepT]:
    """The step awaiting a decision, or None once the chain is closed."""
    if derive_status(steps) != LeaveStatus.pending:
        return None
    for step in ordered(steps):
        if step.status == ApprovalStatus.pending:
            return step
    return None


def is_final_step(steps: Sequence[ApprovalStepLike], step: ApprovalStepLike) -> bool:
    return max(s.order for s in steps) == step.order


def has_decisions(steps: Sequence[ApprovalStepLike]) -> bool:
    return any(s.status != ApprovalStatus.pending for s in steps)


# ═════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TransitionResult:
    order: int
    decision: Decision
    status: LeaveStatus
    completed: bool


def check_transition(
    steps: Sequence[StepT],
    order: int,
    actor: Actor,
    *,
    cancelled: bool = False,
) -> StepT:
    """Validate that ``actor`` may decide step ``order`` now; no mutation.

    Raises:
        NotFoundException: no step with that order.
        AlreadyTerminalException: chain closed, or the step is already decided.
        InvalidActorException: actor role differs from the step's role (admins excepted).
        OutOfOrderException: a lower-order step is not yet approved.
    """
    chain = ordered(steps)
    step = next((s for s in chain if s.order == order), None)
    if step is None:
        raise NotFoundException("ApprovalStep", order)

    status = derive_status(chain, cancelled=cancelled)
    if status != LeaveStatus.pending:
        raise AlreadyTerminalException(f"The approval chain is already {status.value}.")
    if step.status != ApprovalStatus.pending:
        raise AlreadyTerminalException(f"Step {order} is already {step.status.value}.")

    if actor.role != step.approver_role and actor.role != UserRole.admin:
        raise InvalidActorException(step.approver_role.value, actor.role.value)

    for earlier in chain:
        if earlier.order >= order:
            break
        if earlier.status != ApprovalStatus.approved:
            raise OutOfOrderException(order, earlier.order)

    return step


def apply_decision(
    steps: Sequence[StepT],
    step: StepT,
    actor: Actor,
    decision: Decision,
    *,
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Record a decision already validated by ``check_transition``."""
    step.status = (
        ApprovalStatus.approved if decision == Decision.approve else ApprovalStatus.rejected
    )
    step.approver_id = actor.id
    step.comments = comments
    step.action_date = now or datetime.now(timezone.utc)

    status = derive_status(steps)
    return TransitionResult(
        order=step.order,
        decision=decision,
        status=status,
        completed=status != LeaveStatus.pending,
    )


def transition(
    steps: Sequence[StepT],
    order: int,
    actor: Actor,
    decision: Decision,
    *,
    comments: Optional[str] = None,
    cancelled: bool = False,
    now: Optional[datetime] = None,
) -> TransitionResult:
    step = check_transition(steps, order, actor, cancelled=cancelled)
    return apply_decision(steps, step, actor, decision, comments=comments, now=now)


def check_cancellable(steps: Sequence[ApprovalStepLike], *, cancelled: bool = False) -> None:
    status = derive_status(steps, cancelled=cancelled)
    if status != LeaveStatus.pending:
        raise AlreadyTerminalException(
            f"Only pending requests can be cancelled; this one is {status.value}."
        )


# ═════════════════════════════════════════════════════════════════════
# Single-round variant (tasks)
# ═════════════════════════════════════════════════════════════════════


def derive_single_round_status(history: Sequence[ApprovalRecordLike]) -> ApprovalStatus:
    """The first recorded decision is the outcome."""
    if not history:
        return ApprovalStatus.pending
    return ApprovalStatus(history[0].status)


def check_single_round(
    approver_ids: Collection[uuid.UUID],
    history: Sequence[ApprovalRecordLike],
    actor: Actor,
) -> None:
    """Any listed approver (or an admin) may resolve; the first decision is final."""
    status = derive_single_round_status(history)
    if status != ApprovalStatus.pending:
        raise AlreadyTerminalException(f"Approval is already {status.value}.")
    if actor.id not in set(approver_ids) and actor.role != UserRole.admin:
        raise InvalidActorException("listed approver", actor.role.value)


def decision_status(decision: Decision) -> ApprovalStatus:
    return ApprovalStatus.approved if decision == Decision.approve else ApprovalStatus.rejected
