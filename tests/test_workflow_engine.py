"""Workflow engine tests — chain construction, ordered transitions, single-round approval.

The engine only needs attribute access, so plain dataclasses stand in for the
ORM step rows.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

import pytest

from ops_portal.auth.permissions import Actor
from ops_portal.common.constants import ApprovalStatus, Decision, LeaveStatus, UserRole
from ops_portal.common.exceptions import (
    AlreadyTerminalException,
    InvalidActorException,
    NotFoundException,
    OutOfOrderException,
)
from ops_portal.workflow.engine import (
    ApprovalPolicy,
    ApprovalTier,
    build_chain,
    check_cancellable,
    check_single_round,
    current_step,
    derive_single_round_status,
    derive_status,
    has_decisions,
    transition,
)


@dataclass
class Step:
    order: int
    approver_role: UserRole
    approver_id: Optional[uuid.UUID] = None
    status: ApprovalStatus = ApprovalStatus.pending
    comments: Optional[str] = None
    action_date: Optional[datetime] = None


@dataclass
class Record:
    status: ApprovalStatus
    approver_id: uuid.UUID = field(default_factory=uuid.uuid4)


def _actor(role: UserRole) -> Actor:
    return Actor(id=uuid.uuid4(), role=role)


def _chain(total_days, manager=14, head=30) -> list[Step]:
    policy = ApprovalPolicy.from_limits(manager, head)
    return [
        Step(order=s.order, approver_role=s.approver_role)
        for s in build_chain(Decimal(total_days), policy)
    ]


# ═════════════════════════════════════════════════════════════════════
# Chain construction
# ═════════════════════════════════════════════════════════════════════


class TestBuildChain:

    @pytest.mark.parametrize(
        "days, roles",
        [
            (1, [UserRole.manager]),
            (14, [UserRole.manager]),
            (15, [UserRole.manager, UserRole.department_head]),
            (30, [UserRole.manager, UserRole.department_head]),
            (40, [UserRole.manager, UserRole.department_head, UserRole.admin]),
        ],
    )
    def test_threshold_boundaries(self, days, roles):
        assert [s.approver_role for s in _chain(days)] == roles

    def test_orders_are_contiguous_from_zero(self):
        assert [s.order for s in _chain(40)] == [0, 1, 2]

    def test_half_day_above_threshold_escalates(self):
        assert len(_chain(Decimal("14.5"))) == 2

    def test_non_positive_duration_is_rejected(self):
        with pytest.raises(ValueError):
            build_chain(Decimal("0"), ApprovalPolicy.from_limits(14, 30))

    def test_policy_requires_bounded_inner_tiers(self):
        with pytest.raises(ValueError):
            ApprovalPolicy(tiers=(ApprovalTier(UserRole.manager), ApprovalTier(UserRole.admin)))

    def test_policy_requires_non_decreasing_thresholds(self):
        with pytest.raises(ValueError):
            ApprovalPolicy.from_limits(30, 14)

    def test_policy_needs_a_tier(self):
        with pytest.raises(ValueError):
            ApprovalPolicy(tiers=())


# ═════════════════════════════════════════════════════════════════════
# Transitions
# ═════════════════════════════════════════════════════════════════════


class TestTransition:

    def test_single_step_approval_completes_chain(self):
        steps = _chain(5)
        manager = _actor(UserRole.manager)
        result = transition(steps, 0, manager, Decision.approve, comments="ok")

        assert result.completed is True
        assert result.status == LeaveStatus.approved
        assert steps[0].approver_id == manager.id
        assert steps[0].comments == "ok"
        assert steps[0].action_date is not None

    def test_intermediate_approval_keeps_chain_pending(self):
        steps = _chain(40)
        result = transition(steps, 0, _actor(UserRole.manager), Decision.approve)

        assert result.completed is False
        assert derive_status(steps) == LeaveStatus.pending
        assert current_step(steps).order == 1

    def test_rejection_closes_chain_and_leaves_higher_steps_pending(self):
        steps = _chain(40)
        transition(steps, 0, _actor(UserRole.manager), Decision.approve)
        result = transition(steps, 1, _actor(UserRole.department_head), Decision.reject)

        assert result.status == LeaveStatus.rejected
        assert steps[2].status == ApprovalStatus.pending
        assert current_step(steps) is None

    def test_full_three_level_approval(self):
        steps = _chain(40)
        transition(steps, 0, _actor(UserRole.manager), Decision.approve)
        transition(steps, 1, _actor(UserRole.department_head), Decision.approve)
        result = transition(steps, 2, _actor(UserRole.admin), Decision.approve)

        assert result.status == LeaveStatus.approved
        assert all(s.status == ApprovalStatus.approved for s in steps)

    def test_out_of_order_is_refused_without_mutation(self):
        steps = _chain(40)
        with pytest.raises(OutOfOrderException):
            transition(steps, 1, _actor(UserRole.department_head), Decision.approve)
        assert not has_decisions(steps)

    def test_admin_still_respects_order(self):
        steps = _chain(40)
        with pytest.raises(OutOfOrderException):
            transition(steps, 2, _actor(UserRole.admin), Decision.approve)

    def test_admin_may_decide_any_role_step(self):
        steps = _chain(5)
        result = transition(steps, 0, _actor(UserRole.admin), Decision.approve)
        assert result.status == LeaveStatus.approved

    def test_wrong_role_is_invalid_actor(self):
        steps = _chain(5)
        with pytest.raises(InvalidActorException):
            transition(steps, 0, _actor(UserRole.department_head), Decision.approve)

    def test_unknown_order(self):
        with pytest.raises(NotFoundException):
            transition(_chain(5), 3, _actor(UserRole.manager), Decision.approve)

    def test_repeating_a_decision_is_already_terminal(self):
        steps = _chain(40)
        manager = _actor(UserRole.manager)
        transition(steps, 0, manager, Decision.approve)
        with pytest.raises(AlreadyTerminalException):
            transition(steps, 0, manager, Decision.approve)

    def test_closed_chain_refuses_further_decisions(self):
        steps = _chain(40)
        transition(steps, 0, _actor(UserRole.manager), Decision.reject)
        with pytest.raises(AlreadyTerminalException):
            transition(steps, 1, _actor(UserRole.department_head), Decision.approve)

    def test_cancelled_chain_refuses_decisions(self):
        steps = _chain(5)
        with pytest.raises(AlreadyTerminalException):
            transition(steps, 0, _actor(UserRole.manager), Decision.approve, cancelled=True)
        assert derive_status(steps, cancelled=True) == LeaveStatus.cancelled


class TestCancellable:

    def test_pending_chain_is_cancellable(self):
        check_cancellable(_chain(40))

    def test_decided_chain_is_not(self):
        steps = _chain(5)
        transition(steps, 0, _actor(UserRole.manager), Decision.approve)
        with pytest.raises(AlreadyTerminalException):
            check_cancellable(steps)

    def test_already_cancelled(self):
        with pytest.raises(AlreadyTerminalException):
            check_cancellable(_chain(5), cancelled=True)


# ═════════════════════════════════════════════════════════════════════
# Single round
# ═════════════════════════════════════════════════════════════════════


class TestSingleRound:

    def test_no_history_is_pending(self):
        assert derive_single_round_status([]) == ApprovalStatus.pending

    def test_first_record_wins(self):
        history = [Record(ApprovalStatus.rejected), Record(ApprovalStatus.approved)]
        assert derive_single_round_status(history) == ApprovalStatus.rejected

    def test_listed_approver_may_resolve(self):
        approver = _actor(UserRole.staff)
        check_single_round([approver.id], [], approver)

    def test_unlisted_user_is_invalid_actor(self):
        with pytest.raises(InvalidActorException):
            check_single_round([uuid.uuid4()], [], _actor(UserRole.manager))

    def test_admin_may_resolve_without_listing(self):
        check_single_round([uuid.uuid4()], [], _actor(UserRole.admin))

    def test_decided_round_is_terminal(self):
        approver = _actor(UserRole.staff)
        with pytest.raises(AlreadyTerminalException):
            check_single_round([approver.id], [Record(ApprovalStatus.approved)], approver)
