"""Leave balance ledger — append-only transaction log with a derived cache.

Posting rules (amounts are signed):

    allocation    → total_allocated
    adjustment    → total_allocated (administrative correction)
    carryforward  → carried_forward
    pending       → pending   (reservation on submit, release on reject/cancel)
    used          → used

``remaining = total_allocated + carried_forward − used − pending`` is recomputed
on every posting, in the same flush as the appended rows.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ops_portal.common.constants import TransactionType
from ops_portal.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
    VersionConflictException,
)
from ops_portal.leave.models import LeaveBalance, LeaveTransaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# Pure arithmetic
# ═════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BalanceTotals:
    total_allocated: Decimal = ZERO
    used: Decimal = ZERO
    pending: Decimal = ZERO
    carried_forward: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return self.total_allocated + self.carried_forward - self.used - self.pending

    @classmethod
    def of(cls, balance: LeaveBalance) -> BalanceTotals:
        return cls(
            total_allocated=Decimal(balance.total_allocated or 0),
            used=Decimal(balance.used or 0),
            pending=Decimal(balance.pending or 0),
            carried_forward=Decimal(balance.carried_forward or 0),
        )


_FIELD_FOR_TYPE: dict[TransactionType, str] = {
    TransactionType.allocation: "total_allocated",
    TransactionType.adjustment: "total_allocated",
    TransactionType.carryforward: "carried_forward",
    TransactionType.pending: "pending",
    TransactionType.used: "used",
}


def apply_transaction(
    totals: BalanceTotals,
    txn_type: TransactionType,
    amount: Decimal,
) -> BalanceTotals:
    """Return ``totals`` with one signed posting applied.

    Raises:
        ValidationException: the posting would make a stored field negative.
    """
    field = _FIELD_FOR_TYPE[TransactionType(txn_type)]
    updated = replace(totals, **{field: getattr(totals, field) + Decimal(amount)})
    if getattr(updated, field) < 0:
        raise ValidationException(
            {field: [f"{txn_type.value} posting of {amount} would make {field} negative."]}
        )
    return updated


def fold_transactions(transactions: Iterable[LeaveTransaction]) -> BalanceTotals:
    """Rebuild the totals from the log alone."""
    totals = BalanceTotals()
    for txn in transactions:
        totals = apply_transaction(totals, txn.type, txn.amount)
    return totals


@dataclass(frozen=True)
class LedgerEntry:
    type: TransactionType
    amount: Decimal
    description: str
    leave_request_id: Optional[uuid.UUID] = None


# ═════════════════════════════════════════════════════════════════════
# Persistence
# ═════════════════════════════════════════════════════════════════════


class LeaveLedger:
    """Posts entries to a balance row inside the caller's unit of work."""

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
        *,
        for_update: bool = False,
    ) -> Optional[LeaveBalance]:
        stmt = select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def require_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> LeaveBalance:
        balance = await LeaveLedger.get_balance(db, employee_id, leave_type, year)
        if balance is None:
            raise NotFoundException("LeaveBalance", f"{employee_id}/{leave_type}/{year}")
        return balance

    @staticmethod
    async def get_or_create_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type: str,
        year: int,
    ) -> LeaveBalance:
        """Load the row, creating it with all-zero fields on first use.

        A concurrent creator winning the unique key surfaces as a version
        conflict so the whole unit of work is re-run against the committed row.
        """
        balance = await LeaveLedger.get_balance(
            db, employee_id, leave_type, year, for_update=True,
        )
        if balance is not None:
            return balance

        balance = LeaveBalance(
            id=uuid.uuid4(),
            employee_id=employee_id,
            leave_type=leave_type,
            year=year,
            total_allocated=ZERO,
            used=ZERO,
            pending=ZERO,
            carried_forward=ZERO,
            remaining=ZERO,
            transactions=[],
        )
        db.add(balance)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise VersionConflictException("LeaveBalance", f"{employee_id}/{leave_type}/{year}") from exc
        return balance

    @staticmethod
    async def post(
        db: AsyncSession,
        balance: LeaveBalance,
        *entries: LedgerEntry,
        actor_id: Optional[uuid.UUID] = None,
        override: bool = False,
        leave_type_label: Optional[str] = None,
    ) -> LeaveBalance:
        """Append ``entries`` atomically and refresh the cached totals.

        The non-negativity check runs against the candidate totals before the
        row is touched. It only applies when the batch lowers ``remaining``;
        a batch that merely moves days between ``pending`` and ``used`` never
        fails it.

        Raises:
            InsufficientBalanceException: ``remaining`` would go below zero
                and ``override`` is not set.
            ValidationException: a single field would go negative.
        """
        current = fold_transactions(balance.transactions)
        candidate = current
        for entry in entries:
            candidate = apply_transaction(candidate, entry.type, entry.amount)

        if (
            candidate.remaining < current.remaining
            and candidate.remaining < 0
            and not override
        ):
            raise InsufficientBalanceException(
                leave_type_label or balance.leave_type,
                available=current.remaining,
                requested=current.remaining - candidate.remaining,
            )

        next_seq = (balance.transactions[-1].seq + 1) if balance.transactions else 1
        for offset, entry in enumerate(entries):
            balance.transactions.append(
                LeaveTransaction(
                    id=uuid.uuid4(),
                    seq=next_seq + offset,
                    type=entry.type,
                    amount=Decimal(entry.amount),
                    description=entry.description,
                    leave_request_id=entry.leave_request_id,
                    created_by=actor_id,
                )
            )
            logger.debug(
                "Ledger %s/%s/%s: %s %s (%s)",
                balance.employee_id, balance.leave_type, balance.year,
                entry.type.value, entry.amount, entry.description,
            )

        balance.total_allocated = candidate.total_allocated
        balance.used = candidate.used
        balance.pending = candidate.pending
        balance.carried_forward = candidate.carried_forward
        balance.remaining = candidate.remaining
        await db.flush()
        return balance

    # ── Workflow postings ───────────────────────────────────────────

    @staticmethod
    async def reserve(
        db: AsyncSession,
        balance: LeaveBalance,
        days: Decimal,
        leave_request_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        return await LeaveLedger.post(
            db,
            balance,
            LedgerEntry(
                TransactionType.pending, days,
                "Reserved for leave request", leave_request_id,
            ),
            actor_id=actor_id,
        )

    @staticmethod
    async def consume(
        db: AsyncSession,
        balance: LeaveBalance,
        days: Decimal,
        leave_request_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        """Convert a reservation into used days in one posting batch."""
        return await LeaveLedger.post(
            db,
            balance,
            LedgerEntry(
                TransactionType.pending, -days,
                "Reservation converted on approval", leave_request_id,
            ),
            LedgerEntry(
                TransactionType.used, days,
                "Leave approved", leave_request_id,
            ),
            actor_id=actor_id,
        )

    @staticmethod
    async def release(
        db: AsyncSession,
        balance: LeaveBalance,
        days: Decimal,
        leave_request_id: uuid.UUID,
        reason: str,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalance:
        return await LeaveLedger.post(
            db,
            balance,
            LedgerEntry(TransactionType.pending, -days, reason, leave_request_id),
            actor_id=actor_id,
        )
