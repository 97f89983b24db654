"""Leave ledger tests — posting arithmetic, the fold invariant, overdraw protection."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from ops_portal.common.constants import TransactionType
from ops_portal.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)
from ops_portal.leave.ledger import (
    BalanceTotals,
    LedgerEntry,
    LeaveLedger,
    apply_transaction,
    fold_transactions,
)

YEAR = 2026


async def _open_balance(sessions, employee_id, allocated="20"):
    async with sessions() as db:
        async with db.begin():
            balance = await LeaveLedger.get_or_create_balance(db, employee_id, "annual", YEAR)
            await LeaveLedger.post(
                db,
                balance,
                LedgerEntry(TransactionType.allocation, Decimal(allocated), "Opening allocation"),
            )
    return balance


async def _reload(sessions, employee_id):
    async with sessions() as db:
        return await LeaveLedger.require_balance(db, employee_id, "annual", YEAR)


def _assert_cache_matches_log(balance):
    folded = fold_transactions(balance.transactions)
    assert folded == BalanceTotals.of(balance)
    assert folded.remaining == balance.remaining


# ═════════════════════════════════════════════════════════════════════
# Pure arithmetic
# ═════════════════════════════════════════════════════════════════════


class TestApplyTransaction:

    def test_each_type_moves_one_field(self):
        totals = BalanceTotals()
        totals = apply_transaction(totals, TransactionType.allocation, Decimal("20"))
        totals = apply_transaction(totals, TransactionType.carryforward, Decimal("3"))
        totals = apply_transaction(totals, TransactionType.pending, Decimal("5"))
        totals = apply_transaction(totals, TransactionType.pending, Decimal("-5"))
        totals = apply_transaction(totals, TransactionType.used, Decimal("5"))
        totals = apply_transaction(totals, TransactionType.adjustment, Decimal("-2"))

        assert totals == BalanceTotals(
            total_allocated=Decimal("18"),
            used=Decimal("5"),
            pending=Decimal("0"),
            carried_forward=Decimal("3"),
        )
        assert totals.remaining == Decimal("16")

    def test_field_may_not_go_negative(self):
        with pytest.raises(ValidationException):
            apply_transaction(BalanceTotals(), TransactionType.pending, Decimal("-1"))


# ═════════════════════════════════════════════════════════════════════
# Persistence
# ═════════════════════════════════════════════════════════════════════


class TestLeaveLedger:

    async def test_new_balance_starts_at_zero(self, sessions, staff):
        async with sessions() as db:
            async with db.begin():
                balance = await LeaveLedger.get_or_create_balance(db, staff.id, "sick", YEAR)
        assert balance.remaining == 0
        assert balance.transactions == []

    async def test_get_or_create_returns_existing_row(self, sessions, staff):
        first = await _open_balance(sessions, staff.id)
        async with sessions() as db:
            async with db.begin():
                again = await LeaveLedger.get_or_create_balance(db, staff.id, "annual", YEAR)
        assert again.id == first.id

    async def test_require_balance_missing(self, sessions, staff):
        async with sessions() as db:
            with pytest.raises(NotFoundException):
                await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)

    async def test_reserve_consume_keeps_cache_equal_to_log(self, sessions, staff):
        await _open_balance(sessions, staff.id)
        request_id = uuid.uuid4()

        async with sessions() as db:
            async with db.begin():
                balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                await LeaveLedger.reserve(db, balance, Decimal("5"), request_id)
                assert balance.pending == Decimal("5")
                assert balance.remaining == Decimal("15")
                await LeaveLedger.consume(db, balance, Decimal("5"), request_id)

        balance = await _reload(sessions, staff.id)
        assert balance.used == Decimal("5")
        assert balance.pending == Decimal("0")
        assert balance.remaining == Decimal("15")
        assert [t.seq for t in balance.transactions] == [1, 2, 3, 4]
        assert [t.type for t in balance.transactions] == [
            TransactionType.allocation,
            TransactionType.pending,
            TransactionType.pending,
            TransactionType.used,
        ]
        _assert_cache_matches_log(balance)

    async def test_release_restores_remaining(self, sessions, staff):
        await _open_balance(sessions, staff.id)
        request_id = uuid.uuid4()
        async with sessions() as db:
            async with db.begin():
                balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                await LeaveLedger.reserve(db, balance, Decimal("7"), request_id)
                await LeaveLedger.release(db, balance, Decimal("7"), request_id, "Withdrawn")

        balance = await _reload(sessions, staff.id)
        assert balance.remaining == Decimal("20")
        assert balance.transactions[-1].description == "Withdrawn"
        assert balance.transactions[-1].leave_request_id == request_id
        _assert_cache_matches_log(balance)

    async def test_overdraw_is_refused_and_nothing_is_written(self, sessions, staff):
        await _open_balance(sessions, staff.id, allocated="3")

        with pytest.raises(InsufficientBalanceException) as exc_info:
            async with sessions() as db:
                async with db.begin():
                    balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                    await LeaveLedger.reserve(db, balance, Decimal("5"), uuid.uuid4())

        assert exc_info.value.available == Decimal("3")
        assert exc_info.value.requested == Decimal("5")
        balance = await _reload(sessions, staff.id)
        assert balance.remaining == Decimal("3")
        assert len(balance.transactions) == 1

    async def test_override_allows_negative_remaining(self, sessions, staff):
        await _open_balance(sessions, staff.id, allocated="10")
        async with sessions() as db:
            async with db.begin():
                balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                await LeaveLedger.reserve(db, balance, Decimal("8"), uuid.uuid4())
                await LeaveLedger.post(
                    db,
                    balance,
                    LedgerEntry(TransactionType.adjustment, Decimal("-5"), "Correction"),
                    override=True,
                )

        balance = await _reload(sessions, staff.id)
        assert balance.remaining == Decimal("-3")
        _assert_cache_matches_log(balance)

    async def test_multi_entry_batch_is_atomic(self, sessions, staff):
        await _open_balance(sessions, staff.id, allocated="2")
        with pytest.raises(InsufficientBalanceException):
            async with sessions() as db:
                async with db.begin():
                    balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                    await LeaveLedger.post(
                        db,
                        balance,
                        LedgerEntry(TransactionType.allocation, Decimal("1"), "Bonus day"),
                        LedgerEntry(TransactionType.pending, Decimal("4"), "Reservation"),
                    )

        balance = await _reload(sessions, staff.id)
        assert len(balance.transactions) == 1
        assert balance.remaining == Decimal("2")

    async def test_posted_transactions_are_immutable(self, sessions, staff):
        await _open_balance(sessions, staff.id)
        with pytest.raises(RuntimeError):
            async with sessions() as db:
                async with db.begin():
                    balance = await LeaveLedger.require_balance(db, staff.id, "annual", YEAR)
                    balance.transactions[0].description = "rewritten"
                    await db.flush()
