"""Unit-of-work tests — optimistic concurrency retry and atomic rollback."""

from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from ops_portal.common.exceptions import (
    ConflictError,
    ValidationException,
    VersionConflictException,
)
from ops_portal.common.uow import run_in_transaction
from ops_portal.org.models import User


class TestRunInTransaction:

    async def test_commits_and_returns_result(self, sessions, staff):
        async def work(db: AsyncSession):
            user = await db.get(User, staff.id)
            user.last_name = "Committed"
            await db.flush()
            return user.version

        version = await run_in_transaction(sessions, work)
        assert version == 2

        async with sessions() as db:
            assert (await db.get(User, staff.id)).last_name == "Committed"

    async def test_stale_write_is_retried_from_a_fresh_read(self, sessions, staff):
        calls = []

        async def work(db: AsyncSession):
            calls.append(1)
            user = await db.get(User, staff.id)
            if len(calls) == 1:
                # A competing writer commits between our read and our write
                async with sessions() as other:
                    async with other.begin():
                        competitor = await other.get(User, staff.id)
                        competitor.first_name = "Competitor"
            user.last_name = "Winner"
            await db.flush()
            return user.version

        version = await run_in_transaction(sessions, work, label="test.retry")

        assert len(calls) == 2
        assert version == 3
        async with sessions() as db:
            user = await db.get(User, staff.id)
            assert user.first_name == "Competitor"
            assert user.last_name == "Winner"

    async def test_exhausted_retries_raise_conflict_error(self, sessions):
        calls = []

        async def work(db: AsyncSession):
            calls.append(1)
            raise VersionConflictException("LeaveBalance", "x")

        with pytest.raises(ConflictError) as exc_info:
            await run_in_transaction(sessions, work, max_retries=2)

        assert len(calls) == 3
        assert exc_info.value.status_code == 409

    async def test_domain_error_rolls_back_without_retry(self, sessions, staff):
        calls = []

        async def work(db: AsyncSession):
            calls.append(1)
            user = await db.get(User, staff.id)
            user.last_name = "Never"
            await db.flush()
            raise ValidationException({"field": ["bad"]})

        with pytest.raises(ValidationException):
            await run_in_transaction(sessions, work)

        assert len(calls) == 1
        async with sessions() as db:
            assert (await db.get(User, staff.id)).last_name == "Tester"
