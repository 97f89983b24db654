"""Unit-of-work runner with optimistic-concurrency retry.

Every state-changing domain operation is a single read-check-write callback.
The callback receives a fresh session inside an open transaction; whatever it
flushes is committed together or not at all. A lost race (stale version or a
duplicate lazily-created row) discards the whole attempt and the callback is
re-run from its initial read, never merged with partial state.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ops_portal.common.exceptions import ConflictError, VersionConflictException
from ops_portal.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[AsyncSession], Awaitable[T]]


async def run_in_transaction(
    sessions: async_sessionmaker[AsyncSession],
    work: Work[T],
    *,
    label: str = "unit of work",
    max_retries: Optional[int] = None,
) -> T:
    """Run ``work`` atomically, retrying on version conflicts.

    Args:
        sessions: Session factory; one session is opened per attempt.
        work: Async callback performing the read-check-write.
        label: Name used in log lines.
        max_retries: Retries after the first attempt; defaults to
            ``settings.VERSION_CONFLICT_MAX_RETRIES``.

    Raises:
        ConflictError: every attempt lost a concurrent-update race.
        AppException: any other domain error, unchanged and after rollback.
    """
    retries = settings.VERSION_CONFLICT_MAX_RETRIES if max_retries is None else max_retries
    attempts = retries + 1

    for attempt in range(1, attempts + 1):
        try:
            async with sessions() as session:
                async with session.begin():
                    return await work(session)
        except (StaleDataError, VersionConflictException) as exc:
            logger.warning(
                "%s: concurrent update detected (attempt %d/%d): %s",
                label, attempt, attempts, exc,
            )

    logger.error("%s: giving up after %d attempts", label, attempts)
    raise ConflictError(attempts)
