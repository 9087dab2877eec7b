"""
Job Locks - Mutual exclusion for scheduled jobs via a unique key row.

The lock row is inserted in the caller's transaction: it becomes visible
to other runners on commit and disappears with a rollback. A committed
lock is held until its TTL passes.
"""

from datetime import datetime, timedelta

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import JobLock, utc_now
from qafala.exceptions import AlreadyRunningError
from qafala.observability import get_logger

logger = get_logger(__name__)


class JobLocks:
    """Acquire job lock rows."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def acquire(self, key: str, owner: str | None = None, now: datetime | None = None) -> None:
        """
        Insert the lock row for key.

        Raises:
            AlreadyRunningError: A live lock holds the key. The session has
                been rolled back.
        """
        now = now or utc_now()

        # Expired holders no longer count
        await self.session.execute(
            delete(JobLock)
            .where(JobLock.key == key, JobLock.expires_at <= now)
            .execution_options(synchronize_session=False)
        )

        self.session.add(
            JobLock(
                key=key,
                owner=owner,
                acquired_at=now,
                expires_at=now + timedelta(seconds=self.config.job_lock_ttl_seconds),
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.info("job_lock_busy", key=key)
            raise AlreadyRunningError(key) from exc

        logger.info("job_lock_acquired", key=key, owner=owner)

