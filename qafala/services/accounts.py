"""
Account Service - Local user records for externally authenticated users.

The identity store lives elsewhere; this service only makes sure a users
row exists for a verified user id before the engines touch it.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import UserAccount
from qafala.exceptions import WriteVerificationError
from qafala.observability import get_logger

logger = get_logger(__name__)


class AccountService:
    """Get-or-create of users rows, race-safe on the primary key."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def get_or_create(self, user_id: UUID, username: str | None = None) -> UserAccount:
        """
        Return the users row, creating it with the starting balance if absent.

        A concurrent creator wins the insert; we roll back and re-read.
        """
        account = await self._find(user_id)
        if account is not None:
            return account

        account = UserAccount(
            id=user_id,
            username=username or f"player-{str(user_id)[:8]}",
            dinar=self.config.starting_dinar,
        )
        self.session.add(account)
        try:
            await self.session.flush()
        except IntegrityError:
            logger.info("account_create_race", user_id=str(user_id))
            await self.session.rollback()
            existing = await self._find(user_id)
            if existing is None:
                raise WriteVerificationError("Account creation failed due to race condition")
            return existing

        await self.session.commit()
        logger.info(
            "account_created",
            user_id=str(user_id),
            starting_dinar=self.config.starting_dinar,
        )
        return account

    async def _find(self, user_id: UUID) -> UserAccount | None:
        stmt = select(UserAccount).where(UserAccount.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
