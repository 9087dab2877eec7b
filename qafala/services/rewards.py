"""
Rewards Service - Claiming weekly prize payouts.

Status only moves forward: available -> claimed (to_game) or
available -> pending (withdraw). Every transition is a guarded UPDATE on
the current status, so a payout is claimed at most once.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import WinnerPayout, utc_now
from qafala.exceptions import PayoutNotAvailableError, PayoutNotFoundError
from qafala.models.api import ClaimMode, PayoutStatus, WalletTxType
from qafala.models.domain import ClaimResult, LedgerEntrySpec, PayoutData
from qafala.observability import get_logger
from qafala.services.leaderboard import payout_to_domain
from qafala.services.ledger import WalletLedger
from qafala.services.progression import ProgressionService
from qafala.services.wallet import usd_minor_to_dinar

logger = get_logger(__name__)


class RewardsService:
    """List and claim a user's payouts."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings
        self.ledger = WalletLedger(session)
        self.progression = ProgressionService(session, self.config)

    async def list_payouts(self, user_id: UUID) -> list[PayoutData]:
        """Newest season first, then by rank."""
        stmt = (
            select(WinnerPayout)
            .where(WinnerPayout.user_id == user_id)
            .order_by(WinnerPayout.created_at.desc(), WinnerPayout.rank)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [payout_to_domain(row) for row in rows]

    async def claim(
        self, user_id: UUID, payout_id: UUID, mode: ClaimMode = ClaimMode.TO_GAME
    ) -> ClaimResult:
        """
        Claim one available payout.

        Raises:
            PayoutNotFoundError: No such payout for this user
            PayoutNotAvailableError: Payout already claimed or pending
        """
        payout = await self._get_payout(user_id, payout_id)
        if payout.status != PayoutStatus.AVAILABLE:
            raise PayoutNotAvailableError(payout_id, payout.status.value)

        try:
            credited = await self._transition(user_id, payout, mode)
            wallet = await self.ledger.snapshot(user_id)
            claimed = await self._get_payout(user_id, payout_id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "payout_claimed",
            user_id=str(user_id),
            payout_id=str(payout_id),
            mode=mode.value,
            amount_minor=payout.amount_minor,
            dinar_credited=credited,
        )
        return ClaimResult(payout=claimed, dinar_credited=credited, wallet=wallet)

    async def _transition(self, user_id: UUID, payout: PayoutData, mode: ClaimMode) -> int:
        """Guarded status flip plus the dinar credit for to_game. Returns dinar credited."""
        payout_id = payout.id
        target = PayoutStatus.CLAIMED if mode == ClaimMode.TO_GAME else PayoutStatus.PENDING
        stmt = (
            update(WinnerPayout)
            .where(
                WinnerPayout.id == payout_id,
                WinnerPayout.status == PayoutStatus.AVAILABLE.value,
            )
            .values(status=target.value, claim_mode=mode.value, claimed_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if (await self.session.execute(stmt)).rowcount != 1:
            current = await self._get_payout(user_id, payout_id)
            raise PayoutNotAvailableError(payout_id, current.status.value)

        credited = 0
        if mode == ClaimMode.TO_GAME:
            credited = usd_minor_to_dinar(payout.amount_minor, self.config.dinar_per_usd)
            entry = LedgerEntrySpec(
                type=WalletTxType.REWARD,
                title="Weekly prize",
                subtitle=payout.title,
                icon="trophy",
                ref_kind="payout",
                ref_id=str(payout_id),
                tags=("leaderboard", payout.season_id),
            )
            if credited > 0:
                await self.ledger.credit_dinar(user_id, credited, entry)
            await self.progression.increment_stats(user_id, rewards_claimed=1)
        return credited

    async def claim_all(self, user_id: UUID) -> int:
        """Move every available payout to pending withdrawal. Returns the count moved."""
        stmt = (
            update(WinnerPayout)
            .where(
                WinnerPayout.user_id == user_id,
                WinnerPayout.status == PayoutStatus.AVAILABLE.value,
            )
            .values(
                status=PayoutStatus.PENDING.value,
                claim_mode=ClaimMode.WITHDRAW.value,
                claimed_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        moved = (await self.session.execute(stmt)).rowcount or 0
        await self.session.commit()
        logger.info("payouts_claimed_all", user_id=str(user_id), moved=moved)
        return moved

    async def _get_payout(self, user_id: UUID, payout_id: UUID) -> PayoutData:
        stmt = (
            select(WinnerPayout)
            .where(WinnerPayout.id == payout_id, WinnerPayout.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise PayoutNotFoundError(payout_id)
        return payout_to_domain(row)
