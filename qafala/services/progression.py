"""
Progression Service - XP, levels, participation counters and badges.

Level math is pure; persistence goes through guarded updates or a locked
read of the user row, inside the caller's transaction.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import UserAccount, UserBadge, utc_now
from qafala.db.upsert import upsert_insert
from qafala.exceptions import DataIntegrityError, UserNotFoundError, WriteVerificationError
from qafala.models.api import BadgeStatus, Rarity
from qafala.models.domain import BadgeDefinition, BadgeProgress, LevelState
from qafala.observability import get_logger

logger = get_logger(__name__)

XP_BASE = 100
XP_STEP = 50

DROPS_ROOKIE = BadgeDefinition(key="drops_rookie", title="Caravan Explorer", target=10)
LEGENDARY_COLLECTOR = BadgeDefinition(
    key="legendary_collector", title="Legend Collector", target=1
)
BARTER_MASTER = BadgeDefinition(key="barter_master", title="Barter Master", target=5)


def xp_target_for(level: int) -> int:
    """XP needed to go from level to level + 1."""
    return XP_BASE + max(0, level - 1) * XP_STEP


def apply_xp(state: LevelState, gained: int, max_level: int) -> LevelState:
    """Add XP and roll over as many level-ups as it pays for."""
    if gained < 0:
        raise ValueError(f"XP gained cannot be negative: {gained}")

    level = state.level
    xp = state.xp + gained
    while level < max_level and xp >= xp_target_for(level):
        xp -= xp_target_for(level)
        level += 1
    return LevelState(level=level, xp=xp, xp_to_next=xp_target_for(level))


class ProgressionService:
    """XP awarding, stat counters and badge progress."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def award_xp(self, user_id: UUID, amount: int) -> LevelState:
        """Add XP to a user, applying level-ups. Zero is a read."""
        stmt = (
            select(UserAccount)
            .where(UserAccount.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = (await self.session.execute(stmt)).scalar_one_or_none()
        if user is None:
            raise UserNotFoundError(user_id)

        before = LevelState(level=user.level, xp=user.xp, xp_to_next=user.xp_to_next)
        if amount <= 0:
            return before

        after = apply_xp(before, amount, self.config.max_level)
        user.level = after.level
        user.xp = after.xp
        user.xp_to_next = after.xp_to_next
        await self.session.flush()

        verified = await self.session.get(UserAccount, user_id)
        if verified is None:
            raise WriteVerificationError(f"User {user_id} disappeared after XP update")
        if (verified.level, verified.xp) != (after.level, after.xp):
            raise DataIntegrityError(
                f"XP mismatch: expected level {after.level} xp {after.xp}, "
                f"got level {verified.level} xp {verified.xp}"
            )

        if after.level > before.level:
            logger.info(
                "level_up",
                user_id=str(user_id),
                from_level=before.level,
                to_level=after.level,
            )
        return after

    async def increment_stats(
        self,
        user_id: UUID,
        drops_participated: int = 0,
        items_purchased: int = 0,
        barter_trades: int = 0,
        rewards_claimed: int = 0,
    ) -> None:
        """Bump participation counters in one statement."""
        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(
                drops_participated=UserAccount.drops_participated + drops_participated,
                items_purchased=UserAccount.items_purchased + items_purchased,
                barter_trades=UserAccount.barter_trades + barter_trades,
                rewards_claimed=UserAccount.rewards_claimed + rewards_claimed,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise UserNotFoundError(user_id)

    async def record_drop_purchase(
        self, user_id: UUID, quantity: int, rarity: str
    ) -> list[BadgeProgress]:
        """Badge progress for a completed purchase."""
        progress = [await self._increment_badge(user_id, DROPS_ROOKIE, quantity)]
        if rarity == Rarity.LEGENDARY.value:
            progress.append(await self._increment_badge(user_id, LEGENDARY_COLLECTOR, 1))
        return progress

    async def record_barter(self, user_id: UUID) -> BadgeProgress:
        """Badge progress for a completed barter."""
        return await self._increment_badge(user_id, BARTER_MASTER, 1)

    async def _increment_badge(
        self, user_id: UUID, definition: BadgeDefinition, delta: int
    ) -> BadgeProgress:
        """
        Upsert progress, then flip locked -> earned at most once.

        The flip is a guarded UPDATE on status, so two concurrent increments
        crossing the target still count the badge once.
        """
        stmt = upsert_insert(self.session, UserBadge).values(
            user_id=user_id,
            badge_key=definition.key,
            progress=delta,
            target=definition.target,
            status=BadgeStatus.LOCKED.value,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserBadge.user_id, UserBadge.badge_key],
            set_={"progress": UserBadge.progress + delta},
        )
        await self.session.execute(stmt)

        flip = (
            update(UserBadge)
            .where(
                UserBadge.user_id == user_id,
                UserBadge.badge_key == definition.key,
                UserBadge.status == BadgeStatus.LOCKED.value,
                UserBadge.progress >= UserBadge.target,
            )
            .values(status=BadgeStatus.EARNED.value, earned_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        newly_earned = (await self.session.execute(flip)).rowcount == 1
        if newly_earned:
            await self.session.execute(
                update(UserAccount)
                .where(UserAccount.id == user_id)
                .values(badges_earned=UserAccount.badges_earned + 1)
                .execution_options(synchronize_session=False)
            )
            logger.info("badge_earned", user_id=str(user_id), badge=definition.key)

        row = (
            await self.session.execute(
                select(UserBadge.progress, UserBadge.target).where(
                    UserBadge.user_id == user_id, UserBadge.badge_key == definition.key
                )
            )
        ).one()
        return BadgeProgress(
            badge_key=definition.key,
            progress=row.progress,
            target=row.target,
            newly_earned=newly_earned,
        )
