"""
Tests for ProgressionService and its level math.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from qafala.db.models import UserAccount, UserBadge
from qafala.exceptions import UserNotFoundError
from qafala.models.domain import LevelState
from qafala.services.progression import (
    BARTER_MASTER,
    DROPS_ROOKIE,
    ProgressionService,
    apply_xp,
    xp_target_for,
)


class TestLevelMath:
    """Tests for the pure XP helpers."""

    def test_targets_grow_by_step(self):
        assert xp_target_for(1) == 100
        assert xp_target_for(2) == 150
        assert xp_target_for(3) == 200

    def test_no_level_up_below_target(self):
        state = apply_xp(LevelState(level=1, xp=0, xp_to_next=100), 99, max_level=10)
        assert state == LevelState(level=1, xp=99, xp_to_next=100)

    def test_multiple_level_ups_in_one_award(self):
        """Surplus XP rolls over through several levels."""
        state = apply_xp(LevelState(level=1, xp=0, xp_to_next=100), 260, max_level=10)
        assert state.level == 3
        assert state.xp == 10
        assert state.xp_to_next == 200

    def test_capped_at_max_level(self):
        """XP keeps accumulating at the cap without levelling."""
        state = apply_xp(LevelState(level=2, xp=0, xp_to_next=150), 10_000, max_level=2)
        assert state.level == 2
        assert state.xp == 10_000

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            apply_xp(LevelState(level=1, xp=0, xp_to_next=100), -1, max_level=10)


class TestAwardXp:
    """Tests for persisted XP awards."""

    async def test_level_up_persisted(self, session, seed, config):
        user = await seed.user()
        state = await ProgressionService(session, config).award_xp(user.id, 120)
        await session.commit()

        assert state.level == 2
        assert state.xp == 20
        row = (
            await session.execute(
                select(UserAccount.level, UserAccount.xp).where(UserAccount.id == user.id)
            )
        ).one()
        assert (row.level, row.xp) == (2, 20)

    async def test_zero_is_a_read(self, session, seed, config):
        user = await seed.user()
        state = await ProgressionService(session, config).award_xp(user.id, 0)
        assert state == LevelState(level=1, xp=0, xp_to_next=100)

    async def test_unknown_user(self, session, config):
        with pytest.raises(UserNotFoundError):
            await ProgressionService(session, config).award_xp(uuid4(), 10)


class TestStatsAndBadges:
    """Tests for counters and badge progress."""

    async def test_increment_stats(self, session, seed, config):
        user = await seed.user()
        service = ProgressionService(session, config)
        await service.increment_stats(user.id, drops_participated=1, items_purchased=3)
        await service.increment_stats(user.id, barter_trades=1)
        await session.commit()

        row = (
            await session.execute(
                select(
                    UserAccount.drops_participated,
                    UserAccount.items_purchased,
                    UserAccount.barter_trades,
                ).where(UserAccount.id == user.id)
            )
        ).one()
        assert tuple(row) == (1, 3, 1)

    async def test_increment_stats_unknown_user(self, session, config):
        with pytest.raises(UserNotFoundError):
            await ProgressionService(session, config).increment_stats(uuid4(), barter_trades=1)

    async def test_badge_earned_exactly_once(self, session, seed, config):
        """Crossing the target flips the badge once; later progress does not recount."""
        user = await seed.user()
        service = ProgressionService(session, config)

        results = [await service.record_barter(user.id) for _ in range(BARTER_MASTER.target + 2)]
        await session.commit()

        earned = [r for r in results if r.newly_earned]
        assert len(earned) == 1
        assert results[BARTER_MASTER.target - 1].newly_earned is True
        assert results[-1].progress == BARTER_MASTER.target + 2

        badges_earned = (
            await session.execute(select(UserAccount.badges_earned).where(UserAccount.id == user.id))
        ).scalar_one()
        assert badges_earned == 1

    async def test_legendary_purchase_tracks_two_badges(self, session, seed, config):
        user = await seed.user()
        progress = await ProgressionService(session, config).record_drop_purchase(
            user.id, 2, "legendary"
        )
        await session.commit()

        assert [p.badge_key for p in progress] == [DROPS_ROOKIE.key, "legendary_collector"]
        assert progress[0].progress == 2
        assert progress[1].newly_earned is True

        rows = (
            await session.execute(select(UserBadge).where(UserBadge.user_id == user.id))
        ).scalars().all()
        assert len(rows) == 2

    async def test_common_purchase_tracks_rookie_only(self, session, seed, config):
        user = await seed.user()
        progress = await ProgressionService(session, config).record_drop_purchase(
            user.id, 1, "common"
        )
        assert [p.badge_key for p in progress] == [DROPS_ROOKIE.key]
        assert progress[0].newly_earned is False
