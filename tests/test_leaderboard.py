"""
Tests for LeaderboardFinalizer, its pure helpers and JobLocks.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from qafala.db.models import JobLock, Season, UserAccount, WinnerPayout
from qafala.exceptions import AlreadyRunningError, SeasonNotEndedError
from qafala.models.api import PayoutStatus
from qafala.models.domain import PrizeTierData, WinnerSnapshot
from qafala.services.job_lock import JobLocks
from qafala.services.leaderboard import (
    MAX_WINNERS,
    LeaderboardFinalizer,
    apply_prize_plan,
    clamp_winners,
    iso_week_id,
    week_window_utc,
)


def winners(count: int) -> list[WinnerSnapshot]:
    return [
        WinnerSnapshot(user_id=uuid4(), username=f"p{rank}", points=1000 - rank, rank=rank)
        for rank in range(1, count + 1)
    ]


class TestSeasonWindow:
    """Tests for ISO week math."""

    def test_week_id(self, fixed_now):
        assert iso_week_id(fixed_now) == "2025-W46"

    def test_week_id_at_year_boundary(self):
        """Dec 29 2025 is already in ISO week 1 of 2026."""
        assert iso_week_id(datetime(2025, 12, 29, tzinfo=UTC)) == "2026-W01"

    def test_window_starts_monday_midnight(self, fixed_now):
        start, end = week_window_utc(fixed_now)
        assert start == datetime(2025, 11, 10, tzinfo=UTC)
        assert end == datetime(2025, 11, 17, tzinfo=UTC)

    def test_naive_moment_treated_as_utc(self):
        start, _ = week_window_utc(datetime(2025, 11, 16, 23, 59))
        assert start == datetime(2025, 11, 10, tzinfo=UTC)


class TestApplyPrizePlan:
    """Tests for tier walking under the weekly cap."""

    def test_tiers_paid_in_rank_order(self):
        tiers = [PrizeTierData(1, 1, 3000), PrizeTierData(2, 3, 1000)]
        awards = apply_prize_plan(winners(5), tiers, cap_minor=100_000)
        assert [(a.rank, a.amount_minor) for a in awards] == [(1, 3000), (2, 1000), (3, 1000)]

    def test_cap_below_first_prize_pays_nobody(self):
        """A 5000 first prize under a 4000 cap stops the walk at rank 1."""
        tiers = [PrizeTierData(1, 1, 5000), PrizeTierData(2, 10, 100)]
        assert apply_prize_plan(winners(5), tiers, cap_minor=4000) == []

    def test_cap_stops_lower_ranks(self):
        tiers = [PrizeTierData(1, 1, 3000), PrizeTierData(2, 3, 1000)]
        awards = apply_prize_plan(winners(3), tiers, cap_minor=4500)
        assert [a.rank for a in awards] == [1, 2]

    def test_zero_and_missing_tiers_skipped(self):
        """Ranks without a prize do not stop the walk."""
        tiers = [PrizeTierData(1, 1, 0), PrizeTierData(3, 3, 500)]
        awards = apply_prize_plan(winners(4), tiers, cap_minor=1000)
        assert [(a.rank, a.amount_minor) for a in awards] == [(3, 500)]

    @pytest.mark.parametrize("limit,expected", [(0, 1), (-5, 1), (10, 10), (10_000, MAX_WINNERS)])
    def test_clamp_winners(self, limit, expected):
        assert clamp_winners(limit) == expected


class TestFinalize:
    """Tests for weekly finalize."""

    async def test_open_season_requires_force(self, session, seed, config, fixed_now):
        await seed.user(weekly_points=10)
        with pytest.raises(SeasonNotEndedError) as exc_info:
            await LeaderboardFinalizer(session, config).finalize(now=fixed_now)
        assert exc_info.value.season_id == "2025-W46"

    async def test_forced_finalize_pays_resets_and_opens_next(
        self, session, seed, config, fixed_now
    ):
        first = await seed.user(weekly_points=300)
        second = await seed.user(weekly_points=200)
        third = await seed.user(weekly_points=100)
        await seed.prize_plan(10_000, [(1, 1, 3000), (2, 3, 1000)])

        outcome = await LeaderboardFinalizer(session, config).finalize(
            force=True, winners_limit=3, now=fixed_now
        )

        assert outcome.season_id == "2025-W46"
        assert outcome.already_finalized is False
        assert [w.user_id for w in outcome.winners] == [first.id, second.id, third.id]
        assert [p.amount_minor for p in outcome.payouts] == [3000, 1000, 1000]
        assert all(p.status == PayoutStatus.AVAILABLE for p in outcome.payouts)
        assert outcome.total_awarded_minor == 5000
        assert outcome.next_season_id == "2025-W47"

        weekly = (await session.execute(select(UserAccount.weekly_points))).scalars().all()
        assert set(weekly) == {0}
        lifetime = (
            await session.execute(select(UserAccount.points).where(UserAccount.id == first.id))
        ).scalar_one()
        assert lifetime == 300

        season = (
            await session.execute(
                select(Season)
                .where(Season.season_id == "2025-W46")
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert season.finalized is True
        assert [doc["rank"] for doc in season.winners] == [1, 2, 3]

        upcoming = await LeaderboardFinalizer(session, config).current_season(
            fixed_now + timedelta(days=7)
        )
        assert upcoming.season_id == "2025-W47"
        assert upcoming.finalized is False

    async def test_cap_below_first_prize_creates_no_payouts(
        self, session, seed, config, fixed_now
    ):
        await seed.user(weekly_points=500)
        await seed.prize_plan(4000, [(1, 1, 5000)])

        outcome = await LeaderboardFinalizer(session, config).finalize(force=True, now=fixed_now)

        assert outcome.payouts == ()
        assert outcome.total_awarded_minor == 0
        count = len((await session.execute(select(WinnerPayout.id))).scalars().all())
        assert count == 0

    async def test_second_run_reports_already_finalized(self, session, seed, config, fixed_now):
        """Finalize is idempotent per season."""
        await seed.user(weekly_points=50)
        await seed.prize_plan(10_000, [(1, 1, 2000)])
        finalizer = LeaderboardFinalizer(session, config)

        first = await finalizer.finalize(force=True, now=fixed_now)
        again = await finalizer.finalize(force=True, now=fixed_now)

        assert again.already_finalized is True
        assert again.season_id == first.season_id
        assert [p.id for p in again.payouts] == [p.id for p in first.payouts]
        assert again.next_season_id is None

        count = len((await session.execute(select(WinnerPayout.id))).scalars().all())
        assert count == 1

    async def test_ended_season_finalized_without_force(self, session, seed, config, fixed_now):
        """The oldest overdue season is picked before the current week."""
        start, end = week_window_utc(fixed_now - timedelta(days=7))
        session.add(Season(season_id="2025-W45", start_at=start, end_at=end, winners=[]))
        await session.commit()
        await seed.user(weekly_points=10)

        outcome = await LeaderboardFinalizer(session, config).finalize(now=fixed_now)

        assert outcome.season_id == "2025-W45"
        assert outcome.next_season_id == "2025-W46"

    async def test_held_lock_reports_already_running(self, session, seed, config, fixed_now):
        await seed.user(weekly_points=10)
        session.add(
            JobLock(
                key="weekly_finalize::2025-W46",
                owner="other-runner",
                acquired_at=fixed_now,
                expires_at=fixed_now + timedelta(hours=1),
            )
        )
        await session.commit()

        with pytest.raises(AlreadyRunningError) as exc_info:
            await LeaderboardFinalizer(session, config).finalize(force=True, now=fixed_now)
        assert exc_info.value.code == "ALREADY_RUNNING"

        weekly = (await session.execute(select(UserAccount.weekly_points))).scalar_one()
        assert weekly == 10


class TestStandings:
    """Tests for the live board."""

    async def test_ordered_by_weekly_points(self, session, seed, config):
        low = await seed.user(weekly_points=5)
        high = await seed.user(weekly_points=50)
        board = await LeaderboardFinalizer(session, config).standings()
        assert [e.user_id for e in board] == [high.id, low.id]
        assert [e.rank for e in board] == [1, 2]

    async def test_current_season_synthesized_without_write(self, session, config, fixed_now):
        season = await LeaderboardFinalizer(session, config).current_season(fixed_now)
        assert season.season_id == "2025-W46"
        assert season.finalized is False
        stored = (await session.execute(select(Season.id))).scalars().all()
        assert stored == []


class TestJobLocks:
    """Tests for lock acquisition."""

    async def test_second_acquire_fails(self, session, config, fixed_now):
        locks = JobLocks(session, config)
        await locks.acquire("nightly", owner="a", now=fixed_now)
        await session.commit()

        with pytest.raises(AlreadyRunningError):
            await locks.acquire("nightly", owner="b", now=fixed_now)

    async def test_expired_lock_is_replaced(self, session, config, fixed_now):
        locks = JobLocks(session, config)
        await locks.acquire("nightly", owner="a", now=fixed_now)
        await session.commit()

        later = fixed_now + timedelta(seconds=config.job_lock_ttl_seconds)
        await locks.acquire("nightly", owner="b", now=later)
        await session.commit()

        owners = (await session.execute(select(JobLock.owner))).scalars().all()
        assert owners == ["b"]
