"""
Leaderboard Finalizer - Weekly season close-out and prize payouts.

NO DICTIONARIES - Winners, tiers and payouts are typed domain models; the
winners list is converted to documents only when frozen into the season.

Seasons are ISO weeks (Monday 00:00 UTC to the next Monday). Finalizing a
season snapshots the ranking, pays the active prize plan under its weekly
cap, resets everyone's weekly points and opens the next season. The lock,
the snapshot, the payouts, the reset and the next season share a single
transaction.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import PrizePlan, Season, UserAccount, WinnerPayout, ensure_utc, utc_now
from qafala.db.upsert import upsert_insert
from qafala.exceptions import (
    AlreadyRunningError,
    EconomyError,
    SeasonNotEndedError,
    WriteVerificationError,
)
from qafala.models.api import ClaimMode, PayoutStatus
from qafala.models.domain import (
    FinalizeOutcome,
    PayoutAward,
    PayoutData,
    PrizeTierData,
    SeasonData,
    StandingEntry,
    WinnerSnapshot,
)
from qafala.observability import get_logger, metrics
from qafala.observability.tracing import trace_operation
from qafala.services.job_lock import JobLocks

logger = get_logger(__name__)

SEASON_LENGTH = timedelta(days=7)
MAX_WINNERS = 200


# ============================================================================
# Pure Helpers
# ============================================================================


def iso_week_id(moment: datetime) -> str:
    """ISO week-numbering id of the UTC date, e.g. "2025-W46"."""
    year, week, _ = ensure_utc(moment).date().isocalendar()
    return f"{year}-W{week:02d}"


def week_window_utc(moment: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 UTC of the moment's week, and seven days later."""
    moment = ensure_utc(moment)
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(
        days=moment.weekday()
    )
    return start, start + SEASON_LENGTH


def apply_prize_plan(
    winners: Sequence[WinnerSnapshot], tiers: Sequence[PrizeTierData], cap_minor: int
) -> list[PayoutAward]:
    """
    Walk winners in rank order and grant each its tier amount.

    Ranks with no tier (or a zero tier) are skipped. The first award that
    would take the running total past the cap stops the walk entirely, so
    no lower rank is paid either.
    """
    awards: list[PayoutAward] = []
    spent = 0
    for winner in sorted(winners, key=lambda w: w.rank):
        tier = next((t for t in tiers if t.contains(winner.rank)), None)
        if tier is None or tier.amount_minor == 0:
            continue
        if spent + tier.amount_minor > cap_minor:
            break
        spent += tier.amount_minor
        awards.append(
            PayoutAward(user_id=winner.user_id, rank=winner.rank, amount_minor=tier.amount_minor)
        )
    return awards


def clamp_winners(limit: int) -> int:
    return min(MAX_WINNERS, max(1, limit))


class LeaderboardFinalizer:
    """Weekly standings and finalization."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings
        self.locks = JobLocks(session, self.config)

    async def finalize(
        self,
        force: bool = False,
        winners_limit: int | None = None,
        now: datetime | None = None,
    ) -> FinalizeOutcome:
        """
        Finalize the oldest ended season, or the current week when forced.

        A season that is already finalized is reported, not re-run.

        Raises:
            SeasonNotEndedError: Current season still open and force not set
            AlreadyRunningError: Another finalize holds the season's lock
        """
        now = now or utc_now()
        limit = clamp_winners(winners_limit or self.config.leaderboard_winners)

        with trace_operation("weekly_finalize", force=force, winners_limit=limit):
            try:
                outcome = await self._finalize(force, limit, now)
            except EconomyError as exc:
                await self.session.rollback()
                metrics.record_finalize(exc.code)
                raise
            except Exception:
                await self.session.rollback()
                metrics.record_finalize("error")
                raise

        if outcome.already_finalized:
            metrics.record_finalize("already_finalized")
        else:
            metrics.record_finalize("ok", [p.amount_minor for p in outcome.payouts])
        return outcome

    async def standings(self, limit: int = 50) -> list[StandingEntry]:
        """Current weekly board, highest weekly_points first."""
        stmt = (
            select(UserAccount.id, UserAccount.username, UserAccount.weekly_points)
            .order_by(UserAccount.weekly_points.desc(), UserAccount.id.asc())
            .limit(clamp_winners(limit))
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            StandingEntry(
                rank=index, user_id=row.id, username=row.username, weekly_points=row.weekly_points
            )
            for index, row in enumerate(rows, start=1)
        ]

    async def current_season(self, now: datetime | None = None) -> SeasonData:
        """The season covering now; synthesized from the week window when not stored yet."""
        now = now or utc_now()
        season_id = iso_week_id(now)
        season = await self._get_season(season_id)
        if season is not None:
            return self._season_to_domain(season)
        start, end = week_window_utc(now)
        return SeasonData(season_id=season_id, start_at=start, end_at=end, finalized=False)

    # ========================================================================
    # Finalize Steps
    # ========================================================================

    async def _finalize(self, force: bool, limit: int, now: datetime) -> FinalizeOutcome:
        season = await self._target_season(now)

        if season.finalized:
            await self.session.commit()
            logger.info("weekly_finalize_already_done", season_id=season.season_id)
            return await self._already_finalized(season)

        if ensure_utc(season.end_at) > now and not force:
            end_at = ensure_utc(season.end_at)
            await self.session.commit()
            raise SeasonNotEndedError(season.season_id, end_at)

        lock_key = f"weekly_finalize::{season.season_id}"
        await self.locks.acquire(lock_key, owner="leaderboard_finalizer", now=now)
        logger.info("weekly_finalize_locked", season_id=season.season_id, lock_key=lock_key)

        winners = await self._rank(limit)
        await self._freeze_winners(season, winners, lock_key, now)

        payouts, total = await self._create_payouts(season.season_id, winners)

        reset = await self.session.execute(
            update(UserAccount)
            .where(UserAccount.weekly_points != 0)
            .values(weekly_points=0)
            .execution_options(synchronize_session=False)
        )

        next_season_id = await self._open_next_season(ensure_utc(season.end_at))

        await self.session.commit()

        logger.info(
            "weekly_finalize_completed",
            season_id=season.season_id,
            winners=len(winners),
            payouts=len(payouts),
            total_awarded_minor=total,
            users_reset=reset.rowcount,
            next_season_id=next_season_id,
            forced=force,
        )
        return FinalizeOutcome(
            season_id=season.season_id,
            already_finalized=False,
            winners=tuple(winners),
            payouts=tuple(payouts),
            total_awarded_minor=total,
            next_season_id=next_season_id,
        )

    async def _target_season(self, now: datetime) -> Season:
        """Oldest ended unfinalized season, else the current week's (created if absent)."""
        stmt = (
            select(Season)
            .where(Season.finalized.is_(False), Season.end_at <= now)
            .order_by(Season.end_at)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        overdue = (await self.session.execute(stmt)).scalar_one_or_none()
        if overdue is not None:
            return overdue

        start, end = week_window_utc(now)
        season_id = iso_week_id(now)
        await self._upsert_season(season_id, start, end)
        season = await self._get_season(season_id)
        if season is None:
            raise WriteVerificationError(f"Season {season_id} missing after upsert")
        return season

    async def _rank(self, limit: int) -> list[WinnerSnapshot]:
        stmt = (
            select(UserAccount.id, UserAccount.username, UserAccount.weekly_points)
            .order_by(UserAccount.weekly_points.desc(), UserAccount.id.asc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            WinnerSnapshot(user_id=row.id, username=row.username, points=row.weekly_points, rank=index)
            for index, row in enumerate(rows, start=1)
        ]

    async def _freeze_winners(
        self, season: Season, winners: list[WinnerSnapshot], lock_key: str, now: datetime
    ) -> None:
        """Flip finalized false -> true with the winners snapshot."""
        stmt = (
            update(Season)
            .where(Season.id == season.id, Season.finalized.is_(False))
            .values(
                finalized=True,
                finalized_at=now,
                winners=[w.to_document() for w in winners],
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise AlreadyRunningError(lock_key)

    async def _create_payouts(
        self, season_id: str, winners: list[WinnerSnapshot]
    ) -> tuple[list[PayoutData], int]:
        plan_stmt = (
            select(PrizePlan)
            .where(PrizePlan.is_active.is_(True))
            .order_by(PrizePlan.created_at.desc())
            .limit(1)
        )
        plan = (await self.session.execute(plan_stmt)).scalar_one_or_none()
        if plan is None:
            logger.info("weekly_finalize_no_prize_plan", season_id=season_id)
            return [], 0

        tiers = [
            PrizeTierData(min_rank=t.min_rank, max_rank=t.max_rank, amount_minor=t.amount_minor)
            for t in plan.tiers
        ]
        awards = apply_prize_plan(winners, tiers, plan.weekly_cap_minor)

        rows = [
            WinnerPayout(
                user_id=award.user_id,
                season_id=season_id,
                rank=award.rank,
                amount_minor=award.amount_minor,
                currency=plan.currency,
                title=f"Prize rank {award.rank}",
                status=PayoutStatus.AVAILABLE.value,
            )
            for award in awards
        ]
        self.session.add_all(rows)
        await self.session.flush()

        count_stmt = select(func.count(WinnerPayout.id)).where(WinnerPayout.season_id == season_id)
        persisted = (await self.session.execute(count_stmt)).scalar_one()
        if persisted != len(rows):
            raise WriteVerificationError(
                f"Expected {len(rows)} payouts for {season_id}, found {persisted}"
            )

        total = sum(award.amount_minor for award in awards)
        if len(awards) < len(winners):
            logger.info(
                "weekly_finalize_cap_applied",
                season_id=season_id,
                cap_minor=plan.weekly_cap_minor,
                paid=len(awards),
                winners=len(winners),
            )
        return [payout_to_domain(row) for row in rows], total

    async def _open_next_season(self, start: datetime) -> str:
        season_id = iso_week_id(start)
        await self._upsert_season(season_id, start, start + SEASON_LENGTH)
        return season_id

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _upsert_season(self, season_id: str, start: datetime, end: datetime) -> None:
        stmt = upsert_insert(self.session, Season).values(
            season_id=season_id, start_at=start, end_at=end, finalized=False, winners=[]
        )
        await self.session.execute(stmt.on_conflict_do_nothing(index_elements=[Season.season_id]))

    async def _get_season(self, season_id: str) -> Season | None:
        stmt = (
            select(Season)
            .where(Season.season_id == season_id)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _already_finalized(self, season: Season) -> FinalizeOutcome:
        stmt = (
            select(WinnerPayout)
            .where(WinnerPayout.season_id == season.season_id)
            .order_by(WinnerPayout.rank)
        )
        payouts = [payout_to_domain(row) for row in (await self.session.execute(stmt)).scalars()]
        return FinalizeOutcome(
            season_id=season.season_id,
            already_finalized=True,
            winners=tuple(WinnerSnapshot.from_document(doc) for doc in season.winners or []),
            payouts=tuple(payouts),
            total_awarded_minor=sum(p.amount_minor for p in payouts),
            next_season_id=None,
        )

    def _season_to_domain(self, season: Season) -> SeasonData:
        return SeasonData(
            season_id=season.season_id,
            start_at=ensure_utc(season.start_at),
            end_at=ensure_utc(season.end_at),
            finalized=season.finalized,
            winners=tuple(WinnerSnapshot.from_document(doc) for doc in season.winners or []),
        )


def payout_to_domain(row: WinnerPayout) -> PayoutData:
    """Convert ORM model to domain model."""
    return PayoutData(
        id=row.id,
        user_id=row.user_id,
        season_id=row.season_id,
        rank=row.rank,
        amount_minor=row.amount_minor,
        currency=row.currency,
        title=row.title,
        status=PayoutStatus(row.status),
        claim_mode=ClaimMode(row.claim_mode) if row.claim_mode else None,
        claimed_at=row.claimed_at,
        created_at=row.created_at,
    )
