"""
Weekly Leaderboard Finalize Job

Closes the oldest ended season: snapshots winners, creates prize payouts,
resets weekly points and opens the next season. Safe to run from several
hosts at once; the season's job lock lets exactly one through.

Usage:
    # After the season ends (cron: Monday 00:05 UTC)
    python -m qafala.jobs.weekly_finalize

    # Close the current week early
    python -m qafala.jobs.weekly_finalize --force

    # Pay out a shorter board
    python -m qafala.jobs.weekly_finalize --winners 3
"""

import argparse
import asyncio
import sys

from qafala.db.session import close_engines, get_write_session
from qafala.exceptions import AlreadyRunningError, EconomyError, SeasonNotEndedError
from qafala.observability import get_logger, setup_logging
from qafala.services.leaderboard import LeaderboardFinalizer

logger = get_logger(__name__)


async def run_finalize(force: bool = False, winners_limit: int | None = None) -> int:
    """Finalize once. Returns the process exit code."""
    async with get_write_session() as session:
        try:
            outcome = await LeaderboardFinalizer(session).finalize(
                force=force, winners_limit=winners_limit
            )
        except (SeasonNotEndedError, AlreadyRunningError) as exc:
            logger.info("weekly_finalize_skipped", code=exc.code, reason=str(exc))
            return 0
        except EconomyError as exc:
            logger.error("weekly_finalize_failed", code=exc.code, error=str(exc))
            return 1

    logger.info(
        "weekly_finalize_job_done",
        season_id=outcome.season_id,
        already_finalized=outcome.already_finalized,
        payouts=len(outcome.payouts),
        total_awarded_minor=outcome.total_awarded_minor,
    )
    return 0


async def _main(force: bool, winners_limit: int | None) -> int:
    try:
        return await run_finalize(force, winners_limit)
    finally:
        await close_engines()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Finalize the weekly leaderboard and create prize payouts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--force", action="store_true", help="Finalize the current season before it ends"
    )
    parser.add_argument(
        "--winners", type=int, default=None, help="Number of ranked winners (1-200)"
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(asyncio.run(_main(args.force, args.winners)))


if __name__ == "__main__":
    main()
