"""
Tests for the weekly finalize job entry point.
"""

from contextlib import asynccontextmanager

import pytest
from sqlalchemy import select

from qafala.db.models import Season
from qafala.jobs import weekly_finalize
from qafala.jobs.weekly_finalize import run_finalize


@pytest.fixture
def job_session(session, monkeypatch):
    """Point the job at the test session."""

    @asynccontextmanager
    async def test_write_session():
        yield session

    monkeypatch.setattr(weekly_finalize, "get_write_session", test_write_session)
    return session


class TestRunFinalize:
    """Exit codes for cron."""

    async def test_forced_run_finalizes(self, job_session, seed):
        await seed.user(weekly_points=20)

        assert await run_finalize(force=True) == 0

        finalized = (
            await job_session.execute(select(Season.season_id).where(Season.finalized.is_(True)))
        ).scalars().all()
        assert len(finalized) == 1

    async def test_open_season_is_a_clean_skip(self, job_session, seed):
        await seed.user(weekly_points=20)
        assert await run_finalize() == 0

        finalized = (
            await job_session.execute(select(Season.id).where(Season.finalized.is_(True)))
        ).scalars().all()
        assert finalized == []
