"""
Economy-wide invariants.

Conservation runs a mixed sequence against the in-memory database. The
race tests use an on-disk database so each worker holds its own
connection, the way separate API processes would.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from qafala.db.models import DropItem, JobLock, PurchaseLog, UserAccount, WinnerPayout
from qafala.exceptions import (
    AlreadyRunningError,
    AntiHoardingLimitError,
    InsufficientFundsError,
    OutOfStockError,
)
from qafala.models.api import ClaimMode, ExchangeDirection, PayoutStatus
from qafala.models.domain import ItemDescriptor, PurchaseIntent
from qafala.services.barter import BarterEngine
from qafala.services.drop_purchase import DropPurchaseEngine
from qafala.services.inventory import InventoryStore
from qafala.services.job_lock import JobLocks
from qafala.services.leaderboard import LeaderboardFinalizer
from qafala.services.ledger import WalletLedger
from qafala.services.rewards import RewardsService
from qafala.services.wallet import WalletService


def intent_for(user, drop, item, qty: int = 1) -> PurchaseIntent:
    return PurchaseIntent(user_id=user.id, drop_id=drop.id, drop_item_id=item.id, qty=qty)


async def give(session, user, key: str, rarity: str) -> None:
    await InventoryStore(session).add_or_increment(
        user.id,
        ItemDescriptor(
            item_key=key,
            title=key.replace("_", " ").title(),
            icon=f"{key}.png",
            rarity=rarity,
            points=0,
            kind="barter",
        ),
        1,
    )
    await session.commit()


class TestConservation:
    """Balances always equal the opening balance plus the ledger sum."""

    async def assert_conserved(self, session, user, dinar: int, usd_minor: int) -> None:
        ledger = WalletLedger(session)
        wallet = await ledger.snapshot(user.id)
        totals = await ledger.ledger_totals(user.id)
        assert wallet.dinar == dinar + totals.dinar_delta
        assert wallet.usd_minor == usd_minor + totals.usd_minor_delta
        assert wallet.points == totals.points_delta
        assert wallet.dinar >= 0
        assert wallet.usd_minor >= 0

    async def test_mixed_sequence(self, session, seed, config, fixed_now):
        await seed.barter_catalog()
        user = await seed.user(dinar=1000, usd_minor=500)
        drop, item = await seed.drop(fixed_now, stock=30, price_dinar=60, gives_points=5)
        wallet = WalletService(session, config)

        await DropPurchaseEngine(session, config).purchase(
            intent_for(user, drop, item, qty=2), now=fixed_now
        )
        await self.assert_conserved(session, user, 1000, 500)

        await wallet.topup(user.id, 250, reason="Support credit")
        await self.assert_conserved(session, user, 1000, 500)

        await wallet.exchange(user.id, ExchangeDirection.USD_TO_DINAR, 300)
        await self.assert_conserved(session, user, 1000, 500)

        with pytest.raises(InsufficientFundsError):
            await DropPurchaseEngine(session, config).purchase(
                intent_for(user, drop, item, qty=25), now=fixed_now
            )
        await self.assert_conserved(session, user, 1000, 500)

        await give(session, user, "honey_jar", "rare")
        await give(session, user, "nuts_sack", "barter")
        barter = BarterEngine(session, config)
        await barter.confirm(user.id, "honey_jar", "nuts_sack")
        used = await barter.use(user.id, "luxury_sweets_box")
        assert used.points_awarded == 36
        await self.assert_conserved(session, user, 1000, 500)

        payout = WinnerPayout(
            user_id=user.id,
            season_id="2025-W45",
            rank=1,
            amount_minor=500,
            title="Prize rank 1",
            status=PayoutStatus.AVAILABLE.value,
        )
        session.add(payout)
        await session.commit()
        session.expunge(payout)
        claimed = await RewardsService(session, config).claim(user.id, payout.id, ClaimMode.TO_GAME)
        assert claimed.dinar_credited == 100
        await self.assert_conserved(session, user, 1000, 500)

        await wallet.exchange(user.id, ExchangeDirection.DINAR_TO_USD, 100)
        await self.assert_conserved(session, user, 1000, 500)

        final = await WalletLedger(session).snapshot(user.id)
        # 1000 - 120 + 250 + 60 + 100 - 100
        assert final.dinar == 1190
        assert final.usd_minor == 500 - 300 + 500
        assert final.points == 10 + 36


class TestLastUnitScenario:
    """stock=1, price=10, one unit per user, wallet of exactly 10 dinar."""

    async def test_repeat_purchase_by_same_user(self, session, seed, config, fixed_now):
        user = await seed.user(dinar=10)
        drop, item = await seed.drop(fixed_now, stock=1, price_dinar=10, max_per_user=1)
        engine = DropPurchaseEngine(session, config)

        first = await engine.purchase(intent_for(user, drop, item), now=fixed_now)
        assert first.stock_left == 0
        assert first.wallet.dinar == 0

        with pytest.raises(OutOfStockError):
            await engine.purchase(intent_for(user, drop, item), now=fixed_now)
        assert (await WalletLedger(session).snapshot(user.id)).dinar == 0

    async def test_concurrent_purchases_by_same_user(
        self, file_session_factory, file_seed, config, fixed_now
    ):
        user = await file_seed.user(dinar=10)
        drop, item = await file_seed.drop(fixed_now, stock=1, price_dinar=10, max_per_user=1)

        async def buy():
            async with file_session_factory() as db:
                return await DropPurchaseEngine(db, config).purchase(
                    intent_for(user, drop, item), now=fixed_now
                )

        results = await asyncio.gather(buy(), buy(), return_exceptions=True)

        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert succeeded[0].stock_left == 0
        assert succeeded[0].wallet.dinar == 0
        assert isinstance(failed[0], (OutOfStockError, AntiHoardingLimitError))

        async with file_session_factory() as db:
            stock = (
                await db.execute(select(DropItem.stock).where(DropItem.id == item.id))
            ).scalar_one()
            dinar = (
                await db.execute(select(UserAccount.dinar).where(UserAccount.id == user.id))
            ).scalar_one()
            purchases = (
                await db.execute(select(func.count()).select_from(PurchaseLog))
            ).scalar_one()
        assert stock == 0
        assert dinar == 0
        assert purchases == 1


class TestLastUnitRace:
    """Two buyers on separate connections racing for one unit."""

    async def test_exactly_one_buyer_wins(
        self, file_session_factory, file_seed, config, fixed_now
    ):
        first = await file_seed.user()
        second = await file_seed.user()
        drop, item = await file_seed.drop(fixed_now, stock=1, price_dinar=50)

        async def buy(user):
            async with file_session_factory() as db:
                return await DropPurchaseEngine(db, config).purchase(
                    intent_for(user, drop, item), now=fixed_now
                )

        results = await asyncio.gather(buy(first), buy(second), return_exceptions=True)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], OutOfStockError)

        async with file_session_factory() as db:
            stock = (
                await db.execute(select(DropItem.stock).where(DropItem.id == item.id))
            ).scalar_one()
            balances = (
                await db.execute(
                    select(UserAccount.dinar).where(UserAccount.id.in_([first.id, second.id]))
                )
            ).scalars().all()
        assert stock == 0
        assert sorted(balances) == [950, 1000]


class TestConcurrentFinalize:
    """Two finalize workers against the same season."""

    async def test_only_one_worker_pays_out(
        self, file_session_factory, file_seed, config, fixed_now
    ):
        await file_seed.user(weekly_points=300)
        await file_seed.user(weekly_points=200)
        await file_seed.prize_plan(10_000, [(1, 1, 3000), (2, 2, 1000)])

        async def run():
            async with file_session_factory() as db:
                return await LeaderboardFinalizer(db, config).finalize(force=True, now=fixed_now)

        results = await asyncio.gather(run(), run(), return_exceptions=True)

        ran = [r for r in results if not isinstance(r, Exception) and not r.already_finalized]
        assert len(ran) == 1
        assert len(ran[0].payouts) == 2
        other = next(r for r in results if r is not ran[0])
        # The loser either collides on the lock or arrives after the commit
        assert isinstance(other, AlreadyRunningError) or other.already_finalized

        async with file_session_factory() as db:
            payouts = (
                await db.execute(select(func.count()).select_from(WinnerPayout))
            ).scalar_one()
            locks = (await db.execute(select(func.count()).select_from(JobLock))).scalar_one()
            weekly = (await db.execute(select(UserAccount.weekly_points))).scalars().all()
        assert payouts == 2
        assert locks == 1
        assert set(weekly) == {0}

    async def test_lock_held_by_other_worker(
        self, file_session_factory, file_seed, config, fixed_now
    ):
        await file_seed.user(weekly_points=40)

        async with file_session_factory() as holder:
            await JobLocks(holder, config).acquire(
                "weekly_finalize::2025-W46", owner="worker-a", now=fixed_now
            )
            await holder.commit()

        async with file_session_factory() as db:
            with pytest.raises(AlreadyRunningError):
                await LeaderboardFinalizer(db, config).finalize(force=True, now=fixed_now)

        async with file_session_factory() as db:
            weekly = (await db.execute(select(UserAccount.weekly_points))).scalar_one()
            payouts = (
                await db.execute(select(func.count()).select_from(WinnerPayout))
            ).scalar_one()
        assert weekly == 40
        assert payouts == 0
