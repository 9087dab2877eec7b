"""
Wallet Ledger - Guarded balance mutation with append-only ledger rows.

NO DICTIONARIES - All operations use strongly typed domain models.

Every balance change is a single conditional UPDATE on the users row
followed by exactly one wallet_transactions row in the same transaction.
Debits carry the guard in the WHERE clause, so a failed guard leaves no
partial state for any concurrent reader to observe.
"""

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.db.models import UserAccount, WalletTransaction
from qafala.exceptions import InsufficientFundsError, UserNotFoundError, WriteVerificationError
from qafala.models.api import Direction, WalletTxType
from qafala.models.domain import (
    BalanceChange,
    LedgerEntryData,
    LedgerEntrySpec,
    LedgerTotals,
    WalletSnapshot,
)
from qafala.observability import get_logger, metrics

logger = get_logger(__name__)


class WalletLedger:
    """
    Wallet mutations paired with ledger writes.

    Callers own the transaction: nothing here commits. A raised exception
    means the caller must roll back (or compensate) before continuing.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def snapshot(self, user_id: UUID) -> WalletSnapshot:
        """
        Read current balances straight from the database.

        Column select instead of session.get so the identity map can never
        serve a stale balance after a bulk UPDATE.
        """
        stmt = select(
            UserAccount.dinar,
            UserAccount.usd_minor,
            UserAccount.points,
            UserAccount.weekly_points,
            UserAccount.xp,
            UserAccount.level,
            UserAccount.xp_to_next,
        ).where(UserAccount.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise UserNotFoundError(user_id)
        return WalletSnapshot(
            dinar=row.dinar,
            usd_minor=row.usd_minor,
            points=row.points,
            weekly_points=row.weekly_points,
            xp=row.xp,
            level=row.level,
            xp_to_next=row.xp_to_next,
        )

    async def debit_dinar(
        self,
        user_id: UUID,
        amount: int,
        entry: LedgerEntrySpec,
        award_points: int = 0,
    ) -> BalanceChange:
        """
        Debit dinar only if the balance covers it.

        award_points credits points and weekly_points in the same statement,
        so a purchase's spend and its score gain are never seen apart.

        Raises:
            InsufficientFundsError: Balance below amount (nothing changed)
            UserNotFoundError: User doesn't exist
        """
        if amount <= 0:
            raise ValueError(f"Debit amount must be positive: {amount}")
        if award_points < 0:
            raise ValueError(f"Awarded points cannot be negative: {award_points}")

        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id, UserAccount.dinar >= amount)
            .values(
                dinar=UserAccount.dinar - amount,
                points=UserAccount.points + award_points,
                weekly_points=UserAccount.weekly_points + award_points,
                tx_count=UserAccount.tx_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            current = await self.snapshot(user_id)
            logger.info(
                "wallet_debit_rejected",
                user_id=str(user_id),
                balance=current.dinar,
                required=amount,
            )
            raise InsufficientFundsError(current.dinar, amount)

        return await self._append(
            user_id, entry, dinar_delta=-amount, usd_delta=0, points_delta=award_points
        )

    async def credit_dinar(
        self, user_id: UUID, amount: int, entry: LedgerEntrySpec
    ) -> BalanceChange:
        """Credit dinar. No upper guard; atomic with its ledger row."""
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive: {amount}")

        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(dinar=UserAccount.dinar + amount, tx_count=UserAccount.tx_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise UserNotFoundError(user_id)

        return await self._append(user_id, entry, dinar_delta=amount, usd_delta=0, points_delta=0)

    async def exchange_usd_to_dinar(
        self, user_id: UUID, usd_minor: int, dinar: int, entry: LedgerEntrySpec
    ) -> BalanceChange:
        """Debit usd_minor (guarded) and credit dinar in one statement."""
        if usd_minor <= 0 or dinar < 0:
            raise ValueError(f"Invalid exchange amounts: usd_minor={usd_minor}, dinar={dinar}")

        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id, UserAccount.usd_minor >= usd_minor)
            .values(
                usd_minor=UserAccount.usd_minor - usd_minor,
                dinar=UserAccount.dinar + dinar,
                tx_count=UserAccount.tx_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            current = await self.snapshot(user_id)
            raise InsufficientFundsError(current.usd_minor, usd_minor, currency="usd_minor")

        return await self._append(
            user_id, entry, dinar_delta=dinar, usd_delta=-usd_minor, points_delta=0
        )

    async def exchange_dinar_to_usd(
        self, user_id: UUID, dinar: int, usd_minor: int, entry: LedgerEntrySpec
    ) -> BalanceChange:
        """Debit dinar (guarded) and credit usd_minor in one statement."""
        if dinar <= 0 or usd_minor < 0:
            raise ValueError(f"Invalid exchange amounts: dinar={dinar}, usd_minor={usd_minor}")

        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id, UserAccount.dinar >= dinar)
            .values(
                dinar=UserAccount.dinar - dinar,
                usd_minor=UserAccount.usd_minor + usd_minor,
                tx_count=UserAccount.tx_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            current = await self.snapshot(user_id)
            raise InsufficientFundsError(current.dinar, dinar)

        return await self._append(
            user_id, entry, dinar_delta=-dinar, usd_delta=usd_minor, points_delta=0
        )

    async def award_points(
        self, user_id: UUID, points: int, entry: LedgerEntrySpec
    ) -> BalanceChange:
        """Credit points and weekly_points with a zero-amount ledger row."""
        if points < 0:
            raise ValueError(f"Awarded points cannot be negative: {points}")

        stmt = (
            update(UserAccount)
            .where(UserAccount.id == user_id)
            .values(
                points=UserAccount.points + points,
                weekly_points=UserAccount.weekly_points + points,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise UserNotFoundError(user_id)

        return await self._append(user_id, entry, dinar_delta=0, usd_delta=0, points_delta=points)

    async def history(
        self, user_id: UUID, limit: int = 50, offset: int = 0
    ) -> tuple[list[LedgerEntryData], int]:
        """Ledger rows for a user, newest first, plus the total row count."""
        count_stmt = select(func.count(WalletTransaction.id)).where(
            WalletTransaction.user_id == user_id
        )
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._entry_to_domain(row) for row in rows], total

    async def ledger_totals(self, user_id: UUID) -> LedgerTotals:
        """Sum of all ledger deltas for a user (audit / conservation check)."""
        stmt = select(
            func.coalesce(func.sum(WalletTransaction.amount_dinar), 0),
            func.coalesce(func.sum(WalletTransaction.amount_usd_minor), 0),
            func.coalesce(func.sum(WalletTransaction.points_delta), 0),
            func.count(WalletTransaction.id),
        ).where(WalletTransaction.user_id == user_id)
        dinar, usd_minor, points, count = (await self.session.execute(stmt)).one()
        return LedgerTotals(
            dinar_delta=int(dinar),
            usd_minor_delta=int(usd_minor),
            points_delta=int(points),
            entry_count=int(count),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _append(
        self,
        user_id: UUID,
        entry: LedgerEntrySpec,
        dinar_delta: int,
        usd_delta: int,
        points_delta: int,
    ) -> BalanceChange:
        """Write the ledger row for a balance change that already applied."""
        wallet = await self.snapshot(user_id)

        tx = WalletTransaction(
            user_id=user_id,
            type=entry.type.value,
            amount_dinar=dinar_delta,
            amount_usd_minor=usd_delta,
            balance_after=wallet.dinar,
            usd_balance_after=wallet.usd_minor,
            points_delta=points_delta,
            ref_kind=entry.ref_kind,
            ref_id=entry.ref_id,
            title=entry.title,
            subtitle=entry.subtitle,
            icon=entry.icon,
            direction=(entry.direction or _direction_for(dinar_delta, usd_delta)).value,
            tags=list(entry.tags),
            idempotency_key=entry.idempotency_key,
        )
        self.session.add(tx)
        await self.session.flush()

        verified = await self.session.get(WalletTransaction, tx.id)
        if verified is None:
            raise WriteVerificationError(f"Ledger row {tx.id} not found after insert")

        metrics.record_ledger_entry(entry.type.value)
        return BalanceChange(wallet=wallet, entry=self._entry_to_domain(verified))

    def _entry_to_domain(self, tx: WalletTransaction) -> LedgerEntryData:
        """Convert ORM model to domain model."""
        return LedgerEntryData(
            id=tx.id,
            user_id=tx.user_id,
            type=WalletTxType(tx.type),
            amount_dinar=tx.amount_dinar,
            amount_usd_minor=tx.amount_usd_minor,
            balance_after=tx.balance_after,
            usd_balance_after=tx.usd_balance_after,
            points_delta=tx.points_delta,
            title=tx.title,
            subtitle=tx.subtitle,
            icon=tx.icon,
            direction=Direction(tx.direction),
            ref_kind=tx.ref_kind,
            ref_id=tx.ref_id,
            tags=tuple(tx.tags or ()),
            created_at=tx.created_at,
        )


def _direction_for(dinar_delta: int, usd_delta: int) -> Direction:
    """Dinar movement decides; USD only when dinar is untouched."""
    if dinar_delta != 0:
        return Direction.IN if dinar_delta > 0 else Direction.OUT
    return Direction.OUT if usd_delta < 0 else Direction.IN
