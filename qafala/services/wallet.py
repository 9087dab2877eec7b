"""
Wallet Service - Balances, ledger history, currency exchange and top-ups.

Thin orchestration over WalletLedger: this layer owns the transaction
boundary (commit on success, rollback on failure) and idempotent replay
of admin top-ups.
"""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.exceptions import EconomyError
from qafala.models.api import ExchangeDirection, WalletTxType
from qafala.models.domain import (
    ExchangeResult,
    LedgerEntryData,
    LedgerEntrySpec,
    TopupResult,
    WalletSnapshot,
)
from qafala.observability import get_logger
from qafala.services.idempotency import IdempotencyGuard
from qafala.services.ledger import WalletLedger

logger = get_logger(__name__)

TOPUP_ENDPOINT = "topup"


def usd_minor_to_dinar(usd_minor: int, dinar_per_usd: int) -> int:
    """Cents to dinar at the configured rate."""
    return round(usd_minor / 100 * dinar_per_usd)


def dinar_to_usd_minor(dinar: int, dinar_per_usd: int) -> int:
    """Dinar to cents at the configured rate."""
    return round(dinar / dinar_per_usd * 100)


class WalletService:
    """User-facing wallet operations."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings
        self.ledger = WalletLedger(session)
        self.idempotency = IdempotencyGuard(session, self.config)

    async def snapshot(self, user_id: UUID) -> WalletSnapshot:
        return await self.ledger.snapshot(user_id)

    async def history(
        self, user_id: UUID, limit: int = 50, offset: int = 0
    ) -> tuple[list[LedgerEntryData], int]:
        return await self.ledger.history(user_id, limit=limit, offset=offset)

    async def exchange(
        self, user_id: UUID, direction: ExchangeDirection, amount: int
    ) -> ExchangeResult:
        """
        Convert amount of the source currency into the other one.

        Raises:
            InsufficientFundsError: Source balance below amount
        """
        rate = self.config.dinar_per_usd
        try:
            if direction == ExchangeDirection.USD_TO_DINAR:
                credited = usd_minor_to_dinar(amount, rate)
                change = await self.ledger.exchange_usd_to_dinar(
                    user_id,
                    amount,
                    credited,
                    LedgerEntrySpec(
                        type=WalletTxType.EXCHANGE_IN,
                        title="Currency exchange",
                        subtitle=f"{amount / 100:.2f} USD to {credited} dinar",
                        icon="exchange",
                        ref_kind="exchange",
                        tags=("exchange", direction.value),
                    ),
                )
            else:
                credited = dinar_to_usd_minor(amount, rate)
                change = await self.ledger.exchange_dinar_to_usd(
                    user_id,
                    amount,
                    credited,
                    LedgerEntrySpec(
                        type=WalletTxType.EXCHANGE_OUT,
                        title="Currency exchange",
                        subtitle=f"{amount} dinar to {credited / 100:.2f} USD",
                        icon="exchange",
                        ref_kind="exchange",
                        tags=("exchange", direction.value),
                    ),
                )
            await self.session.commit()
        except EconomyError:
            await self.session.rollback()
            raise

        logger.info(
            "wallet_exchanged",
            user_id=str(user_id),
            direction=direction.value,
            debited=amount,
            credited=credited,
            rate=rate,
        )
        return ExchangeResult(
            direction=direction,
            debited=amount,
            credited=credited,
            dinar_per_usd=rate,
            wallet=change.wallet,
        )

    async def topup(
        self,
        user_id: UUID,
        amount_dinar: int,
        idempotency_key: str | None = None,
        reason: str | None = None,
    ) -> TopupResult:
        """
        Credit dinar on behalf of an operator.

        Raises:
            UserNotFoundError: No such user
            IdempotentReplayError: Key reused while the original is in flight
        """
        claim = None
        if idempotency_key:
            claim = await self.idempotency.claim(user_id, idempotency_key, TOPUP_ENDPOINT)
            if not claim.fresh:
                document = claim.replay_document(TOPUP_ENDPOINT)
                return TopupResult(
                    transaction_id=UUID(document["transaction_id"]),
                    wallet=WalletSnapshot.from_document(document["wallet"]),
                    replay=True,
                )

        entry = LedgerEntrySpec(
            type=WalletTxType.TOPUP,
            title="Top-up",
            subtitle=reason,
            icon="wallet",
            ref_kind="admin",
            tags=("topup",),
            idempotency_key=idempotency_key,
        )
        try:
            change = await self.ledger.credit_dinar(user_id, amount_dinar, entry)
            if claim is not None:
                await self.idempotency.complete(
                    claim,
                    "wallet_tx",
                    str(change.entry.id),
                    {
                        "transaction_id": str(change.entry.id),
                        "wallet": change.wallet.to_document(),
                    },
                )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "wallet_topped_up",
            user_id=str(user_id),
            amount_dinar=amount_dinar,
            transaction_id=str(change.entry.id),
        )
        return TopupResult(transaction_id=change.entry.id, wallet=change.wallet)
