"""
Drop Purchase Engine - Buying limited-stock drop items.

NO DICTIONARIES - Intents and results are strongly typed domain models.

Preconditions run in a fixed order (idempotency, drop window, stock, caps,
funds) so a caller always sees the first failing check. Execution then
re-checks stock and funds inside guarded UPDATEs, which is what actually
serializes concurrent buyers of the last unit.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import CatalogItem, Drop, DropItem, PurchaseLog, ensure_utc, utc_now
from qafala.exceptions import (
    AntiHoardingLimitError,
    DropUnavailableError,
    EconomyError,
    InsufficientFundsError,
    OutOfStockError,
    WriteVerificationError,
)
from qafala.models.api import WalletTxType
from qafala.models.domain import (
    InventoryDelta,
    ItemDescriptor,
    LedgerEntrySpec,
    PurchaseIntent,
    PurchaseLimits,
    PurchaseResult,
)
from qafala.observability import get_logger, metrics
from qafala.observability.metrics import track_operation
from qafala.observability.tracing import trace_operation
from qafala.services.idempotency import IdempotencyClaim, IdempotencyGuard
from qafala.services.inventory import InventoryStore
from qafala.services.ledger import WalletLedger
from qafala.services.progression import ProgressionService

logger = get_logger(__name__)

PURCHASE_ENDPOINT = "drop_purchase"


class DropPurchaseEngine:
    """Executes drop purchases against stock, wallet, inventory and progression."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings
        self.ledger = WalletLedger(session)
        self.inventory = InventoryStore(session)
        self.progression = ProgressionService(session, self.config)
        self.idempotency = IdempotencyGuard(session, self.config)

    async def purchase(self, intent: PurchaseIntent, now: datetime | None = None) -> PurchaseResult:
        """
        Buy intent.qty units of a drop item.

        Raises:
            IdempotentReplayError: Key reused while the original is in flight
            DropUnavailableError: Drop closed, inactive, or item not in drop
            OutOfStockError: Stock below qty (also on a lost race)
            AntiHoardingLimitError: A per-user cap would be exceeded
            InsufficientFundsError: Dinar balance below price * qty
        """
        now = now or utc_now()
        timer = track_operation()
        outcome = "error"
        cost = 0
        try:
            with timer, trace_operation(
                "drop_purchase",
                user_id=str(intent.user_id),
                drop_item_id=str(intent.drop_item_id),
                qty=intent.qty,
            ):
                result, cost = await self._execute(intent, now)
            outcome = "replay" if result.replay else "ok"
            return result
        except EconomyError as exc:
            outcome = exc.code
            raise
        finally:
            metrics.record_purchase(outcome, cost, timer.duration)

    # ========================================================================
    # Execution
    # ========================================================================

    async def _execute(self, intent: PurchaseIntent, now: datetime) -> tuple[PurchaseResult, int]:
        claim: IdempotencyClaim | None = None
        if intent.idempotency_key:
            claim = await self.idempotency.claim(
                intent.user_id, intent.idempotency_key, PURCHASE_ENDPOINT, now
            )
            if not claim.fresh:
                document = claim.replay_document(PURCHASE_ENDPOINT)
                logger.info(
                    "drop_purchase_replayed",
                    user_id=str(intent.user_id),
                    idempotency_key=intent.idempotency_key,
                )
                return PurchaseResult.from_document(document, replay=True), 0
            if not self.config.use_transactions:
                await self.session.commit()

        try:
            return await self._buy(intent, claim, now)
        except Exception:
            await self._abandon(claim)
            raise

    async def _buy(
        self, intent: PurchaseIntent, claim: IdempotencyClaim | None, now: datetime
    ) -> tuple[PurchaseResult, int]:
        item = await self._load_open_item(intent, now)

        if item.stock < intent.qty:
            raise OutOfStockError(item.id, intent.qty, item.stock)

        bought_this_item = await self._check_caps(intent, item, now)

        cost = item.price_dinar * intent.qty
        wallet = await self.ledger.snapshot(intent.user_id)
        if wallet.dinar < cost:
            raise InsufficientFundsError(wallet.dinar, cost)

        # Barter ingredients carry no score; they are worth something once traded
        points_gained = 0 if item.is_barter else item.gives_points * intent.qty
        xp_gained = 0 if item.is_barter else item.gives_xp * intent.qty
        purchase_id = uuid4()
        entry = LedgerEntrySpec(
            type=WalletTxType.SPEND,
            title="Drop purchase",
            subtitle=f"{item.title} x{intent.qty}",
            icon=item.icon,
            ref_kind="order",
            ref_id=str(purchase_id),
            tags=("drop", item.rarity),
            idempotency_key=intent.idempotency_key,
        )

        async with self._stock_held(item, intent.qty):
            if cost > 0:
                await self.ledger.debit_dinar(
                    intent.user_id, cost, entry, award_points=points_gained
                )
            else:
                await self.ledger.award_points(intent.user_id, points_gained, entry)

            await self.progression.award_xp(intent.user_id, xp_gained)

            descriptor = await self._descriptor_for(item)
            stack = await self.inventory.add_or_increment(intent.user_id, descriptor, intent.qty)

            log = PurchaseLog(
                id=purchase_id,
                user_id=intent.user_id,
                drop_id=item.drop_id,
                drop_item_id=item.id,
                qty=intent.qty,
                cost_dinar=cost,
                points_gained=points_gained,
                xp_gained=xp_gained,
                idempotency_key=intent.idempotency_key,
                created_at=now,
            )
            self.session.add(log)
            await self.session.flush()

            verified = await self.session.get(PurchaseLog, purchase_id)
            if verified is None:
                raise WriteVerificationError(f"Purchase log {purchase_id} not found after insert")

            await self.progression.increment_stats(
                intent.user_id, drops_participated=1, items_purchased=intent.qty
            )
            await self.progression.record_drop_purchase(intent.user_id, intent.qty, item.rarity)

            result = PurchaseResult(
                purchase_id=purchase_id,
                wallet=await self.ledger.snapshot(intent.user_id),
                inventory_delta=InventoryDelta(
                    item_key=stack.item_key,
                    title=stack.title,
                    icon=stack.icon,
                    rarity=stack.rarity,
                    qty_added=intent.qty,
                    qty_total=stack.qty,
                ),
                stock_left=await self._current_stock(item.id),
                limits=PurchaseLimits(
                    bought_this_item=bought_this_item + intent.qty,
                    max_per_user=item.max_per_user,
                ),
            )

            if claim is not None:
                await self.idempotency.complete(claim, "order", str(purchase_id), result.to_document())

            await self.session.commit()

            logger.info(
                "drop_purchase_completed",
                user_id=str(intent.user_id),
                purchase_id=str(purchase_id),
                drop_item_id=str(item.id),
                qty=intent.qty,
                cost_dinar=cost,
                points_gained=points_gained,
                stock_left=result.stock_left,
            )
            return result, cost

    # ========================================================================
    # Preconditions
    # ========================================================================

    async def _load_open_item(self, intent: PurchaseIntent, now: datetime) -> DropItem:
        """The drop item, provided its drop is active and inside its window."""
        stmt = (
            select(DropItem, Drop)
            .join(Drop, Drop.id == DropItem.drop_id)
            .where(DropItem.id == intent.drop_item_id, DropItem.drop_id == intent.drop_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise DropUnavailableError(intent.drop_id, intent.drop_item_id)

        item, drop = row
        if not drop.is_active:
            raise DropUnavailableError(intent.drop_id, intent.drop_item_id)
        if not ensure_utc(drop.starts_at) <= now < ensure_utc(drop.ends_at):
            raise DropUnavailableError(intent.drop_id, intent.drop_item_id)
        return item

    async def _check_caps(self, intent: PurchaseIntent, item: DropItem, now: datetime) -> int:
        """
        Enforce per-user caps. Returns units of this item already bought.

        Caps are checked in order: the item's own max_per_user, the per-drop
        total, then the per-item purchase window.
        """
        bought_this_item = await self._units_bought(intent.user_id, PurchaseLog.drop_item_id == item.id)

        if item.max_per_user is not None and bought_this_item + intent.qty > item.max_per_user:
            raise AntiHoardingLimitError("max_per_user", item.max_per_user, bought_this_item)

        per_drop = self.config.per_drop_per_user
        if per_drop > 0:
            bought_in_drop = await self._units_bought(
                intent.user_id, PurchaseLog.drop_id == item.drop_id
            )
            if bought_in_drop + intent.qty > per_drop:
                raise AntiHoardingLimitError("per_drop_per_user", per_drop, bought_in_drop)

        window = self.config.per_item_window_seconds
        if window > 0:
            last_stmt = select(func.max(PurchaseLog.created_at)).where(
                PurchaseLog.user_id == intent.user_id, PurchaseLog.drop_item_id == item.id
            )
            last = (await self.session.execute(last_stmt)).scalar_one_or_none()
            if last is not None and now - ensure_utc(last) < timedelta(seconds=window):
                raise AntiHoardingLimitError("per_item_window_seconds", window, 1)

        return bought_this_item

    async def _units_bought(self, user_id: UUID, condition: ColumnElement[bool]) -> int:
        stmt = select(func.coalesce(func.sum(PurchaseLog.qty), 0)).where(
            PurchaseLog.user_id == user_id, condition
        )
        return int((await self.session.execute(stmt)).scalar_one())

    # ========================================================================
    # Stock
    # ========================================================================

    async def _take_stock(self, item: DropItem, qty: int) -> None:
        """Guarded decrement; a concurrent buyer may have taken the units."""
        stmt = (
            update(DropItem)
            .where(DropItem.id == item.id, DropItem.stock >= qty)
            .values(stock=DropItem.stock - qty)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            available = await self._current_stock(item.id)
            logger.info(
                "drop_stock_race_lost",
                drop_item_id=str(item.id),
                requested=qty,
                available=available,
            )
            raise OutOfStockError(item.id, qty, available)

    @asynccontextmanager
    async def _stock_held(self, item: DropItem, qty: int) -> AsyncIterator[None]:
        """
        Take stock for the enclosed steps.

        Without transactions the decrement is committed on its own, so any
        failure in the enclosed steps hands the units back.
        """
        item_id = item.id
        await self._take_stock(item, qty)
        if self.config.use_transactions:
            yield
            return

        await self.session.commit()
        try:
            yield
        except Exception:
            await self._restore_stock(item_id, qty)
            raise

    async def _restore_stock(self, drop_item_id: UUID, qty: int) -> None:
        """Compensate an already committed stock decrement."""
        await self.session.rollback()
        await self.session.execute(
            update(DropItem)
            .where(DropItem.id == drop_item_id)
            .values(stock=DropItem.stock + qty)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        metrics.stock_compensations_total.inc()
        logger.warning("drop_stock_restored", drop_item_id=str(drop_item_id), qty=qty)

    async def _current_stock(self, drop_item_id: UUID) -> int:
        stmt = select(DropItem.stock).where(DropItem.id == drop_item_id)
        return int((await self.session.execute(stmt)).scalar_one())

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _descriptor_for(self, item: DropItem) -> ItemDescriptor:
        """
        Inventory identity of a drop item.

        Barter ingredients stack under their catalog key so the barter
        engine can find them; everything else stacks per drop item.
        """
        if item.is_barter:
            stmt = select(CatalogItem.points).where(CatalogItem.key == item.catalog_key)
            catalog_points = (await self.session.execute(stmt)).scalar_one_or_none()
            return ItemDescriptor(
                item_key=item.catalog_key,
                title=item.title,
                icon=item.icon,
                rarity=item.rarity,
                points=catalog_points or 0,
                kind="barter",
                item_id=item.id,
            )
        return ItemDescriptor(
            item_key=str(item.id),
            title=item.title,
            icon=item.icon,
            rarity=item.rarity,
            points=item.gives_points,
            kind="drop",
            item_id=item.id,
        )

    async def _abandon(self, claim: IdempotencyClaim | None) -> None:
        """Undo uncommitted work and free the idempotency key for a retry."""
        await self.session.rollback()
        if claim is not None and not self.config.use_transactions:
            await self.idempotency.release(claim)
            await self.session.commit()
