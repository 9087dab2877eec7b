"""
Barter Engine - Trading two owned items for a crafted one.

A pair resolves through an explicit recipe keyed by the sorted pair. When
no recipe exists and fallback is permitted, each input maps to a base
rarity and the sorted rarity pair is looked up in a configured table, with
a single default for unlisted pairs. Resolution is deterministic for a
given catalog and configuration.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import BarterLog, BarterRecipe, CatalogItem, utc_now
from qafala.exceptions import (
    EconomyError,
    ItemNotFoundError,
    NoRecipeError,
    NotEnoughItemsError,
    OutputDisabledError,
    WriteVerificationError,
)
from qafala.models.api import BarterResolution, Rarity, WalletTxType
from qafala.models.domain import (
    BarterItemSnapshot,
    BarterLogData,
    BarterOutcome,
    BarterResult,
    BarterUseResult,
    InventoryItemData,
    ItemDescriptor,
    LedgerEntrySpec,
    RecipeData,
)
from qafala.observability import get_logger, metrics
from qafala.observability.tracing import trace_operation
from qafala.services.inventory import InventoryStore
from qafala.services.ledger import WalletLedger
from qafala.services.progression import ProgressionService

logger = get_logger(__name__)

BASE_RARITIES = frozenset(
    {Rarity.COMMON.value, Rarity.RARE.value, Rarity.LEGENDARY.value}
)


# ============================================================================
# Pure Resolution Helpers
# ============================================================================


def order_pair(key1: str, key2: str) -> tuple[str, str]:
    """Sort a pair so (A, B) and (B, A) resolve identically."""
    return (key1, key2) if key1 <= key2 else (key2, key1)


def pair_key(key1: str, key2: str) -> str:
    """Canonical "a+b" form of a pair."""
    return "+".join(order_pair(key1, key2))


def base_rarity(rarity: str | None) -> str:
    """Collapse a rarity to the vocabulary the fallback table is keyed on."""
    if rarity in (Rarity.BARTER.value, Rarity.BARTER_RESULT.value):
        return Rarity.BARTER.value
    if rarity in BASE_RARITIES:
        return rarity
    return Rarity.COMMON.value


def resolve_fallback(
    rarity1: str | None, rarity2: str | None, rules: dict[str, str], default: str
) -> str:
    """Output key for a recipe-less pair."""
    return rules.get(pair_key(base_rarity(rarity1), base_rarity(rarity2)), default)


class BarterEngine:
    """Preview, confirm and redeem barters."""

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings
        self.ledger = WalletLedger(session)
        self.inventory = InventoryStore(session)
        self.progression = ProgressionService(session, self.config)

    async def preview(
        self, user_id: UUID, key1: str, key2: str, allow_fallback: bool | None = None
    ) -> BarterOutcome:
        """Resolve a pair without touching any state."""
        with trace_operation("barter_preview", user_id=str(user_id)):
            try:
                outcome = await self.resolve(user_id, key1, key2, allow_fallback)
            except EconomyError as exc:
                metrics.record_barter("preview", exc.code)
                raise
        metrics.record_barter("preview", "ok")
        return outcome

    async def resolve(
        self, user_id: UUID, key1: str, key2: str, allow_fallback: bool | None = None
    ) -> BarterOutcome:
        """
        Resolve the output of a pair.

        Raises:
            ItemNotFoundError: An input is neither in the catalog nor owned
            NoRecipeError: No recipe and fallback not permitted
            OutputDisabledError: The resolved output is missing or disabled
        """
        if allow_fallback is None:
            allow_fallback = self.config.barter_allow_fallback

        item1 = await self._resolve_input(user_id, key1)
        item2 = await self._resolve_input(user_id, key2)
        key = pair_key(item1.key, item2.key)

        stmt = select(BarterRecipe.output_key).where(
            BarterRecipe.pair_key == key, BarterRecipe.enabled.is_(True)
        )
        output_key = (await self.session.execute(stmt)).scalar_one_or_none()

        if output_key is not None:
            resolution = BarterResolution.RECIPE
        elif allow_fallback:
            resolution = BarterResolution.FALLBACK
            output_key = resolve_fallback(
                item1.rarity,
                item2.rarity,
                self.config.barter_fallback_rules,
                self.config.barter_fallback_default,
            )
        else:
            raise NoRecipeError(key)

        result = await self._resolve_output(output_key)
        return BarterOutcome(
            pair_key=key, item1=item1, item2=item2, result=result, resolution=resolution
        )

    async def confirm(
        self, user_id: UUID, key1: str, key2: str, allow_fallback: bool | None = None
    ) -> BarterResult:
        """
        Consume one of each input and grant the resolved output.

        Raises:
            NotEnoughItemsError: An input is not in the user's inventory
            plus everything resolve() raises
        """
        with trace_operation("barter_confirm", user_id=str(user_id)):
            try:
                result = await self._confirm(user_id, key1, key2, allow_fallback)
            except EconomyError as exc:
                await self.session.rollback()
                metrics.record_barter("confirm", exc.code)
                raise
            except Exception:
                await self.session.rollback()
                raise
        metrics.record_barter("confirm", "ok")
        return result

    async def use(self, user_id: UUID, key: str) -> BarterUseResult:
        """
        Redeem one crafted unit for points.

        The oldest unused barter-log row producing this item is marked used;
        its recorded points win over catalog and stack values.
        """
        with trace_operation("barter_use", user_id=str(user_id)):
            try:
                result = await self._use(user_id, key)
            except EconomyError as exc:
                await self.session.rollback()
                metrics.record_barter("use", exc.code)
                raise
            except Exception:
                await self.session.rollback()
                raise
        metrics.record_barter("use", "ok")
        return result

    async def history(self, user_id: UUID, limit: int = 50) -> list[BarterLogData]:
        """Most recent trades first."""
        stmt = (
            select(BarterLog)
            .where(BarterLog.user_id == user_id)
            .order_by(BarterLog.created_at.desc(), BarterLog.id.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._log_to_domain(row) for row in rows]

    async def list_recipes(self) -> list[RecipeData]:
        """Enabled recipes ordered by pair key."""
        stmt = (
            select(BarterRecipe)
            .where(BarterRecipe.enabled.is_(True))
            .order_by(BarterRecipe.pair_key)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [
            RecipeData(
                pair_key=row.pair_key,
                input_a=row.input_a,
                input_b=row.input_b,
                output_key=row.output_key,
            )
            for row in rows
        ]

    # ========================================================================
    # Execution
    # ========================================================================

    async def _confirm(
        self, user_id: UUID, key1: str, key2: str, allow_fallback: bool | None
    ) -> BarterResult:
        outcome = await self.resolve(user_id, key1, key2, allow_fallback)

        if not self.config.use_transactions:
            logger.warning("barter_without_transaction", user_id=str(user_id))

        async with self._input_held(user_id, key1) as first:
            second = await self.inventory.decrement_if_available(user_id, key2)
            if second is None:
                raise NotEnoughItemsError(key2)

            result = outcome.result
            produced = await self.inventory.add_or_increment(
                user_id,
                ItemDescriptor(
                    item_key=result.key,
                    title=result.title,
                    icon=result.icon,
                    rarity=result.rarity,
                    points=result.points,
                    kind="barter",
                ),
                1,
            )

            log = BarterLog(
                user_id=user_id,
                item1_key=outcome.item1.key,
                item1_title=outcome.item1.title,
                item1_icon=outcome.item1.icon,
                item1_rarity=outcome.item1.rarity,
                item2_key=outcome.item2.key,
                item2_title=outcome.item2.title,
                item2_icon=outcome.item2.icon,
                item2_rarity=outcome.item2.rarity,
                result_key=result.key,
                result_title=result.title,
                result_icon=result.icon,
                result_rarity=result.rarity,
                result_points=result.points,
                resolution=outcome.resolution.value,
            )
            self.session.add(log)
            await self.session.flush()

            verified = await self.session.get(BarterLog, log.id)
            if verified is None:
                raise WriteVerificationError(f"Barter log {log.id} not found after insert")

            await self.progression.award_xp(user_id, self.config.barter_xp_bonus)
            await self.progression.increment_stats(user_id, barter_trades=1)
            await self.progression.record_barter(user_id)

            wallet = await self.ledger.snapshot(user_id)
            await self.session.commit()

            logger.info(
                "barter_confirmed",
                user_id=str(user_id),
                pair_key=outcome.pair_key,
                result_key=result.key,
                resolution=outcome.resolution.value,
                barter_log_id=str(log.id),
            )
            return BarterResult(
                barter_log_id=log.id,
                outcome=outcome,
                item1_qty_left=first.qty,
                item2_qty_left=second.qty,
                result_qty=produced.qty,
                wallet=wallet,
            )

    async def _use(self, user_id: UUID, key: str) -> BarterUseResult:
        stack = await self.inventory.decrement_if_available(user_id, key)
        if stack is None:
            raise NotEnoughItemsError(key)

        log_id = await self._mark_oldest_log_used(user_id, stack.item_key)
        points = await self._redeem_points(log_id, stack)

        entry = LedgerEntrySpec(
            type=WalletTxType.REWARD,
            title="Barter reward",
            subtitle=stack.title,
            icon=stack.icon,
            ref_kind="barter",
            ref_id=str(log_id) if log_id else None,
            tags=("barter",),
        )
        change = await self.ledger.award_points(user_id, points, entry)
        await self.session.commit()

        logger.info(
            "barter_item_used",
            user_id=str(user_id),
            item_key=stack.item_key,
            points=points,
            barter_log_id=str(log_id) if log_id else None,
        )
        return BarterUseResult(
            item_key=stack.item_key,
            points_awarded=points,
            qty_left=stack.qty,
            barter_log_id=log_id,
            wallet=change.wallet,
        )

    async def _mark_oldest_log_used(self, user_id: UUID, result_key: str) -> UUID | None:
        """Flip the oldest unused log row for result_key; None when there is none."""
        candidates = (
            select(BarterLog.id)
            .where(
                BarterLog.user_id == user_id,
                BarterLog.result_key == result_key,
                BarterLog.used.is_(False),
            )
            .order_by(BarterLog.created_at, BarterLog.id)
            .limit(5)
        )
        for log_id in (await self.session.execute(candidates)).scalars().all():
            flip = (
                update(BarterLog)
                .where(BarterLog.id == log_id, BarterLog.used.is_(False))
                .values(used=True, used_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if (await self.session.execute(flip)).rowcount == 1:
                return log_id
        return None

    async def _redeem_points(self, log_id: UUID | None, stack: InventoryItemData) -> int:
        if log_id is not None:
            stmt = select(BarterLog.result_points).where(BarterLog.id == log_id)
            recorded = (await self.session.execute(stmt)).scalar_one()
            if recorded:
                return recorded
        stmt = select(CatalogItem.points).where(CatalogItem.key == stack.item_key)
        catalog_points = (await self.session.execute(stmt)).scalar_one_or_none()
        return catalog_points or stack.points

    @asynccontextmanager
    async def _input_held(self, user_id: UUID, key: str) -> AsyncIterator[InventoryItemData]:
        """
        Take one unit of the first input for the enclosed steps.

        Without transactions the decrement is committed on its own, so any
        failure in the enclosed steps gives the unit back.
        """
        taken = await self.inventory.decrement_if_available(user_id, key)
        if taken is None:
            raise NotEnoughItemsError(key)
        if self.config.use_transactions:
            yield taken
            return

        await self.session.commit()
        try:
            yield taken
        except Exception:
            await self._restore_input(user_id, taken)
            raise

    async def _restore_input(self, user_id: UUID, taken: InventoryItemData) -> None:
        """Give back a committed first input after a later step failed."""
        await self.session.rollback()
        await self.inventory.add_or_increment(
            user_id,
            ItemDescriptor(
                item_key=taken.item_key,
                title=taken.title,
                icon=taken.icon,
                rarity=taken.rarity,
                points=taken.points,
                kind=taken.kind,
                item_id=taken.item_id,
            ),
            1,
        )
        await self.session.commit()
        logger.warning("barter_input_restored", user_id=str(user_id), item_key=taken.item_key)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _resolve_input(self, user_id: UUID, key: str) -> BarterItemSnapshot:
        """Catalog entry for key, else the user's own stack, else ItemNotFoundError."""
        stmt = select(CatalogItem).where(CatalogItem.key == key)
        catalog = (await self.session.execute(stmt)).scalar_one_or_none()
        if catalog is not None:
            return self._catalog_snapshot(catalog)

        stack = await self.inventory.find(user_id, key)
        if stack is not None:
            return BarterItemSnapshot(
                key=stack.item_key,
                title=stack.title,
                icon=stack.icon,
                rarity=stack.rarity,
                points=stack.points,
            )
        raise ItemNotFoundError(key)

    async def _resolve_output(self, key: str) -> BarterItemSnapshot:
        stmt = select(CatalogItem).where(CatalogItem.key == key, CatalogItem.enabled.is_(True))
        catalog = (await self.session.execute(stmt)).scalar_one_or_none()
        if catalog is None:
            raise OutputDisabledError(key)
        return self._catalog_snapshot(catalog)

    def _catalog_snapshot(self, item: CatalogItem) -> BarterItemSnapshot:
        return BarterItemSnapshot(
            key=item.key,
            title=item.title,
            icon=item.icon,
            rarity=item.rarity,
            points=item.points,
        )

    def _log_to_domain(self, log: BarterLog) -> BarterLogData:
        """Convert ORM model to domain model."""
        return BarterLogData(
            id=log.id,
            item1=BarterItemSnapshot(
                key=log.item1_key, title=log.item1_title, icon=log.item1_icon, rarity=log.item1_rarity
            ),
            item2=BarterItemSnapshot(
                key=log.item2_key, title=log.item2_title, icon=log.item2_icon, rarity=log.item2_rarity
            ),
            result=BarterItemSnapshot(
                key=log.result_key,
                title=log.result_title,
                icon=log.result_icon,
                rarity=log.result_rarity,
                points=log.result_points,
            ),
            resolution=BarterResolution(log.resolution),
            used=log.used,
            created_at=log.created_at,
        )
