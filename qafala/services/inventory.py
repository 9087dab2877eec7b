"""
Inventory Store - Per-user item stacks.

Writes are canonical: one row per (user_id, item_key), created or
incremented with a dialect-native upsert so concurrent first acquisitions
never produce two stacks.

Reads tolerate legacy data shapes. Older rows may be addressed by a key
with different casing, by their icon, or by their row id, so decrements
walk an ordered list of lookup strategies. This is read-side
compatibility only; nothing here writes the ambiguous shapes.
"""

from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.db.models import InventoryEntry, utc_now
from qafala.db.upsert import upsert_insert
from qafala.exceptions import WriteVerificationError
from qafala.models.domain import InventoryItemData, ItemDescriptor
from qafala.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LookupStrategy:
    """A named pure function from a client-supplied key to a row condition."""

    name: str
    condition: Callable[[str], ColumnElement[bool] | None]


def _parse_uuid(key: str) -> UUID | None:
    try:
        return UUID(key)
    except ValueError:
        return None


def _by_row_id(key: str) -> ColumnElement[bool] | None:
    row_id = _parse_uuid(key)
    if row_id is None:
        return None
    return InventoryEntry.id == row_id


LOOKUP_STRATEGIES: tuple[LookupStrategy, ...] = (
    LookupStrategy("key", lambda key: InventoryEntry.item_key == key),
    LookupStrategy("key_ci", lambda key: func.lower(InventoryEntry.item_key) == key.lower()),
    LookupStrategy("icon", lambda key: InventoryEntry.icon == key),
    LookupStrategy("icon_ci", lambda key: func.lower(InventoryEntry.icon) == key.lower()),
    LookupStrategy("row_id", _by_row_id),
)


class InventoryStore:
    """Add-or-increment and decrement-if-available over inventory stacks."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add_or_increment(
        self, user_id: UUID, descriptor: ItemDescriptor, qty: int
    ) -> InventoryItemData:
        """
        Increment the (user_id, item_key) stack, creating it if absent.

        Display metadata is written on insert only; an existing stack keeps
        the snapshot it was created with.
        """
        if qty <= 0:
            raise ValueError(f"Quantity to add must be positive: {qty}")

        now = utc_now()
        stmt = upsert_insert(self.session, InventoryEntry).values(
            user_id=user_id,
            item_key=descriptor.item_key,
            item_id=descriptor.item_id,
            title=descriptor.title,
            icon=descriptor.icon,
            rarity=descriptor.rarity,
            points=descriptor.points,
            kind=descriptor.kind,
            qty=qty,
            acquired_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[InventoryEntry.user_id, InventoryEntry.item_key],
            set_={"qty": InventoryEntry.qty + qty, "updated_at": now},
        )
        await self.session.execute(stmt)

        entry = await self._get_by_key(user_id, descriptor.item_key)
        if entry is None:
            raise WriteVerificationError(
                f"Inventory stack {descriptor.item_key} missing after upsert"
            )
        return entry

    async def decrement_if_available(
        self, user_id: UUID, key: str, qty: int = 1
    ) -> InventoryItemData | None:
        """
        Take qty units from the first stack any lookup strategy resolves.

        Returns the stack after the decrement, or None with nothing changed.
        """
        if qty <= 0:
            raise ValueError(f"Quantity to remove must be positive: {qty}")

        for strategy in LOOKUP_STRATEGIES:
            condition = strategy.condition(key)
            if condition is None:
                continue

            candidate_stmt = (
                select(InventoryEntry.id)
                .where(InventoryEntry.user_id == user_id, condition, InventoryEntry.qty >= qty)
                .order_by(InventoryEntry.acquired_at)
                .limit(1)
            )
            entry_id = (await self.session.execute(candidate_stmt)).scalar_one_or_none()
            if entry_id is None:
                continue

            guarded = (
                update(InventoryEntry)
                .where(InventoryEntry.id == entry_id, InventoryEntry.qty >= qty)
                .values(qty=InventoryEntry.qty - qty, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(guarded)
            if result.rowcount != 1:
                # Lost a race for this stack; later strategies may still match
                continue

            if strategy.name != "key":
                logger.warning(
                    "inventory_legacy_lookup",
                    user_id=str(user_id),
                    key=key,
                    strategy=strategy.name,
                )
            return await self._get_by_id(entry_id)

        return None

    async def find(self, user_id: UUID, key: str) -> InventoryItemData | None:
        """Resolve a key with the same tolerant rules, without mutating."""
        for strategy in LOOKUP_STRATEGIES:
            condition = strategy.condition(key)
            if condition is None:
                continue
            stmt = (
                select(InventoryEntry)
                .where(InventoryEntry.user_id == user_id, condition)
                .order_by(InventoryEntry.acquired_at)
                .limit(1)
                .execution_options(populate_existing=True)
            )
            entry = (await self.session.execute(stmt)).scalar_one_or_none()
            if entry is not None:
                return self._to_domain(entry)
        return None

    async def list_for_user(self, user_id: UUID, include_empty: bool = False) -> list[InventoryItemData]:
        """All stacks for a user, oldest first."""
        stmt = select(InventoryEntry).where(InventoryEntry.user_id == user_id)
        if not include_empty:
            stmt = stmt.where(InventoryEntry.qty > 0)
        stmt = stmt.order_by(InventoryEntry.acquired_at).execution_options(populate_existing=True)
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_domain(row) for row in rows]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_by_key(self, user_id: UUID, item_key: str) -> InventoryItemData | None:
        stmt = (
            select(InventoryEntry)
            .where(InventoryEntry.user_id == user_id, InventoryEntry.item_key == item_key)
            .execution_options(populate_existing=True)
        )
        entry = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_domain(entry) if entry else None

    async def _get_by_id(self, entry_id: UUID) -> InventoryItemData | None:
        stmt = (
            select(InventoryEntry)
            .where(InventoryEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        entry = (await self.session.execute(stmt)).scalar_one_or_none()
        return self._to_domain(entry) if entry else None

    def _to_domain(self, entry: InventoryEntry) -> InventoryItemData:
        """Convert ORM model to domain model."""
        return InventoryItemData(
            id=entry.id,
            user_id=entry.user_id,
            item_key=entry.item_key,
            item_id=entry.item_id,
            title=entry.title,
            icon=entry.icon,
            rarity=entry.rarity,
            points=entry.points,
            kind=entry.kind,
            qty=entry.qty,
            acquired_at=entry.acquired_at,
        )
