"""
Tests for InventoryStore.

Includes the legacy lookup strategies: stacks addressed by differently
cased keys, by icon, or by row id.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from qafala.db.models import InventoryEntry
from qafala.models.domain import ItemDescriptor
from qafala.services.inventory import LOOKUP_STRATEGIES, InventoryStore


def honey(key: str = "honey_jar") -> ItemDescriptor:
    return ItemDescriptor(
        item_key=key, title="Honey Jar", icon="honey.png", rarity="rare", points=9, kind="barter"
    )


class TestAddOrIncrement:
    """Tests for canonical writes."""

    async def test_creates_then_increments_one_stack(self, session, seed):
        """Repeated adds never produce a second row."""
        user = await seed.user()
        store = InventoryStore(session)

        first = await store.add_or_increment(user.id, honey(), 2)
        second = await store.add_or_increment(user.id, honey(), 3)
        await session.commit()

        assert first.qty == 2
        assert second.qty == 5
        assert second.id == first.id

        rows = (
            await session.execute(select(InventoryEntry).where(InventoryEntry.user_id == user.id))
        ).scalars().all()
        assert len(rows) == 1

    async def test_metadata_kept_from_first_insert(self, session, seed):
        """An existing stack keeps its original display snapshot."""
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)

        renamed = ItemDescriptor(
            item_key="honey_jar", title="Golden Honey", icon="gold.png", rarity="rare", kind="barter"
        )
        stack = await store.add_or_increment(user.id, renamed, 1)
        assert stack.title == "Honey Jar"
        assert stack.qty == 2

    async def test_non_positive_qty_rejected(self, session, seed):
        user = await seed.user()
        with pytest.raises(ValueError):
            await InventoryStore(session).add_or_increment(user.id, honey(), 0)


class TestDecrementIfAvailable:
    """Tests for guarded decrements."""

    async def test_decrement_by_key(self, session, seed):
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 2)

        left = await store.decrement_if_available(user.id, "honey_jar")
        assert left is not None
        assert left.qty == 1

    async def test_missing_returns_none(self, session, seed):
        user = await seed.user()
        assert await InventoryStore(session).decrement_if_available(user.id, "ghost") is None

    async def test_never_goes_negative(self, session, seed):
        """Asking for more than the stack holds changes nothing."""
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)

        assert await store.decrement_if_available(user.id, "honey_jar", qty=2) is None
        stack = await store.find(user.id, "honey_jar")
        assert stack is not None
        assert stack.qty == 1

    async def test_empty_stack_is_unavailable(self, session, seed):
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)
        assert await store.decrement_if_available(user.id, "honey_jar") is not None
        assert await store.decrement_if_available(user.id, "honey_jar") is None

    async def test_case_insensitive_key(self, session, seed):
        """Legacy clients send keys in other casings."""
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)

        left = await store.decrement_if_available(user.id, "HONEY_JAR")
        assert left is not None
        assert left.item_key == "honey_jar"
        assert left.qty == 0

    async def test_lookup_by_icon(self, session, seed):
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)

        left = await store.decrement_if_available(user.id, "honey.png")
        assert left is not None
        assert left.qty == 0

    async def test_lookup_by_row_id(self, session, seed):
        user = await seed.user()
        store = InventoryStore(session)
        stack = await store.add_or_increment(user.id, honey(), 3)

        left = await store.decrement_if_available(user.id, str(stack.id))
        assert left is not None
        assert left.qty == 2

    async def test_other_users_stacks_untouched(self, session, seed):
        owner = await seed.user()
        stranger = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(owner.id, honey(), 1)

        assert await store.decrement_if_available(stranger.id, "honey_jar") is None


class TestListing:
    """Tests for list_for_user."""

    async def test_empty_stacks_hidden_by_default(self, session, seed):
        user = await seed.user()
        store = InventoryStore(session)
        await store.add_or_increment(user.id, honey(), 1)
        await store.add_or_increment(user.id, honey("nuts_sack"), 1)
        await store.decrement_if_available(user.id, "nuts_sack")

        visible = await store.list_for_user(user.id)
        assert [s.item_key for s in visible] == ["honey_jar"]

        everything = await store.list_for_user(user.id, include_empty=True)
        assert {s.item_key for s in everything} == {"honey_jar", "nuts_sack"}

    async def test_unknown_user_has_nothing(self, session):
        assert await InventoryStore(session).list_for_user(uuid4()) == []


class TestLookupStrategies:
    """Tests for the strategy table itself."""

    def test_order(self):
        """Exact key first, row id last."""
        assert [s.name for s in LOOKUP_STRATEGIES] == ["key", "key_ci", "icon", "icon_ci", "row_id"]

    def test_row_id_skips_non_uuid(self):
        """Non-UUID keys produce no row-id condition."""
        row_id = LOOKUP_STRATEGIES[-1]
        assert row_id.condition("honey_jar") is None
