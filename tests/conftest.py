"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fixtures for testing:
- In-memory SQLite database with the full schema
- On-disk SQLite database for tests that race separate sessions
- Async sessions and per-test settings overrides
- Seed helpers for users, drops, catalog, recipes and prize plans
- Mock database sessions for pure unit tests
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set required environment variables BEFORE importing qafala modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from qafala.config import Settings, settings
from qafala.db.models import (
    BarterRecipe,
    Base,
    CatalogItem,
    Drop,
    DropItem,
    PrizePlan,
    PrizeTier,
    UserAccount,
)

# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test; one shared connection."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as db:
        yield db


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """On-disk database where every session checks out its own connection."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'economy.db'}",
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def file_session_factory(file_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def config() -> Settings:
    """Settings with the time-based caps relaxed; tests tighten what they exercise."""
    return settings.model_copy(
        update={
            "per_item_window_seconds": 0,
            "per_drop_per_user": 0,
            "starting_dinar": 1000,
            "use_transactions": True,
        }
    )


@pytest.fixture
def db_session() -> AsyncMock:
    """Create a mock database session with sensible defaults."""
    session = AsyncMock(spec=AsyncSession)

    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)

    # Default execute returns empty result
    mock_result = MagicMock()
    mock_result.scalar_one_or_none = MagicMock(return_value=None)
    mock_result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=[])))
    mock_result.rowcount = 0
    session.execute = AsyncMock(return_value=mock_result)

    return session


# ============================================================================
# Time Fixtures
# ============================================================================


@pytest.fixture
def fixed_now() -> datetime:
    """A Wednesday in ISO week 2025-W46."""
    return datetime(2025, 11, 12, 12, 0, 0, tzinfo=UTC)


# ============================================================================
# Seed Fixtures
# ============================================================================


class Seeder:
    """
    Inserts committed rows through the test session.

    Returned rows are detached: an engine rollback expires everything in the
    session, and a detached row keeps its loaded ids readable afterwards.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _persist(self, *rows: Any) -> None:
        self.session.add_all(rows)
        await self.session.commit()
        for row in rows:
            self.session.expunge(row)

    async def user(
        self,
        dinar: int = 1000,
        usd_minor: int = 0,
        weekly_points: int = 0,
        username: str | None = None,
        user_id: UUID | None = None,
    ) -> UserAccount:
        user_id = user_id or uuid4()
        user = UserAccount(
            id=user_id,
            username=username or f"player-{str(user_id)[:8]}",
            dinar=dinar,
            usd_minor=usd_minor,
            weekly_points=weekly_points,
            points=weekly_points,
        )
        await self._persist(user)
        return user

    async def drop(
        self,
        now: datetime,
        stock: int = 10,
        price_dinar: int = 50,
        gives_points: int = 5,
        gives_xp: int = 10,
        rarity: str = "common",
        max_per_user: int | None = None,
        is_barter: bool = False,
        catalog_key: str = "caravan_spice",
        title: str = "Spice Pouch",
        is_active: bool = True,
    ) -> tuple[Drop, DropItem]:
        """An open drop (one hour either side of now) with a single item."""
        drop = Drop(
            title="Morning Caravan",
            starts_at=now - timedelta(hours=1),
            ends_at=now + timedelta(hours=1),
            is_active=is_active,
        )
        self.session.add(drop)
        await self.session.flush()

        item = DropItem(
            drop_id=drop.id,
            catalog_key=catalog_key,
            title=title,
            icon=f"{catalog_key}.png",
            rarity=rarity,
            price_dinar=price_dinar,
            gives_points=gives_points,
            gives_xp=gives_xp,
            is_barter=is_barter,
            stock=stock,
            max_per_user=max_per_user,
        )
        await self._persist(drop, item)
        return drop, item

    async def catalog(
        self,
        key: str,
        rarity: str = "common",
        points: int = 0,
        enabled: bool = True,
        is_barter: bool = False,
    ) -> CatalogItem:
        item = CatalogItem(
            key=key,
            title=key.replace("_", " ").title(),
            icon=f"{key}.png",
            rarity=rarity,
            points=points,
            enabled=enabled,
            is_barter=is_barter,
        )
        await self._persist(item)
        return item

    async def recipe(
        self, input1: str, input2: str, output_key: str, enabled: bool = True
    ) -> BarterRecipe:
        input_a, input_b = sorted((input1, input2))
        recipe = BarterRecipe(
            pair_key=f"{input_a}+{input_b}",
            input_a=input_a,
            input_b=input_b,
            output_key=output_key,
            enabled=enabled,
        )
        await self._persist(recipe)
        return recipe

    async def prize_plan(self, cap_minor: int, tiers: list[tuple[int, int, int]]) -> PrizePlan:
        """tiers is a list of (min_rank, max_rank, amount_minor)."""
        plan = PrizePlan(
            name="weekly",
            currency="USD",
            weekly_cap_minor=cap_minor,
            is_active=True,
            tiers=[
                PrizeTier(min_rank=low, max_rank=high, amount_minor=amount)
                for low, high, amount in tiers
            ],
        )
        await self._persist(plan)
        return plan

    async def barter_catalog(self) -> None:
        """The honey + nuts recipe and the fallback outputs a pair can land on."""
        await self.catalog("honey_jar", rarity="rare", points=9, is_barter=True)
        await self.catalog("nuts_sack", rarity="barter", is_barter=True)
        await self.catalog("fruit_basket", rarity="common", points=3, is_barter=True)
        await self.catalog("luxury_sweets_box", rarity="barter_result", points=36)
        await self.catalog("rare_box", rarity="rare", points=40)
        await self.catalog("common_box", rarity="common", points=20)
        await self.recipe("honey_jar", "nuts_sack", "luxury_sweets_box")


@pytest.fixture
def seed(session: AsyncSession) -> Seeder:
    return Seeder(session)


@pytest.fixture
async def file_seed(
    file_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[Seeder, None]:
    async with file_session_factory() as db:
        yield Seeder(db)
