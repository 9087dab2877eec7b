"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
JSON columns hold display snapshots only, never balances.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from drivers without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class UserAccount(Base):
    """
    ORM model for users table.

    Wallet balances, scoring counters and participation stats for one player.
    Balances and counters are only mutated through guarded UPDATE statements.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    # Wallet
    dinar: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1000)
    usd_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    tx_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Scoring
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    weekly_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Progression
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_to_next: Mapped[int] = mapped_column(Integer, nullable=False, default=100)

    # Participation stats (feed badge awarding)
    drops_participated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_purchased: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    barter_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rewards_claimed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("dinar >= 0", name="ck_users_dinar_non_negative"),
        CheckConstraint("usd_minor >= 0", name="ck_users_usd_minor_non_negative"),
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("weekly_points >= 0", name="ck_users_weekly_points_non_negative"),
        CheckConstraint("level >= 1", name="ck_users_level_positive"),
        Index("idx_users_weekly_points", "weekly_points"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserAccount(id={self.id}, username={self.username}, "
            f"dinar={self.dinar}, weekly_points={self.weekly_points})>"
        )


class CatalogItem(Base):
    """
    ORM model for catalog_items table.

    Reference data for barter inputs, recipe outputs and fallback outputs.
    """

    __tablename__ = "catalog_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default="common")

    price_dinar: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gives_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gives_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_barter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("price_dinar >= 0", name="ck_catalog_price_non_negative"),
        CheckConstraint("points >= 0", name="ck_catalog_points_non_negative"),
        CheckConstraint(
            "rarity IN ('common', 'rare', 'legendary', 'barter', 'barter_result')",
            name="ck_catalog_rarity_known",
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<CatalogItem(key={self.key}, rarity={self.rarity}, enabled={self.enabled})>"


class Drop(Base):
    """
    ORM model for drops table.

    A time-boxed sale window ("caravan"). Created by schedule generation.
    """

    __tablename__ = "drops"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    items: Mapped[list["DropItem"]] = relationship(back_populates="drop", lazy="raise")

    __table_args__ = (
        CheckConstraint("ends_at > starts_at", name="ck_drops_window_ordered"),
        Index("idx_drops_window", "is_active", "starts_at", "ends_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Drop(id={self.id}, title={self.title}, active={self.is_active})>"


class DropItem(Base):
    """
    ORM model for drop_items table.

    Copy of catalog fields plus the mutable stock counter for one drop.
    """

    __tablename__ = "drop_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    drop_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("drops.id", ondelete="CASCADE"), nullable=False
    )

    catalog_key: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default="common")

    price_dinar: Mapped[int] = mapped_column(Integer, nullable=False)
    gives_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gives_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_barter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)

    drop: Mapped[Drop] = relationship(back_populates="items", lazy="raise")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_drop_items_stock_non_negative"),
        CheckConstraint("price_dinar >= 0", name="ck_drop_items_price_non_negative"),
        CheckConstraint(
            "max_per_user IS NULL OR max_per_user > 0", name="ck_drop_items_max_per_user_positive"
        ),
        Index("idx_drop_items_drop_id", "drop_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<DropItem(id={self.id}, key={self.catalog_key}, stock={self.stock})>"


class InventoryEntry(Base):
    """
    ORM model for inventory_entries table.

    One stack per (user_id, item_key). item_key is written canonically:
    catalog key for barter items, drop item id for everything else.
    """

    __tablename__ = "inventory_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    item_key: Mapped[str] = mapped_column(String(100), nullable=False)
    item_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default="common")
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="drop")

    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("qty >= 0", name="ck_inventory_qty_non_negative"),
        UniqueConstraint("user_id", "item_key", name="uq_inventory_user_item"),
        Index("idx_inventory_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<InventoryEntry(user_id={self.user_id}, item_key={self.item_key}, qty={self.qty})>"


class WalletTransaction(Base):
    """
    ORM model for wallet_transactions table.

    IMMUTABLE - Append-only ledger of every balance-affecting event.
    Summing amount_dinar per user reconstructs the dinar balance.
    """

    __tablename__ = "wallet_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Signed deltas and post-transaction snapshots
    amount_dinar: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    amount_usd_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    usd_balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    points_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # What caused it
    ref_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Display metadata
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String(200), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(100), nullable=True)
    direction: Mapped[str] = mapped_column(String(10), nullable=False, default="out")
    tags: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance_after >= 0", name="ck_wallet_tx_balance_non_negative"),
        CheckConstraint("usd_balance_after >= 0", name="ck_wallet_tx_usd_balance_non_negative"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_wallet_tx_idempotency"),
        Index("idx_wallet_tx_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<WalletTransaction(id={self.id}, type={self.type}, "
            f"amount_dinar={self.amount_dinar}, balance_after={self.balance_after})>"
        )


class IdempotencyRecord(Base):
    """
    ORM model for idempotency_records table.

    Inserted before side effects begin; linked to the outcome on success.
    Rows past expires_at are replaced on the next claim for the same key.
    """

    __tablename__ = "idempotency_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(50), nullable=False)

    ref_kind: Mapped[str | None] = mapped_column(String(30), nullable=True)
    ref_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    response: Mapped[dict[str, Any] | None] = mapped_column(JSONDocument, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "key", name="uq_idempotency_user_key"),
        Index("idx_idempotency_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<IdempotencyRecord(user_id={self.user_id}, key={self.key}, ref_id={self.ref_id})>"


class PurchaseLog(Base):
    """
    ORM model for purchase_logs table.

    One row per completed drop purchase. Source for per-user caps.
    """

    __tablename__ = "purchase_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    drop_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    drop_item_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)

    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_dinar: Mapped[int] = mapped_column(BigInteger, nullable=False)
    points_gained: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    xp_gained: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("qty > 0", name="ck_purchase_logs_qty_positive"),
        CheckConstraint("cost_dinar >= 0", name="ck_purchase_logs_cost_non_negative"),
        UniqueConstraint("user_id", "idempotency_key", name="uq_purchase_logs_idempotency"),
        Index("idx_purchase_logs_user_item", "user_id", "drop_item_id", "created_at"),
        Index("idx_purchase_logs_user_drop", "user_id", "drop_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PurchaseLog(id={self.id}, user_id={self.user_id}, "
            f"drop_item_id={self.drop_item_id}, qty={self.qty})>"
        )


class BarterRecipe(Base):
    """
    ORM model for barter_recipes table.

    pair_key is "a+b" with the inputs sorted, so (A, B) and (B, A) collide.
    """

    __tablename__ = "barter_recipes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    pair_key: Mapped[str] = mapped_column(String(210), nullable=False, unique=True)
    input_a: Mapped[str] = mapped_column(String(100), nullable=False)
    input_b: Mapped[str] = mapped_column(String(100), nullable=False)
    output_key: Mapped[str] = mapped_column(String(100), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (CheckConstraint("input_a <= input_b", name="ck_barter_recipes_sorted"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<BarterRecipe(pair_key={self.pair_key}, output_key={self.output_key})>"


class BarterLog(Base):
    """
    ORM model for barter_logs table.

    Append-only except for the used flag. Display fields are a snapshot
    taken at trade time so later catalog edits never rewrite history.
    """

    __tablename__ = "barter_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    item1_key: Mapped[str] = mapped_column(String(100), nullable=False)
    item1_title: Mapped[str] = mapped_column(String(200), nullable=False)
    item1_icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    item1_rarity: Mapped[str] = mapped_column(String(20), nullable=False)

    item2_key: Mapped[str] = mapped_column(String(100), nullable=False)
    item2_title: Mapped[str] = mapped_column(String(200), nullable=False)
    item2_icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    item2_rarity: Mapped[str] = mapped_column(String(20), nullable=False)

    result_key: Mapped[str] = mapped_column(String(100), nullable=False)
    result_title: Mapped[str] = mapped_column(String(200), nullable=False)
    result_icon: Mapped[str | None] = mapped_column(String(200), nullable=True)
    result_rarity: Mapped[str] = mapped_column(String(20), nullable=False)
    result_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    resolution: Mapped[str] = mapped_column(String(20), nullable=False, default="recipe")

    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_barter_logs_user_result", "user_id", "result_key", "used"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<BarterLog(id={self.id}, {self.item1_key}+{self.item2_key}"
            f"->{self.result_key}, used={self.used})>"
        )


class Season(Base):
    """
    ORM model for seasons table.

    One ISO week. finalized only ever goes false -> true and winners is
    written once, at finalize time.
    """

    __tablename__ = "seasons"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    season_id: Mapped[str] = mapped_column(String(10), nullable=False, unique=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    finalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    winners: Mapped[list[dict[str, Any]]] = mapped_column(JSONDocument, nullable=False, default=list)

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="ck_seasons_window_ordered"),
        Index("idx_seasons_finalized_end", "finalized", "end_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Season(season_id={self.season_id}, finalized={self.finalized})>"


class JobLock(Base):
    """
    ORM model for job_locks table.

    A row per running job. The unique key is the mutual exclusion token.
    """

    __tablename__ = "job_locks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    owner: Mapped[str | None] = mapped_column(String(200), nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<JobLock(key={self.key}, expires_at={self.expires_at})>"


class PrizePlan(Base):
    """
    ORM model for prize_plans table.

    At most one plan should be active; the newest active plan wins.
    """

    __tablename__ = "prize_plans"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    weekly_cap_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    tiers: Mapped[list["PrizeTier"]] = relationship(
        back_populates="plan", lazy="selectin", order_by="PrizeTier.min_rank"
    )

    __table_args__ = (
        CheckConstraint("weekly_cap_minor >= 0", name="ck_prize_plans_cap_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<PrizePlan(name={self.name}, cap={self.weekly_cap_minor}, active={self.is_active})>"


class PrizeTier(Base):
    """ORM model for prize_tiers table."""

    __tablename__ = "prize_tiers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("prize_plans.id", ondelete="CASCADE"), nullable=False
    )
    min_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    max_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    plan: Mapped[PrizePlan] = relationship(back_populates="tiers")

    __table_args__ = (
        CheckConstraint("min_rank >= 1", name="ck_prize_tiers_min_rank_positive"),
        CheckConstraint("max_rank >= min_rank", name="ck_prize_tiers_rank_ordered"),
        CheckConstraint("amount_minor >= 0", name="ck_prize_tiers_amount_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<PrizeTier(ranks={self.min_rank}-{self.max_rank}, amount={self.amount_minor})>"


class WinnerPayout(Base):
    """
    ORM model for winner_payouts table.

    Created once per winner per season by the finalizer; afterwards only the
    claim flow moves status available -> pending -> claimed (or failed).
    """

    __tablename__ = "winner_payouts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    season_id: Mapped[str] = mapped_column(String(10), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available")
    claim_mode: Mapped[str | None] = mapped_column(String(20), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_winner_payouts_amount_positive"),
        CheckConstraint("rank >= 1", name="ck_winner_payouts_rank_positive"),
        UniqueConstraint("season_id", "user_id", name="uq_winner_payouts_season_user"),
        Index("idx_winner_payouts_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<WinnerPayout(season_id={self.season_id}, rank={self.rank}, "
            f"amount={self.amount_minor}, status={self.status})>"
        )


class UserBadge(Base):
    """ORM model for user_badges table."""

    __tablename__ = "user_badges"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    badge_key: Mapped[str] = mapped_column(String(50), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="locked")
    earned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("progress >= 0", name="ck_user_badges_progress_non_negative"),
        UniqueConstraint("user_id", "badge_key", name="uq_user_badges_user_badge"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UserBadge(user_id={self.user_id}, badge={self.badge_key}, status={self.status})>"
