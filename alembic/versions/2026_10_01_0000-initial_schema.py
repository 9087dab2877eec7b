"""Initial economy schema.

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_01_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_DOCUMENT = sa.JSON().with_variant(JSONB(), "postgresql")


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.func.now(),
    )


def upgrade() -> None:
    """Create all economy tables."""
    # ========================================================================
    # users - wallet, scoring and progression per player
    # ========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("dinar", sa.BigInteger(), nullable=False, server_default="1000"),
        sa.Column("usd_minor", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("tx_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("weekly_points", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("xp_to_next", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("drops_participated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("barter_trades", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rewards_claimed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("badges_earned", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("dinar >= 0", name="ck_users_dinar_non_negative"),
        sa.CheckConstraint("usd_minor >= 0", name="ck_users_usd_minor_non_negative"),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("weekly_points >= 0", name="ck_users_weekly_points_non_negative"),
        sa.CheckConstraint("level >= 1", name="ck_users_level_positive"),
    )
    op.create_index("idx_users_weekly_points", "users", ["weekly_points"])

    # ========================================================================
    # catalog_items - reference data for barter inputs and outputs
    # ========================================================================
    op.create_table(
        "catalog_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("key", sa.String(100), nullable=False, unique=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("icon", sa.String(200), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("price_dinar", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gives_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gives_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_barter", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.CheckConstraint("price_dinar >= 0", name="ck_catalog_price_non_negative"),
        sa.CheckConstraint("points >= 0", name="ck_catalog_points_non_negative"),
        sa.CheckConstraint(
            "rarity IN ('common', 'rare', 'legendary', 'barter', 'barter_result')",
            name="ck_catalog_rarity_known",
        ),
    )

    # ========================================================================
    # drops / drop_items - sale windows and their stock
    # ========================================================================
    op.create_table(
        "drops",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.CheckConstraint("ends_at > starts_at", name="ck_drops_window_ordered"),
    )
    op.create_index("idx_drops_window", "drops", ["is_active", "starts_at", "ends_at"])

    op.create_table(
        "drop_items",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "drop_id", sa.Uuid(), sa.ForeignKey("drops.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("catalog_key", sa.String(100), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("icon", sa.String(200), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("price_dinar", sa.Integer(), nullable=False),
        sa.Column("gives_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("gives_xp", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_barter", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stock", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_per_user", sa.Integer(), nullable=True),
        sa.CheckConstraint("stock >= 0", name="ck_drop_items_stock_non_negative"),
        sa.CheckConstraint("price_dinar >= 0", name="ck_drop_items_price_non_negative"),
        sa.CheckConstraint(
            "max_per_user IS NULL OR max_per_user > 0", name="ck_drop_items_max_per_user_positive"
        ),
    )
    op.create_index("idx_drop_items_drop_id", "drop_items", ["drop_id"])

    # ========================================================================
    # inventory_entries - one stack per (user, item_key)
    # ========================================================================
    op.create_table(
        "inventory_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("item_key", sa.String(100), nullable=False),
        sa.Column("item_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("icon", sa.String(200), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("kind", sa.String(20), nullable=False, server_default="drop"),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("acquired_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("qty >= 0", name="ck_inventory_qty_non_negative"),
        sa.UniqueConstraint("user_id", "item_key", name="uq_inventory_user_item"),
    )
    op.create_index("idx_inventory_user_id", "inventory_entries", ["user_id"])

    # ========================================================================
    # wallet_transactions - IMMUTABLE ledger
    # ========================================================================
    op.create_table(
        "wallet_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("amount_dinar", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("amount_usd_minor", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("usd_balance_after", sa.BigInteger(), nullable=False),
        sa.Column("points_delta", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("ref_kind", sa.String(30), nullable=True),
        sa.Column("ref_id", sa.String(100), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("subtitle", sa.String(200), nullable=True),
        sa.Column("icon", sa.String(100), nullable=True),
        sa.Column("direction", sa.String(10), nullable=False, server_default="out"),
        sa.Column("tags", JSON_DOCUMENT, nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("balance_after >= 0", name="ck_wallet_tx_balance_non_negative"),
        sa.CheckConstraint(
            "usd_balance_after >= 0", name="ck_wallet_tx_usd_balance_non_negative"
        ),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_wallet_tx_idempotency"),
    )
    op.create_index("idx_wallet_tx_user_created", "wallet_transactions", ["user_id", "created_at"])

    # ========================================================================
    # idempotency_records / job_locks - coordination rows
    # ========================================================================
    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("endpoint", sa.String(50), nullable=False),
        sa.Column("ref_kind", sa.String(30), nullable=True),
        sa.Column("ref_id", sa.String(100), nullable=True),
        sa.Column("response", JSON_DOCUMENT, nullable=True),
        _timestamp("created_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "key", name="uq_idempotency_user_key"),
    )
    op.create_index("idx_idempotency_expires_at", "idempotency_records", ["expires_at"])

    op.create_table(
        "job_locks",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("key", sa.String(200), nullable=False, unique=True),
        sa.Column("owner", sa.String(200), nullable=True),
        _timestamp("acquired_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )

    # ========================================================================
    # purchase_logs - completed drop purchases, source for per-user caps
    # ========================================================================
    op.create_table(
        "purchase_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("drop_id", sa.Uuid(), nullable=False),
        sa.Column("drop_item_id", sa.Uuid(), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False),
        sa.Column("cost_dinar", sa.BigInteger(), nullable=False),
        sa.Column("points_gained", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("xp_gained", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("qty > 0", name="ck_purchase_logs_qty_positive"),
        sa.CheckConstraint("cost_dinar >= 0", name="ck_purchase_logs_cost_non_negative"),
        sa.UniqueConstraint("user_id", "idempotency_key", name="uq_purchase_logs_idempotency"),
    )
    op.create_index(
        "idx_purchase_logs_user_item", "purchase_logs", ["user_id", "drop_item_id", "created_at"]
    )
    op.create_index("idx_purchase_logs_user_drop", "purchase_logs", ["user_id", "drop_id"])

    # ========================================================================
    # barter_recipes / barter_logs
    # ========================================================================
    op.create_table(
        "barter_recipes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("pair_key", sa.String(210), nullable=False, unique=True),
        sa.Column("input_a", sa.String(100), nullable=False),
        sa.Column("input_b", sa.String(100), nullable=False),
        sa.Column("output_key", sa.String(100), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.CheckConstraint("input_a <= input_b", name="ck_barter_recipes_sorted"),
    )

    op.create_table(
        "barter_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("item1_key", sa.String(100), nullable=False),
        sa.Column("item1_title", sa.String(200), nullable=False),
        sa.Column("item1_icon", sa.String(200), nullable=True),
        sa.Column("item1_rarity", sa.String(20), nullable=False),
        sa.Column("item2_key", sa.String(100), nullable=False),
        sa.Column("item2_title", sa.String(200), nullable=False),
        sa.Column("item2_icon", sa.String(200), nullable=True),
        sa.Column("item2_rarity", sa.String(20), nullable=False),
        sa.Column("result_key", sa.String(100), nullable=False),
        sa.Column("result_title", sa.String(200), nullable=False),
        sa.Column("result_icon", sa.String(200), nullable=True),
        sa.Column("result_rarity", sa.String(20), nullable=False),
        sa.Column("result_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("resolution", sa.String(20), nullable=False, server_default="recipe"),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("used_at", nullable=True),
        _timestamp("created_at"),
    )
    op.create_index(
        "idx_barter_logs_user_result", "barter_logs", ["user_id", "result_key", "used"]
    )

    # ========================================================================
    # seasons / prize plans / payouts
    # ========================================================================
    op.create_table(
        "seasons",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("season_id", sa.String(10), nullable=False, unique=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("finalized_at", nullable=True),
        sa.Column("winners", JSON_DOCUMENT, nullable=False),
        sa.CheckConstraint("end_at > start_at", name="ck_seasons_window_ordered"),
    )
    op.create_index("idx_seasons_finalized_end", "seasons", ["finalized", "end_at"])

    op.create_table(
        "prize_plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("weekly_cap_minor", sa.BigInteger(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.CheckConstraint("weekly_cap_minor >= 0", name="ck_prize_plans_cap_non_negative"),
    )

    op.create_table(
        "prize_tiers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "plan_id",
            sa.Uuid(),
            sa.ForeignKey("prize_plans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("min_rank", sa.Integer(), nullable=False),
        sa.Column("max_rank", sa.Integer(), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.CheckConstraint("min_rank >= 1", name="ck_prize_tiers_min_rank_positive"),
        sa.CheckConstraint("max_rank >= min_rank", name="ck_prize_tiers_rank_ordered"),
        sa.CheckConstraint("amount_minor >= 0", name="ck_prize_tiers_amount_non_negative"),
    )

    op.create_table(
        "winner_payouts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
        ),
        sa.Column("season_id", sa.String(10), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("amount_minor", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("claim_mode", sa.String(20), nullable=True),
        _timestamp("claimed_at", nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("amount_minor > 0", name="ck_winner_payouts_amount_positive"),
        sa.CheckConstraint("rank >= 1", name="ck_winner_payouts_rank_positive"),
        sa.UniqueConstraint("season_id", "user_id", name="uq_winner_payouts_season_user"),
    )
    op.create_index("idx_winner_payouts_user_status", "winner_payouts", ["user_id", "status"])

    # ========================================================================
    # user_badges - badge progress per player
    # ========================================================================
    op.create_table(
        "user_badges",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("badge_key", sa.String(50), nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("target", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="locked"),
        _timestamp("earned_at", nullable=True),
        sa.CheckConstraint("progress >= 0", name="ck_user_badges_progress_non_negative"),
        sa.UniqueConstraint("user_id", "badge_key", name="uq_user_badges_user_badge"),
    )


def downgrade() -> None:
    """Drop all economy tables."""
    op.drop_table("user_badges")
    op.drop_index("idx_winner_payouts_user_status", table_name="winner_payouts")
    op.drop_table("winner_payouts")
    op.drop_table("prize_tiers")
    op.drop_table("prize_plans")
    op.drop_index("idx_seasons_finalized_end", table_name="seasons")
    op.drop_table("seasons")
    op.drop_index("idx_barter_logs_user_result", table_name="barter_logs")
    op.drop_table("barter_logs")
    op.drop_table("barter_recipes")
    op.drop_index("idx_purchase_logs_user_drop", table_name="purchase_logs")
    op.drop_index("idx_purchase_logs_user_item", table_name="purchase_logs")
    op.drop_table("purchase_logs")
    op.drop_table("job_locks")
    op.drop_index("idx_idempotency_expires_at", table_name="idempotency_records")
    op.drop_table("idempotency_records")
    op.drop_index("idx_wallet_tx_user_created", table_name="wallet_transactions")
    op.drop_table("wallet_transactions")
    op.drop_index("idx_inventory_user_id", table_name="inventory_entries")
    op.drop_table("inventory_entries")
    op.drop_index("idx_drop_items_drop_id", table_name="drop_items")
    op.drop_table("drop_items")
    op.drop_index("idx_drops_window", table_name="drops")
    op.drop_table("drops")
    op.drop_table("catalog_items")
    op.drop_index("idx_users_weekly_points", table_name="users")
    op.drop_table("users")
