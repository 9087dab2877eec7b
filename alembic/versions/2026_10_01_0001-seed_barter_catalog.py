"""Seed barter catalog, recipes and fallback outputs.

Revision ID: 2026_10_01_0001
Revises: 2026_10_01_0000
Create Date: 2026-10-01

"""

from collections.abc import Sequence
from uuid import uuid4

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_01_0001"
down_revision: str | None = "2026_10_01_0000"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

catalog_items = sa.table(
    "catalog_items",
    sa.column("id", sa.Uuid()),
    sa.column("key", sa.String),
    sa.column("title", sa.String),
    sa.column("icon", sa.String),
    sa.column("rarity", sa.String),
    sa.column("price_dinar", sa.Integer),
    sa.column("points", sa.Integer),
    sa.column("is_barter", sa.Boolean),
    sa.column("enabled", sa.Boolean),
)

barter_recipes = sa.table(
    "barter_recipes",
    sa.column("id", sa.Uuid()),
    sa.column("pair_key", sa.String),
    sa.column("input_a", sa.String),
    sa.column("input_b", sa.String),
    sa.column("output_key", sa.String),
    sa.column("enabled", sa.Boolean),
)

# (key, title, rarity, price_dinar, points)
BARTER_INPUTS = [
    ("honey_jar", "Honey Jar", "rare", 18, 9),
    ("nuts_sack", "Mixed Nuts Sack", "barter", 20, 0),
    ("rice_sack", "Rice Sack", "barter", 7, 0),
    ("milk_jug", "Milk Jug", "barter", 6, 0),
    ("fruit_basket", "Fruit Basket", "barter", 12, 0),
]

# (key, title, points)
BARTER_RESULTS = [
    ("luxury_sweets_box", "Luxury Sweets Box", 36),
    ("dates_box_golden", "Premium Dates Box", 32),
    ("date_palm_gold", "Golden Date Palm", 120),
    ("desert_compass", "Desert Compass", 45),
    ("holy_book", "Ornate Book", 44),
    ("caravan_ticket", "Caravan Ticket", 18),
    # Fallback outputs
    ("mystic_treasure", "Mystic Treasure", 150),
    ("treasure_chest_legendary", "Legendary Treasure Chest", 140),
    ("desert_idol", "Ancient Desert Idol", 90),
    ("desert_amulet", "Desert Amulet", 50),
    ("epic_box", "Epic Box", 80),
    ("rare_box", "Rare Box", 40),
    ("common_box", "Common Box", 20),
]

# (input, input, output)
RECIPES = [
    ("honey_jar", "nuts_sack", "luxury_sweets_box"),
    ("fruit_basket", "dates_box_golden", "date_palm_gold"),
    ("holy_book", "desert_amulet", "desert_idol"),
    ("caravan_ticket", "desert_compass", "treasure_chest_legendary"),
]


def upgrade() -> None:
    """Insert reference catalog rows and recipes."""
    op.bulk_insert(
        catalog_items,
        [
            {
                "id": uuid4(),
                "key": key,
                "title": title,
                "icon": key,
                "rarity": rarity,
                "price_dinar": price,
                "points": points,
                "is_barter": True,
                "enabled": True,
            }
            for key, title, rarity, price, points in BARTER_INPUTS
        ]
        + [
            {
                "id": uuid4(),
                "key": key,
                "title": title,
                "icon": key,
                "rarity": "barter_result",
                "price_dinar": 0,
                "points": points,
                "is_barter": False,
                "enabled": True,
            }
            for key, title, points in BARTER_RESULTS
        ],
    )

    rows = []
    for first, second, output in RECIPES:
        input_a, input_b = sorted((first, second))
        rows.append(
            {
                "id": uuid4(),
                "pair_key": f"{input_a}+{input_b}",
                "input_a": input_a,
                "input_b": input_b,
                "output_key": output,
                "enabled": True,
            }
        )
    op.bulk_insert(barter_recipes, rows)


def downgrade() -> None:
    """Remove the seeded reference rows."""
    op.execute(
        barter_recipes.delete().where(
            barter_recipes.c.output_key.in_([output for _, _, output in RECIPES])
        )
    )
    seeded = [row[0] for row in BARTER_INPUTS] + [row[0] for row in BARTER_RESULTS]
    op.execute(catalog_items.delete().where(catalog_items.c.key.in_(seeded)))
