"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The only documents are the JSON snapshots persisted for idempotent replay
and the season winners list, converted at the edges with to_document().
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from qafala.models.api import (
    BarterResolution,
    ClaimMode,
    Direction,
    ExchangeDirection,
    PayoutStatus,
    WalletTxType,
)

# ============================================================================
# Wallet / Ledger
# ============================================================================


@dataclass(frozen=True)
class WalletSnapshot:
    """Immutable wallet and progression state at a point in time."""

    dinar: int
    usd_minor: int
    points: int
    weekly_points: int
    xp: int
    level: int
    xp_to_next: int

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.dinar < 0:
            raise ValueError(f"Dinar balance cannot be negative: {self.dinar}")
        if self.usd_minor < 0:
            raise ValueError(f"USD balance cannot be negative: {self.usd_minor}")

    def to_document(self) -> dict[str, int]:
        return {
            "dinar": self.dinar,
            "usd_minor": self.usd_minor,
            "points": self.points,
            "weekly_points": self.weekly_points,
            "xp": self.xp,
            "level": self.level,
            "xp_to_next": self.xp_to_next,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "WalletSnapshot":
        return cls(
            dinar=int(doc["dinar"]),
            usd_minor=int(doc["usd_minor"]),
            points=int(doc["points"]),
            weekly_points=int(doc["weekly_points"]),
            xp=int(doc["xp"]),
            level=int(doc["level"]),
            xp_to_next=int(doc["xp_to_next"]),
        )


@dataclass(frozen=True)
class LedgerEntrySpec:
    """What the caller wants recorded alongside a balance change."""

    type: WalletTxType
    title: str
    icon: str | None = None
    subtitle: str | None = None
    direction: Direction | None = None  # derived from the delta sign when None
    ref_kind: str | None = None
    ref_id: str | None = None
    tags: tuple[str, ...] = ()
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        """Validate ledger entry fields."""
        if not self.title:
            raise ValueError("Ledger entry title cannot be empty")


@dataclass(frozen=True)
class LedgerEntryData:
    """Persisted ledger row."""

    id: UUID
    user_id: UUID
    type: WalletTxType
    amount_dinar: int
    amount_usd_minor: int
    balance_after: int
    usd_balance_after: int
    points_delta: int
    title: str
    subtitle: str | None
    icon: str | None
    direction: Direction
    ref_kind: str | None
    ref_id: str | None
    tags: tuple[str, ...]
    created_at: datetime


@dataclass(frozen=True)
class BalanceChange:
    """Result of a WalletLedger mutation: new balances plus the ledger row."""

    wallet: WalletSnapshot
    entry: LedgerEntryData


@dataclass(frozen=True)
class LedgerTotals:
    """Sums of ledger deltas for one user."""

    dinar_delta: int
    usd_minor_delta: int
    points_delta: int
    entry_count: int


# ============================================================================
# Inventory
# ============================================================================


@dataclass(frozen=True)
class ItemDescriptor:
    """Canonical description of an item being added to an inventory."""

    item_key: str
    title: str
    icon: str | None
    rarity: str
    points: int = 0
    kind: str = "drop"
    item_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate descriptor fields."""
        if not self.item_key:
            raise ValueError("item_key cannot be empty")
        if self.kind not in ("drop", "barter"):
            raise ValueError(f"Invalid inventory kind: {self.kind}")


@dataclass(frozen=True)
class InventoryItemData:
    """One inventory stack."""

    id: UUID
    user_id: UUID
    item_key: str
    item_id: UUID | None
    title: str
    icon: str | None
    rarity: str
    points: int
    kind: str
    qty: int
    acquired_at: datetime


# ============================================================================
# Drop Purchase
# ============================================================================


@dataclass(frozen=True)
class PurchaseIntent:
    """Domain model for a drop purchase before execution - immutable intent."""

    user_id: UUID
    drop_id: UUID
    drop_item_id: UUID
    qty: int
    idempotency_key: str | None = None

    def __post_init__(self) -> None:
        """Validate purchase constraints."""
        if self.qty <= 0:
            raise ValueError(f"Purchase quantity must be positive: {self.qty}")
        if self.idempotency_key is not None and not self.idempotency_key.strip():
            raise ValueError("idempotency_key cannot be blank")


@dataclass(frozen=True)
class InventoryDelta:
    """Inventory change produced by a purchase."""

    item_key: str
    title: str
    icon: str | None
    rarity: str
    qty_added: int
    qty_total: int


@dataclass(frozen=True)
class PurchaseLimits:
    """Per-user cap state after a purchase."""

    bought_this_item: int
    max_per_user: int | None


@dataclass(frozen=True)
class PurchaseResult:
    """Drop purchase outcome, replayable from its document form."""

    purchase_id: UUID
    wallet: WalletSnapshot
    inventory_delta: InventoryDelta
    stock_left: int
    limits: PurchaseLimits
    replay: bool = False

    def to_document(self) -> dict[str, Any]:
        return {
            "purchase_id": str(self.purchase_id),
            "wallet": self.wallet.to_document(),
            "inventory_delta": {
                "item_key": self.inventory_delta.item_key,
                "title": self.inventory_delta.title,
                "icon": self.inventory_delta.icon,
                "rarity": self.inventory_delta.rarity,
                "qty_added": self.inventory_delta.qty_added,
                "qty_total": self.inventory_delta.qty_total,
            },
            "stock_left": self.stock_left,
            "limits": {
                "bought_this_item": self.limits.bought_this_item,
                "max_per_user": self.limits.max_per_user,
            },
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any], replay: bool = True) -> "PurchaseResult":
        delta = doc["inventory_delta"]
        limits = doc["limits"]
        return cls(
            purchase_id=UUID(doc["purchase_id"]),
            wallet=WalletSnapshot.from_document(doc["wallet"]),
            inventory_delta=InventoryDelta(
                item_key=delta["item_key"],
                title=delta["title"],
                icon=delta["icon"],
                rarity=delta["rarity"],
                qty_added=int(delta["qty_added"]),
                qty_total=int(delta["qty_total"]),
            ),
            stock_left=int(doc["stock_left"]),
            limits=PurchaseLimits(
                bought_this_item=int(limits["bought_this_item"]),
                max_per_user=limits["max_per_user"],
            ),
            replay=replay,
        )


# ============================================================================
# Barter
# ============================================================================


@dataclass(frozen=True)
class BarterItemSnapshot:
    """Display snapshot of a barter input or output."""

    key: str
    title: str
    icon: str | None
    rarity: str
    points: int = 0


@dataclass(frozen=True)
class BarterOutcome:
    """Resolution of a barter pair."""

    pair_key: str
    item1: BarterItemSnapshot
    item2: BarterItemSnapshot
    result: BarterItemSnapshot
    resolution: BarterResolution


@dataclass(frozen=True)
class BarterResult:
    """Executed barter."""

    barter_log_id: UUID
    outcome: BarterOutcome
    item1_qty_left: int
    item2_qty_left: int
    result_qty: int
    wallet: WalletSnapshot


@dataclass(frozen=True)
class BarterUseResult:
    """Crafted item redeemed for points."""

    item_key: str
    points_awarded: int
    qty_left: int
    barter_log_id: UUID | None
    wallet: WalletSnapshot


@dataclass(frozen=True)
class BarterLogData:
    """One barter history row."""

    id: UUID
    item1: BarterItemSnapshot
    item2: BarterItemSnapshot
    result: BarterItemSnapshot
    resolution: BarterResolution
    used: bool
    created_at: datetime


@dataclass(frozen=True)
class RecipeData:
    """One barter recipe."""

    pair_key: str
    input_a: str
    input_b: str
    output_key: str


# ============================================================================
# Leaderboard / Rewards
# ============================================================================


@dataclass(frozen=True)
class WinnerSnapshot:
    """Winner row frozen into the season at finalize time."""

    user_id: UUID
    username: str
    points: int
    rank: int

    def __post_init__(self) -> None:
        """Validate winner constraints."""
        if self.rank < 1:
            raise ValueError(f"Rank must be positive: {self.rank}")

    def to_document(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "username": self.username,
            "points": self.points,
            "rank": self.rank,
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "WinnerSnapshot":
        return cls(
            user_id=UUID(doc["user_id"]),
            username=doc["username"],
            points=int(doc["points"]),
            rank=int(doc["rank"]),
        )


@dataclass(frozen=True)
class PrizeTierData:
    """Inclusive rank range and the amount each rank in it receives."""

    min_rank: int
    max_rank: int
    amount_minor: int

    def __post_init__(self) -> None:
        """Validate tier constraints."""
        if self.min_rank < 1 or self.max_rank < self.min_rank:
            raise ValueError(f"Invalid tier range: {self.min_rank}-{self.max_rank}")
        if self.amount_minor < 0:
            raise ValueError(f"Tier amount cannot be negative: {self.amount_minor}")

    def contains(self, rank: int) -> bool:
        return self.min_rank <= rank <= self.max_rank


@dataclass(frozen=True)
class PayoutAward:
    """A payout the prize plan grants, before persistence."""

    user_id: UUID
    rank: int
    amount_minor: int


@dataclass(frozen=True)
class PayoutData:
    """Persisted winner payout."""

    id: UUID
    user_id: UUID
    season_id: str
    rank: int
    amount_minor: int
    currency: str
    title: str
    status: PayoutStatus
    claim_mode: ClaimMode | None
    claimed_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class SeasonData:
    """Season window and finalize state."""

    season_id: str
    start_at: datetime
    end_at: datetime
    finalized: bool
    winners: tuple[WinnerSnapshot, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StandingEntry:
    """Current leaderboard row."""

    rank: int
    user_id: UUID
    username: str
    weekly_points: int


@dataclass(frozen=True)
class FinalizeOutcome:
    """Weekly finalize result."""

    season_id: str
    already_finalized: bool
    winners: tuple[WinnerSnapshot, ...]
    payouts: tuple[PayoutData, ...]
    total_awarded_minor: int
    next_season_id: str | None


@dataclass(frozen=True)
class ClaimResult:
    """Payout claim outcome."""

    payout: PayoutData
    dinar_credited: int
    wallet: WalletSnapshot


@dataclass(frozen=True)
class ExchangeResult:
    """Currency exchange outcome."""

    direction: ExchangeDirection
    debited: int
    credited: int
    dinar_per_usd: int
    wallet: WalletSnapshot


@dataclass(frozen=True)
class TopupResult:
    """Admin top-up outcome."""

    transaction_id: UUID | None
    wallet: WalletSnapshot
    replay: bool = False


# ============================================================================
# Progression
# ============================================================================


@dataclass(frozen=True)
class LevelState:
    """Level, xp into the level and xp needed for the next one."""

    level: int
    xp: int
    xp_to_next: int


@dataclass(frozen=True)
class BadgeDefinition:
    """Static badge definition."""

    key: str
    title: str
    target: int


@dataclass(frozen=True)
class BadgeProgress:
    """Badge progress after an increment."""

    badge_key: str
    progress: int
    target: int
    newly_earned: bool
