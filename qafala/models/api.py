"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


class Rarity(str, Enum):
    """Catalog rarity enumeration."""

    COMMON = "common"
    RARE = "rare"
    LEGENDARY = "legendary"
    BARTER = "barter"
    BARTER_RESULT = "barter_result"


class WalletTxType(str, Enum):
    """Ledger row type enumeration."""

    TOPUP = "topup"
    SPEND = "spend"
    REWARD = "reward"
    EXCHANGE_IN = "exchange_in"
    EXCHANGE_OUT = "exchange_out"
    WITHDRAW_HOLD = "withdraw_hold"
    WITHDRAW_RELEASE = "withdraw_release"
    ADJUSTMENT = "adjustment"


class Direction(str, Enum):
    """Ledger row display direction."""

    IN = "in"
    OUT = "out"


class ExchangeDirection(str, Enum):
    """Currency exchange direction."""

    USD_TO_DINAR = "usd_to_dinar"
    DINAR_TO_USD = "dinar_to_usd"


class BarterResolution(str, Enum):
    """How a barter output was resolved."""

    RECIPE = "recipe"
    FALLBACK = "fallback"


class PayoutStatus(str, Enum):
    """Winner payout status enumeration."""

    AVAILABLE = "available"
    PENDING = "pending"
    CLAIMED = "claimed"
    FAILED = "failed"


class ClaimMode(str, Enum):
    """Payout claim destination."""

    TO_GAME = "to_game"
    WITHDRAW = "withdraw"


class BadgeStatus(str, Enum):
    """Badge progress status."""

    LOCKED = "locked"
    EARNED = "earned"


# ============================================================================
# Shared Models
# ============================================================================


class WalletResponse(BaseModel):
    """Wallet and progression snapshot returned by every mutating endpoint."""

    dinar: int
    usd_minor: int
    points: int
    weekly_points: int
    xp: int
    level: int
    xp_to_next: int


class ErrorResponse(BaseModel):
    """Error body carried in HTTPException detail."""

    code: str
    message: str


# ============================================================================
# Drop Purchase Models
# ============================================================================


class BuyRequest(BaseModel):
    """POST /v1/drops/{drop_id}/buy request body."""

    drop_item_id: UUID
    qty: int = Field(1, ge=1, le=100, description="Units to buy")
    idempotency_key: str | None = Field(
        None,
        min_length=1,
        max_length=255,
        description="Optional here; the Idempotency-Key header takes precedence",
    )


class InventoryDeltaResponse(BaseModel):
    """Inventory change produced by a purchase."""

    item_key: str
    title: str
    icon: str | None
    rarity: str
    qty_added: int
    qty_total: int


class PurchaseLimitsResponse(BaseModel):
    """Per-user cap state after a purchase."""

    bought_this_item: int
    max_per_user: int | None


class PurchaseResponse(BaseModel):
    """Drop purchase outcome."""

    purchase_id: UUID
    wallet: WalletResponse
    inventory_delta: InventoryDeltaResponse
    stock_left: int
    limits: PurchaseLimitsResponse
    replay: bool = False


# ============================================================================
# Inventory Models
# ============================================================================


class InventoryItemResponse(BaseModel):
    """One inventory stack."""

    item_key: str
    item_id: UUID | None
    title: str
    icon: str | None
    rarity: str
    points: int
    kind: str
    qty: int
    acquired_at: datetime


class InventoryListResponse(BaseModel):
    """GET /v1/inventory response."""

    items: list[InventoryItemResponse]
    total_qty: int


# ============================================================================
# Barter Models
# ============================================================================


class BarterRequest(BaseModel):
    """POST /v1/barter/preview and /v1/barter/confirm request body."""

    item1_key: str = Field(..., min_length=1, max_length=100)
    item2_key: str = Field(..., min_length=1, max_length=100)

    @model_validator(mode="after")
    def validate_distinct_items(self) -> "BarterRequest":
        """Two units of the same item cannot be bartered together."""
        if self.item1_key == self.item2_key:
            raise ValueError("item1_key and item2_key must be different")
        return self


class BarterItemResponse(BaseModel):
    """Display snapshot of a barter input or output."""

    key: str
    title: str
    icon: str | None
    rarity: str
    points: int


class BarterPreviewResponse(BaseModel):
    """Would-be barter result."""

    pair_key: str
    item1: BarterItemResponse
    item2: BarterItemResponse
    result: BarterItemResponse
    resolution: BarterResolution


class BarterConfirmResponse(BaseModel):
    """Executed barter result."""

    barter_log_id: UUID
    pair_key: str
    result: BarterItemResponse
    resolution: BarterResolution
    item1_qty_left: int
    item2_qty_left: int
    result_qty: int
    wallet: WalletResponse


class BarterUseRequest(BaseModel):
    """POST /v1/barter/use request body."""

    item_key: str = Field(..., min_length=1, max_length=100)


class BarterUseResponse(BaseModel):
    """Crafted item redeemed for points."""

    item_key: str
    points_awarded: int
    qty_left: int
    barter_log_id: UUID | None
    wallet: WalletResponse


class BarterLogResponse(BaseModel):
    """One barter history row."""

    id: UUID
    item1: BarterItemResponse
    item2: BarterItemResponse
    result: BarterItemResponse
    resolution: BarterResolution
    used: bool
    created_at: datetime


class BarterHistoryResponse(BaseModel):
    """GET /v1/barter/history response."""

    trades: list[BarterLogResponse]


class RecipeResponse(BaseModel):
    """One barter recipe."""

    pair_key: str
    input_a: str
    input_b: str
    output_key: str


class RecipeListResponse(BaseModel):
    """GET /v1/barter/recipes response."""

    recipes: list[RecipeResponse]


# ============================================================================
# Wallet Models
# ============================================================================


class LedgerEntryResponse(BaseModel):
    """One ledger row."""

    id: UUID
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
    tags: list[str]
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/wallet/transactions response."""

    transactions: list[LedgerEntryResponse]
    total_count: int
    has_more: bool


class ExchangeRequest(BaseModel):
    """POST /v1/wallet/exchange request body."""

    direction: ExchangeDirection
    amount: int = Field(..., gt=0, le=10_000_000, description="Source currency amount")


class ExchangeResponse(BaseModel):
    """Currency exchange outcome."""

    direction: ExchangeDirection
    debited: int
    credited: int
    dinar_per_usd: int
    wallet: WalletResponse


class TopupRequest(BaseModel):
    """POST /v1/admin/wallet/{user_id}/topup request body."""

    amount_dinar: int = Field(..., gt=0, le=1_000_000)
    reason: str | None = Field(None, max_length=200)


class TopupResponse(BaseModel):
    """Top-up outcome."""

    transaction_id: UUID | None
    wallet: WalletResponse
    replay: bool = False


# ============================================================================
# Leaderboard and Rewards Models
# ============================================================================


class StandingResponse(BaseModel):
    """One leaderboard row."""

    rank: int
    user_id: UUID
    username: str
    weekly_points: int


class LeaderboardResponse(BaseModel):
    """GET /v1/leaderboard response."""

    season_id: str
    start_at: datetime
    end_at: datetime
    finalized: bool
    standings: list[StandingResponse]


class FinalizeRequest(BaseModel):
    """POST /v1/admin/leaderboard/finalize request body."""

    force: bool = False
    winners_limit: int | None = Field(None, ge=1, le=200)


class WinnerResponse(BaseModel):
    """Winner snapshot row."""

    user_id: UUID
    username: str
    points: int
    rank: int


class PayoutResponse(BaseModel):
    """One winner payout."""

    id: UUID
    season_id: str
    rank: int
    amount_minor: int
    currency: str
    title: str
    status: PayoutStatus
    claim_mode: ClaimMode | None
    claimed_at: datetime | None
    created_at: datetime


class FinalizeResponse(BaseModel):
    """Weekly finalize outcome."""

    season_id: str
    already_finalized: bool
    winners: list[WinnerResponse]
    payouts: list[PayoutResponse]
    total_awarded_minor: int
    next_season_id: str | None


class PayoutListResponse(BaseModel):
    """GET /v1/rewards response."""

    payouts: list[PayoutResponse]


class ClaimRequest(BaseModel):
    """POST /v1/rewards/{payout_id}/claim request body."""

    mode: ClaimMode = ClaimMode.TO_GAME

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v: object) -> object:
        """Accept upper-case mode names from older clients."""
        if isinstance(v, str):
            return v.lower()
        return v


class ClaimResponse(BaseModel):
    """Payout claim outcome."""

    payout: PayoutResponse
    dinar_credited: int
    wallet: WalletResponse


class ClaimAllResponse(BaseModel):
    """POST /v1/rewards/claim-all response."""

    moved_to_pending: int


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str
