"""
API Routes - FastAPI endpoints for the player-facing economy.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.api.dependencies import UserIdentity, get_current_user
from qafala.api.errors import error_detail, to_http_exception
from qafala.config import settings
from qafala.db.session import get_read_db, get_write_db
from qafala.exceptions import EconomyError
from qafala.models.api import (
    BarterConfirmResponse,
    BarterHistoryResponse,
    BarterItemResponse,
    BarterLogResponse,
    BarterPreviewResponse,
    BarterRequest,
    BarterUseRequest,
    BarterUseResponse,
    BuyRequest,
    ClaimAllResponse,
    ClaimMode,
    ClaimRequest,
    ClaimResponse,
    ExchangeRequest,
    ExchangeResponse,
    HealthResponse,
    InventoryDeltaResponse,
    InventoryItemResponse,
    InventoryListResponse,
    LeaderboardResponse,
    LedgerEntryResponse,
    PayoutListResponse,
    PayoutResponse,
    PurchaseLimitsResponse,
    PurchaseResponse,
    RecipeListResponse,
    RecipeResponse,
    StandingResponse,
    TransactionListResponse,
    WalletResponse,
)
from qafala.models.domain import (
    BarterItemSnapshot,
    LedgerEntryData,
    PayoutData,
    PurchaseIntent,
    PurchaseResult,
    WalletSnapshot,
)
from qafala.services.barter import BarterEngine
from qafala.services.drop_purchase import DropPurchaseEngine
from qafala.services.inventory import InventoryStore
from qafala.services.leaderboard import LeaderboardFinalizer
from qafala.services.rewards import RewardsService
from qafala.services.wallet import WalletService

router = APIRouter()


# ============================================================================
# Response Converters
# ============================================================================


def wallet_response(wallet: WalletSnapshot) -> WalletResponse:
    return WalletResponse(
        dinar=wallet.dinar,
        usd_minor=wallet.usd_minor,
        points=wallet.points,
        weekly_points=wallet.weekly_points,
        xp=wallet.xp,
        level=wallet.level,
        xp_to_next=wallet.xp_to_next,
    )


def purchase_response(result: PurchaseResult) -> PurchaseResponse:
    delta = result.inventory_delta
    return PurchaseResponse(
        purchase_id=result.purchase_id,
        wallet=wallet_response(result.wallet),
        inventory_delta=InventoryDeltaResponse(
            item_key=delta.item_key,
            title=delta.title,
            icon=delta.icon,
            rarity=delta.rarity,
            qty_added=delta.qty_added,
            qty_total=delta.qty_total,
        ),
        stock_left=result.stock_left,
        limits=PurchaseLimitsResponse(
            bought_this_item=result.limits.bought_this_item,
            max_per_user=result.limits.max_per_user,
        ),
        replay=result.replay,
    )


def barter_item_response(item: BarterItemSnapshot) -> BarterItemResponse:
    return BarterItemResponse(
        key=item.key, title=item.title, icon=item.icon, rarity=item.rarity, points=item.points
    )


def payout_response(payout: PayoutData) -> PayoutResponse:
    return PayoutResponse(
        id=payout.id,
        season_id=payout.season_id,
        rank=payout.rank,
        amount_minor=payout.amount_minor,
        currency=payout.currency,
        title=payout.title,
        status=payout.status,
        claim_mode=payout.claim_mode,
        claimed_at=payout.claimed_at,
        created_at=payout.created_at,
    )


def ledger_entry_response(entry: LedgerEntryData) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        type=entry.type,
        amount_dinar=entry.amount_dinar,
        amount_usd_minor=entry.amount_usd_minor,
        balance_after=entry.balance_after,
        usd_balance_after=entry.usd_balance_after,
        points_delta=entry.points_delta,
        title=entry.title,
        subtitle=entry.subtitle,
        icon=entry.icon,
        direction=entry.direction,
        ref_kind=entry.ref_kind,
        ref_id=entry.ref_id,
        tags=list(entry.tags),
        created_at=entry.created_at,
    )


# ============================================================================
# Drops & Inventory
# ============================================================================


@router.post("/v1/drops/{drop_id}/buy", response_model=PurchaseResponse)
async def buy_drop_item(
    drop_id: UUID,
    request: BuyRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> PurchaseResponse:
    """
    Buy units of a drop item.

    Write operation - requires primary database. The Idempotency-Key header
    wins over the body field; a repeated key replays the first response.
    """
    if request.qty > settings.max_purchase_qty:
        raise HTTPException(
            status_code=422,
            detail=error_detail(
                "INVALID_QUANTITY", f"qty must not exceed {settings.max_purchase_qty}"
            ),
        )

    intent = PurchaseIntent(
        user_id=user.user_id,
        drop_id=drop_id,
        drop_item_id=request.drop_item_id,
        qty=request.qty,
        idempotency_key=idempotency_key or request.idempotency_key,
    )

    try:
        result = await DropPurchaseEngine(db).purchase(intent)
    except EconomyError as exc:
        raise to_http_exception(exc, "drop_purchase") from exc

    return purchase_response(result)


@router.get("/v1/inventory", response_model=InventoryListResponse)
async def list_inventory(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> InventoryListResponse:
    """Non-empty inventory stacks, oldest first."""
    items = await InventoryStore(db).list_for_user(user.user_id)
    return InventoryListResponse(
        items=[
            InventoryItemResponse(
                item_key=item.item_key,
                item_id=item.item_id,
                title=item.title,
                icon=item.icon,
                rarity=item.rarity,
                points=item.points,
                kind=item.kind,
                qty=item.qty,
                acquired_at=item.acquired_at,
            )
            for item in items
        ],
        total_qty=sum(item.qty for item in items),
    )


# ============================================================================
# Barter
# ============================================================================


@router.post("/v1/barter/preview", response_model=BarterPreviewResponse)
async def preview_barter(
    request: BarterRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> BarterPreviewResponse:
    """Resolve what a pair would produce without trading."""
    try:
        outcome = await BarterEngine(db).preview(user.user_id, request.item1_key, request.item2_key)
    except EconomyError as exc:
        raise to_http_exception(exc, "barter_preview") from exc

    return BarterPreviewResponse(
        pair_key=outcome.pair_key,
        item1=barter_item_response(outcome.item1),
        item2=barter_item_response(outcome.item2),
        result=barter_item_response(outcome.result),
        resolution=outcome.resolution,
    )


@router.post("/v1/barter/confirm", response_model=BarterConfirmResponse)
async def confirm_barter(
    request: BarterRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> BarterConfirmResponse:
    """Trade one of each input for the resolved output."""
    try:
        result = await BarterEngine(db).confirm(user.user_id, request.item1_key, request.item2_key)
    except EconomyError as exc:
        raise to_http_exception(exc, "barter_confirm") from exc

    return BarterConfirmResponse(
        barter_log_id=result.barter_log_id,
        pair_key=result.outcome.pair_key,
        result=barter_item_response(result.outcome.result),
        resolution=result.outcome.resolution,
        item1_qty_left=result.item1_qty_left,
        item2_qty_left=result.item2_qty_left,
        result_qty=result.result_qty,
        wallet=wallet_response(result.wallet),
    )


@router.post("/v1/barter/use", response_model=BarterUseResponse)
async def use_barter_item(
    request: BarterUseRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> BarterUseResponse:
    """Redeem one crafted item for points."""
    try:
        result = await BarterEngine(db).use(user.user_id, request.item_key)
    except EconomyError as exc:
        raise to_http_exception(exc, "barter_use") from exc

    return BarterUseResponse(
        item_key=result.item_key,
        points_awarded=result.points_awarded,
        qty_left=result.qty_left,
        barter_log_id=result.barter_log_id,
        wallet=wallet_response(result.wallet),
    )


@router.get("/v1/barter/history", response_model=BarterHistoryResponse)
async def barter_history(
    limit: int = Query(50, ge=1, le=200),
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> BarterHistoryResponse:
    """Most recent trades first."""
    logs = await BarterEngine(db).history(user.user_id, limit=limit)
    return BarterHistoryResponse(
        trades=[
            BarterLogResponse(
                id=log.id,
                item1=barter_item_response(log.item1),
                item2=barter_item_response(log.item2),
                result=barter_item_response(log.result),
                resolution=log.resolution,
                used=log.used,
                created_at=log.created_at,
            )
            for log in logs
        ]
    )


@router.get("/v1/barter/recipes", response_model=RecipeListResponse)
async def list_recipes(db: AsyncSession = Depends(get_read_db)) -> RecipeListResponse:
    """Enabled recipes. Public."""
    recipes = await BarterEngine(db).list_recipes()
    return RecipeListResponse(
        recipes=[
            RecipeResponse(
                pair_key=r.pair_key, input_a=r.input_a, input_b=r.input_b, output_key=r.output_key
            )
            for r in recipes
        ]
    )


# ============================================================================
# Wallet
# ============================================================================


@router.get("/v1/wallet", response_model=WalletResponse)
async def get_wallet(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> WalletResponse:
    """Balances and progression."""
    try:
        wallet = await WalletService(db).snapshot(user.user_id)
    except EconomyError as exc:
        raise to_http_exception(exc, "get_wallet") from exc
    return wallet_response(wallet)


@router.get("/v1/wallet/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> TransactionListResponse:
    """Ledger history, newest first."""
    entries, total = await WalletService(db).history(user.user_id, limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[ledger_entry_response(e) for e in entries],
        total_count=total,
        has_more=offset + len(entries) < total,
    )


@router.post("/v1/wallet/exchange", response_model=ExchangeResponse)
async def exchange_currency(
    request: ExchangeRequest,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ExchangeResponse:
    """Convert between USD cents and dinar at the configured rate."""
    try:
        result = await WalletService(db).exchange(user.user_id, request.direction, request.amount)
    except EconomyError as exc:
        raise to_http_exception(exc, "wallet_exchange") from exc

    return ExchangeResponse(
        direction=result.direction,
        debited=result.debited,
        credited=result.credited,
        dinar_per_usd=result.dinar_per_usd,
        wallet=wallet_response(result.wallet),
    )


# ============================================================================
# Leaderboard & Rewards
# ============================================================================


@router.get("/v1/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_read_db),
) -> LeaderboardResponse:
    """Current season and weekly standings. Public."""
    finalizer = LeaderboardFinalizer(db)
    season = await finalizer.current_season()
    standings = await finalizer.standings(limit=limit)
    return LeaderboardResponse(
        season_id=season.season_id,
        start_at=season.start_at,
        end_at=season.end_at,
        finalized=season.finalized,
        standings=[
            StandingResponse(
                rank=s.rank, user_id=s.user_id, username=s.username, weekly_points=s.weekly_points
            )
            for s in standings
        ],
    )


@router.get("/v1/rewards", response_model=PayoutListResponse)
async def list_rewards(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_read_db),
) -> PayoutListResponse:
    """The caller's prize payouts."""
    payouts = await RewardsService(db).list_payouts(user.user_id)
    return PayoutListResponse(payouts=[payout_response(p) for p in payouts])


@router.post("/v1/rewards/claim-all", response_model=ClaimAllResponse)
async def claim_all_rewards(
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ClaimAllResponse:
    """Move every available payout to pending withdrawal."""
    moved = await RewardsService(db).claim_all(user.user_id)
    return ClaimAllResponse(moved_to_pending=moved)


@router.post("/v1/rewards/{payout_id}/claim", response_model=ClaimResponse)
async def claim_reward(
    payout_id: UUID,
    request: ClaimRequest | None = None,
    user: UserIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> ClaimResponse:
    """Claim one payout into the game wallet (default) or for withdrawal."""
    mode = request.mode if request else ClaimMode.TO_GAME
    try:
        result = await RewardsService(db).claim(user.user_id, payout_id, mode)
    except EconomyError as exc:
        raise to_http_exception(exc, "reward_claim") from exc

    return ClaimResponse(
        payout=payout_response(result.payout),
        dinar_credited=result.dinar_credited,
        wallet=wallet_response(result.wallet),
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
