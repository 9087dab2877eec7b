"""
Admin API routes for operating the economy.

Protected by X-Admin-Token (see require_admin).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.api.dependencies import require_admin
from qafala.api.errors import to_http_exception
from qafala.api.routes import payout_response, wallet_response
from qafala.db.session import get_write_db
from qafala.exceptions import EconomyError
from qafala.models.api import (
    FinalizeRequest,
    FinalizeResponse,
    TopupRequest,
    TopupResponse,
    WinnerResponse,
)
from qafala.observability import get_logger
from qafala.services.leaderboard import LeaderboardFinalizer
from qafala.services.wallet import WalletService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/leaderboard/finalize", response_model=FinalizeResponse)
async def finalize_leaderboard(
    request: FinalizeRequest | None = None,
    db: AsyncSession = Depends(get_write_db),
) -> FinalizeResponse:
    """
    Finalize the weekly leaderboard and create prize payouts.

    Normally run by the scheduler after the season ends; force closes the
    current season early.
    """
    request = request or FinalizeRequest()
    logger.info(
        "admin_finalize_requested", force=request.force, winners_limit=request.winners_limit
    )

    try:
        outcome = await LeaderboardFinalizer(db).finalize(
            force=request.force, winners_limit=request.winners_limit
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "weekly_finalize") from exc

    return FinalizeResponse(
        season_id=outcome.season_id,
        already_finalized=outcome.already_finalized,
        winners=[
            WinnerResponse(user_id=w.user_id, username=w.username, points=w.points, rank=w.rank)
            for w in outcome.winners
        ],
        payouts=[payout_response(p) for p in outcome.payouts],
        total_awarded_minor=outcome.total_awarded_minor,
        next_season_id=outcome.next_season_id,
    )


@router.post("/wallet/{user_id}/topup", response_model=TopupResponse)
async def topup_wallet(
    user_id: UUID,
    request: TopupRequest,
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
    db: AsyncSession = Depends(get_write_db),
) -> TopupResponse:
    """Credit dinar to a user's wallet."""
    try:
        result = await WalletService(db).topup(
            user_id, request.amount_dinar, idempotency_key=idempotency_key, reason=request.reason
        )
    except EconomyError as exc:
        raise to_http_exception(exc, "wallet_topup") from exc

    logger.info(
        "admin_topup",
        user_id=str(user_id),
        amount_dinar=request.amount_dinar,
        replay=result.replay,
    )
    return TopupResponse(
        transaction_id=result.transaction_id,
        wallet=wallet_response(result.wallet),
        replay=result.replay,
    )
