"""
Error Mapping - Economy exceptions to HTTP responses.

Every error body is {"code": ..., "message": ...} so clients can branch on
the stable code rather than the wording.
"""

from fastapi import HTTPException, status

from qafala.exceptions import EconomyError
from qafala.models.api import ErrorResponse
from qafala.observability import get_logger, metrics

logger = get_logger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "INSUFFICIENT_FUNDS": 402,
    "USER_NOT_FOUND": 404,
    "PAYOUT_NOT_FOUND": 404,
    "OUT_OF_STOCK": 409,
    "IDEMPOTENT_REPLAY": 409,
    "ALREADY_RUNNING": 409,
    "PAYOUT_NOT_AVAILABLE": 409,
    "SEASON_NOT_ENDED": 409,
    "DROP_UNAVAILABLE": 410,
    "NO_RECIPE": 422,
    "OUTPUT_DISABLED": 422,
    "NOT_ENOUGH_ITEMS": 422,
    "ITEM_NOT_FOUND": 422,
    "ANTI_HOARDING_LIMIT": 429,
}


def error_detail(code: str, message: str) -> dict[str, str]:
    return ErrorResponse(code=code, message=message).model_dump()


def to_http_exception(exc: EconomyError, operation: str) -> HTTPException:
    """Build the HTTPException for exc; infrastructure failures become 500."""
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        metrics.record_error(type(exc).__name__, operation)
        logger.error("economy_infrastructure_error", operation=operation, error=str(exc))
        return HTTPException(
            status_code=status_code,
            detail=error_detail(exc.code, "Database integrity error"),
        )
    return HTTPException(status_code=status_code, detail=error_detail(exc.code, str(exc)))
