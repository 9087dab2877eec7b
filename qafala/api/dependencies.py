"""
FastAPI Dependencies - Caller identity and admin authorization.

NO DICTIONARIES - All dependencies return typed objects.

End users authenticate at the gateway, which forwards the verified user id
in X-User-ID and proves itself with the shared service token. Admin routes
additionally require X-Admin-Token.
"""

import hmac
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import settings
from qafala.db.session import get_write_db
from qafala.exceptions import WriteVerificationError
from qafala.observability import get_logger
from qafala.services.accounts import AccountService

logger = get_logger(__name__)


@dataclass
class UserIdentity:
    """Gateway-verified caller."""

    user_id: UUID
    username: str


# Bearer token scheme for the gateway's service token
bearer_scheme = HTTPBearer(auto_error=False)


def _tokens_match(presented: str, expected: str) -> bool:
    """Constant-time comparison."""
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def verify_service_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Require the gateway's bearer token when one is configured.

    Raises:
        HTTPException 401 if the token is missing or wrong
    """
    if not settings.service_token:
        return

    if credentials is None or not _tokens_match(credentials.credentials, settings.service_token):
        logger.warning("service_token_rejected", presented=credentials is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_username: str | None = Header(None, alias="X-Username"),
    _: None = Depends(verify_service_token),
    db: AsyncSession = Depends(get_write_db),
) -> UserIdentity:
    """
    Resolve the caller and make sure their users row exists.

    Usage:
        @router.get("/v1/wallet")
        async def get_wallet(user: UserIdentity = Depends(get_current_user)):
            ...

    Raises:
        HTTPException 401 if X-User-ID is missing or not a UUID
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header required",
        )

    try:
        user_id = UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID must be a UUID",
        ) from exc

    try:
        account = await AccountService(db).get_or_create(user_id, x_username)
    except WriteVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Account provisioning failed",
        ) from exc

    return UserIdentity(user_id=account.id, username=account.username)


async def require_admin(
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
) -> None:
    """
    Gate admin routes on X-Admin-Token.

    Raises:
        HTTPException 403 if admin access is not configured
        HTTPException 401 if the token is missing or wrong
    """
    if not settings.admin_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API disabled",
        )

    if not x_admin_token or not _tokens_match(x_admin_token, settings.admin_token):
        logger.warning("admin_token_rejected", presented=x_admin_token is not None)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
