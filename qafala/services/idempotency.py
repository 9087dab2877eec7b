"""
Idempotency Guard - Exactly-once handling of client-retried requests.

A record for (user_id, key) is inserted before any side effect runs. The
unique index turns a concurrent duplicate into an IntegrityError, and the
loser observes the winner's record instead of re-executing. On success the
record is linked to the outcome and stores its response document, which
is what a replay returns.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qafala.config import Settings, settings
from qafala.db.models import IdempotencyRecord, ensure_utc, utc_now
from qafala.exceptions import IdempotentReplayError, WriteVerificationError
from qafala.observability import get_logger, metrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class IdempotencyClaim:
    """Outcome of claiming a key: either fresh, or the earlier request's record."""

    record_id: UUID
    user_id: UUID
    key: str
    endpoint: str
    fresh: bool
    ref_kind: str | None = None
    ref_id: str | None = None
    response: dict[str, Any] | None = None

    def replay_document(self, endpoint: str) -> dict[str, Any]:
        """
        Response of the original request.

        Raises:
            IdempotentReplayError: Original still in flight, or the key was
                used for a different endpoint
        """
        if self.response is None or self.endpoint != endpoint:
            metrics.record_idempotent_replay(endpoint, "in_flight")
            raise IdempotentReplayError(self.key)
        metrics.record_idempotent_replay(endpoint, "replayed")
        return self.response


class IdempotencyGuard:
    """
    Claims, completes and releases idempotency records.

    claim() must be the first write of the caller's transaction: losing
    the insert race rolls the session back.
    """

    def __init__(self, session: AsyncSession, config: Settings | None = None) -> None:
        self.session = session
        self.config = config or settings

    async def claim(
        self, user_id: UUID, key: str, endpoint: str, now: datetime | None = None
    ) -> IdempotencyClaim:
        """Insert the record, or return the live record already holding the key."""
        now = now or utc_now()

        existing = await self._find(user_id, key)
        if existing is not None:
            if ensure_utc(existing.expires_at) > now:
                logger.info(
                    "idempotency_key_seen",
                    user_id=str(user_id),
                    key=key,
                    endpoint=existing.endpoint,
                    completed=existing.response is not None,
                )
                return self._to_claim(existing, fresh=False)
            # Past TTL: the key is free again
            await self.session.delete(existing)
            await self.session.flush()
            logger.info("idempotency_key_expired", user_id=str(user_id), key=key)

        record = IdempotencyRecord(
            user_id=user_id,
            key=key,
            endpoint=endpoint,
            created_at=now,
            expires_at=now + timedelta(seconds=self.config.idempotency_ttl_seconds),
        )
        self.session.add(record)
        try:
            await self.session.flush()
        except IntegrityError:
            await self.session.rollback()
            winner = await self._find(user_id, key)
            if winner is None:
                raise WriteVerificationError(f"Idempotency record {key} vanished after conflict")
            logger.info("idempotency_key_race_lost", user_id=str(user_id), key=key)
            return self._to_claim(winner, fresh=False)

        return self._to_claim(record, fresh=True)

    async def complete(
        self,
        claim: IdempotencyClaim,
        ref_kind: str,
        ref_id: str,
        response: dict[str, Any],
    ) -> None:
        """Link the record to the outcome so replays can be answered."""
        stmt = (
            update(IdempotencyRecord)
            .where(IdempotencyRecord.id == claim.record_id)
            .values(ref_kind=ref_kind, ref_id=ref_id, response=response)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise WriteVerificationError(f"Idempotency record {claim.record_id} missing on link")

    async def release(self, claim: IdempotencyClaim) -> None:
        """Drop a record whose request failed, so a retry can run."""
        await self.session.execute(
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.id == claim.record_id)
            .execution_options(synchronize_session=False)
        )

    async def _find(self, user_id: UUID, key: str) -> IdempotencyRecord | None:
        stmt = (
            select(IdempotencyRecord)
            .where(IdempotencyRecord.user_id == user_id, IdempotencyRecord.key == key)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _to_claim(self, record: IdempotencyRecord, fresh: bool) -> IdempotencyClaim:
        return IdempotencyClaim(
            record_id=record.id,
            user_id=record.user_id,
            key=record.key,
            endpoint=record.endpoint,
            fresh=fresh,
            ref_kind=record.ref_kind,
            ref_id=record.ref_id,
            response=record.response,
        )
