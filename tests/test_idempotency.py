"""
Tests for IdempotencyGuard.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from qafala.exceptions import IdempotentReplayError
from qafala.services.idempotency import IdempotencyClaim, IdempotencyGuard


class TestClaim:
    """Tests for claiming keys."""

    async def test_first_claim_is_fresh(self, session, config):
        claim = await IdempotencyGuard(session, config).claim(uuid4(), "key-1", "drop_purchase")
        assert claim.fresh is True
        assert claim.response is None

    async def test_second_claim_sees_first(self, session, config):
        """A live key is not claimable twice."""
        guard = IdempotencyGuard(session, config)
        user_id = uuid4()
        first = await guard.claim(user_id, "key-1", "drop_purchase")
        await session.commit()

        second = await guard.claim(user_id, "key-1", "drop_purchase")
        assert second.fresh is False
        assert second.record_id == first.record_id

    async def test_keys_are_scoped_per_user(self, session, config):
        guard = IdempotencyGuard(session, config)
        await guard.claim(uuid4(), "shared", "drop_purchase")
        other = await guard.claim(uuid4(), "shared", "drop_purchase")
        assert other.fresh is True

    async def test_expired_key_is_claimable_again(self, session, config):
        """Past the TTL the key is free."""
        guard = IdempotencyGuard(session, config)
        user_id = uuid4()
        start = datetime(2025, 11, 12, tzinfo=UTC)
        first = await guard.claim(user_id, "key-1", "topup", now=start)
        await session.commit()

        later = start + timedelta(seconds=config.idempotency_ttl_seconds + 1)
        again = await guard.claim(user_id, "key-1", "topup", now=later)
        assert again.fresh is True
        assert again.record_id != first.record_id


class TestCompleteAndReplay:
    """Tests for linking outcomes and replaying them."""

    async def test_completed_claim_replays_response(self, session, config):
        guard = IdempotencyGuard(session, config)
        user_id = uuid4()
        claim = await guard.claim(user_id, "key-1", "topup")
        await guard.complete(claim, "wallet_tx", "tx-1", {"transaction_id": "tx-1"})
        await session.commit()

        seen = await guard.claim(user_id, "key-1", "topup")
        assert seen.ref_kind == "wallet_tx"
        assert seen.ref_id == "tx-1"
        assert seen.replay_document("topup") == {"transaction_id": "tx-1"}

    async def test_in_flight_claim_cannot_replay(self, session, config):
        """No stored response means the original is still running."""
        guard = IdempotencyGuard(session, config)
        user_id = uuid4()
        await guard.claim(user_id, "key-1", "topup")
        await session.commit()

        seen = await guard.claim(user_id, "key-1", "topup")
        with pytest.raises(IdempotentReplayError):
            seen.replay_document("topup")

    def test_endpoint_mismatch_cannot_replay(self):
        """A key used on one endpoint never replays on another."""
        claim = IdempotencyClaim(
            record_id=uuid4(),
            user_id=uuid4(),
            key="key-1",
            endpoint="topup",
            fresh=False,
            response={"ok": True},
        )
        with pytest.raises(IdempotentReplayError):
            claim.replay_document("drop_purchase")

    async def test_release_frees_key(self, session, config):
        guard = IdempotencyGuard(session, config)
        user_id = uuid4()
        claim = await guard.claim(user_id, "key-1", "topup")
        await guard.release(claim)
        await session.commit()

        again = await guard.claim(user_id, "key-1", "topup")
        assert again.fresh is True
