"""
Tests for WalletService exchange and admin top-ups.
"""

from uuid import uuid4

import pytest

from qafala.exceptions import InsufficientFundsError, UserNotFoundError
from qafala.models.api import ExchangeDirection, WalletTxType
from qafala.services.ledger import WalletLedger
from qafala.services.wallet import WalletService


class TestExchange:
    """Tests for currency exchange."""

    async def test_usd_to_dinar(self, session, seed, config):
        user = await seed.user(dinar=0, usd_minor=1000)
        result = await WalletService(session, config).exchange(
            user.id, ExchangeDirection.USD_TO_DINAR, 500
        )
        assert result.debited == 500
        assert result.credited == 100
        assert result.dinar_per_usd == config.dinar_per_usd
        assert result.wallet.usd_minor == 500
        assert result.wallet.dinar == 100

    async def test_dinar_to_usd(self, session, seed, config):
        user = await seed.user(dinar=200)
        result = await WalletService(session, config).exchange(
            user.id, ExchangeDirection.DINAR_TO_USD, 200
        )
        assert result.credited == 1000
        assert result.wallet.dinar == 0
        assert result.wallet.usd_minor == 1000

        entries, total = await WalletLedger(session).history(user.id)
        assert total == 1
        assert entries[0].type == WalletTxType.EXCHANGE_OUT

    async def test_insufficient_source_balance(self, session, seed, config):
        user = await seed.user(dinar=0, usd_minor=100)
        with pytest.raises(InsufficientFundsError) as exc_info:
            await WalletService(session, config).exchange(
                user.id, ExchangeDirection.USD_TO_DINAR, 500
            )
        assert exc_info.value.currency == "usd_minor"
        assert (await WalletLedger(session).snapshot(user.id)).usd_minor == 100


class TestTopup:
    """Tests for admin top-ups."""

    async def test_topup_credits_and_records(self, session, seed, config):
        user = await seed.user(dinar=0)
        result = await WalletService(session, config).topup(user.id, 250, reason="support")

        assert result.replay is False
        assert result.wallet.dinar == 250
        entries, _ = await WalletLedger(session).history(user.id)
        assert entries[0].id == result.transaction_id
        assert entries[0].subtitle == "support"

    async def test_same_key_replays(self, session, seed, config):
        """A retried top-up credits once and returns the first response."""
        user = await seed.user(dinar=0)
        service = WalletService(session, config)

        first = await service.topup(user.id, 250, idempotency_key="grant-1")
        again = await service.topup(user.id, 250, idempotency_key="grant-1")

        assert again.replay is True
        assert again.transaction_id == first.transaction_id
        assert again.wallet == first.wallet
        assert (await WalletLedger(session).snapshot(user.id)).dinar == 250

    async def test_unknown_user(self, session, config):
        with pytest.raises(UserNotFoundError):
            await WalletService(session, config).topup(uuid4(), 100)
