"""
Tests for domain models and API request validation.
"""

from uuid import uuid4

import pytest
from pydantic import ValidationError

from qafala.models.api import (
    BarterRequest,
    BuyRequest,
    ClaimMode,
    ClaimRequest,
    ExchangeRequest,
    WalletTxType,
)
from qafala.models.domain import (
    InventoryDelta,
    ItemDescriptor,
    LedgerEntrySpec,
    PrizeTierData,
    PurchaseIntent,
    PurchaseLimits,
    PurchaseResult,
    WalletSnapshot,
    WinnerSnapshot,
)


def make_wallet(dinar: int = 950) -> WalletSnapshot:
    return WalletSnapshot(
        dinar=dinar, usd_minor=0, points=5, weekly_points=5, xp=10, level=1, xp_to_next=100
    )


class TestWalletSnapshot:
    """Tests for WalletSnapshot."""

    def test_negative_dinar_rejected(self):
        """Balances cannot be negative."""
        with pytest.raises(ValueError, match="Dinar"):
            make_wallet(dinar=-1)

    def test_document_round_trip(self):
        """from_document inverts to_document."""
        wallet = make_wallet()
        assert WalletSnapshot.from_document(wallet.to_document()) == wallet


class TestPurchaseIntent:
    """Tests for PurchaseIntent."""

    def test_qty_must_be_positive(self):
        """Zero quantity is rejected."""
        with pytest.raises(ValueError):
            PurchaseIntent(user_id=uuid4(), drop_id=uuid4(), drop_item_id=uuid4(), qty=0)

    def test_blank_key_rejected(self):
        """Whitespace-only idempotency keys are rejected."""
        with pytest.raises(ValueError, match="blank"):
            PurchaseIntent(
                user_id=uuid4(), drop_id=uuid4(), drop_item_id=uuid4(), qty=1, idempotency_key="  "
            )


class TestPurchaseResult:
    """Tests for the replayable purchase document."""

    def test_replay_flag_set_from_document(self):
        """A result rebuilt from its document is marked as a replay."""
        result = PurchaseResult(
            purchase_id=uuid4(),
            wallet=make_wallet(),
            inventory_delta=InventoryDelta(
                item_key="k", title="Spice", icon=None, rarity="common", qty_added=1, qty_total=3
            ),
            stock_left=4,
            limits=PurchaseLimits(bought_this_item=1, max_per_user=None),
        )
        restored = PurchaseResult.from_document(result.to_document())
        assert restored.replay is True
        assert restored.purchase_id == result.purchase_id
        assert restored.inventory_delta == result.inventory_delta
        assert restored.limits == result.limits


class TestItemDescriptor:
    """Tests for ItemDescriptor."""

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            ItemDescriptor(item_key="", title="x", icon=None, rarity="common")

    def test_unknown_kind_rejected(self):
        """Only drop and barter stacks exist."""
        with pytest.raises(ValueError, match="kind"):
            ItemDescriptor(item_key="k", title="x", icon=None, rarity="common", kind="gift")


class TestLedgerEntrySpec:
    """Tests for LedgerEntrySpec."""

    def test_title_required(self):
        with pytest.raises(ValueError):
            LedgerEntrySpec(type=WalletTxType.SPEND, title="")


class TestPrizeTierData:
    """Tests for PrizeTierData."""

    def test_contains_is_inclusive(self):
        """Both range ends are part of the tier."""
        tier = PrizeTierData(min_rank=2, max_rank=3, amount_minor=1000)
        assert tier.contains(2)
        assert tier.contains(3)
        assert not tier.contains(1)
        assert not tier.contains(4)

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            PrizeTierData(min_rank=3, max_rank=2, amount_minor=1)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            PrizeTierData(min_rank=1, max_rank=1, amount_minor=-1)


class TestWinnerSnapshot:
    """Tests for WinnerSnapshot."""

    def test_rank_must_be_positive(self):
        with pytest.raises(ValueError):
            WinnerSnapshot(user_id=uuid4(), username="a", points=1, rank=0)

    def test_document_uses_string_ids(self):
        """Documents are JSON-safe."""
        winner = WinnerSnapshot(user_id=uuid4(), username="a", points=7, rank=1)
        doc = winner.to_document()
        assert doc["user_id"] == str(winner.user_id)
        assert WinnerSnapshot.from_document(doc) == winner


class TestRequestModels:
    """Tests for API request validation."""

    def test_barter_rejects_identical_keys(self):
        """A pair needs two different items."""
        with pytest.raises(ValidationError):
            BarterRequest(item1_key="honey_jar", item2_key="honey_jar")

    def test_buy_qty_bounds(self):
        """qty is limited to 1..100."""
        with pytest.raises(ValidationError):
            BuyRequest(drop_item_id=uuid4(), qty=0)
        with pytest.raises(ValidationError):
            BuyRequest(drop_item_id=uuid4(), qty=101)
        assert BuyRequest(drop_item_id=uuid4()).qty == 1

    def test_claim_mode_case_insensitive(self):
        """Upper-case modes from older clients are accepted."""
        assert ClaimRequest(mode="WITHDRAW").mode == ClaimMode.WITHDRAW
        assert ClaimRequest().mode == ClaimMode.TO_GAME

    def test_exchange_amount_positive(self):
        with pytest.raises(ValidationError):
            ExchangeRequest(direction="usd_to_dinar", amount=0)

