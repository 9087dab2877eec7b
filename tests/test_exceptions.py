"""
Tests for exception classes.

Covers attributes, message formats and the stable codes API errors carry.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from qafala.api.errors import STATUS_BY_CODE, to_http_exception
from qafala.exceptions import (
    AlreadyRunningError,
    AntiHoardingLimitError,
    DataIntegrityError,
    DropUnavailableError,
    EconomyError,
    IdempotentReplayError,
    InsufficientFundsError,
    ItemNotFoundError,
    NoRecipeError,
    NotEnoughItemsError,
    OutOfStockError,
    OutputDisabledError,
    PayoutNotAvailableError,
    PayoutNotFoundError,
    SeasonNotEndedError,
    UserNotFoundError,
    WriteVerificationError,
)


class TestEconomyError:
    """Tests for base EconomyError."""

    def test_economy_error_is_exception(self):
        """EconomyError is a subclass of Exception."""
        assert issubclass(EconomyError, Exception)

    def test_default_code(self):
        """Base errors map to INTERNAL_ERROR."""
        assert EconomyError("boom").code == "INTERNAL_ERROR"


class TestInsufficientFundsError:
    """Tests for InsufficientFundsError."""

    def test_attributes(self):
        """Exception has balance, required and currency attributes."""
        exc = InsufficientFundsError(balance=50, required=100)
        assert exc.balance == 50
        assert exc.required == 100
        assert exc.currency == "dinar"

    def test_message_format(self):
        """Message includes both amounts and the currency."""
        exc = InsufficientFundsError(balance=50, required=100, currency="usd_minor")
        assert "50" in str(exc)
        assert "100" in str(exc)
        assert "usd_minor" in str(exc)

    def test_code(self):
        assert InsufficientFundsError(0, 1).code == "INSUFFICIENT_FUNDS"


class TestOutOfStockError:
    """Tests for OutOfStockError."""

    def test_attributes(self):
        """Exception carries the item and both quantities."""
        item_id = uuid4()
        exc = OutOfStockError(item_id, requested=2, available=1)
        assert exc.drop_item_id == item_id
        assert exc.requested == 2
        assert exc.available == 1
        assert exc.code == "OUT_OF_STOCK"


class TestAntiHoardingLimitError:
    """Tests for AntiHoardingLimitError."""

    def test_message_names_the_limit(self):
        """The limit type appears in the message."""
        exc = AntiHoardingLimitError("max_per_user", limit=3, current=3)
        assert "max_per_user" in str(exc)
        assert exc.code == "ANTI_HOARDING_LIMIT"


class TestSeasonNotEndedError:
    """Tests for SeasonNotEndedError."""

    def test_message_includes_end(self):
        """The season end is rendered in ISO format."""
        end = datetime(2025, 11, 17, tzinfo=UTC)
        exc = SeasonNotEndedError("2025-W46", end)
        assert "2025-W46" in str(exc)
        assert end.isoformat() in str(exc)


class TestErrorCodes:
    """Every domain error has a distinct code with an HTTP status."""

    @pytest.mark.parametrize(
        "exc",
        [
            InsufficientFundsError(0, 1),
            OutOfStockError(uuid4(), 1, 0),
            DropUnavailableError(uuid4(), uuid4()),
            AntiHoardingLimitError("per_drop_per_user", 5, 5),
            IdempotentReplayError("key-1"),
            NotEnoughItemsError("honey_jar"),
            ItemNotFoundError("ghost"),
            NoRecipeError("a+b"),
            OutputDisabledError("rare_box"),
            SeasonNotEndedError("2025-W46", datetime(2025, 11, 17, tzinfo=UTC)),
            AlreadyRunningError("weekly_finalize::2025-W46"),
            UserNotFoundError(uuid4()),
            PayoutNotFoundError(uuid4()),
            PayoutNotAvailableError(uuid4(), "claimed"),
        ],
    )
    def test_code_has_status(self, exc):
        """Client-facing errors never fall through to 500."""
        assert exc.code in STATUS_BY_CODE
        assert isinstance(exc, EconomyError)

    def test_infrastructure_errors_are_internal(self):
        """Verification failures share the internal code."""
        assert WriteVerificationError("x").code == "INTERNAL_ERROR"
        assert DataIntegrityError("x").code == "INTERNAL_ERROR"


class TestToHttpException:
    """Tests for the error-to-HTTP mapping."""

    def test_known_code_keeps_message(self):
        """Client errors expose code and message."""
        http = to_http_exception(OutOfStockError(uuid4(), 1, 0), "drop_purchase")
        assert http.status_code == 409
        assert http.detail["code"] == "OUT_OF_STOCK"
        assert "out of stock" in http.detail["message"]

    def test_internal_error_hides_details(self):
        """Infrastructure failures return a generic message."""
        http = to_http_exception(WriteVerificationError("ledger row gone"), "drop_purchase")
        assert http.status_code == 500
        assert http.detail["code"] == "INTERNAL_ERROR"
        assert "ledger row gone" not in http.detail["message"]

    def test_funds_is_payment_required(self):
        assert to_http_exception(InsufficientFundsError(1, 2), "x").status_code == 402
