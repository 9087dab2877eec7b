"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Every exception carries a stable machine-readable code for API responses.
"""

from datetime import datetime
from uuid import UUID


class EconomyError(Exception):
    """Base exception for all economy errors."""

    code = "INTERNAL_ERROR"


class InsufficientFundsError(EconomyError):
    """Raised when a wallet balance cannot cover a debit."""

    code = "INSUFFICIENT_FUNDS"

    def __init__(self, balance: int, required: int, currency: str = "dinar") -> None:
        self.balance = balance
        self.required = required
        self.currency = currency
        super().__init__(
            f"Insufficient {currency}. Balance: {balance}, Required: {required}"
        )


class OutOfStockError(EconomyError):
    """Raised when a drop item cannot cover the requested quantity."""

    code = "OUT_OF_STOCK"

    def __init__(self, drop_item_id: UUID, requested: int, available: int) -> None:
        self.drop_item_id = drop_item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Drop item {drop_item_id} out of stock. Requested: {requested}, Available: {available}"
        )


class DropUnavailableError(EconomyError):
    """Raised when a drop is closed or does not contain the item."""

    code = "DROP_UNAVAILABLE"

    def __init__(self, drop_id: UUID, drop_item_id: UUID) -> None:
        self.drop_id = drop_id
        self.drop_item_id = drop_item_id
        super().__init__(f"Drop {drop_id} or item {drop_item_id} is not available")


class AntiHoardingLimitError(EconomyError):
    """Raised when a per-user purchase cap would be exceeded."""

    code = "ANTI_HOARDING_LIMIT"

    def __init__(self, limit_type: str, limit: int, current: int) -> None:
        self.limit_type = limit_type
        self.limit = limit
        self.current = current
        super().__init__(
            f"Purchase limit '{limit_type}' reached. Limit: {limit}, Current: {current}"
        )


class IdempotentReplayError(EconomyError):
    """Raised when an idempotency key is reused before the original has an outcome."""

    code = "IDEMPOTENT_REPLAY"

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(f"Request with idempotency key '{idempotency_key}' is still in flight")


class NotEnoughItemsError(EconomyError):
    """Raised when the inventory cannot cover a decrement."""

    code = "NOT_ENOUGH_ITEMS"

    def __init__(self, item_key: str, required: int = 1) -> None:
        self.item_key = item_key
        self.required = required
        super().__init__(f"Not enough '{item_key}' in inventory. Required: {required}")


class ItemNotFoundError(EconomyError):
    """Raised when an item key is unknown to the catalog and the inventory."""

    code = "ITEM_NOT_FOUND"

    def __init__(self, item_key: str) -> None:
        self.item_key = item_key
        super().__init__(f"Item not found: {item_key}")


class NoRecipeError(EconomyError):
    """Raised when no recipe matches a pair and fallback is not permitted."""

    code = "NO_RECIPE"

    def __init__(self, pair_key: str) -> None:
        self.pair_key = pair_key
        super().__init__(f"No recipe for {pair_key}")


class OutputDisabledError(EconomyError):
    """Raised when a resolved barter output is missing or disabled."""

    code = "OUTPUT_DISABLED"

    def __init__(self, output_key: str) -> None:
        self.output_key = output_key
        super().__init__(f"Barter output '{output_key}' is missing or disabled")


class SeasonNotEndedError(EconomyError):
    """Raised when finalize is called before the season window closes."""

    code = "SEASON_NOT_ENDED"

    def __init__(self, season_id: str, end_at: datetime) -> None:
        self.season_id = season_id
        self.end_at = end_at
        super().__init__(f"Season {season_id} ends at {end_at.isoformat()}")


class AlreadyRunningError(EconomyError):
    """Raised when a job lock is already held."""

    code = "ALREADY_RUNNING"

    def __init__(self, lock_key: str) -> None:
        self.lock_key = lock_key
        super().__init__(f"Job already running: {lock_key}")


class UserNotFoundError(EconomyError):
    """Raised when a user account doesn't exist."""

    code = "USER_NOT_FOUND"

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class PayoutNotFoundError(EconomyError):
    """Raised when a payout doesn't exist for the user."""

    code = "PAYOUT_NOT_FOUND"

    def __init__(self, payout_id: UUID) -> None:
        self.payout_id = payout_id
        super().__init__(f"Payout not found: {payout_id}")


class PayoutNotAvailableError(EconomyError):
    """Raised when a payout is no longer in the available state."""

    code = "PAYOUT_NOT_AVAILABLE"

    def __init__(self, payout_id: UUID, status: str) -> None:
        self.payout_id = payout_id
        self.status = status
        super().__init__(f"Payout {payout_id} is not available (status: {status})")


class WriteVerificationError(EconomyError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(EconomyError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")
