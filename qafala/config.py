"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DATABASE_SCHEMES = ("postgresql", "postgres", "sqlite")


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "Qafala Economy API"
    api_version: str = "0.1.0"
    api_description: str = "Drops, barter, wallet and weekly leaderboard economy"

    # Security - the gateway authenticates users and forwards X-User-ID
    service_token: str = ""  # Bearer token the gateway presents (empty = not enforced)
    admin_token: str = ""  # X-Admin-Token for admin routes (empty = admin disabled)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "qafala-economy"
    trace_sample_rate: float = 1.0  # 1.0 = 100% sampling

    # Wallet
    starting_dinar: int = 1000
    dinar_per_usd: int = 20  # in-game dinar per 1.00 USD

    # Transactions - false runs steps sequentially with compensation
    use_transactions: bool = True

    # Idempotency and job locks
    idempotency_ttl_seconds: int = 1200
    job_lock_ttl_seconds: int = 7200

    # Drop purchase caps (0 disables)
    per_drop_per_user: int = 5
    per_item_window_seconds: int = 60
    max_purchase_qty: int = 100

    # Barter
    barter_xp_bonus: int = 25
    barter_allow_fallback: bool = False
    barter_fallback_default: str = "common_box"
    barter_fallback_rules: dict[str, str] = {
        "legendary+legendary": "mystic_treasure",
        "common+legendary": "mystic_treasure",
        "barter+legendary": "mystic_treasure",
        "legendary+rare": "treasure_chest_legendary",
        "rare+rare": "epic_box",
        "common+rare": "rare_box",
    }

    # Leaderboard and progression
    leaderboard_winners: int = 10
    max_level: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start if critical config is missing.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(SUPPORTED_DATABASE_SCHEMES):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL or SQLite URL, got: {self.database_url[:20]}..."
            )

        if self.starting_dinar < 0:
            errors.append("STARTING_DINAR must be non-negative")

        if self.dinar_per_usd <= 0:
            errors.append("DINAR_PER_USD must be positive")

        if not 1 <= self.leaderboard_winners <= 200:
            errors.append("LEADERBOARD_WINNERS must be between 1 and 200")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def is_sqlite(self) -> bool:
        """SQLite has no connection pool sizing and no row locks."""
        return self.database_url.startswith("sqlite")


# Global settings instance - validates at import time
settings = Settings()
