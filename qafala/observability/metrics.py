"""
Metrics Collection with Prometheus.

Exposes economy and system metrics for monitoring.
"""

import time
from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from qafala.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class EconomyMetrics:
    """
    Centralized metrics for the economy service.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Drop purchases (outcome, cost, duration)
    - Barters (outcome, resolution)
    - Weekly finalize runs and payouts
    - Ledger writes and idempotent replays
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("economy_service", "Service information")
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "economy_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "economy_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "economy_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Drop Purchase Metrics
        # ====================================================================
        self.purchases_total = Counter(
            "economy_purchases_total",
            "Drop purchases by outcome (ok or error code)",
            [MetricLabels.OUTCOME],
        )

        self.purchase_cost_dinar = Histogram(
            "economy_purchase_cost_dinar",
            "Dinar spent per successful purchase",
            buckets=(10, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
        )

        self.purchase_duration_seconds = Histogram(
            "economy_purchase_duration_seconds",
            "Drop purchase duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.stock_compensations_total = Counter(
            "economy_stock_compensations_total",
            "Stock restored after a failed wallet debit (non-transactional mode)",
        )

        # ====================================================================
        # Barter Metrics
        # ====================================================================
        self.barters_total = Counter(
            "economy_barters_total",
            "Barter operations by operation and outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Leaderboard Metrics
        # ====================================================================
        self.finalize_runs_total = Counter(
            "economy_finalize_runs_total",
            "Weekly finalize runs by outcome",
            [MetricLabels.OUTCOME],
        )

        self.payouts_created_total = Counter(
            "economy_payouts_created_total",
            "Winner payout rows created",
        )

        self.payout_amount_minor = Histogram(
            "economy_payout_amount_minor",
            "Payout amounts in minor units (cents)",
            buckets=(100, 500, 1000, 2500, 5000, 10000, 25000, 50000),
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_entries_total = Counter(
            "economy_ledger_entries_total",
            "Ledger rows written by type",
            [MetricLabels.TRANSACTION_TYPE],
        )

        self.idempotent_replays_total = Counter(
            "economy_idempotent_replays_total",
            "Requests answered from an idempotency record",
            [MetricLabels.ENDPOINT, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "economy_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_purchase(
        self, outcome: str, cost_dinar: int, duration: float
    ) -> None:
        """Record drop purchase metrics. outcome is "ok" or an error code."""
        self.purchases_total.labels(outcome=outcome).inc()
        if outcome == "ok":
            self.purchase_cost_dinar.observe(cost_dinar)
        self.purchase_duration_seconds.observe(duration)

    def record_barter(self, operation: str, outcome: str) -> None:
        """Record barter metrics."""
        self.barters_total.labels(operation=operation, outcome=outcome).inc()

    def record_finalize(self, outcome: str, payout_amounts: list[int] | None = None) -> None:
        """Record a finalize run and the payouts it created."""
        self.finalize_runs_total.labels(outcome=outcome).inc()
        for amount in payout_amounts or []:
            self.payouts_created_total.inc()
            self.payout_amount_minor.observe(amount)

    def record_ledger_entry(self, transaction_type: str) -> None:
        """Record a ledger row write."""
        self.ledger_entries_total.labels(transaction_type=transaction_type).inc()

    def record_idempotent_replay(self, endpoint: str, outcome: str) -> None:
        """Record a replayed request. outcome is "replayed" or "in_flight"."""
        self.idempotent_replays_total.labels(endpoint=endpoint, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EconomyMetrics()


class track_operation:
    """
    Context manager measuring an engine operation's wall time.

    Usage:
        with track_operation() as timer:
            ...
        metrics.record_purchase("ok", cost, timer.duration)
    """

    def __init__(self) -> None:
        self.start_time: float = 0.0
        self.duration: float = 0.0

    def __enter__(self) -> "track_operation":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.duration = time.perf_counter() - self.start_time
