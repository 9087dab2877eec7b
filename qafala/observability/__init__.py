"""
Observability module - Logging, Metrics, and Tracing.
"""

from qafala.observability.logging import get_logger, setup_logging
from qafala.observability.metrics import metrics
from qafala.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
