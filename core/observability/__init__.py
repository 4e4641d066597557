"""
Observability Module for the NFSe Pipeline

Provides structured logging with correlation IDs (order, RPS, invoice).
"""

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
