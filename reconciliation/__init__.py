"""Reconciliation of local RPS state with Bling."""

from reconciliation.status_sync import (
    SettlementCheck,
    SettlementStatus,
    StatusReconciler,
    SyncSummary,
)

__all__ = [
    "StatusReconciler",
    "SyncSummary",
    "SettlementCheck",
    "SettlementStatus",
]
