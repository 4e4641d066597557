"""Situation code tables.

Bling reports a numeric `situacao` on both sales orders and service
invoices, but the two vocabularies are unrelated; they are kept as separate
tables and never compared with each other.
"""

from typing import Dict, Optional

from rps_queue.models import RpsStatus


# Sales-order situations (pedidos/vendas). The cancelled id is configurable
# per account; 2 is the default.
ORDER_SITUATION_CANCELLED = 2

ORDER_SITUATION_LABELS: Dict[int, str] = {
    2: "cancelled",
    6: "fulfilled",
    9: "fulfilled",
    12: "cancelled",
    15: "in_progress",
    24: "verified",
}


def order_situation_label(situation_id: Optional[int]) -> str:
    if situation_id is None:
        return "unknown"
    return ORDER_SITUATION_LABELS.get(situation_id, "other")


# NFSe situations (nfse/{id}): 0 pending, 1 issued, 2 available, 3 cancelled
NFSE_SITUATION_PENDING = 0
NFSE_SITUATION_ISSUED = 1
NFSE_SITUATION_AVAILABLE = 2
NFSE_SITUATION_CANCELLED = 3

NFSE_SITUATION_TO_STATUS: Dict[int, RpsStatus] = {
    NFSE_SITUATION_PENDING: RpsStatus.PENDING,
    NFSE_SITUATION_ISSUED: RpsStatus.ISSUED,
    NFSE_SITUATION_AVAILABLE: RpsStatus.ISSUED,
    NFSE_SITUATION_CANCELLED: RpsStatus.ERROR,
}


def status_for_nfse_situation(situation: Optional[int]) -> Optional[RpsStatus]:
    """Local status for a remote NFSe situation, or None if the code is unknown."""
    if situation is None:
        return None
    return NFSE_SITUATION_TO_STATUS.get(situation)


def is_settled(situation: Optional[int], number: Optional[str]) -> bool:
    """True when the invoice carries a final number or an issued situation."""
    return bool(number) or status_for_nfse_situation(situation) == RpsStatus.ISSUED
