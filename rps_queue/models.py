"""RPS Queue Data Models.

- RpsStatus: Lifecycle of a queue record
- RpsRecord: One order → RPS mapping (unique per order)
- QueuePage / QueueStats: Read models for listing and dashboards
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RpsStatus(str, Enum):
    """RPS lifecycle.

    pending → processing → issued, or any non-terminal state → error.
    `issued` without an invoice number still counts as unsettled.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    ISSUED = "issued"
    ERROR = "error"


class RpsRecord(BaseModel):
    """Queue record mapping a sales order to its RPS/NFSe.

    Attributes:
        id: Database row ID
        order_id: Bling sales order id (unique)
        order_number: Human-facing order number
        rps_number: 8-digit RPS number sent on emission
        series: RPS series
        invoice_id: Bling NFSe id returned by emission
        invoice_number: Final NFSe number, set once the municipality settles it
        status: Lifecycle status
        error_message: Last failure or diagnostic message
        total_value: Sum of billable service lines
        customer_name: Contact name at emission time
        issued_at: Emission timestamp
    """
    id: Optional[int] = None
    order_id: str = Field(..., description="Bling sales order id")
    order_number: str = Field(..., description="Sales order number")
    rps_number: str = Field(..., description="RPS number")
    series: str = Field(default="1", description="RPS series")
    invoice_id: Optional[str] = Field(default=None, description="Bling NFSe id")
    invoice_number: Optional[str] = Field(default=None, description="Settled NFSe number")
    status: RpsStatus = RpsStatus.PENDING
    error_message: Optional[str] = None
    total_value: Decimal = Decimal("0")
    customer_name: Optional[str] = None
    issued_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_settled(self) -> bool:
        return self.status == RpsStatus.ISSUED and bool(self.invoice_number)

    @property
    def is_unsettled(self) -> bool:
        """Pending, processing, or issued but still missing its number."""
        if self.status in (RpsStatus.PENDING, RpsStatus.PROCESSING):
            return True
        return self.status == RpsStatus.ISSUED and not self.invoice_number


class QueuePage(BaseModel):
    rows: List[RpsRecord]
    total: int
    page: int
    page_size: int
    total_pages: int


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    issued: int = 0
    error: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: Dict[str, int]) -> "QueueStats":
        values = {status.value: counts.get(status.value, 0) for status in RpsStatus}
        return cls(total=sum(values.values()), **values)
