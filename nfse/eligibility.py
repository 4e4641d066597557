"""Order eligibility and billable-service selection.

An order is skipped (never failed) when it is cancelled, when its customer
cannot be identified, or when none of its lines is a service.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from connectors.bling.bling_client import BlingApiClient
from connectors.bling.bling_models import OrderItem, SalesOrder
from contact_resolver.normalize import is_consumer_default
from core.errors import RemoteApiError, RemoteTimeoutError
from core.observability.logging import get_logger
from nfse.situations import ORDER_SITUATION_CANCELLED

logger = get_logger(__name__)

REASON_CANCELLED = "order is cancelled"
REASON_CONSUMER_DEFAULT = "order customer is consumer-final (no usable tax document); RPS not generated"
REASON_NO_SERVICES = "no billable services"


@dataclass
class ServiceLine:
    """A billable service line of an order."""
    description: str
    amount: Decimal
    product_id: Optional[int] = None


def total_of(lines: List[ServiceLine]) -> Decimal:
    return sum((line.amount for line in lines), Decimal("0"))


class ServiceLineFilter:
    """Classifies orders and their line items.

    Example:
        line_filter = ServiceLineFilter(client)
        reason = line_filter.ineligibility_reason(order)
        if reason is None:
            lines = await line_filter.billable_lines(order)
    """

    def __init__(self, client: BlingApiClient, cancelled_situation: int = ORDER_SITUATION_CANCELLED):
        self.client = client
        self.cancelled_situation = cancelled_situation

    def ineligibility_reason(self, order: SalesOrder) -> Optional[str]:
        """Why the order must be skipped, or None if it is eligible."""
        if order.situation_id == self.cancelled_situation:
            return REASON_CANCELLED
        customer = order.customer
        if customer is None or is_consumer_default(customer.document):
            return REASON_CONSUMER_DEFAULT
        return None

    def is_eligible(self, order: SalesOrder) -> bool:
        return self.ineligibility_reason(order) is None

    async def billable_lines(self, order: SalesOrder) -> List[ServiceLine]:
        """Lines whose product is a service, in order.

        A product that cannot be fetched is logged and its line skipped.
        """
        lines: List[ServiceLine] = []
        for item in order.items:
            line = await self._classify(item)
            if line is not None:
                lines.append(line)
        return lines

    async def _classify(self, item: OrderItem) -> Optional[ServiceLine]:
        product_id = item.product.id if item.product else None
        if not product_id:
            logger.debug(f"Skipping line without product: {item.description!r}")
            return None

        try:
            product = await self.client.get_product(product_id)
        except (RemoteApiError, RemoteTimeoutError) as e:
            logger.warning(f"Could not fetch product {product_id}, skipping line: {e}")
            return None

        if not product.is_service:
            return None

        return ServiceLine(
            description=product.description or item.description or product.name or "",
            amount=item.amount,
            product_id=product_id,
        )
