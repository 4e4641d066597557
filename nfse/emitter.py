"""Invoice Emitter.

Builds the NFSe payload for an order, creates the invoice in Bling and
submits it to the municipal processor.

Submission is the risky step: Bling may issue the invoice and still fail
or time out on the response. Before a failed submission is reported, the
invoice is read back; if it already shows as settled the submission is
treated as successful.
"""

import random
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from connectors.bling.bling_client import BlingApiClient
from connectors.bling.bling_models import Contact, SalesOrder
from core.errors import REQUEST_FATAL_ERRORS, RemoteApiError, RemoteTimeoutError, ValidationError
from core.observability.logging import get_logger
from nfse.eligibility import ServiceLine, total_of
from nfse.situations import is_settled
from rps_queue.models import RpsRecord

logger = get_logger(__name__)

RPS_NUMBER_LENGTH = 8
PLACEHOLDER_EMAIL = "naotem@email.com"


def generate_rps_number(
    order_number: Any,
    existing: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Order number followed by random digits, exactly 8 digits long.

    An existing number is returned unchanged. Order numbers longer than 8
    digits are truncated.

    Examples:
        >>> len(generate_rps_number(42))
        8
        >>> generate_rps_number(42, existing="42000001")
        '42000001'
    """
    if existing:
        return existing

    prefix = str(order_number)
    remaining = RPS_NUMBER_LENGTH - len(prefix)
    suffix = ""
    if remaining > 0:
        rng = rng or random.Random()
        suffix = str(rng.randrange(10 ** remaining)).zfill(remaining)
    return f"{prefix}{suffix}"[:RPS_NUMBER_LENGTH]


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01")))


@dataclass
class EmitterConfig:
    service_code: str = "5.08"
    series: str = "1"
    payment_method_id: int = 2222749


@dataclass
class EmissionResult:
    invoice_id: str
    rps_number: str
    series: str
    total_value: Decimal
    invoice_number: Optional[str] = None


@dataclass
class SubmissionResult:
    issued: bool
    invoice_number: Optional[str] = None
    recovered: bool = False


class InvoiceEmitter:
    """Emits and submits NFSe documents for sales orders."""

    def __init__(
        self,
        client: BlingApiClient,
        config: Optional[EmitterConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.config = config or EmitterConfig()
        self._rng = rng or random.Random()

    def build_payload(
        self,
        order: SalesOrder,
        contact: Contact,
        lines: List[ServiceLine],
        rps_number: str,
        issue_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """POST /nfse body. Optional contact and seller fields only when present."""
        total = _money(total_of(lines))
        today = (issue_date or date.today()).isoformat()

        customer: Dict[str, Any] = {
            "id": contact.id,
            "nome": contact.name or "",
            "numeroDocumento": contact.document or "",
            "email": contact.email or PLACEHOLDER_EMAIL,
        }
        if contact.state_registration:
            customer["ie"] = contact.state_registration
        if contact.municipal_registration:
            customer["im"] = contact.municipal_registration
        if contact.mobile or contact.phone:
            customer["telefone"] = contact.mobile or contact.phone

        general = contact.address.general if contact.address else None
        if general and general.district and general.city:
            customer["endereco"] = {
                "endereco": general.street or "",
                "numero": general.number or "S/N",
                "complemento": general.complement or "",
                "bairro": general.district,
                "cep": general.zip_code or "",
                "municipio": general.city,
                "uf": general.state or "",
            }

        payload: Dict[str, Any] = {
            "numeroRPS": rps_number,
            "serie": self.config.series,
            "data": today,
            "baseCalculo": total,
            "reterISS": False,
            "desconto": 0,
            "contato": customer,
            "servicos": [
                {
                    "codigo": self.config.service_code,
                    "descricao": line.description,
                    "valor": _money(line.amount),
                }
                for line in lines
            ],
            "parcelas": [
                {
                    "data": today,
                    "valor": total,
                    "observacoes": f"Pedido {order.number}",
                    "formaPagamento": {"id": self.config.payment_method_id},
                }
            ],
        }

        if order.seller and order.seller.id:
            payload["vendedor"] = {"id": order.seller.id}

        return payload

    async def emit(
        self,
        order: SalesOrder,
        contact: Contact,
        lines: List[ServiceLine],
        rps_number: Optional[str] = None,
    ) -> EmissionResult:
        """Create the NFSe in Bling (not yet submitted to the municipality)."""
        if not lines:
            raise ValidationError(f"Order {order.number} has no billable service lines")

        rps_number = generate_rps_number(order.number, existing=rps_number, rng=self._rng)
        payload = self.build_payload(order, contact, lines, rps_number)

        document = await self.client.create_nfse(payload)
        if not document.id:
            raise RemoteApiError("NFSe created but Bling returned no id", 200)

        logger.info(
            f"NFSe {document.id} created for order {order.number}",
            extra_fields={"rps_number": document.rps_number or rps_number},
        )
        return EmissionResult(
            invoice_id=str(document.id),
            rps_number=document.rps_number or rps_number,
            series=document.series or payload["serie"],
            total_value=total_of(lines),
            invoice_number=document.number,
        )

    async def submit(self, record: RpsRecord) -> SubmissionResult:
        """Send the invoice to the municipal processor.

        No number in the response means accepted but not settled yet.

        Raises:
            ValidationError: The record has no NFSe id
            RemoteApiError / RemoteTimeoutError: Submission failed and the
                compensating read did not show the invoice as settled
            AuthenticationError / ConfigurationError: propagated without a read
        """
        if not record.invoice_id:
            raise ValidationError(f"RPS record {record.id} has no NFSe id")

        try:
            document = await self.client.send_nfse(record.invoice_id)
        except REQUEST_FATAL_ERRORS:
            raise
        except Exception as e:
            logger.warning(f"Submission of NFSe {record.invoice_id} failed ({e}); checking remote state")
            recovered = await self._settled_state(record.invoice_id)
            if recovered is not None:
                return recovered
            raise

        if document.number:
            return SubmissionResult(issued=True, invoice_number=document.number)
        return SubmissionResult(issued=False)

    async def _settled_state(self, invoice_id: str) -> Optional[SubmissionResult]:
        try:
            document = await self.client.get_nfse(invoice_id)
        except (RemoteApiError, RemoteTimeoutError) as e:
            logger.warning(f"Could not read NFSe {invoice_id} after failed submission: {e}")
            return None

        if not is_settled(document.situation, document.number):
            return None

        logger.info(f"NFSe {invoice_id} was already issued remotely (number {document.number})")
        return SubmissionResult(issued=True, invoice_number=document.number, recovered=True)
