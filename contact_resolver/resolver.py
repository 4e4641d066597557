"""Contact Resolver Algorithm.

Given a sales order, returns the full Bling contact profile of its
customer:
1. Normalize the customer's tax document (ValidationError if unusable)
2. Search Bling by document and keep only exact digit matches
3. Create an individual contact from the order's customer fields if none
4. Read the full profile by id (search/create responses are partial)
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from connectors.bling.bling_client import BlingApiClient
from connectors.bling.bling_models import Contact, ContactSummary, OrderCustomer, SalesOrder
from contact_resolver.normalize import (
    digits_only,
    document_digits,
    documents_match,
    is_well_formed,
    person_type,
)
from core.errors import ValidationError
from core.observability.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ContactDefaults:
    """Values used for fields the order does not carry."""
    city: str = "Betim"
    state: str = "MG"
    country: str = "BRASIL"
    street_number: str = "S/N"


class ContactResolver:
    """Finds or creates the canonical Bling contact for an order's customer.

    Example:
        resolver = ContactResolver(client)
        contact = await resolver.resolve(order)
        if contact is None:
            ...  # id known but profile unreadable: fail the order
    """

    def __init__(self, client: BlingApiClient, defaults: Optional[ContactDefaults] = None):
        self.client = client
        self.defaults = defaults or ContactDefaults()

    def customer_document(self, order: SalesOrder) -> str:
        """Digits of the order's customer document.

        Raises:
            ValidationError: No customer, no document, or wrong length
        """
        customer = order.customer
        raw = customer.document if customer else None
        digits = document_digits(raw)
        if not digits:
            raise ValidationError(f"Order {order.number} has no customer tax document")
        if not is_well_formed(digits):
            raise ValidationError(
                f"Order {order.number} customer document '{raw}' is malformed "
                f"({len(digits)} digits)"
            )
        return digits

    async def resolve(self, order: SalesOrder) -> Optional[Contact]:
        """Return the customer's full profile, creating the contact if needed.

        Returns None when a contact id was obtained but its profile could
        not be read.
        """
        document = self.customer_document(order)

        existing = await self.find_existing(document)
        if existing is not None:
            contact_id = existing.id
            logger.info(f"Contact found for document: {existing.name} (id {contact_id})")
        else:
            payload = self.build_contact_payload(order.customer, document)
            contact_id = await self.client.create_contact(payload)
            logger.info(f"Contact created: {payload['nome']} (id {contact_id})")

        contact = await self.client.get_contact(contact_id)
        if contact is None:
            logger.error(f"Full profile for contact {contact_id} could not be loaded")
        return contact

    async def find_existing(self, document: str) -> Optional[ContactSummary]:
        """Search by document and confirm the match digit by digit."""
        candidates = await self.client.search_contacts(document)
        for candidate in candidates:
            if documents_match(candidate.document, document):
                return candidate
        if candidates:
            logger.debug(f"{len(candidates)} search result(s), none with an exact document match")
        return None

    def build_contact_payload(self, customer: Optional[OrderCustomer], document: str) -> Dict[str, Any]:
        """Contact creation body populated from the order's customer fields."""
        customer = customer or OrderCustomer()
        address = customer.address
        email = customer.email or ""
        mobile = digits_only(customer.mobile or customer.phone)

        postal = {
            "endereco": (address.street if address else None) or "",
            "cep": digits_only(address.zip_code if address else None),
            "bairro": (address.district if address else None) or "",
            "municipio": (address.city if address else None) or self.defaults.city,
            "uf": (address.state if address else None) or self.defaults.state,
            "numero": (address.number if address else None) or self.defaults.street_number,
            "complemento": (address.complement if address else None) or "",
        }

        return {
            "nome": customer.name or f"Cliente {document}",
            "codigo": "",
            "situacao": "A",
            "numeroDocumento": document,
            "telefone": "",
            "celular": mobile,
            "fantasia": "",
            "tipo": person_type(document),
            "indicadorIe": 9,
            "ie": "",
            "rg": "",
            "inscricaoMunicipal": "",
            "orgaoEmissor": "",
            "email": email,
            "emailNotaFiscal": email,
            "endereco": {
                "geral": dict(postal),
                "cobranca": dict(postal),
            },
            "vendedor": {"id": 0},
            "dadosAdicionais": {},
            "financeiro": {},
            "pais": {"nome": self.defaults.country},
            "tiposContato": [],
            "pessoasContato": [],
        }
