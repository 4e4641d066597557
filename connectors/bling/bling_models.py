"""Bling API v3 data models.

Field names are English; aliases carry the Portuguese keys used on the
wire, so responses parse directly with `Model.model_validate(data)`.
Models are read-only snapshots of ERP state and are never persisted.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class BlingBaseModel(BaseModel):
    """Base model for Bling API entities."""

    class Config:
        populate_by_name = True


class IdRef(BlingBaseModel):
    id: Optional[int] = None


# =============================================================================
# Contacts
# =============================================================================

class Address(BlingBaseModel):
    """Postal address block (`endereco.geral` / `endereco.cobranca`)."""
    street: Optional[str] = Field(None, alias="endereco")
    number: Optional[str] = Field(None, alias="numero")
    complement: Optional[str] = Field(None, alias="complemento")
    district: Optional[str] = Field(None, alias="bairro")
    zip_code: Optional[str] = Field(None, alias="cep")
    city: Optional[str] = Field(None, alias="municipio")
    state: Optional[str] = Field(None, alias="uf")


class ContactAddress(BlingBaseModel):
    general: Optional[Address] = Field(None, alias="geral")
    billing: Optional[Address] = Field(None, alias="cobranca")


class Contact(BlingBaseModel):
    """Full contact profile.

    Maps to: GET /contatos/{id}
    """
    id: int
    name: Optional[str] = Field(None, alias="nome")
    document: Optional[str] = Field(None, alias="numeroDocumento")
    email: Optional[str] = None
    invoice_email: Optional[str] = Field(None, alias="emailNotaFiscal")
    phone: Optional[str] = Field(None, alias="telefone")
    mobile: Optional[str] = Field(None, alias="celular")
    person_type: Optional[str] = Field(None, alias="tipo")
    state_registration: Optional[str] = Field(None, alias="ie")
    municipal_registration: Optional[str] = Field(None, alias="inscricaoMunicipal")
    address: Optional[ContactAddress] = Field(None, alias="endereco")


class ContactSummary(BlingBaseModel):
    """Entry of a contact search result (GET /contatos?pesquisa=...)."""
    id: int
    name: Optional[str] = Field(None, alias="nome")
    document: Optional[str] = Field(None, alias="numeroDocumento")


# =============================================================================
# Sales orders and products
# =============================================================================

class OrderCustomer(BlingBaseModel):
    """Customer reference embedded in a sales order."""
    id: Optional[int] = None
    name: Optional[str] = Field(None, alias="nome")
    document: Optional[str] = Field(None, alias="numeroDocumento")
    email: Optional[str] = None
    phone: Optional[str] = Field(None, alias="telefone")
    mobile: Optional[str] = Field(None, alias="celular")
    address: Optional[Address] = Field(None, alias="endereco")


class OrderSituation(BlingBaseModel):
    id: Optional[int] = None
    value: Optional[int] = Field(None, alias="valor")


class OrderItem(BlingBaseModel):
    product: Optional[IdRef] = Field(None, alias="produto")
    description: Optional[str] = Field(None, alias="descricao")
    quantity: Optional[Decimal] = Field(None, alias="quantidade")
    value: Optional[Decimal] = Field(None, alias="valor")
    unit_value: Optional[Decimal] = Field(None, alias="valorUnidade")

    @property
    def amount(self) -> Decimal:
        """Line amount (`valor`, falling back to `valorUnidade`)."""
        if self.value:
            return self.value
        return self.unit_value or Decimal("0")


class SalesOrder(BlingBaseModel):
    """Sales order.

    Maps to: GET /pedidos/vendas/{id}
    """
    id: int
    number: int = Field(..., alias="numero")
    order_date: Optional[date] = Field(None, alias="data")
    total: Optional[Decimal] = None
    customer: Optional[OrderCustomer] = Field(None, alias="contato")
    situation: Optional[OrderSituation] = Field(None, alias="situacao")
    items: List[OrderItem] = Field(default_factory=list, alias="itens")
    seller: Optional[IdRef] = Field(None, alias="vendedor")

    @property
    def situation_id(self) -> Optional[int]:
        return self.situation.id if self.situation else None


class Product(BlingBaseModel):
    """Product or service.

    Maps to: GET /produtos/{id}. `tipo` is "S" for services, "P" for goods.
    """
    id: int
    name: Optional[str] = Field(None, alias="nome")
    description: Optional[str] = Field(None, alias="descricao")
    kind: Optional[str] = Field(None, alias="tipo")

    @property
    def is_service(self) -> bool:
        return (self.kind or "").upper() == "S"


# =============================================================================
# NFSe
# =============================================================================

class NfseDocument(BlingBaseModel):
    """Service invoice as returned by POST /nfse, POST /nfse/{id}/enviar and
    GET /nfse/{id}. `numero` stays empty until the municipality settles it.
    """
    id: Optional[int] = None
    number: Optional[str] = Field(None, alias="numero")
    rps_number: Optional[str] = Field(None, alias="numeroRPS")
    series: Optional[str] = Field(None, alias="serie")
    situation: Optional[int] = Field(None, alias="situacao")
    issue_date: Optional[str] = Field(None, alias="dataEmissao")
    link: Optional[str] = None

    @field_validator("number", "rps_number", "series", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @property
    def has_number(self) -> bool:
        return bool(self.number)
