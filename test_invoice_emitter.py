"""
Invoice Emitter Tests

1. RPS numbers: order-number prefix, exactly 8 digits, existing kept
2. NFSe payload built from order, contact and service lines
3. Submission outcome, including the compensating read after a failure
"""

import asyncio
import random
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.bling.bling_models import Contact, NfseDocument, SalesOrder
from core.errors import AuthenticationError, RemoteApiError, RemoteTimeoutError, ValidationError
from nfse.eligibility import ServiceLine
from nfse.emitter import EmitterConfig, InvoiceEmitter, generate_rps_number
from rps_queue.models import RpsRecord, RpsStatus


ORDER = SalesOrder.model_validate({
    "id": 101,
    "numero": 4321,
    "contato": {"id": 7, "nome": "ACME", "numeroDocumento": "12345678000195"},
    "vendedor": {"id": 3},
    "itens": [],
})

CONTACT = Contact.model_validate({
    "id": 42,
    "nome": "ACME Ltda",
    "numeroDocumento": "12345678000195",
    "email": "",
    "celular": "31999990000",
    "inscricaoMunicipal": "IM-9",
    "endereco": {
        "geral": {
            "endereco": "Rua A",
            "numero": "",
            "bairro": "Centro",
            "cep": "32600000",
            "municipio": "Betim",
            "uf": "MG",
        }
    },
})

LINES = [
    ServiceLine(description="Consultoria", amount=Decimal("100.00"), product_id=1),
    ServiceLine(description="Suporte", amount=Decimal("50.5"), product_id=2),
]


def make_record(**fields):
    values = {
        "id": 1,
        "order_id": "101",
        "order_number": "4321",
        "rps_number": "43210001",
        "invoice_id": "9001",
        "status": RpsStatus.PENDING,
    }
    values.update(fields)
    return RpsRecord(**values)


class TestRpsNumber:

    @pytest.mark.parametrize("order_number", [1, 42, 4321, 1234567])
    def test_prefix_and_length(self, order_number):
        number = generate_rps_number(order_number, rng=random.Random(7))
        assert len(number) == 8
        assert number.isdigit()
        assert number.startswith(str(order_number))

    def test_long_order_number_is_truncated(self):
        assert generate_rps_number(123456789) == "12345678"

    def test_existing_number_is_kept(self):
        assert generate_rps_number(42, existing="42000001") == "42000001"

    def test_suffix_is_zero_padded(self):
        class ZeroRandom(random.Random):
            def randrange(self, *args, **kwargs):
                return 7

        assert generate_rps_number(42, rng=ZeroRandom()) == "42000007"


class TestPayload:

    def test_payload_fields(self):
        emitter = InvoiceEmitter(MagicMock(), EmitterConfig(service_code="5.08", series="1", payment_method_id=2222749))
        payload = emitter.build_payload(ORDER, CONTACT, LINES, "43210001", issue_date=date(2026, 3, 2))

        assert payload["numeroRPS"] == "43210001"
        assert payload["serie"] == "1"
        assert payload["data"] == "2026-03-02"
        assert payload["baseCalculo"] == 150.5
        assert payload["reterISS"] is False
        assert payload["vendedor"] == {"id": 3}
        assert payload["servicos"] == [
            {"codigo": "5.08", "descricao": "Consultoria", "valor": 100.0},
            {"codigo": "5.08", "descricao": "Suporte", "valor": 50.5},
        ]
        assert payload["parcelas"] == [{
            "data": "2026-03-02",
            "valor": 150.5,
            "observacoes": "Pedido 4321",
            "formaPagamento": {"id": 2222749},
        }]

    def test_contact_block(self):
        payload = InvoiceEmitter(MagicMock()).build_payload(ORDER, CONTACT, LINES, "43210001")
        contato = payload["contato"]

        assert contato["id"] == 42
        assert contato["email"] == "naotem@email.com"
        assert contato["im"] == "IM-9"
        assert "ie" not in contato
        assert contato["telefone"] == "31999990000"
        assert contato["endereco"]["numero"] == "S/N"
        assert contato["endereco"]["municipio"] == "Betim"

    def test_address_omitted_without_district(self):
        contact = CONTACT.model_copy(update={"address": None})
        payload = InvoiceEmitter(MagicMock()).build_payload(ORDER, contact, LINES, "43210001")
        assert "endereco" not in payload["contato"]


class TestEmit:

    def test_emit_returns_remote_id(self):
        client = MagicMock()
        client.create_nfse = AsyncMock(return_value=NfseDocument(id=9001, rps_number="43210001", series="1"))
        result = asyncio.run(InvoiceEmitter(client).emit(ORDER, CONTACT, LINES, rps_number="43210001"))

        assert result.invoice_id == "9001"
        assert result.rps_number == "43210001"
        assert result.total_value == Decimal("150.50")

    def test_emit_without_lines_is_rejected(self):
        client = MagicMock()
        client.create_nfse = AsyncMock()
        with pytest.raises(ValidationError):
            asyncio.run(InvoiceEmitter(client).emit(ORDER, CONTACT, []))
        client.create_nfse.assert_not_awaited()

    def test_emit_without_remote_id_is_an_error(self):
        client = MagicMock()
        client.create_nfse = AsyncMock(return_value=NfseDocument())
        with pytest.raises(RemoteApiError):
            asyncio.run(InvoiceEmitter(client).emit(ORDER, CONTACT, LINES))


class TestSubmit:

    def test_number_in_response_means_issued(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(return_value=NfseDocument(id=9001, number="555", situation=1))
        result = asyncio.run(InvoiceEmitter(client).submit(make_record()))

        assert result.issued is True
        assert result.invoice_number == "555"
        assert result.recovered is False

    def test_no_number_means_awaiting_settlement(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(return_value=NfseDocument(id=9001, situation=0))
        result = asyncio.run(InvoiceEmitter(client).submit(make_record()))
        assert result.issued is False

    def test_record_without_invoice_id_is_rejected(self):
        with pytest.raises(ValidationError):
            asyncio.run(InvoiceEmitter(MagicMock()).submit(make_record(invoice_id=None)))

    def test_failed_submission_recovered_when_already_issued(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(side_effect=RemoteTimeoutError("timed out", 120))
        client.get_nfse = AsyncMock(return_value=NfseDocument(id=9001, number="556", situation=2))
        result = asyncio.run(InvoiceEmitter(client).submit(make_record()))

        assert result.issued is True
        assert result.invoice_number == "556"
        assert result.recovered is True

    def test_failed_submission_raises_when_not_settled(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(side_effect=RemoteApiError("Bling API error 500", 500))
        client.get_nfse = AsyncMock(return_value=NfseDocument(id=9001, situation=0))
        with pytest.raises(RemoteApiError):
            asyncio.run(InvoiceEmitter(client).submit(make_record()))

    def test_failed_submission_raises_when_read_back_fails(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(side_effect=RemoteApiError("Bling API error 502", 502))
        client.get_nfse = AsyncMock(side_effect=RemoteTimeoutError("timed out", 30))
        with pytest.raises(RemoteApiError):
            asyncio.run(InvoiceEmitter(client).submit(make_record()))

    def test_any_submission_failure_checks_remote_state(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(side_effect=ConnectionResetError("peer reset"))
        client.get_nfse = AsyncMock(return_value=NfseDocument(id=9001, number="557", situation=2))
        result = asyncio.run(InvoiceEmitter(client).submit(make_record()))

        assert result.recovered is True
        assert result.invoice_number == "557"

    def test_authentication_failure_skips_read_back(self):
        client = MagicMock()
        client.send_nfse = AsyncMock(side_effect=AuthenticationError("No Bling access token"))
        client.get_nfse = AsyncMock()
        with pytest.raises(AuthenticationError):
            asyncio.run(InvoiceEmitter(client).submit(make_record()))
        client.get_nfse.assert_not_awaited()
