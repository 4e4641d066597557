"""
Service Line Filter Tests

Eligibility rules and billable-service selection.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.bling.bling_models import Product, SalesOrder
from core.errors import AuthenticationError, RemoteApiError, RemoteTimeoutError
from nfse.eligibility import (
    REASON_CANCELLED,
    REASON_CONSUMER_DEFAULT,
    ServiceLine,
    ServiceLineFilter,
    total_of,
)
from nfse.situations import is_settled, order_situation_label, status_for_nfse_situation
from rps_queue.models import RpsStatus


def make_order(situation=9, document="12345678909", items=None):
    return SalesOrder.model_validate({
        "id": 101,
        "numero": 4321,
        "situacao": {"id": situation},
        "contato": {"id": 7, "nome": "Maria", "numeroDocumento": document},
        "itens": items or [],
    })


def products(catalog):
    async def get_product(product_id):
        entry = catalog[product_id]
        if isinstance(entry, Exception):
            raise entry
        return entry
    client = MagicMock()
    client.get_product = AsyncMock(side_effect=get_product)
    return client


class TestEligibility:

    def test_cancelled_order_is_ineligible(self):
        line_filter = ServiceLineFilter(MagicMock())
        assert line_filter.ineligibility_reason(make_order(situation=2)) == REASON_CANCELLED

    def test_cancelled_situation_is_configurable(self):
        line_filter = ServiceLineFilter(MagicMock(), cancelled_situation=12)
        assert line_filter.is_eligible(make_order(situation=2))
        assert not line_filter.is_eligible(make_order(situation=12))

    @pytest.mark.parametrize("document", [None, "", "0", "000.000.00"])
    def test_consumer_final_is_ineligible(self, document):
        line_filter = ServiceLineFilter(MagicMock())
        assert line_filter.ineligibility_reason(make_order(document=document)) == REASON_CONSUMER_DEFAULT

    def test_identified_customer_is_eligible(self):
        assert ServiceLineFilter(MagicMock()).ineligibility_reason(make_order()) is None


class TestBillableLines:

    def test_only_service_products_are_kept(self):
        client = products({
            1: Product(id=1, name="Consultoria", description="Consultoria mensal", kind="S"),
            2: Product(id=2, name="Cabo HDMI", kind="P"),
        })
        order = make_order(items=[
            {"produto": {"id": 1}, "descricao": "item 1", "valor": 100},
            {"produto": {"id": 2}, "descricao": "item 2", "valor": 30},
        ])
        lines = asyncio.run(ServiceLineFilter(client).billable_lines(order))

        assert lines == [ServiceLine(description="Consultoria mensal", amount=Decimal("100"), product_id=1)]

    def test_description_falls_back_to_item(self):
        client = products({1: Product(id=1, name="Svc", kind="s")})
        order = make_order(items=[{"produto": {"id": 1}, "descricao": "Suporte", "valorUnidade": 80}])
        lines = asyncio.run(ServiceLineFilter(client).billable_lines(order))

        assert lines[0].description == "Suporte"
        assert lines[0].amount == Decimal("80")

    def test_unreadable_product_is_skipped(self):
        client = products({
            1: RemoteApiError("Bling API error 404", 404),
            2: RemoteTimeoutError("timed out", 30),
            3: Product(id=3, name="Svc", description="Treinamento", kind="S"),
        })
        order = make_order(items=[
            {"produto": {"id": 1}, "valor": 10},
            {"produto": {"id": 2}, "valor": 20},
            {"produto": {"id": 3}, "valor": 30},
        ])
        lines = asyncio.run(ServiceLineFilter(client).billable_lines(order))

        assert [line.product_id for line in lines] == [3]

    def test_lines_without_product_are_skipped(self):
        client = products({})
        order = make_order(items=[{"descricao": "frete", "valor": 10}])
        assert asyncio.run(ServiceLineFilter(client).billable_lines(order)) == []
        client.get_product.assert_not_awaited()

    def test_authentication_failure_propagates(self):
        client = products({1: AuthenticationError("no token")})
        order = make_order(items=[{"produto": {"id": 1}, "valor": 10}])
        with pytest.raises(AuthenticationError):
            asyncio.run(ServiceLineFilter(client).billable_lines(order))

    def test_total_of_lines(self):
        lines = [ServiceLine("a", Decimal("10.50")), ServiceLine("b", Decimal("4.25"))]
        assert total_of(lines) == Decimal("14.75")
        assert total_of([]) == Decimal("0")


class TestSituationTables:

    def test_nfse_situations_map_to_local_status(self):
        assert status_for_nfse_situation(0) == RpsStatus.PENDING
        assert status_for_nfse_situation(1) == RpsStatus.ISSUED
        assert status_for_nfse_situation(2) == RpsStatus.ISSUED
        assert status_for_nfse_situation(3) == RpsStatus.ERROR
        assert status_for_nfse_situation(99) is None

    def test_settled_by_number_or_issued_situation(self):
        assert is_settled(0, "123")
        assert is_settled(2, None)
        assert not is_settled(0, None)
        assert not is_settled(3, None)

    def test_order_labels(self):
        assert order_situation_label(2) == "cancelled"
        assert order_situation_label(None) == "unknown"
        assert order_situation_label(777) == "other"
