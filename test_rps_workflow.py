"""
RPS Workflow Tests

Drives generate/submit/sync with collaborators mocked at the component
boundary and a real sqlite queue:
1. One RPS per eligible order; ineligible and duplicate orders ignored
2. Per-order failures never abort the batch
3. Authentication failures abort the request
4. Submission outcomes recorded on the queue record
"""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from connectors.bling.bling_models import Contact, NfseDocument, SalesOrder
from core.errors import AuthenticationError, RemoteApiError, RemoteTimeoutError, ValidationError
from core.observability.logging import get_correlation_context
from core.workflow import ThrottledPipeline
from nfse.eligibility import REASON_CANCELLED, REASON_CONSUMER_DEFAULT, ServiceLine, ServiceLineFilter
from nfse.emitter import EmissionResult, InvoiceEmitter, SubmissionResult
from reconciliation import SyncSummary
from rps_queue import RpsQueueStore, RpsRecord, RpsStatus
from workflows import GenerateStatus, RpsWorkflow, SubmitStatus
from workflows.rps_workflow import (
    MSG_ALREADY_EXISTS,
    MSG_BEFORE_INITIAL_ORDER,
    MSG_PROFILE_UNAVAILABLE,
)


async def no_sleep(seconds):
    return None


def make_order(order_id, number=None, situation=9, document="12345678909"):
    return SalesOrder.model_validate({
        "id": order_id,
        "numero": number or order_id,
        "situacao": {"id": situation},
        "contato": {"id": 7, "nome": "Maria", "numeroDocumento": document},
        "itens": [{"produto": {"id": 1}, "valor": 100}],
    })


LINES = [ServiceLine(description="Consultoria", amount=Decimal("100"), product_id=1)]
CONTACT = Contact(id=42, name="Maria Souza", document="12345678909")


class CorrelationCapture(logging.Handler):
    """Records each message with the correlation context active when it was logged."""

    def __init__(self):
        super().__init__()
        self.seen = []

    def emit(self, record):
        self.seen.append((record.getMessage(), get_correlation_context().to_dict()))


@pytest.fixture
def workflow_log():
    capture = CorrelationCapture()
    logger = logging.getLogger("workflows.rps_workflow")
    logger.addHandler(capture)
    yield capture
    logger.removeHandler(capture)


class Harness:
    """RpsWorkflow with mocked collaborators and a real queue."""

    def __init__(self, tmp_path, orders=(), failures=None, initial_order_number=None):
        self.orders = {o.id: o for o in orders}
        self.orders.update(failures or {})
        self.store = RpsQueueStore(tmp_path / "queue.db")

        self.client = MagicMock()
        self.client.get_sales_order = AsyncMock(side_effect=self._get_order)

        self.token_manager = MagicMock()
        self.token_manager.initial_order_number = AsyncMock(return_value=initial_order_number)

        self.resolver = MagicMock()
        self.resolver.resolve = AsyncMock(return_value=CONTACT)

        self.line_filter = ServiceLineFilter(self.client)
        self.line_filter.billable_lines = AsyncMock(return_value=LINES)

        self.emitter = MagicMock()
        self.emitter.emit = AsyncMock(side_effect=self._emit)
        self.emitter.submit = AsyncMock(return_value=SubmissionResult(issued=False))

        self.reconciler = MagicMock()
        self.reconciler.sync_all = AsyncMock(return_value=SyncSummary(verified=2, updated=1))
        self.reconciler.verify = AsyncMock(return_value=[])

        self.workflow = RpsWorkflow(
            client=self.client,
            token_manager=self.token_manager,
            store=self.store,
            contact_resolver=self.resolver,
            line_filter=self.line_filter,
            emitter=self.emitter,
            reconciler=self.reconciler,
            pipeline=ThrottledPipeline(0, sleep=no_sleep),
        )

    async def _get_order(self, order_id):
        order = self.orders[order_id]
        if isinstance(order, Exception):
            raise order
        return order

    async def _emit(self, order, contact, lines, rps_number=None):
        return EmissionResult(
            invoice_id=f"9{order.id}",
            rps_number=f"{order.number}0000000"[:8],
            series="1",
            total_value=Decimal("100"),
        )


class TestGenerate:

    def test_eligible_order_is_queued_pending(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        report = asyncio.run(h.workflow.generate([101]))

        assert (report.total, report.processed, report.ignored, report.errors) == (1, 1, 0, 0)
        outcome = report.results[0]
        assert outcome.status == GenerateStatus.SUCCESS
        assert outcome.invoice_id == "9101"

        record = h.store.get_by_order_id("101")
        assert record.status == RpsStatus.PENDING
        assert record.invoice_id == "9101"
        assert record.customer_name == "Maria Souza"
        assert record.total_value == Decimal("100")

    def test_consumer_final_order_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101, document="0")])
        report = asyncio.run(h.workflow.generate([101]))

        assert report.results[0].status == GenerateStatus.IGNORED
        assert report.results[0].message == REASON_CONSUMER_DEFAULT
        h.emitter.emit.assert_not_awaited()
        assert h.store.get_by_order_id("101") is None

    def test_cancelled_order_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101, situation=2)])
        report = asyncio.run(h.workflow.generate([101]))
        assert report.ignored == 1
        h.resolver.resolve.assert_not_awaited()

    def test_existing_record_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        asyncio.run(h.workflow.generate([101]))
        report = asyncio.run(h.workflow.generate([101]))

        assert report.results[0].status == GenerateStatus.IGNORED
        assert report.results[0].message == MSG_ALREADY_EXISTS
        assert h.emitter.emit.await_count == 1

    def test_duplicate_ids_in_one_batch_emit_once(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        report = asyncio.run(h.workflow.generate([101, 101]))

        assert [r.status for r in report.results] == [GenerateStatus.SUCCESS, GenerateStatus.IGNORED]
        assert h.emitter.emit.await_count == 1

    def test_order_before_initial_number_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101, number=499), make_order(102, number=500)], initial_order_number=500)
        report = asyncio.run(h.workflow.generate([101, 102]))

        assert report.results[0].message == MSG_BEFORE_INITIAL_ORDER
        assert report.results[1].status == GenerateStatus.SUCCESS

    def test_no_billable_services_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        h.line_filter.billable_lines.return_value = []
        report = asyncio.run(h.workflow.generate([101]))

        assert report.results[0].status == GenerateStatus.IGNORED
        h.resolver.resolve.assert_not_awaited()

    def test_unreadable_contact_profile_is_error(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        h.resolver.resolve.return_value = None
        report = asyncio.run(h.workflow.generate([101]))

        assert report.results[0].status == GenerateStatus.ERROR
        assert report.results[0].message == MSG_PROFILE_UNAVAILABLE

    def test_malformed_document_ignored(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        h.resolver.resolve.side_effect = ValidationError("customer document is malformed")
        report = asyncio.run(h.workflow.generate([101]))
        assert report.results[0].status == GenerateStatus.IGNORED

    def test_one_failure_does_not_abort_batch(self, tmp_path):
        h = Harness(
            tmp_path,
            [make_order(101), make_order(103)],
            failures={102: RemoteTimeoutError("Bling did not respond within 30s", 30)},
        )
        report = asyncio.run(h.workflow.generate([101, 102, 103]))

        assert [r.status for r in report.results] == [
            GenerateStatus.SUCCESS,
            GenerateStatus.ERROR,
            GenerateStatus.SUCCESS,
        ]
        assert "30s" in report.results[1].message
        assert report.results[1].order_id == "102"

    def test_failure_log_carries_order_id(self, tmp_path, workflow_log):
        h = Harness(tmp_path, failures={101: RemoteApiError("Bling API error 503", 503)})
        asyncio.run(h.workflow.generate([101]))

        failures = [ctx for message, ctx in workflow_log.seen if message.startswith("Order 101 failed")]
        assert failures == [{"operation": "generate", "order_id": "101"}]

    def test_emission_failure_leaves_no_record(self, tmp_path):
        h = Harness(tmp_path, [make_order(101)])
        h.emitter.emit.side_effect = RemoteApiError("Bling API error 400", 400)
        report = asyncio.run(h.workflow.generate([101]))

        assert report.errors == 1
        assert h.store.get_by_order_id("101") is None

    def test_authentication_failure_aborts_request(self, tmp_path):
        h = Harness(tmp_path, failures={101: AuthenticationError("No Bling access token")})
        with pytest.raises(AuthenticationError):
            asyncio.run(h.workflow.generate([101]))


class TestSubmit:

    def queued(self, h, **fields):
        values = dict(order_id="101", order_number="101", rps_number="10100000", invoice_id="9101")
        values.update(fields)
        return h.store.insert(RpsRecord(**values))

    def test_issued_response_records_number(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)
        h.emitter.submit.return_value = SubmissionResult(issued=True, invoice_number="555")

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.submitted == 1
        assert report.results[0].invoice_number == "555"
        reloaded = h.store.get(record.id)
        assert reloaded.status == RpsStatus.ISSUED
        assert reloaded.invoice_number == "555"

    def test_accepted_without_number_stays_processing(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.results[0].status == SubmitStatus.PROCESSING
        assert h.store.get(record.id).status == RpsStatus.PROCESSING

    def test_failure_marks_record_error(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)
        h.emitter.submit.side_effect = RemoteApiError("Bling API error 500 on POST nfse/9101/enviar", 500)

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.errors == 1
        reloaded = h.store.get(record.id)
        assert reloaded.status == RpsStatus.ERROR
        assert "500" in reloaded.error_message

    def test_timed_out_submission_recovered_from_remote_state(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)
        h.client.send_nfse = AsyncMock(side_effect=RemoteTimeoutError("Bling did not respond within 120s", 120))
        h.client.get_nfse = AsyncMock(return_value=NfseDocument(id=9101, situation=1, number="000123"))
        h.workflow.emitter = InvoiceEmitter(h.client)

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.results[0].status == SubmitStatus.SUCCESS
        assert report.results[0].invoice_number == "000123"
        reloaded = h.store.get(record.id)
        assert reloaded.status == RpsStatus.ISSUED
        assert reloaded.invoice_number == "000123"
        h.client.get_nfse.assert_awaited_once_with("9101")

    def test_unexpected_failure_does_not_leave_record_processing(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)
        h.emitter.submit.side_effect = RuntimeError("connection pool closed")

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.results[0].status == SubmitStatus.ERROR
        reloaded = h.store.get(record.id)
        assert reloaded.status == RpsStatus.ERROR
        assert reloaded.error_message == "connection pool closed"

    def test_failure_log_carries_rps_id(self, tmp_path, workflow_log):
        h = Harness(tmp_path)
        h.store.get = MagicMock(side_effect=RuntimeError("database is locked"))
        asyncio.run(h.workflow.submit([999]))

        failures = [ctx for message, ctx in workflow_log.seen if message.startswith("RPS 999 failed")]
        assert failures == [{"operation": "submit", "rps_id": "999"}]

    def test_authentication_failure_during_submission_aborts_request(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h)
        h.emitter.submit.side_effect = AuthenticationError("Bling rejected the refresh token")

        with pytest.raises(AuthenticationError):
            asyncio.run(h.workflow.submit([record.id]))

    def test_missing_record_and_missing_invoice_id(self, tmp_path):
        h = Harness(tmp_path)
        no_invoice = self.queued(h, invoice_id=None)

        report = asyncio.run(h.workflow.submit([999, no_invoice.id]))

        assert [r.status for r in report.results] == [SubmitStatus.ERROR, SubmitStatus.ERROR]
        h.emitter.submit.assert_not_awaited()

    def test_settled_record_not_resubmitted(self, tmp_path):
        h = Harness(tmp_path)
        record = self.queued(h, status=RpsStatus.ISSUED, invoice_number="555")

        report = asyncio.run(h.workflow.submit([record.id]))

        assert report.results[0].status == SubmitStatus.SUCCESS
        h.emitter.submit.assert_not_awaited()


class TestSyncAndStats:

    def test_sync_delegates_to_reconciler(self, tmp_path):
        h = Harness(tmp_path)
        summary = asyncio.run(h.workflow.sync())
        assert summary.updated == 1

    def test_stats_reads_queue(self, tmp_path):
        h = Harness(tmp_path, [make_order(101), make_order(102)])
        asyncio.run(h.workflow.generate([101, 102]))

        stats = h.workflow.stats()
        assert stats.pending == 2
        assert stats.total == 2


class TestListOrders:

    def listing(self, tmp_path, initial_order_number=None):
        h = Harness(tmp_path, initial_order_number=initial_order_number)
        h.client.list_sales_orders = AsyncMock(return_value=[
            make_order(101, number=5001),
            make_order(102, number=5002, situation=2),
            make_order(103, number=4999),
        ])
        return h

    def test_rows_joined_with_queue_state(self, tmp_path):
        h = self.listing(tmp_path, initial_order_number=5000)
        h.store.insert(RpsRecord(
            order_id="101", order_number="5001", rps_number="50010000",
            invoice_id="9101", status=RpsStatus.ISSUED, invoice_number="000321",
        ))

        rows = asyncio.run(h.workflow.list_orders(page=2, limit=50, date_from="2026-03-01"))

        h.client.list_sales_orders.assert_awaited_once_with(page=2, limit=50, date_from="2026-03-01")
        assert [r.order_id for r in rows] == ["101", "102", "103"]
        assert rows[0].skip_reason is None
        assert rows[0].rps_status == RpsStatus.ISSUED
        assert rows[0].invoice_number == "000321"
        assert rows[0].customer_name == "Maria"
        assert rows[1].skip_reason == REASON_CANCELLED
        assert rows[1].rps_status is None
        assert rows[2].skip_reason == MSG_BEFORE_INITIAL_ORDER

    def test_only_eligible_drops_skipped_orders(self, tmp_path):
        h = self.listing(tmp_path, initial_order_number=5000)
        rows = asyncio.run(h.workflow.list_orders(only_eligible=True))
        assert [r.order_id for r in rows] == ["101"]

    def test_without_initial_number_old_orders_are_eligible(self, tmp_path):
        h = self.listing(tmp_path)
        rows = asyncio.run(h.workflow.list_orders(only_eligible=True))
        assert [r.order_id for r in rows] == ["101", "103"]
