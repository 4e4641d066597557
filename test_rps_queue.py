"""
RPS Queue Store Tests

Sqlite persistence of RPS records: uniqueness per order, partial updates,
pagination, unsettled selection and status counts.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from core.errors import ConflictError, NotFoundError
from rps_queue import RpsQueueStore, RpsRecord, RpsStatus


@pytest.fixture
def store(tmp_path):
    return RpsQueueStore(tmp_path / "queue.db")


def new_record(order_id="101", **fields):
    values = {
        "order_id": order_id,
        "order_number": f"N{order_id}",
        "rps_number": f"{order_id}00000"[:8],
        "invoice_id": f"9{order_id}",
        "total_value": Decimal("150.50"),
        "customer_name": "ACME",
        "issued_at": datetime(2026, 3, 2, 12, 0, 0),
    }
    values.update(fields)
    return RpsRecord(**values)


class TestWrites:

    def test_insert_assigns_id_and_defaults(self, store):
        record = store.insert(new_record())
        assert record.id is not None
        assert record.status == RpsStatus.PENDING
        assert record.created_at is not None

        loaded = store.get(record.id)
        assert loaded.order_id == "101"
        assert loaded.total_value == Decimal("150.50")
        assert loaded.series == "1"
        assert loaded.issued_at == datetime(2026, 3, 2, 12, 0, 0)

    def test_second_record_for_same_order_conflicts(self, store):
        store.insert(new_record("101"))
        with pytest.raises(ConflictError):
            store.insert(new_record("101", rps_number="10199999"))

    def test_update_changes_only_given_fields(self, store):
        record = store.insert(new_record())
        updated = store.update(record.id, status=RpsStatus.ISSUED, invoice_number="555")

        assert updated.status == RpsStatus.ISSUED
        assert updated.invoice_number == "555"
        assert updated.rps_number == record.rps_number
        assert updated.updated_at >= record.updated_at

    def test_update_can_clear_error_message(self, store):
        record = store.insert(new_record(status=RpsStatus.ERROR, error_message="boom"))
        assert store.update(record.id, error_message=None).error_message is None

    def test_update_unknown_record(self, store):
        with pytest.raises(NotFoundError):
            store.update(999, status=RpsStatus.ERROR)

    def test_update_rejects_unknown_fields(self, store):
        record = store.insert(new_record())
        with pytest.raises(ValueError):
            store.update(record.id, order_id="202")


class TestReads:

    def test_lookup_by_order_and_invoice(self, store):
        record = store.insert(new_record("101", invoice_id="9001"))
        assert store.get_by_order_id("101").id == record.id
        assert store.get_by_order_id("102") is None
        assert [r.id for r in store.find_by_invoice_id("9001")] == [record.id]
        assert store.get(12345) is None

    def test_list_filters_and_paginates(self, store):
        for order_id in range(1, 26):
            store.insert(new_record(str(order_id)))
        store.update(store.get_by_order_id("3").id, status=RpsStatus.ERROR)

        first = store.list(page=1, page_size=10)
        assert first.total == 25
        assert first.total_pages == 3
        assert len(first.rows) == 10

        last = store.list(page=3, page_size=10)
        assert len(last.rows) == 5

        errors = store.list(status=RpsStatus.ERROR)
        assert errors.total == 1
        assert errors.rows[0].order_id == "3"

    def test_list_newest_first(self, store):
        store.insert(new_record("1"))
        store.insert(new_record("2"))
        assert [r.order_id for r in store.list().rows] == ["2", "1"]

    def test_empty_list(self, store):
        page = store.list()
        assert page.rows == []
        assert page.total_pages == 0

    def test_unsettled_selection(self, store):
        pending = store.insert(new_record("1"))
        processing = store.insert(new_record("2", status=RpsStatus.PROCESSING))
        issued_without_number = store.insert(new_record("3", status=RpsStatus.ISSUED))
        store.insert(new_record("4", status=RpsStatus.ISSUED, invoice_number="555"))
        store.insert(new_record("5", status=RpsStatus.ERROR))

        ids = [r.id for r in store.list_unsettled()]
        assert ids == [pending.id, processing.id, issued_without_number.id]

    def test_stats(self, store):
        store.insert(new_record("1"))
        store.insert(new_record("2"))
        store.insert(new_record("3", status=RpsStatus.ISSUED, invoice_number="1"))
        store.insert(new_record("4", status=RpsStatus.ERROR))

        stats = store.stats()
        assert (stats.pending, stats.processing, stats.issued, stats.error, stats.total) == (2, 0, 1, 1, 4)


class TestRecordModel:

    def test_settled_only_with_number(self):
        assert new_record(status=RpsStatus.ISSUED, invoice_number="1").is_settled
        assert not new_record(status=RpsStatus.ISSUED).is_settled
        assert new_record(status=RpsStatus.ISSUED).is_unsettled
        assert not new_record(status=RpsStatus.ERROR).is_unsettled
