"""RPS Queue Database Operations.

Durable local state for the NFSe pipeline: one `rps_queue` row per sales
order. The UNIQUE constraint on order_id is what guarantees at most one RPS
per order; callers may pre-check with get_by_order_id, but a racing insert
still fails with ConflictError.
"""

import math
import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.errors import ConflictError, NotFoundError
from core.observability.logging import get_logger
from rps_queue.models import QueuePage, QueueStats, RpsRecord, RpsStatus

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 20

# Columns update() may touch
UPDATABLE_FIELDS = {
    "order_number",
    "rps_number",
    "series",
    "invoice_id",
    "invoice_number",
    "status",
    "error_message",
    "total_value",
    "customer_name",
    "issued_at",
}


def _to_db(value: Any) -> Any:
    if isinstance(value, RpsStatus):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _row_to_record(row: sqlite3.Row) -> RpsRecord:
    return RpsRecord(
        id=row["id"],
        order_id=row["order_id"],
        order_number=row["order_number"],
        rps_number=row["rps_number"],
        series=row["series"],
        invoice_id=row["invoice_id"],
        invoice_number=row["invoice_number"],
        status=RpsStatus(row["status"]),
        error_message=row["error_message"],
        total_value=Decimal(row["total_value"] or "0"),
        customer_name=row["customer_name"],
        issued_at=datetime.fromisoformat(row["issued_at"]) if row["issued_at"] else None,
        created_at=datetime.fromisoformat(row["created_at"]) if row["created_at"] else None,
        updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
    )


class RpsQueueStore:
    """Sqlite-backed queue of RPS records.

    Usage:
        store = RpsQueueStore(Path("nfse_pipeline.db"))
        record = store.insert(RpsRecord(order_id="123", order_number="42", rps_number="42000001"))
        store.update(record.id, status=RpsStatus.PROCESSING)
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the rps_queue table and its indexes."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS rps_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    order_id TEXT NOT NULL UNIQUE,
                    order_number TEXT NOT NULL,
                    rps_number TEXT NOT NULL,
                    series TEXT NOT NULL DEFAULT '1',
                    invoice_id TEXT,
                    invoice_number TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    error_message TEXT,
                    total_value TEXT NOT NULL DEFAULT '0',
                    customer_name TEXT,
                    issued_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_rps_queue_status ON rps_queue(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_rps_queue_invoice ON rps_queue(invoice_id)")
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, record: RpsRecord) -> RpsRecord:
        """Insert a new record.

        Raises:
            ConflictError: A record for the same order already exists
        """
        now = datetime.utcnow()
        with self._lock:
            conn = self._connect()
            try:
                cursor = conn.execute("""
                    INSERT INTO rps_queue (
                        order_id, order_number, rps_number, series, invoice_id,
                        invoice_number, status, error_message, total_value,
                        customer_name, issued_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.order_id,
                    record.order_number,
                    record.rps_number,
                    record.series,
                    record.invoice_id,
                    record.invoice_number,
                    _to_db(record.status),
                    record.error_message,
                    _to_db(record.total_value),
                    record.customer_name,
                    _to_db(record.issued_at),
                    now.isoformat(),
                    now.isoformat(),
                ))
                conn.commit()
                record_id = cursor.lastrowid
            except sqlite3.IntegrityError as e:
                raise ConflictError(f"RPS already exists for order {record.order_id}") from e
            finally:
                conn.close()

        logger.debug(f"Inserted RPS record {record_id} for order {record.order_id}")
        return record.model_copy(update={"id": record_id, "created_at": now, "updated_at": now})

    def update(self, record_id: int, **fields: Any) -> RpsRecord:
        """Partial update; status transitions are not validated here.

        Raises:
            NotFoundError: No record with this id
            ValueError: Unknown field name
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        fields["updated_at"] = datetime.utcnow()
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [_to_db(value) for value in fields.values()]

        with self._lock:
            conn = self._connect()
            try:
                cursor = conn.execute(
                    f"UPDATE rps_queue SET {assignments} WHERE id = ?",
                    (*values, record_id),
                )
                conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"RPS record {record_id} not found")
                row = conn.execute("SELECT * FROM rps_queue WHERE id = ?", (record_id,)).fetchone()
            finally:
                conn.close()

        return _row_to_record(row)

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, record_id: int) -> Optional[RpsRecord]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM rps_queue WHERE id = ?", (record_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def get_by_order_id(self, order_id: str) -> Optional[RpsRecord]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM rps_queue WHERE order_id = ?", (str(order_id),)).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def find_by_invoice_id(self, invoice_id: str) -> List[RpsRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM rps_queue WHERE invoice_id = ? ORDER BY id", (str(invoice_id),)
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def list(
        self,
        status: Optional[RpsStatus] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> QueuePage:
        """Newest first, paginated."""
        page = max(1, page)
        page_size = max(1, page_size)
        where, params = ("WHERE status = ?", [_to_db(RpsStatus(status))]) if status else ("", [])

        conn = self._connect()
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM rps_queue {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM rps_queue {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (*params, page_size, (page - 1) * page_size),
            ).fetchall()
        finally:
            conn.close()

        return QueuePage(
            rows=[_row_to_record(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    def list_unsettled(self) -> List[RpsRecord]:
        """Pending, processing, and issued-without-number records, oldest first."""
        conn = self._connect()
        try:
            rows = conn.execute("""
                SELECT * FROM rps_queue
                WHERE status IN (?, ?)
                   OR (status = ? AND (invoice_number IS NULL OR invoice_number = ''))
                ORDER BY id
            """, (
                RpsStatus.PENDING.value,
                RpsStatus.PROCESSING.value,
                RpsStatus.ISSUED.value,
            )).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def stats(self) -> QueueStats:
        conn = self._connect()
        try:
            rows = conn.execute("SELECT status, COUNT(*) AS n FROM rps_queue GROUP BY status").fetchall()
        finally:
            conn.close()
        counts: Dict[str, int] = {row["status"]: row["n"] for row in rows}
        return QueueStats.from_counts(counts)
