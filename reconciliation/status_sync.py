"""Status reconciliation between the RPS queue and Bling.

Exposes:
- StatusReconciler.sync_all() -> SyncSummary
- StatusReconciler.poll_until_settled(invoice_id) -> number | None
- StatusReconciler.verify(invoice_ids) -> [SettlementCheck]

Reconciliation only moves records forward. The single backward move is an
`issued` record without a number whose invoice cannot be read from Bling;
it goes back to `pending`.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from connectors.bling.bling_client import POLL_TIMEOUT, BlingApiClient
from connectors.bling.bling_models import NfseDocument
from core.errors import REQUEST_FATAL_ERRORS, RemoteApiError, RemoteTimeoutError
from core.observability.logging import get_logger, with_correlation
from core.workflow import RetryScheduler, ThrottledPipeline
from nfse.situations import status_for_nfse_situation
from rps_queue.db import RpsQueueStore
from rps_queue.models import RpsRecord, RpsStatus

logger = get_logger(__name__)

POLL_MAX_ATTEMPTS = 5
POLL_DELAY_SECONDS = 40.0

MSG_NOT_FOUND_RESET = "NFSe not found in Bling - status reset to pending"
MSG_CANCELLED = "NFSe cancelled in Bling"


class SyncSummary(BaseModel):
    verified: int = 0
    updated: int = 0
    corrected: int = 0
    failed: int = 0


class SettlementStatus(str, Enum):
    VERIFIED = "verified"
    PENDING = "pending"
    ERROR = "error"


class SettlementCheck(BaseModel):
    invoice_id: str
    status: SettlementStatus
    invoice_number: Optional[str] = None
    message: str = ""


def next_status(record: RpsRecord, document: NfseDocument) -> RpsStatus:
    """Local status after seeing the remote invoice; never moves backward."""
    mapped = status_for_nfse_situation(document.situation)
    if mapped == RpsStatus.ERROR:
        return RpsStatus.ERROR
    if mapped == RpsStatus.ISSUED or document.number:
        return RpsStatus.ISSUED
    if mapped == RpsStatus.PENDING and record.status == RpsStatus.PENDING:
        return RpsStatus.PENDING
    return record.status


class StatusReconciler:
    """Pulls settled numbers and situations from Bling into the queue."""

    def __init__(
        self,
        client: BlingApiClient,
        store: RpsQueueStore,
        pipeline: Optional[ThrottledPipeline] = None,
        retry: Optional[RetryScheduler] = None,
    ):
        self.client = client
        self.store = store
        self.pipeline = pipeline or ThrottledPipeline(delay_seconds=2.0)
        self.retry = retry or RetryScheduler(max_attempts=POLL_MAX_ATTEMPTS, delay_seconds=POLL_DELAY_SECONDS)

    # =========================================================================
    # Bulk sync
    # =========================================================================

    async def sync_all(self) -> SyncSummary:
        """Check every unsettled record that has a Bling invoice id."""
        records = self.store.list_unsettled()
        summary = SyncSummary(verified=len(records))
        logger.info(f"Syncing {len(records)} unsettled RPS record(s)")

        async def check(record: RpsRecord) -> None:
            if not record.invoice_id:
                return
            with with_correlation(rps_id=record.id, invoice_id=record.invoice_id):
                await self._sync_record(record, summary)

        def on_error(record: RpsRecord, error: Exception) -> None:
            if isinstance(error, REQUEST_FATAL_ERRORS):
                raise error
            with with_correlation(rps_id=record.id, invoice_id=record.invoice_id):
                logger.error(f"RPS {record.id} could not be reconciled: {error}")
            summary.failed += 1

        await self.pipeline.run([r for r in records if r.invoice_id], check, on_error=on_error)

        logger.info(
            f"Sync finished: {summary.updated} updated, {summary.corrected} corrected, {summary.failed} failed",
            extra_fields=summary.model_dump(),
        )
        return summary

    async def _sync_record(self, record: RpsRecord, summary: SyncSummary) -> None:
        missing_number = record.status == RpsStatus.ISSUED and not record.invoice_number

        try:
            document = await self.client.get_nfse(record.invoice_id)
        except (RemoteApiError, RemoteTimeoutError) as e:
            logger.warning(f"Could not read NFSe {record.invoice_id}: {e}")
            if missing_number:
                self.store.update(record.id, status=RpsStatus.PENDING, error_message=MSG_NOT_FOUND_RESET)
                summary.corrected += 1
                logger.info(f"RPS {record.id} reset to pending")
            return

        status = next_status(record, document)
        number_changed = bool(document.number) and document.number != record.invoice_number
        if status == record.status and not number_changed:
            return

        fields = {
            "status": status,
            "invoice_number": document.number or record.invoice_number,
        }
        if status == RpsStatus.ERROR:
            fields["error_message"] = MSG_CANCELLED
        self.store.update(record.id, **fields)

        if missing_number and document.number:
            summary.corrected += 1
            logger.info(f"RPS {record.id} corrected with NFSe number {document.number}")
        else:
            summary.updated += 1
            logger.info(f"RPS {record.id}: {record.status.value} -> {status.value}")

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll_until_settled(self, invoice_id: str) -> Optional[str]:
        """Settled NFSe number, or None if still unsettled after all attempts."""
        document = await self.retry.run(
            lambda: self.client.get_nfse(invoice_id, timeout=POLL_TIMEOUT),
            lambda doc: bool(doc.number),
        )
        return document.number if document else None

    async def verify(self, invoice_ids: List[str]) -> List[SettlementCheck]:
        """Poll each invoice in turn and record settled numbers in the queue."""

        async def check(invoice_id: str) -> SettlementCheck:
            with with_correlation(invoice_id=invoice_id):
                number = await self.poll_until_settled(invoice_id)
                if not number:
                    return SettlementCheck(
                        invoice_id=invoice_id,
                        status=SettlementStatus.PENDING,
                        message="NFSe has no number yet",
                    )

                for record in self.store.find_by_invoice_id(invoice_id):
                    if not record.is_settled:
                        self.store.update(record.id, status=RpsStatus.ISSUED, invoice_number=number)

                return SettlementCheck(
                    invoice_id=invoice_id,
                    status=SettlementStatus.VERIFIED,
                    invoice_number=number,
                    message="Situation verified and number obtained",
                )

        def on_error(invoice_id: str, error: Exception) -> SettlementCheck:
            if isinstance(error, REQUEST_FATAL_ERRORS):
                raise error
            return SettlementCheck(
                invoice_id=invoice_id,
                status=SettlementStatus.ERROR,
                message=f"Verification failed: {error}",
            )

        return await self.pipeline.run([str(i) for i in invoice_ids], check, on_error=on_error)
