"""
RPS Workflow

Orchestrates the three batch entry points of the NFSe pipeline:

generate:  FETCH_ORDER → CHECK_ELIGIBILITY → CHECK_EXISTING → SELECT_SERVICES
           → RESOLVE_CONTACT → EMIT → QUEUE_INSERT (pending)
submit:    LOAD_RECORD → MARK_PROCESSING → SUBMIT (+ compensating read)
           → RECORD_OUTCOME
sync:      StatusReconciler.sync_all over every unsettled record

Each batch runs through a ThrottledPipeline: one item at a time with a
fixed delay, and a failure of one item becomes that item's result entry.
Configuration and authentication failures abort the whole request.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from connectors.bling.bling_auth import TokenManager
from connectors.bling.bling_client import BlingApiClient
from contact_resolver.resolver import ContactResolver
from core.errors import REQUEST_FATAL_ERRORS, ConflictError, ValidationError
from core.observability.logging import get_logger, with_correlation
from core.workflow import ThrottledPipeline
from nfse.eligibility import REASON_NO_SERVICES, ServiceLineFilter
from nfse.emitter import InvoiceEmitter
from reconciliation.status_sync import SettlementCheck, StatusReconciler, SyncSummary
from rps_queue.db import RpsQueueStore
from rps_queue.models import QueueStats, RpsRecord, RpsStatus

logger = get_logger(__name__)

MSG_ALREADY_EXISTS = "RPS already exists for this order"
MSG_BEFORE_INITIAL_ORDER = "order precedes the configured initial order number"
MSG_PROFILE_UNAVAILABLE = "could not load full contact profile"


# =============================================================================
# Reports
# =============================================================================

class GenerateStatus(str, Enum):
    SUCCESS = "success"
    IGNORED = "ignored"
    ERROR = "error"


class GenerateOutcome(BaseModel):
    order_id: str
    order_number: Optional[str] = None
    status: GenerateStatus
    rps_number: Optional[str] = None
    invoice_id: Optional[str] = None
    message: str = ""


class GenerateReport(BaseModel):
    total: int
    processed: int
    ignored: int
    errors: int
    results: List[GenerateOutcome]

    @classmethod
    def from_outcomes(cls, outcomes: List[GenerateOutcome]) -> "GenerateReport":
        return cls(
            total=len(outcomes),
            processed=sum(1 for o in outcomes if o.status == GenerateStatus.SUCCESS),
            ignored=sum(1 for o in outcomes if o.status == GenerateStatus.IGNORED),
            errors=sum(1 for o in outcomes if o.status == GenerateStatus.ERROR),
            results=outcomes,
        )


class SubmitStatus(str, Enum):
    SUCCESS = "success"
    PROCESSING = "processing"
    ERROR = "error"


class SubmitOutcome(BaseModel):
    id: int
    status: SubmitStatus
    invoice_number: Optional[str] = None
    message: str = ""


class SubmitReport(BaseModel):
    total: int
    submitted: int
    processing: int
    errors: int
    results: List[SubmitOutcome]

    @classmethod
    def from_outcomes(cls, outcomes: List[SubmitOutcome]) -> "SubmitReport":
        return cls(
            total=len(outcomes),
            submitted=sum(1 for o in outcomes if o.status == SubmitStatus.SUCCESS),
            processing=sum(1 for o in outcomes if o.status == SubmitStatus.PROCESSING),
            errors=sum(1 for o in outcomes if o.status == SubmitStatus.ERROR),
            results=outcomes,
        )


class OrderQueueState(BaseModel):
    """A Bling sales order with the state of its RPS, if one exists."""
    order_id: str
    order_number: str
    order_date: Optional[date] = None
    total: Optional[Decimal] = None
    customer_name: Optional[str] = None
    situation_id: Optional[int] = None
    skip_reason: Optional[str] = None
    rps_status: Optional[RpsStatus] = None
    rps_number: Optional[str] = None
    invoice_number: Optional[str] = None


# =============================================================================
# Workflow
# =============================================================================

class RpsWorkflow:
    """Entry points for generating, submitting and syncing RPS documents."""

    def __init__(
        self,
        client: BlingApiClient,
        token_manager: TokenManager,
        store: RpsQueueStore,
        contact_resolver: ContactResolver,
        line_filter: ServiceLineFilter,
        emitter: InvoiceEmitter,
        reconciler: StatusReconciler,
        pipeline: Optional[ThrottledPipeline] = None,
    ):
        self.client = client
        self.token_manager = token_manager
        self.store = store
        self.contact_resolver = contact_resolver
        self.line_filter = line_filter
        self.emitter = emitter
        self.reconciler = reconciler
        self.pipeline = pipeline or ThrottledPipeline(delay_seconds=1.0)

    # =========================================================================
    # Generate
    # =========================================================================

    async def generate(self, order_ids: List[int]) -> GenerateReport:
        logger.info(f"Generating RPS for {len(order_ids)} order(s)")

        async def process(order_id: int) -> GenerateOutcome:
            with with_correlation(operation="generate", order_id=order_id):
                return await self._generate_one(order_id)

        def on_error(order_id: int, error: Exception) -> GenerateOutcome:
            if isinstance(error, REQUEST_FATAL_ERRORS):
                raise error
            with with_correlation(operation="generate", order_id=order_id):
                logger.error(f"Order {order_id} failed: {error}")
            return GenerateOutcome(
                order_id=str(order_id),
                status=GenerateStatus.ERROR,
                message=str(error) or type(error).__name__,
            )

        outcomes = await self.pipeline.run(order_ids, process, on_error=on_error)
        report = GenerateReport.from_outcomes(outcomes)
        logger.info(f"RPS generation finished: {report.processed} of {report.total} created")
        return report

    async def _generate_one(self, order_id: int) -> GenerateOutcome:
        order = await self.client.get_sales_order(order_id)
        order_number = str(order.number)

        def ignored(message: str, rps_number: Optional[str] = None) -> GenerateOutcome:
            logger.info(f"Order {order_number} ignored: {message}")
            return GenerateOutcome(
                order_id=str(order_id),
                order_number=order_number,
                status=GenerateStatus.IGNORED,
                rps_number=rps_number,
                message=message,
            )

        reason = self.line_filter.ineligibility_reason(order)
        if reason:
            return ignored(reason)

        initial_number = await self.token_manager.initial_order_number()
        if initial_number is not None and order.number < initial_number:
            return ignored(MSG_BEFORE_INITIAL_ORDER)

        existing = self.store.get_by_order_id(str(order_id))
        if existing is not None:
            return ignored(MSG_ALREADY_EXISTS, existing.rps_number)

        lines = await self.line_filter.billable_lines(order)
        if not lines:
            return ignored(REASON_NO_SERVICES)

        try:
            contact = await self.contact_resolver.resolve(order)
        except ValidationError as e:
            return ignored(e.message)
        if contact is None:
            return GenerateOutcome(
                order_id=str(order_id),
                order_number=order_number,
                status=GenerateStatus.ERROR,
                message=MSG_PROFILE_UNAVAILABLE,
            )

        emission = await self.emitter.emit(order, contact, lines)

        with with_correlation(invoice_id=emission.invoice_id):
            try:
                record = self.store.insert(RpsRecord(
                    order_id=str(order_id),
                    order_number=order_number,
                    rps_number=emission.rps_number,
                    series=emission.series,
                    invoice_id=emission.invoice_id,
                    status=RpsStatus.PENDING,
                    total_value=emission.total_value,
                    customer_name=contact.name,
                    issued_at=datetime.utcnow(),
                ))
            except ConflictError:
                logger.warning(f"NFSe {emission.invoice_id} emitted but order already queued concurrently")
                return ignored(MSG_ALREADY_EXISTS, emission.rps_number)

            logger.info(f"RPS {record.rps_number} queued as record {record.id}")

        return GenerateOutcome(
            order_id=str(order_id),
            order_number=order_number,
            status=GenerateStatus.SUCCESS,
            rps_number=emission.rps_number,
            invoice_id=emission.invoice_id,
            message="RPS generated",
        )

    # =========================================================================
    # Submit
    # =========================================================================

    async def submit(self, rps_ids: List[int]) -> SubmitReport:
        logger.info(f"Submitting {len(rps_ids)} RPS record(s) to the municipality")

        async def process(rps_id: int) -> SubmitOutcome:
            with with_correlation(operation="submit", rps_id=rps_id):
                return await self._submit_one(rps_id)

        def on_error(rps_id: int, error: Exception) -> SubmitOutcome:
            if isinstance(error, REQUEST_FATAL_ERRORS):
                raise error
            with with_correlation(operation="submit", rps_id=rps_id):
                logger.error(f"RPS {rps_id} failed: {error}")
            return SubmitOutcome(id=rps_id, status=SubmitStatus.ERROR, message=str(error) or type(error).__name__)

        outcomes = await self.pipeline.run(rps_ids, process, on_error=on_error)
        report = SubmitReport.from_outcomes(outcomes)
        logger.info(f"Submission finished: {report.submitted} issued, {report.processing} awaiting settlement")
        return report

    async def _submit_one(self, rps_id: int) -> SubmitOutcome:
        record = self.store.get(rps_id)
        if record is None:
            return SubmitOutcome(id=rps_id, status=SubmitStatus.ERROR, message="RPS record not found")
        if not record.invoice_id:
            return SubmitOutcome(id=rps_id, status=SubmitStatus.ERROR, message="NFSe id not found")
        if record.is_settled:
            return SubmitOutcome(
                id=rps_id,
                status=SubmitStatus.SUCCESS,
                invoice_number=record.invoice_number,
                message="NFSe already issued",
            )

        with with_correlation(invoice_id=record.invoice_id):
            self.store.update(rps_id, status=RpsStatus.PROCESSING)

            # Once marked processing, every non-fatal failure ends in error
            try:
                result = await self.emitter.submit(record)
            except REQUEST_FATAL_ERRORS:
                raise
            except Exception as e:
                message = getattr(e, "message", None) or str(e) or type(e).__name__
                logger.error(f"Submission of NFSe {record.invoice_id} failed: {message}")
                self.store.update(rps_id, status=RpsStatus.ERROR, error_message=message)
                return SubmitOutcome(id=rps_id, status=SubmitStatus.ERROR, message=message)

            if result.issued:
                self.store.update(
                    rps_id,
                    status=RpsStatus.ISSUED,
                    invoice_number=result.invoice_number,
                    error_message=None,
                )
                message = "NFSe was already issued in Bling" if result.recovered else "NFSe issued"
                logger.info(f"{message} (number {result.invoice_number})")
                return SubmitOutcome(
                    id=rps_id,
                    status=SubmitStatus.SUCCESS,
                    invoice_number=result.invoice_number,
                    message=message,
                )

        return SubmitOutcome(
            id=rps_id,
            status=SubmitStatus.PROCESSING,
            message="Submitted to the municipality, awaiting settlement",
        )

    # =========================================================================
    # Sync / verify / stats
    # =========================================================================

    async def sync(self) -> SyncSummary:
        with with_correlation(operation="sync"):
            return await self.reconciler.sync_all()

    async def verify(self, invoice_ids: List[str]) -> List[SettlementCheck]:
        with with_correlation(operation="verify"):
            return await self.reconciler.verify(invoice_ids)

    def stats(self) -> QueueStats:
        return self.store.stats()

    async def list_orders(
        self,
        page: int = 1,
        limit: int = 20,
        only_eligible: bool = False,
        **filters,
    ) -> List[OrderQueueState]:
        """One page of Bling sales orders joined with their queue records.

        `skip_reason` tells why generate would ignore the order (cancelled,
        consumer-final customer, before the initial order number).
        """
        orders = await self.client.list_sales_orders(page=page, limit=limit, **filters)
        initial_number = await self.token_manager.initial_order_number()

        rows: List[OrderQueueState] = []
        for order in orders:
            reason = self.line_filter.ineligibility_reason(order)
            if reason is None and initial_number is not None and order.number < initial_number:
                reason = MSG_BEFORE_INITIAL_ORDER
            if only_eligible and reason is not None:
                continue

            record = self.store.get_by_order_id(str(order.id))
            rows.append(OrderQueueState(
                order_id=str(order.id),
                order_number=str(order.number),
                order_date=order.order_date,
                total=order.total,
                customer_name=order.customer.name if order.customer else None,
                situation_id=order.situation_id,
                skip_reason=reason,
                rps_status=record.status if record else None,
                rps_number=record.rps_number if record else None,
                invoice_number=record.invoice_number if record else None,
            ))
        return rows
