"""RPS endpoints.

Batch operations over the RPS queue plus read-only listing.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.dependencies import get_queue_store, get_workflow
from reconciliation.status_sync import SettlementCheck, SyncSummary
from rps_queue.db import RpsQueueStore
from rps_queue.models import QueuePage, QueueStats, RpsStatus
from workflows.rps_workflow import GenerateReport, OrderQueueState, RpsWorkflow, SubmitReport


router = APIRouter()


class GenerateRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, description="Bling sales order ids")


class SubmitRequest(BaseModel):
    rps_ids: List[int] = Field(..., min_length=1, description="RPS queue record ids")


class VerifyRequest(BaseModel):
    invoice_ids: List[str] = Field(..., min_length=1, description="Bling NFSe ids")


class VerifyResponse(BaseModel):
    total: int
    verified: int
    results: List[SettlementCheck]


class OrdersResponse(BaseModel):
    page: int
    rows: List[OrderQueueState]


@router.post("/generate", response_model=GenerateReport)
async def generate(request: GenerateRequest, workflow: RpsWorkflow = Depends(get_workflow)):
    """Emit one NFSe per eligible order and queue it as pending."""
    return await workflow.generate(request.order_ids)


@router.post("/submit", response_model=SubmitReport)
async def submit(request: SubmitRequest, workflow: RpsWorkflow = Depends(get_workflow)):
    """Send queued NFSe documents to the municipality."""
    return await workflow.submit(request.rps_ids)


@router.post("/sync", response_model=SyncSummary)
async def sync(workflow: RpsWorkflow = Depends(get_workflow)):
    return await workflow.sync()


@router.post("/verify", response_model=VerifyResponse)
async def verify(request: VerifyRequest, workflow: RpsWorkflow = Depends(get_workflow)):
    """Poll each invoice until it has a number or attempts run out."""
    results = await workflow.verify(request.invoice_ids)
    return VerifyResponse(
        total=len(results),
        verified=sum(1 for r in results if r.invoice_number),
        results=results,
    )


@router.get("/queue", response_model=QueuePage)
async def list_queue(
    status: Optional[RpsStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    store: RpsQueueStore = Depends(get_queue_store),
):
    return store.list(status=status, page=page, page_size=page_size)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(store: RpsQueueStore = Depends(get_queue_store)):
    return store.stats()


@router.get("/orders", response_model=OrdersResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    number: Optional[int] = Query(None),
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD"),
    contact_id: Optional[int] = Query(None),
    situation_ids: Optional[List[int]] = Query(None),
    only_eligible: bool = Query(False, description="Hide orders generate would ignore"),
    workflow: RpsWorkflow = Depends(get_workflow),
):
    """Bling sales orders with the RPS queue state of each one."""
    rows = await workflow.list_orders(
        page=page,
        limit=limit,
        only_eligible=only_eligible,
        number=number,
        date_from=date_from,
        date_to=date_to,
        contact_id=contact_id,
        situation_ids=situation_ids,
    )
    return OrdersResponse(page=page, rows=rows)
