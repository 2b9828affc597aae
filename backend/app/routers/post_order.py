"""Returns, inquiries and cancellations (eBay Post-Order v2)."""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.models.ebay import CancellationEligibilityRequest, ResolutionRequest
from app.routers.dependencies import get_orchestrator
from app.services.fulfillment_orchestrator import OrderFulfillmentOrchestrator

router = APIRouter(prefix="/ebay/{account_id}", tags=["post-order"])


@router.get("/returns")
async def list_returns(
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    state: Optional[str] = Query(None),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.returns.search_returns(limit=limit, offset=offset, state=state)
    return page.to_dict()


@router.get("/returns/{return_id}")
async def get_return(
    return_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.returns.fetch_return(return_id)
    return record.to_dict()


@router.post("/returns/{return_id}/{action}")
async def resolve_return(
    return_id: str,
    action: str,
    request: Optional[ResolutionRequest] = None,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.resolve_return(return_id, action, request.payload if request else None)
    return result.to_dict()


@router.get("/inquiries")
async def list_inquiries(
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    state: Optional[str] = Query(None),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.inquiries.search_inquiries(limit=limit, offset=offset, state=state)
    return page.to_dict()


@router.get("/inquiries/{inquiry_id}")
async def get_inquiry(
    inquiry_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    record = await orchestrator.inquiries.fetch_inquiry(inquiry_id)
    return record.to_dict()


@router.post("/inquiries/{inquiry_id}/{action}")
async def resolve_inquiry(
    inquiry_id: str,
    action: str,
    request: Optional[ResolutionRequest] = None,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.resolve_inquiry(inquiry_id, action, request.payload if request else None)
    return result.to_dict()


@router.get("/cancellations")
async def list_cancellations(
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.cancellations.search_cancellations(limit=limit, offset=offset)
    return page.to_dict()


@router.post("/cancellations/check-eligibility")
async def check_cancellation_eligibility(
    request: CancellationEligibilityRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.check_cancellation_eligibility(request.legacy_order_id)
    # Raw upstream body is for diagnostics, not for API consumers.
    return {k: v for k, v in result.items() if k != "raw"}
