from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.models.ebay import SendOrderMessageRequest, ShipOrderRequest
from app.routers.dependencies import get_orchestrator
from app.services.fulfillment_orchestrator import OrderFulfillmentOrchestrator

router = APIRouter(prefix="/ebay/{account_id}/orders", tags=["orders"])


@router.get("")
async def list_orders(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    fulfillment_status: Optional[List[str]] = Query(None),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.orders.list_orders(
        limit=limit, offset=offset, fulfillment_status=fulfillment_status
    )
    return page.to_dict()


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    order = await orchestrator.orders.fetch_order(order_id)
    return order.to_dict()


@router.post("/{order_id}/ship")
async def ship_order(
    order_id: str,
    request: ShipOrderRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    action = await orchestrator.ship_order(
        order_id,
        request.tracking_number,
        request.carrier_code,
        shipped_at=request.shipped_at,
        line_item_ids=request.line_item_ids,
    )
    return action.to_dict()


@router.get("/{order_id}/messages")
async def get_order_messages(
    order_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    messages = await orchestrator.get_order_messages(order_id)
    return messages.to_dict()


@router.post("/{order_id}/messages")
async def send_order_message(
    order_id: str,
    request: SendOrderMessageRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    action = await orchestrator.send_order_message(
        order_id,
        request.body,
        subject=request.subject,
        question_type=request.question_type,
        email_copy_to_sender=request.email_copy_to_sender,
    )
    return action.to_dict()
