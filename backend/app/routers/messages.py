from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.models.ebay import SendItemMessageRequest, UpdateInboxMessageRequest
from app.routers.dependencies import get_orchestrator
from app.services.fulfillment_orchestrator import OrderFulfillmentOrchestrator

router = APIRouter(prefix="/ebay/{account_id}/messages", tags=["messages"])


@router.get("")
async def list_inbox(
    folder_id: Optional[int] = Query(None, ge=0),
    start_time: Optional[str] = Query(None),
    end_time: Optional[str] = Query(None),
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    """Inbox headers, newest pages first as eBay returns them."""
    page = await orchestrator.list_inbox(
        folder_id=folder_id, start_time=start_time, end_time=end_time, limit=limit, offset=offset
    )
    return page.to_dict()


@router.post("")
async def send_item_message(
    request: SendItemMessageRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    action = await orchestrator.send_item_message(
        request.item_id,
        request.recipient_id,
        request.body,
        subject=request.subject,
        question_type=request.question_type,
        email_copy_to_sender=request.email_copy_to_sender,
    )
    return action.to_dict()


@router.get("/{message_id}")
async def get_inbox_message(
    message_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    message = await orchestrator.get_inbox_message(message_id)
    return message.to_dict()


@router.patch("/{message_id}")
async def update_inbox_message(
    message_id: str,
    request: UpdateInboxMessageRequest,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    action = await orchestrator.update_inbox_message(message_id, read=request.read, flagged=request.flagged)
    return action.to_dict()


@router.delete("/{message_id}")
async def delete_inbox_message(
    message_id: str,
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    action = await orchestrator.delete_inbox_message(message_id)
    return action.to_dict()
