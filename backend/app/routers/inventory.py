from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.routers.dependencies import get_orchestrator
from app.services.fulfillment_orchestrator import OrderFulfillmentOrchestrator

router = APIRouter(prefix="/ebay/{account_id}", tags=["inventory"])


@router.get("/check-item")
async def check_item(
    sku: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None, alias="itemId"),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    """Report whether a listing exists, looking in the Inventory API before Trading."""
    return await orchestrator.check_item_exists(sku=sku, item_id=item_id)


@router.get("/inventory")
async def list_inventory(
    limit: int = Query(25, ge=1, le=200),
    offset: int = Query(0, ge=0),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    page = await orchestrator.list_inventory(limit=limit, offset=offset)
    return page.to_dict()
