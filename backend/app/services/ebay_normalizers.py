"""Turn REST JSON and Trading XML payloads into :mod:`app.models.records` shapes.

Above this module nobody needs to know which API family produced a record.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, TypeVar
from xml.etree import ElementTree as ET

from app.models.records import (
    CancellationRecord,
    InboxMessageRecord,
    InquiryRecord,
    ItemRecord,
    LineItem,
    LogicalRecord,
    MessageRecord,
    OrderRecord,
    Page,
    ReturnRecord,
    SourceApi,
)

NS = {"e": "urn:ebay:apis:eBLBaseComponents"}

R = TypeVar("R", bound=LogicalRecord)


def _int(value: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _date(value: Any) -> Optional[str]:
    # Post-Order wraps timestamps as {"value": "...", "formattedValue": "..."}
    if isinstance(value, dict):
        return value.get("value")
    return value


def _amount(value: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(value, dict):
        return None
    if "value" in value:
        return {"value": value.get("value"), "currency": value.get("currency")}
    if "amount" in value:
        return {"value": value.get("amount"), "currency": value.get("currency")}
    return None


def _username(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("username") or value.get("userId")
    return value


# ---------------------------------------------------------------------------
# Modern REST
# ---------------------------------------------------------------------------


def inventory_item_from_rest(body: Dict[str, Any]) -> ItemRecord:
    product = body.get("product") or {}
    availability = (body.get("availability") or {}).get("shipToLocationAvailability") or {}
    return ItemRecord(
        id=body.get("sku") or "",
        source_api=SourceApi.modern,
        raw=body,
        sku=body.get("sku"),
        title=product.get("title"),
        quantity=_int(availability.get("quantity")),
        condition=body.get("condition"),
    )


def line_item_from_rest(body: Dict[str, Any]) -> LineItem:
    return LineItem(
        line_item_id=str(body.get("lineItemId") or ""),
        legacy_item_id=body.get("legacyItemId"),
        sku=body.get("sku"),
        title=body.get("title"),
        quantity=_int(body.get("quantity"), 1),
        fulfillment_status=body.get("lineItemFulfillmentStatus"),
    )


def order_from_rest(body: Dict[str, Any]) -> OrderRecord:
    buyer = body.get("buyer") or {}
    pricing = body.get("pricingSummary") or {}
    return OrderRecord(
        id=body.get("orderId") or "",
        source_api=SourceApi.modern,
        raw=body,
        legacy_order_id=body.get("legacyOrderId"),
        buyer_username=buyer.get("username"),
        fulfillment_status=body.get("orderFulfillmentStatus"),
        payment_status=body.get("orderPaymentStatus"),
        created_at=body.get("creationDate"),
        total=_amount(pricing.get("total")),
        line_items=[line_item_from_rest(li) for li in body.get("lineItems") or []],
    )


def return_from_rest(body: Dict[str, Any]) -> ReturnRecord:
    request = body.get("returnRequest") or {}
    creation = body.get("creationInfo") or {}
    estimate = body.get("returnEstimate") or {}
    return ReturnRecord(
        id=str(body.get("returnId") or ""),
        source_api=SourceApi.modern,
        raw=body,
        state=body.get("state") or body.get("status"),
        reason=body.get("reason") or request.get("returnReason") or creation.get("reason"),
        buyer_username=_username(body.get("buyerLoginName") or body.get("buyer")),
        order_id=body.get("orderId"),
        created_at=_date(body.get("creationDate") or creation.get("creationDate")),
        estimated_refund=_amount(estimate.get("estimatedRefund") or body.get("sellerTotalRefund")),
    )


def inquiry_from_rest(body: Dict[str, Any]) -> InquiryRecord:
    item = body.get("item") or {}
    return InquiryRecord(
        id=str(body.get("inquiryId") or ""),
        source_api=SourceApi.modern,
        raw=body,
        state=body.get("state") or body.get("inquiryStatusEnum"),
        inquiry_type=body.get("inquiryType"),
        buyer_username=_username(body.get("buyerLoginName") or body.get("buyer")),
        legacy_item_id=str(item.get("itemId")) if item.get("itemId") else body.get("itemId"),
        created_at=_date(body.get("creationDate")),
        claim_amount=_amount(body.get("claimAmount") or body.get("refundAmount")),
    )


def cancellation_from_rest(body: Dict[str, Any]) -> CancellationRecord:
    return CancellationRecord(
        id=str(body.get("cancelId") or body.get("cancellationId") or ""),
        source_api=SourceApi.modern,
        raw=body,
        state=body.get("cancelState") or body.get("state"),
        legacy_order_id=body.get("legacyOrderId"),
        reason=body.get("cancelReason") or body.get("reason"),
        buyer_username=_username(body.get("buyerLoginName") or body.get("buyer")),
        created_at=_date(body.get("cancelRequestDate") or body.get("creationDate")),
    )


def rest_page(
    body: Dict[str, Any],
    key: str,
    normalize: Callable[[Dict[str, Any]], R],
    *,
    limit: int,
    offset: int,
) -> Page[R]:
    """Sell APIs report ``total``/``next``; Post-Order may use ``paginationOutput``."""
    items = [normalize(entry) for entry in body.get(key) or []]
    pagination = body.get("paginationOutput") or {}
    total = _int(body.get("total"), None)
    if total is None:
        total = _int(pagination.get("totalEntries"), offset + len(items))
    has_more = bool(body.get("next")) or offset + len(items) < total
    return Page(items=items, total=total, has_more=has_more, limit=limit, offset=offset)


# ---------------------------------------------------------------------------
# Legacy Trading XML
# ---------------------------------------------------------------------------


def _text(node: Optional[ET.Element], path: str) -> Optional[str]:
    if node is None:
        return None
    value = node.findtext(path, default=None, namespaces=NS)
    return value.strip() if value else value


def item_from_trading(item: ET.Element) -> ItemRecord:
    item_id = _text(item, "e:ItemID") or ""
    return ItemRecord(
        id=item_id,
        source_api=SourceApi.legacy,
        raw=ET.tostring(item, encoding="unicode"),
        sku=_text(item, "e:SKU"),
        legacy_item_id=item_id,
        title=_text(item, "e:Title"),
        quantity=_int(_text(item, "e:Quantity")),
        condition=_text(item, "e:ConditionDisplayName"),
        listing_status=_text(item, "e:SellingStatus/e:ListingStatus"),
    )


def message_from_trading(exchange: ET.Element) -> MessageRecord:
    question = exchange.find("e:Question", namespaces=NS)
    return MessageRecord(
        id=_text(question, "e:MessageID") or "",
        source_api=SourceApi.legacy,
        raw=ET.tostring(exchange, encoding="unicode"),
        legacy_item_id=_text(exchange, "e:Item/e:ItemID"),
        sender=_text(question, "e:SenderID"),
        recipient=_text(question, "e:RecipientID"),
        subject=_text(question, "e:Subject"),
        body=_text(question, "e:Body"),
        question_type=_text(question, "e:QuestionType"),
        status=_text(exchange, "e:MessageStatus"),
        created_at=_text(exchange, "e:CreationDate"),
    )


def _flag(node: Optional[ET.Element], path: str) -> bool:
    return (_text(node, path) or "").lower() == "true"


def inbox_message_from_trading(message: ET.Element) -> InboxMessageRecord:
    # ReturnHeaders leaves Text out; only ReturnMessages carries the body.
    return InboxMessageRecord(
        id=_text(message, "e:MessageID") or "",
        source_api=SourceApi.legacy,
        raw=ET.tostring(message, encoding="unicode"),
        external_message_id=_text(message, "e:ExternalMessageID"),
        message_type=_text(message, "e:MessageType"),
        sender=_text(message, "e:Sender"),
        recipient=_text(message, "e:RecipientUserID"),
        subject=_text(message, "e:Subject"),
        body=_text(message, "e:Text"),
        folder_id=_int(_text(message, "e:Folder/e:FolderID")),
        read=_flag(message, "e:Read"),
        replied=_flag(message, "e:Replied"),
        flagged=_flag(message, "e:Flagged"),
        high_priority=_flag(message, "e:HighPriority"),
        legacy_item_id=_text(message, "e:ItemID"),
        item_title=_text(message, "e:ItemTitle"),
        received_at=_text(message, "e:ReceiveDate"),
        expires_at=_text(message, "e:ExpirationDate"),
    )


def trading_page(
    root: ET.Element,
    entries: List[ET.Element],
    normalize: Callable[[ET.Element], R],
    *,
    limit: int,
    offset: int,
    total_path: str = ".//e:PaginationResult/e:TotalNumberOfEntries",
) -> Page[R]:
    items = [normalize(entry) for entry in entries]
    total = _int(_text(root, total_path), None)
    if total is None:
        total = offset + len(items)
    has_more_text = _text(root, "e:HasMoreItems")
    if has_more_text is not None:
        has_more = has_more_text.lower() == "true"
    else:
        has_more = offset + len(items) < total
    return Page(items=items, total=total, has_more=has_more, limit=limit, offset=offset)
