"""Multi-step order actions on top of the API families and the fallback resolver.

eBay is authoritative for fulfillment status (NOT_STARTED -> IN_PROGRESS ->
FULFILLED). The orchestrator triggers actions and re-reads the result; it
never tracks that state itself. Returns, inquiries and cancellations are side
channels that leave the fulfillment state alone.

Input validation always happens before the first upstream call.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from app.models.records import (
    FulfillmentAction,
    InboxMessageRecord,
    ItemMessages,
    ItemOutcome,
    ItemRecord,
    OrderMessages,
    OrderRecord,
    Page,
    aggregate_result,
)
from app.services.ebay_capabilities import (
    BuyerMessaging,
    CancellationCheck,
    InquiryResolution,
    InventoryCatalog,
    OrderSource,
    ReturnResolution,
    SellerInbox,
    ShippingFulfillment,
)
from app.services.ebay_errors import (
    BodyTooLong,
    BuyerNotFound,
    EbayGatewayError,
    InvalidAction,
    ItemNotFound,
    LineItemNotInOrder,
    MissingBody,
    MissingCarrier,
    MissingIdentifier,
    MissingRecipient,
    MissingShipmentInfo,
    MissingTracking,
    NotFoundError,
    NothingToShip,
    OrderNotFound,
    ValidationError,
)
from app.services.ebay_trading import MESSAGE_BODY_MAX_LENGTH
from app.services.fallback_resolver import FallbackResolver
from app.utils.logger import logger


INQUIRY_ACTIONS = ("refund", "shipment", "escalate")
RETURN_ACTIONS = ("accept", "refund")
DEFAULT_QUESTION_TYPE = "General"
DEFAULT_CURRENCY = "USD"


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def _refund_amount(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Normalize an optional partial refund to eBay's ``{"value", "currency"}`` shape."""
    raw = _pick(payload, "refundAmount", "refund_amount")
    if raw is None:
        return None

    if isinstance(raw, dict):
        value = raw.get("value")
        currency = raw.get("currency") or DEFAULT_CURRENCY
    else:
        value = raw
        currency = _pick(payload, "currency") or DEFAULT_CURRENCY

    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"refundAmount is not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("refundAmount must be a positive amount")
    return {"value": f"{amount:.2f}", "currency": str(currency).upper()}


class OrderFulfillmentOrchestrator:
    def __init__(
        self,
        *,
        orders: OrderSource,
        shipping: ShippingFulfillment,
        messaging: BuyerMessaging,
        returns: ReturnResolution,
        inquiries: InquiryResolution,
        cancellations: CancellationCheck,
        inventory: InventoryCatalog,
        inbox: SellerInbox,
        resolver: FallbackResolver,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.orders = orders
        self.shipping = shipping
        self.messaging = messaging
        self.returns = returns
        self.inquiries = inquiries
        self.cancellations = cancellations
        self.inventory = inventory
        self.inbox = inbox
        self.resolver = resolver
        self._clock = clock

    async def _fetch_order(self, order_id: str) -> OrderRecord:
        try:
            return await self.orders.fetch_order(order_id)
        except NotFoundError as exc:
            raise OrderNotFound(f"Order {order_id} not found", details=exc.details) from exc

    # ------------------------------------------------------------------
    # Shipping
    # ------------------------------------------------------------------

    async def ship_order(
        self,
        order_id: str,
        tracking_number: Optional[str],
        carrier_code: Optional[str],
        *,
        shipped_at: Optional[datetime] = None,
        line_item_ids: Optional[List[str]] = None,
    ) -> FulfillmentAction:
        """Ship the given line items, or every unfulfilled one when none are given."""
        if not _clean(order_id):
            raise MissingIdentifier("order_id is required")
        tracking_number = _clean(tracking_number)
        carrier_code = _clean(carrier_code)
        if not tracking_number:
            raise MissingTracking("trackingNumber is required")
        if not carrier_code:
            raise MissingCarrier("shippingCarrierCode is required")

        order = await self._fetch_order(order_id)

        if line_item_ids:
            requested = list(dict.fromkeys(line_item_ids))
            foreign = [li_id for li_id in requested if order.line_item(li_id) is None]
            if foreign:
                raise LineItemNotInOrder(
                    f"Line items do not belong to order {order_id}: {', '.join(foreign)}",
                    details={"line_item_ids": foreign},
                )
            to_ship = [order.line_item(li_id) for li_id in requested]
        else:
            to_ship = order.unfulfilled_line_items()
            if not to_ship:
                raise NothingToShip(f"Order {order_id} has no unfulfilled line items")

        shipped_at = shipped_at or self._clock()
        fulfillment_id = await self.shipping.create_shipping_fulfillment(
            order_id,
            to_ship,
            tracking_number=tracking_number,
            carrier_code=carrier_code,
            shipped_at=shipped_at,
        )

        # Re-read: eBay decides the resulting fulfillment status.
        fulfillment_status: Optional[str] = None
        try:
            fulfillment_status = (await self.orders.fetch_order(order_id)).fulfillment_status
        except EbayGatewayError as exc:
            logger.warning("[orchestrator] post-ship re-read failed order_id=%s error=%s", order_id, exc.message)

        logger.info(
            "[orchestrator] shipped order_id=%s line_items=%s fulfillment_id=%s status=%s",
            order_id, len(to_ship), fulfillment_id, fulfillment_status,
        )
        outcomes = [ItemOutcome(item_id=li.line_item_id, success=True) for li in to_ship]
        return FulfillmentAction(
            target_record_id=order_id,
            kind="ship",
            payload={
                "tracking_number": tracking_number,
                "carrier_code": carrier_code,
                "shipped_at": shipped_at.isoformat(),
                "line_item_ids": [li.line_item_id for li in to_ship],
            },
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details={"fulfillment_id": fulfillment_id, "fulfillment_status": fulfillment_status},
        )

    # ------------------------------------------------------------------
    # Messaging
    # ------------------------------------------------------------------

    async def send_order_message(
        self,
        order_id: str,
        body: Optional[str],
        *,
        subject: Optional[str] = None,
        question_type: Optional[str] = None,
        email_copy_to_sender: bool = False,
    ) -> FulfillmentAction:
        if not body or not body.strip():
            raise MissingBody("Message body is required")
        if len(body) > MESSAGE_BODY_MAX_LENGTH:
            raise BodyTooLong(f"Message body must be {MESSAGE_BODY_MAX_LENGTH} characters or less")

        order = await self._fetch_order(order_id)
        if not order.buyer_username:
            raise BuyerNotFound(f"Buyer information not available for order {order_id}")
        # Messaging is keyed by listing, not by order.
        first = order.line_items[0] if order.line_items else None
        if first is None or not first.legacy_item_id:
            raise ItemNotFound(f"No listing found in order {order_id} to attach the message to")

        question_type = question_type or DEFAULT_QUESTION_TYPE
        response = await self.messaging.send_buyer_message(
            first.legacy_item_id,
            order.buyer_username,
            body,
            subject=subject,
            question_type=question_type,
            email_copy_to_sender=email_copy_to_sender,
        )
        outcomes = [ItemOutcome(item_id=first.legacy_item_id, success=True)]
        return FulfillmentAction(
            target_record_id=order_id,
            kind="message",
            payload={"subject": subject, "question_type": question_type},
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details={
                "recipient_id": order.buyer_username,
                "item_id": first.legacy_item_id,
                **response,
            },
        )

    async def get_order_messages(self, order_id: str) -> OrderMessages:
        """Collect messages per line item, skipping (and reporting) items that fail."""
        order = await self._fetch_order(order_id)
        result = OrderMessages(order_id=order_id, buyer=order.buyer_username, total_items=len(order.line_items))

        for line_item in order.line_items:
            if not line_item.legacy_item_id:
                result.failed_items.append(
                    ItemOutcome(
                        item_id=line_item.line_item_id,
                        success=False,
                        error_code=ItemNotFound.code,
                        error_message="Line item has no legacy listing id",
                    )
                )
                continue
            try:
                page = await self.messaging.fetch_member_messages(line_item.legacy_item_id)
            except EbayGatewayError as exc:
                logger.warning(
                    "[orchestrator] messages fetch failed order_id=%s item_id=%s error=%s",
                    order_id, line_item.legacy_item_id, exc.message,
                )
                result.failed_items.append(
                    ItemOutcome(
                        item_id=line_item.legacy_item_id,
                        success=False,
                        error_code=exc.code,
                        error_message=exc.message,
                    )
                )
                continue
            result.item_messages.append(
                ItemMessages(
                    item_id=line_item.legacy_item_id,
                    line_item_id=line_item.line_item_id,
                    item_title=line_item.title,
                    messages=page.items,
                )
            )

        return result

    # ------------------------------------------------------------------
    # Inquiries / returns / cancellations
    # ------------------------------------------------------------------

    async def resolve_inquiry(
        self, inquiry_id: str, action: str, payload: Optional[Dict[str, Any]] = None
    ) -> FulfillmentAction:
        action = (action or "").strip().lower()
        if action not in INQUIRY_ACTIONS:
            raise InvalidAction(f"Unknown inquiry action {action!r}; expected one of {', '.join(INQUIRY_ACTIONS)}")
        if not _clean(inquiry_id):
            raise MissingIdentifier("inquiry_id is required")
        payload = dict(payload or {})
        comments = _pick(payload, "comments")

        if action == "shipment":
            tracking_number = _pick(payload, "trackingNumber", "tracking_number")
            carrier_code = _pick(payload, "shippingCarrierCode", "shipping_carrier_code")
            if not tracking_number or not carrier_code:
                raise MissingShipmentInfo("trackingNumber and shippingCarrierCode are required")
            response = await self.inquiries.provide_inquiry_shipment_info(
                inquiry_id,
                tracking_number=str(tracking_number),
                carrier_code=str(carrier_code),
                shipped_date=_pick(payload, "shippedDate", "shipped_date"),
                comments=comments,
            )
        elif action == "refund":
            response = await self.inquiries.issue_inquiry_refund(inquiry_id, comments=comments)
        else:
            response = await self.inquiries.escalate_inquiry(inquiry_id, comments=comments)

        logger.info("[orchestrator] inquiry resolved inquiry_id=%s action=%s", inquiry_id, action)
        outcomes = [ItemOutcome(item_id=inquiry_id, success=True)]
        return FulfillmentAction(
            target_record_id=inquiry_id,
            kind=action,
            payload=payload,
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details={"response": response},
        )

    async def resolve_return(
        self, return_id: str, action: str, payload: Optional[Dict[str, Any]] = None
    ) -> FulfillmentAction:
        action = (action or "").strip().lower()
        if action not in RETURN_ACTIONS:
            raise InvalidAction(f"Unknown return action {action!r}; expected one of {', '.join(RETURN_ACTIONS)}")
        if not _clean(return_id):
            raise MissingIdentifier("return_id is required")
        payload = dict(payload or {})
        comments = _pick(payload, "comments")

        if action == "refund":
            refund_amount = _refund_amount(payload)
            response = await self.returns.issue_return_refund(
                return_id, refund_amount=refund_amount, comments=comments
            )
            details = {"refund_amount": refund_amount, "partial": refund_amount is not None, "response": response}
        else:
            response = await self.returns.accept_return(return_id, comments=comments)
            details = {"response": response}

        logger.info("[orchestrator] return resolved return_id=%s action=%s", return_id, action)
        outcomes = [ItemOutcome(item_id=return_id, success=True)]
        return FulfillmentAction(
            target_record_id=return_id,
            kind=action,
            payload=payload,
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details=details,
        )

    async def check_cancellation_eligibility(self, legacy_order_id: str) -> Dict[str, Any]:
        legacy_order_id = _clean(legacy_order_id)
        if not legacy_order_id:
            raise MissingIdentifier("legacyOrderId is required")
        return await self.cancellations.check_cancellation_eligibility(legacy_order_id)

    # ------------------------------------------------------------------
    # Seller inbox
    # ------------------------------------------------------------------

    async def list_inbox(
        self,
        *,
        folder_id: Optional[int] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> Page[InboxMessageRecord]:
        return await self.inbox.list_my_messages(
            folder_id=folder_id, start_time=start_time, end_time=end_time, limit=limit, offset=offset
        )

    async def get_inbox_message(self, message_id: str) -> InboxMessageRecord:
        message_id = _clean(message_id)
        if not message_id:
            raise MissingIdentifier("message_id is required")
        return await self.inbox.get_my_message(message_id)

    async def update_inbox_message(
        self, message_id: str, *, read: Optional[bool] = None, flagged: Optional[bool] = None
    ) -> FulfillmentAction:
        message_id = _clean(message_id)
        if not message_id:
            raise MissingIdentifier("message_id is required")
        if read is None and flagged is None:
            raise ValidationError("Nothing to change: set read and/or flagged")

        response = await self.inbox.revise_my_messages([message_id], read=read, flagged=flagged)
        outcomes = [ItemOutcome(item_id=message_id, success=True)]
        return FulfillmentAction(
            target_record_id=message_id,
            kind="revise_message",
            payload={"read": read, "flagged": flagged},
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details=response,
        )

    async def delete_inbox_message(self, message_id: str) -> FulfillmentAction:
        message_id = _clean(message_id)
        if not message_id:
            raise MissingIdentifier("message_id is required")

        response = await self.inbox.delete_my_messages([message_id])
        outcomes = [ItemOutcome(item_id=message_id, success=True)]
        return FulfillmentAction(
            target_record_id=message_id,
            kind="delete_message",
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details=response,
        )

    async def send_item_message(
        self,
        item_id: str,
        recipient_id: Optional[str],
        body: Optional[str],
        *,
        subject: Optional[str] = None,
        question_type: Optional[str] = None,
        email_copy_to_sender: bool = False,
    ) -> FulfillmentAction:
        """Message a buyer about a listing directly, e.g. to answer an inbox question."""
        item_id = _clean(item_id)
        recipient_id = _clean(recipient_id)
        if not item_id:
            raise MissingIdentifier("itemId is required")
        if not recipient_id:
            raise MissingRecipient("recipientId is required")
        if not body or not body.strip():
            raise MissingBody("Message body is required")
        if len(body) > MESSAGE_BODY_MAX_LENGTH:
            raise BodyTooLong(f"Message body must be {MESSAGE_BODY_MAX_LENGTH} characters or less")

        question_type = question_type or DEFAULT_QUESTION_TYPE
        response = await self.messaging.send_buyer_message(
            item_id,
            recipient_id,
            body,
            subject=subject,
            question_type=question_type,
            email_copy_to_sender=email_copy_to_sender,
        )
        outcomes = [ItemOutcome(item_id=item_id, success=True)]
        return FulfillmentAction(
            target_record_id=item_id,
            kind="message",
            payload={"subject": subject, "question_type": question_type},
            result=aggregate_result(outcomes),
            per_item_outcomes=outcomes,
            details={"recipient_id": recipient_id, "item_id": item_id, **response},
        )

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def list_inventory(self, *, limit: int = 25, offset: int = 0) -> Page[ItemRecord]:
        return await self.inventory.list_inventory_items(limit=limit, offset=offset)

    async def check_item_exists(self, *, sku: Optional[str] = None, item_id: Optional[str] = None) -> Dict[str, Any]:
        sku = _clean(sku)
        item_id = _clean(item_id)
        if not sku and not item_id:
            raise MissingIdentifier("Either sku or itemId is required")

        search_criteria = {"sku": sku, "item_id": item_id}
        try:
            resolution = await self.resolver.find_item(sku=sku, item_id=item_id)
        except NotFoundError as exc:
            logger.info("[orchestrator] item not found sku=%s item_id=%s", sku, item_id)
            return {
                "exists": False,
                "location": None,
                "item": None,
                "search_criteria": search_criteria,
                "tried": list(exc.details.get("attempts", {})),
            }

        return {
            "exists": True,
            "location": resolution.location,
            "item": resolution.record.to_dict(),
            "search_criteria": search_criteria,
            "tried": resolution.tried,
        }


def create_order_orchestrator(account_id: str, tokens=None, http=None) -> OrderFulfillmentOrchestrator:
    """Wire both API families for one connected account."""
    from app.services.ebay_rest_api import ModernRestApi
    from app.services.ebay_token_provider import token_manager
    from app.services.ebay_trading_api import TradingLegacyApi

    tokens = tokens or token_manager
    modern = ModernRestApi(tokens, account_id, http=http)
    legacy = TradingLegacyApi(tokens, account_id, http=http)
    return OrderFulfillmentOrchestrator(
        orders=modern,
        shipping=modern,
        messaging=legacy,
        returns=modern,
        inquiries=modern,
        cancellations=modern,
        inventory=modern,
        inbox=legacy,
        resolver=FallbackResolver(inventory=modern, listings=legacy),
    )
