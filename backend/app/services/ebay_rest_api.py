"""Modern REST family: Sell Inventory, Sell Fulfillment and Post-Order v2.

Sell APIs take ``Authorization: Bearer <token>``; Post-Order v2 takes
``Authorization: IAF <token>``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.config import settings
from app.models.records import (
    CancellationRecord,
    InquiryRecord,
    ItemRecord,
    LineItem,
    OrderRecord,
    Page,
    ReturnRecord,
    SourceApi,
)
from app.services import ebay_normalizers as normalize
from app.services.ebay_errors import FulfillmentRejected, UpstreamRejected
from app.services.ebay_http import EbayApiFamily, raise_for_rest_status, response_json
from app.services.ebay_scopes import MANAGE_ORDERS, VIEW_INVENTORY, VIEW_ORDERS
from app.utils.logger import logger


INVENTORY_PATH = "/sell/inventory/v1"
FULFILLMENT_PATH = "/sell/fulfillment/v1"
POST_ORDER_PATH = "/post-order/v2"

MAX_PAGE_SIZE = 200


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _clamp(limit: int) -> int:
    return max(1, min(int(limit), MAX_PAGE_SIZE))


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    # eBay rejects explicit nulls / empty strings on several Post-Order calls.
    return {k: v for k, v in body.items() if v not in (None, "")}


class ModernRestApi(EbayApiFamily):
    source_api = SourceApi.modern

    def _headers(self, token, *, post_order: bool) -> Dict[str, str]:
        scheme = "IAF" if post_order else "Bearer"
        return {
            "Authorization": f"{scheme} {token.value}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Content-Language": "en-US",
            "X-EBAY-C-MARKETPLACE-ID": settings.EBAY_MARKETPLACE_ID,
        }

    async def _call(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        scope: str,
        post_order: bool = False,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        idempotent: Optional[bool] = None,
    ) -> httpx.Response:
        async def send(token) -> httpx.Response:
            response = await self.http.request(
                method,
                f"{settings.ebay_api_base_url(token.environment)}{path}",
                operation=operation,
                headers=self._headers(token, post_order=post_order),
                params=params,
                json=json,
                idempotent=idempotent,
            )
            raise_for_rest_status(response, operation=operation)
            return response

        return await self._authorized(send, operation=operation, scope=scope)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    async def find_item_by_sku(self, sku: str) -> ItemRecord:
        response = await self._call(
            "GET",
            f"{INVENTORY_PATH}/inventory_item/{_segment(sku)}",
            operation="get_inventory_item",
            scope=VIEW_INVENTORY,
        )
        return normalize.inventory_item_from_rest(response_json(response))

    async def list_inventory_items(self, *, limit: int = 25, offset: int = 0) -> Page[ItemRecord]:
        limit = _clamp(limit)
        response = await self._call(
            "GET",
            f"{INVENTORY_PATH}/inventory_item",
            operation="get_inventory_items",
            scope=VIEW_INVENTORY,
            params={"limit": limit, "offset": offset},
        )
        return normalize.rest_page(
            response_json(response), "inventoryItems", normalize.inventory_item_from_rest,
            limit=limit, offset=offset,
        )

    # ------------------------------------------------------------------
    # Orders / fulfillment
    # ------------------------------------------------------------------

    async def fetch_order(self, order_id: str) -> OrderRecord:
        response = await self._call(
            "GET", f"{FULFILLMENT_PATH}/order/{_segment(order_id)}", operation="get_order", scope=VIEW_ORDERS
        )
        return normalize.order_from_rest(response_json(response))

    async def list_orders(
        self, *, limit: int = 50, offset: int = 0, fulfillment_status: Optional[List[str]] = None
    ) -> Page[OrderRecord]:
        limit = _clamp(limit)
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if fulfillment_status:
            params["filter"] = "orderfulfillmentstatus:{" + "|".join(fulfillment_status) + "}"
        response = await self._call(
            "GET", f"{FULFILLMENT_PATH}/order", operation="get_orders", scope=VIEW_ORDERS, params=params
        )
        return normalize.rest_page(
            response_json(response), "orders", normalize.order_from_rest, limit=limit, offset=offset
        )

    async def create_shipping_fulfillment(
        self,
        order_id: str,
        line_items: List[LineItem],
        *,
        tracking_number: str,
        carrier_code: str,
        shipped_at: datetime,
    ) -> Optional[str]:
        """POST a shipping fulfillment; returns eBay's fulfillment id when it reports one."""
        if shipped_at.tzinfo is None:
            # Naive timestamps from callers are UTC.
            shipped_at = shipped_at.replace(tzinfo=timezone.utc)
        shipped_at = shipped_at.astimezone(timezone.utc)
        body = {
            "lineItems": [{"lineItemId": li.line_item_id, "quantity": li.quantity} for li in line_items],
            "shippedDate": shipped_at.strftime("%Y-%m-%dT%H:%M:%S.") + f"{shipped_at.microsecond // 1000:03d}Z",
            "shippingCarrierCode": carrier_code,
            "trackingNumber": tracking_number,
        }
        try:
            response = await self._call(
                "POST",
                f"{FULFILLMENT_PATH}/order/{_segment(order_id)}/shipping_fulfillment",
                operation="create_shipping_fulfillment",
                scope=MANAGE_ORDERS,
                json=body,
                idempotent=False,
            )
        except UpstreamRejected as exc:
            raise FulfillmentRejected(
                exc.message, upstream_code=exc.upstream_code, details=exc.details
            ) from exc

        # eBay answers 201 with the new resource in the Location header.
        fulfillment_id = response_json(response).get("fulfillmentId")
        location = response.headers.get("location")
        if not fulfillment_id and location:
            fulfillment_id = location.rstrip("/").rsplit("/", 1)[-1]
        logger.info(
            "[rest_api] shipping fulfillment created account_id=%s order_id=%s fulfillment_id=%s",
            self.account_id, order_id, fulfillment_id,
        )
        return fulfillment_id

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    async def fetch_return(self, return_id: str) -> ReturnRecord:
        response = await self._call(
            "GET",
            f"{POST_ORDER_PATH}/return/{_segment(return_id)}",
            operation="get_return",
            scope=VIEW_ORDERS,
            post_order=True,
        )
        return normalize.return_from_rest(response_json(response))

    async def search_returns(
        self, *, limit: int = 25, offset: int = 0, state: Optional[str] = None
    ) -> Page[ReturnRecord]:
        limit = _clamp(limit)
        params = _compact({"limit": limit, "offset": offset, "return_state": state})
        response = await self._call(
            "GET",
            f"{POST_ORDER_PATH}/return/search",
            operation="search_returns",
            scope=VIEW_ORDERS,
            post_order=True,
            params=params,
        )
        return normalize.rest_page(
            response_json(response), "members", normalize.return_from_rest, limit=limit, offset=offset
        )

    async def accept_return(self, return_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/return/{_segment(return_id)}/accept",
            operation="accept_return",
            scope=MANAGE_ORDERS,
            post_order=True,
            json=_compact({"acceptType": "FULL_REFUND", "comments": comments}),
            idempotent=False,
        )
        return response_json(response)

    async def issue_return_refund(
        self,
        return_id: str,
        *,
        refund_amount: Optional[Dict[str, Any]] = None,
        comments: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/return/{_segment(return_id)}/issue_refund",
            operation="issue_return_refund",
            scope=MANAGE_ORDERS,
            post_order=True,
            json=_compact({"refundAmount": refund_amount, "comments": comments}),
            idempotent=False,
        )
        return response_json(response)

    # ------------------------------------------------------------------
    # Inquiries
    # ------------------------------------------------------------------

    async def fetch_inquiry(self, inquiry_id: str) -> InquiryRecord:
        response = await self._call(
            "GET",
            f"{POST_ORDER_PATH}/inquiry/{_segment(inquiry_id)}",
            operation="get_inquiry",
            scope=VIEW_ORDERS,
            post_order=True,
        )
        return normalize.inquiry_from_rest(response_json(response))

    async def search_inquiries(
        self, *, limit: int = 25, offset: int = 0, state: Optional[str] = None
    ) -> Page[InquiryRecord]:
        limit = _clamp(limit)
        params = _compact({"limit": limit, "offset": offset, "inquiry_state": state})
        response = await self._call(
            "GET",
            f"{POST_ORDER_PATH}/inquiry/search",
            operation="search_inquiries",
            scope=VIEW_ORDERS,
            post_order=True,
            params=params,
        )
        return normalize.rest_page(
            response_json(response), "members", normalize.inquiry_from_rest, limit=limit, offset=offset
        )

    async def issue_inquiry_refund(self, inquiry_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/inquiry/{_segment(inquiry_id)}/issue_refund",
            operation="issue_inquiry_refund",
            scope=MANAGE_ORDERS,
            post_order=True,
            json=_compact({"comments": comments}),
            idempotent=False,
        )
        return response_json(response)

    async def provide_inquiry_shipment_info(
        self,
        inquiry_id: str,
        *,
        tracking_number: str,
        carrier_code: str,
        shipped_date: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/inquiry/{_segment(inquiry_id)}/provide_shipment_info",
            operation="provide_inquiry_shipment_info",
            scope=MANAGE_ORDERS,
            post_order=True,
            json=_compact({
                "trackingNumber": tracking_number,
                "shippingCarrierCode": carrier_code,
                "shippedDate": shipped_date,
                "comments": comments,
            }),
            idempotent=False,
        )
        return response_json(response)

    async def escalate_inquiry(self, inquiry_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/inquiry/{_segment(inquiry_id)}/escalate",
            operation="escalate_inquiry",
            scope=MANAGE_ORDERS,
            post_order=True,
            json=_compact({"comments": comments}),
            idempotent=False,
        )
        return response_json(response)

    # ------------------------------------------------------------------
    # Cancellations
    # ------------------------------------------------------------------

    async def check_cancellation_eligibility(self, legacy_order_id: str) -> Dict[str, Any]:
        response = await self._call(
            "POST",
            f"{POST_ORDER_PATH}/cancellation/check_eligibility",
            operation="check_cancellation_eligibility",
            scope=VIEW_ORDERS,
            post_order=True,
            json={"legacyOrderId": legacy_order_id},
            idempotent=True,
        )
        body = response_json(response)
        failure_reasons = body.get("failureReason") or body.get("reasons") or []
        if isinstance(failure_reasons, str):
            failure_reasons = [failure_reasons]
        eligible = bool(body.get("eligible"))
        return {
            "legacy_order_id": body.get("legacyOrderId") or legacy_order_id,
            "eligible": eligible,
            "reason": None if eligible else (failure_reasons[0] if failure_reasons else None),
            "eligible_reasons": list(body.get("eligibleCancelReason") or []),
            "raw": body,
        }

    async def search_cancellations(self, *, limit: int = 25, offset: int = 0) -> Page[CancellationRecord]:
        limit = _clamp(limit)
        response = await self._call(
            "GET",
            f"{POST_ORDER_PATH}/cancellation/search",
            operation="search_cancellations",
            scope=VIEW_ORDERS,
            post_order=True,
            params={"limit": limit, "offset": offset},
        )
        body = response_json(response)
        key = "cancellations" if "cancellations" in body else "members"
        return normalize.rest_page(body, key, normalize.cancellation_from_rest, limit=limit, offset=offset)
