"""Capability interfaces, each implemented once per eBay API family that supports it.

The fallback resolver and the fulfillment orchestrator depend on these
protocols only, never on a concrete family.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from app.models.records import (
    CancellationRecord,
    InboxMessageRecord,
    InquiryRecord,
    ItemRecord,
    LineItem,
    MessageRecord,
    OrderRecord,
    Page,
    ReturnRecord,
    SourceApi,
)


class ItemLookup(Protocol):
    source_api: SourceApi

    async def find_item_by_sku(self, sku: str) -> ItemRecord: ...


class ListingLookup(Protocol):
    source_api: SourceApi

    async def find_item_by_id(self, item_id: str) -> ItemRecord: ...


class LegacyItemLookup(ItemLookup, ListingLookup, Protocol):
    """Legacy listings can be looked up by listing id or by SKU."""


class InventoryCatalog(ItemLookup, Protocol):
    async def list_inventory_items(self, *, limit: int = 25, offset: int = 0) -> Page[ItemRecord]: ...


class OrderSource(Protocol):
    async def fetch_order(self, order_id: str) -> OrderRecord: ...

    async def list_orders(
        self, *, limit: int = 50, offset: int = 0, fulfillment_status: Optional[List[str]] = None
    ) -> Page[OrderRecord]: ...


class ShippingFulfillment(Protocol):
    async def create_shipping_fulfillment(
        self,
        order_id: str,
        line_items: List[LineItem],
        *,
        tracking_number: str,
        carrier_code: str,
        shipped_at: datetime,
    ) -> Optional[str]: ...


class BuyerMessaging(Protocol):
    async def fetch_member_messages(
        self, item_id: str, *, limit: int = 25, offset: int = 0
    ) -> Page[MessageRecord]: ...

    async def send_buyer_message(
        self,
        item_id: str,
        recipient_id: str,
        body: str,
        *,
        subject: Optional[str] = None,
        question_type: str = "General",
        email_copy_to_sender: bool = False,
    ) -> Dict[str, Any]: ...


class ReturnResolution(Protocol):
    async def fetch_return(self, return_id: str) -> ReturnRecord: ...

    async def search_returns(
        self, *, limit: int = 25, offset: int = 0, state: Optional[str] = None
    ) -> Page[ReturnRecord]: ...

    async def accept_return(self, return_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]: ...

    async def issue_return_refund(
        self,
        return_id: str,
        *,
        refund_amount: Optional[Dict[str, Any]] = None,
        comments: Optional[str] = None,
    ) -> Dict[str, Any]: ...


class InquiryResolution(Protocol):
    async def fetch_inquiry(self, inquiry_id: str) -> InquiryRecord: ...

    async def search_inquiries(
        self, *, limit: int = 25, offset: int = 0, state: Optional[str] = None
    ) -> Page[InquiryRecord]: ...

    async def issue_inquiry_refund(self, inquiry_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]: ...

    async def provide_inquiry_shipment_info(
        self,
        inquiry_id: str,
        *,
        tracking_number: str,
        carrier_code: str,
        shipped_date: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Dict[str, Any]: ...

    async def escalate_inquiry(self, inquiry_id: str, *, comments: Optional[str] = None) -> Dict[str, Any]: ...


class CancellationCheck(Protocol):
    async def check_cancellation_eligibility(self, legacy_order_id: str) -> Dict[str, Any]: ...

    async def search_cancellations(self, *, limit: int = 25, offset: int = 0) -> Page[CancellationRecord]: ...


class SellerInbox(Protocol):
    """The seller's own eBay message folders, as opposed to per-listing threads."""

    async def list_my_messages(
        self,
        *,
        folder_id: Optional[int] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> Page[InboxMessageRecord]: ...

    async def get_my_message(self, message_id: str) -> InboxMessageRecord: ...

    async def revise_my_messages(
        self, message_ids: List[str], *, read: Optional[bool] = None, flagged: Optional[bool] = None
    ) -> Dict[str, Any]: ...

    async def delete_my_messages(self, message_ids: List[str]) -> Dict[str, Any]: ...
