"""Legacy Trading family: seller listings, buyer/seller messaging and the
seller's own inbox (My Messages), all over XML."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET

from app.models.records import InboxMessageRecord, ItemRecord, MessageRecord, Page, SourceApi
from app.services import ebay_normalizers as normalize
from app.services.ebay_errors import MessageNotFound, NotFoundError, ValidationError
from app.services.ebay_http import EbayApiFamily
from app.services.ebay_scopes import BASIC_ACCESS, MANAGE_ORDERS, VIEW_ORDERS
from app.services.ebay_trading import (
    MY_MESSAGES_MAX_IDS,
    NS,
    build_add_member_message_aaq_xml,
    build_delete_my_messages_xml,
    build_get_item_xml,
    build_get_member_messages_xml,
    build_get_my_messages_xml,
    build_revise_my_messages_xml,
    call_trading_api,
    raise_for_trading_errors,
    trading_page_number,
)
from app.utils.logger import logger


def _ack(root: ET.Element) -> Dict[str, Any]:
    return {
        "ack": root.findtext("e:Ack", default=None, namespaces=NS),
        "timestamp": root.findtext("e:Timestamp", default=None, namespaces=NS),
        "correlation_id": root.findtext("e:CorrelationID", default=None, namespaces=NS),
    }


def _check_message_ids(message_ids: List[str]) -> List[str]:
    ids = [m for m in message_ids if m]
    if not ids or len(ids) > MY_MESSAGES_MAX_IDS:
        raise ValidationError(
            f"Between 1 and {MY_MESSAGES_MAX_IDS} message ids are required, got {len(ids)}",
            details={"message_ids": ids},
        )
    return ids


class TradingLegacyApi(EbayApiFamily):
    source_api = SourceApi.legacy

    async def _call(
        self, call_name: str, request_xml: str, *, scope: str, idempotent: bool = True
    ) -> ET.Element:
        async def send(token) -> ET.Element:
            result = await call_trading_api(
                self.http,
                environment=token.environment,
                call_name=call_name,
                iaf_token=token.value,
                request_xml=request_xml,
                idempotent=idempotent,
            )
            return raise_for_trading_errors(result)

        return await self._authorized(send, operation=call_name, scope=scope)

    async def _get_item(self, request_xml: str, identifier: str) -> ItemRecord:
        root = await self._call("GetItem", request_xml, scope=BASIC_ACCESS)
        item = root.find("e:Item", namespaces=NS)
        if item is None:
            raise NotFoundError(f"GetItem: no listing for {identifier}")
        return normalize.item_from_trading(item)

    async def find_item_by_id(self, item_id: str) -> ItemRecord:
        return await self._get_item(build_get_item_xml(item_id=item_id), item_id)

    async def find_item_by_sku(self, sku: str) -> ItemRecord:
        return await self._get_item(build_get_item_xml(sku=sku), sku)

    async def fetch_member_messages(
        self, item_id: str, *, limit: int = 25, offset: int = 0
    ) -> Page[MessageRecord]:
        limit = max(1, min(int(limit), 200))
        page_number = trading_page_number(limit, offset)
        root = await self._call(
            "GetMemberMessages",
            build_get_member_messages_xml(item_id=item_id, entries_per_page=limit, page_number=page_number),
            scope=VIEW_ORDERS,
        )
        exchanges = root.findall("e:MemberMessage/e:MemberMessageExchange", namespaces=NS)
        return normalize.trading_page(root, exchanges, normalize.message_from_trading, limit=limit, offset=offset)

    async def send_buyer_message(
        self,
        item_id: str,
        recipient_id: str,
        body: str,
        *,
        subject: Optional[str] = None,
        question_type: str = "General",
        email_copy_to_sender: bool = False,
    ) -> Dict[str, Any]:
        root = await self._call(
            "AddMemberMessageAAQToPartner",
            build_add_member_message_aaq_xml(
                item_id=item_id,
                recipient_id=recipient_id,
                body=body,
                subject=subject,
                question_type=question_type,
                email_copy_to_sender=email_copy_to_sender,
            ),
            scope=MANAGE_ORDERS,
            idempotent=False,
        )
        logger.info(
            "[trading_api] message sent account_id=%s item_id=%s recipient=%s",
            self.account_id, item_id, recipient_id,
        )
        return _ack(root)

    # -- My Messages ---------------------------------------------------------

    async def list_my_messages(
        self,
        *,
        folder_id: Optional[int] = None,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> Page[InboxMessageRecord]:
        """One page of inbox headers. Bodies need :meth:`get_my_message`."""
        limit = max(1, min(int(limit), 200))
        page_number = trading_page_number(limit, offset)
        root = await self._call(
            "GetMyMessages",
            build_get_my_messages_xml(
                detail_level="ReturnHeaders",
                folder_id=folder_id,
                start_time=start_time,
                end_time=end_time,
                entries_per_page=limit,
                page_number=page_number,
            ),
            scope=VIEW_ORDERS,
        )
        messages = root.findall("e:Messages/e:Message", namespaces=NS)
        page = normalize.trading_page(
            root,
            messages,
            normalize.inbox_message_from_trading,
            limit=limit,
            offset=offset,
            total_path="e:Summary/e:TotalMessageCount",
        )
        if root.find("e:Summary", namespaces=NS) is None:
            # Header pages carry no count; a full page may have a successor.
            page.has_more = len(page.items) >= limit
        return page

    async def get_my_message(self, message_id: str) -> InboxMessageRecord:
        root = await self._call(
            "GetMyMessages",
            build_get_my_messages_xml(detail_level="ReturnMessages", message_ids=[message_id]),
            scope=VIEW_ORDERS,
        )
        for message in root.findall("e:Messages/e:Message", namespaces=NS):
            record = normalize.inbox_message_from_trading(message)
            if record.id == message_id:
                return record
        raise MessageNotFound(f"GetMyMessages: no message {message_id}", details={"message_id": message_id})

    async def revise_my_messages(
        self, message_ids: List[str], *, read: Optional[bool] = None, flagged: Optional[bool] = None
    ) -> Dict[str, Any]:
        if read is None and flagged is None:
            raise ValidationError("Nothing to change: set read and/or flagged")
        ids = _check_message_ids(message_ids)
        root = await self._call(
            "ReviseMyMessages",
            build_revise_my_messages_xml(message_ids=ids, read=read, flagged=flagged),
            scope=MANAGE_ORDERS,
        )
        logger.info(
            "[trading_api] messages revised account_id=%s ids=%s read=%s flagged=%s",
            self.account_id, ids, read, flagged,
        )
        return _ack(root)

    async def delete_my_messages(self, message_ids: List[str]) -> Dict[str, Any]:
        ids = _check_message_ids(message_ids)
        root = await self._call(
            "DeleteMyMessages",
            build_delete_my_messages_xml(message_ids=ids),
            scope=MANAGE_ORDERS,
        )
        logger.info("[trading_api] messages deleted account_id=%s ids=%s", self.account_id, ids)
        return _ack(root)
