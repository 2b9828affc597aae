from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

from app.config import settings
from app.services.ebay_errors import (
    InvalidPagination,
    NotFoundError,
    UnauthorizedError,
    UpstreamRejected,
)
from app.services.ebay_http import EbayHttpTransport, mask_headers


NS = {"e": "urn:ebay:apis:eBLBaseComponents"}

# ErrorCode values meaning "this listing does not exist (for you)".
TRADING_NOT_FOUND_CODES = frozenset({"17", "35", "21916331"})
# ErrorCode values meaning the IAF/Auth'n'Auth token was rejected.
TRADING_AUTH_CODES = frozenset({"931", "932", "16110", "21916984", "21917053"})

MESSAGE_BODY_MAX_LENGTH = 2000
# GetMyMessages returns full bodies for at most this many MessageIDs per call.
MY_MESSAGES_MAX_IDS = 10


def _xml_text(val: Any) -> str:
    return escape("" if val is None else str(val))


def trading_endpoint(environment: str) -> str:
    base = settings.ebay_api_base_url(environment).rstrip("/")
    return f"{base}/ws/api.dll"


@dataclass
class TradingHttpResult:
    call_name: str
    request_url: str
    request_headers_masked: Dict[str, Any]
    request_body_xml: str
    response_status: int
    response_body_xml: str
    duration_ms: int


def build_request_xml(call_name: str, body_xml: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<{call_name}Request xmlns="urn:ebay:apis:eBLBaseComponents">'
        "<ErrorLanguage>en_US</ErrorLanguage>"
        "<WarningLevel>High</WarningLevel>"
        f"{body_xml}"
        f"</{call_name}Request>"
    )


def build_get_item_xml(*, item_id: Optional[str] = None, sku: Optional[str] = None) -> str:
    if item_id:
        selector = f"<ItemID>{_xml_text(item_id)}</ItemID>"
    else:
        selector = f"<SKU>{_xml_text(sku)}</SKU>"
    return build_request_xml("GetItem", f"{selector}<DetailLevel>ReturnAll</DetailLevel>")


def build_get_member_messages_xml(*, item_id: str, entries_per_page: int, page_number: int) -> str:
    return build_request_xml(
        "GetMemberMessages",
        f"<ItemID>{_xml_text(item_id)}</ItemID>"
        "<MailMessageType>All</MailMessageType>"
        "<Pagination>"
        f"<EntriesPerPage>{int(entries_per_page)}</EntriesPerPage>"
        f"<PageNumber>{int(page_number)}</PageNumber>"
        "</Pagination>",
    )


def build_add_member_message_aaq_xml(
    *,
    item_id: str,
    recipient_id: str,
    body: str,
    subject: Optional[str] = None,
    question_type: str = "General",
    email_copy_to_sender: bool = False,
) -> str:
    subject_xml = f"<Subject>{_xml_text(subject)}</Subject>" if subject else ""
    return build_request_xml(
        "AddMemberMessageAAQToPartner",
        f"<ItemID>{_xml_text(item_id)}</ItemID>"
        "<MemberMessage>"
        f"<Body>{_xml_text(body)}</Body>"
        f"<QuestionType>{_xml_text(question_type)}</QuestionType>"
        f"<RecipientID>{_xml_text(recipient_id)}</RecipientID>"
        f"{subject_xml}"
        f"<EmailCopyToSender>{'true' if email_copy_to_sender else 'false'}</EmailCopyToSender>"
        "</MemberMessage>",
    )


def trading_page_number(limit: int, offset: int) -> int:
    """Map an offset onto Trading's 1-based PageNumber.

    Trading pages by number only, so an offset that falls inside a page
    cannot be served without dropping the entries before it.
    """
    if offset < 0 or offset % limit:
        raise InvalidPagination(
            f"offset {offset} is not a multiple of the page size {limit}",
            details={"limit": limit, "offset": offset},
        )
    return offset // limit + 1


def _message_ids_xml(message_ids: List[str]) -> str:
    return "<MessageIDs>" + "".join(f"<MessageID>{_xml_text(m)}</MessageID>" for m in message_ids) + "</MessageIDs>"


def build_get_my_messages_xml(
    *,
    detail_level: str = "ReturnHeaders",
    message_ids: Optional[List[str]] = None,
    folder_id: Optional[int] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    entries_per_page: Optional[int] = None,
    page_number: Optional[int] = None,
) -> str:
    parts = [f"<DetailLevel>{_xml_text(detail_level)}</DetailLevel>"]
    if message_ids:
        parts.append(_message_ids_xml(message_ids))
    if folder_id is not None:
        parts.append(f"<FolderID>{int(folder_id)}</FolderID>")
    if start_time:
        parts.append(f"<StartTime>{_xml_text(start_time)}</StartTime>")
    if end_time:
        parts.append(f"<EndTime>{_xml_text(end_time)}</EndTime>")
    if entries_per_page:
        parts.append(
            "<Pagination>"
            f"<EntriesPerPage>{int(entries_per_page)}</EntriesPerPage>"
            f"<PageNumber>{int(page_number or 1)}</PageNumber>"
            "</Pagination>"
        )
    return build_request_xml("GetMyMessages", "".join(parts))


def build_revise_my_messages_xml(
    *, message_ids: List[str], read: Optional[bool] = None, flagged: Optional[bool] = None
) -> str:
    parts = [_message_ids_xml(message_ids)]
    if read is not None:
        parts.append(f"<Read>{'true' if read else 'false'}</Read>")
    if flagged is not None:
        parts.append(f"<Flagged>{'true' if flagged else 'false'}</Flagged>")
    return build_request_xml("ReviseMyMessages", "".join(parts))


def build_delete_my_messages_xml(*, message_ids: List[str]) -> str:
    return build_request_xml("DeleteMyMessages", _message_ids_xml(message_ids))


async def call_trading_api(
    http: EbayHttpTransport,
    *,
    environment: str,
    call_name: str,
    iaf_token: str,
    request_xml: str,
    idempotent: bool = True,
) -> TradingHttpResult:
    if not iaf_token:
        raise UnauthorizedError(f"{call_name}: missing IAF token")

    url = trading_endpoint(environment)
    headers: Dict[str, Any] = {
        "X-EBAY-API-CALL-NAME": call_name,
        "X-EBAY-API-SITEID": str(settings.EBAY_TRADING_SITE_ID),
        "X-EBAY-API-COMPATIBILITY-LEVEL": str(settings.EBAY_TRADING_COMPATIBILITY_LEVEL),
        "X-EBAY-API-IAF-TOKEN": iaf_token,
        "Content-Type": "text/xml; charset=utf-8",
        "Accept": "text/xml",
    }

    start = time.time()
    resp = await http.request(
        "POST",
        url,
        operation=call_name,
        headers=headers,
        content=request_xml.encode("utf-8"),
        idempotent=idempotent,
    )

    return TradingHttpResult(
        call_name=call_name,
        request_url=url,
        request_headers_masked=mask_headers(headers),
        request_body_xml=request_xml,
        response_status=resp.status_code,
        response_body_xml=resp.text or "",
        duration_ms=int((time.time() - start) * 1000),
    )


def parse_trading_response(xml_text: str) -> Dict[str, Any]:
    """Parse Trading API response XML into ack, errors, warnings and the root element."""
    out: Dict[str, Any] = {
        "ack": None,
        "errors": [],
        "warnings": [],
        "root": None,
    }
    if not xml_text:
        out["parse_error"] = "empty_body"
        return out

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        out["parse_error"] = "invalid_xml"
        return out

    out["root"] = root
    out["ack"] = root.findtext("e:Ack", default=None, namespaces=NS)

    for err in root.findall(".//e:Errors", namespaces=NS):
        entry = {
            "code": err.findtext("e:ErrorCode", default=None, namespaces=NS),
            "severity": err.findtext("e:SeverityCode", default=None, namespaces=NS),
            "short": err.findtext("e:ShortMessage", default=None, namespaces=NS),
            "long": err.findtext("e:LongMessage", default=None, namespaces=NS),
            "classification": err.findtext("e:ErrorClassification", default=None, namespaces=NS),
        }
        if entry.get("severity") == "Warning":
            out["warnings"].append(entry)
        else:
            out["errors"].append(entry)

    return out


def raise_for_trading_errors(result: TradingHttpResult) -> ET.Element:
    """Return the parsed root element, or raise the typed error eBay's answer maps to."""
    operation = result.call_name
    details: Dict[str, Any] = {
        "operation": operation,
        "status_code": result.response_status,
        "body": result.response_body_xml[:2000],
    }
    if result.response_status == 401:
        raise UnauthorizedError(f"{operation}: eBay rejected the IAF token", details=details)

    parsed = parse_trading_response(result.response_body_xml)
    if result.response_status >= 400 or parsed.get("parse_error"):
        raise UpstreamRejected(
            f"{operation}: unexpected response ({result.response_status})",
            upstream_code=parsed.get("parse_error") or str(result.response_status),
            details=details,
        )

    errors: List[Dict[str, Any]] = parsed["errors"]
    details["errors"] = errors
    if parsed["ack"] in ("Failure", "PartialFailure") or errors:
        codes = {e.get("code") for e in errors}
        first = errors[0] if errors else {}
        message = first.get("long") or first.get("short") or f"Ack={parsed['ack']}"
        if codes & TRADING_AUTH_CODES:
            raise UnauthorizedError(f"{operation}: {message}", details=details)
        if codes & TRADING_NOT_FOUND_CODES:
            raise NotFoundError(f"{operation}: {message}", details=details)
        raise UpstreamRejected(f"{operation}: {message}", upstream_code=first.get("code"), details=details)

    return parsed["root"]
