"""Canonical records produced by normalizing both eBay API families.

Business logic works on these shapes only. ``source_api`` and ``raw`` exist
for logging and debugging.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar


class SourceApi(str, enum.Enum):
    modern = "modern"
    legacy = "legacy"


class FulfillmentStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    FULFILLED = "FULFILLED"


@dataclass
class LogicalRecord:
    id: str
    source_api: SourceApi
    raw: Any = field(default=None, repr=False)

    def to_dict(self, include_raw: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        data["source_api"] = self.source_api.value
        if not include_raw:
            data.pop("raw", None)
        return data


@dataclass
class ItemRecord(LogicalRecord):
    sku: Optional[str] = None
    legacy_item_id: Optional[str] = None
    title: Optional[str] = None
    quantity: Optional[int] = None
    condition: Optional[str] = None
    listing_status: Optional[str] = None


@dataclass
class LineItem:
    line_item_id: str
    legacy_item_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    quantity: int = 1
    fulfillment_status: Optional[str] = None

    @property
    def is_fulfilled(self) -> bool:
        return self.fulfillment_status == FulfillmentStatus.FULFILLED.value


@dataclass
class OrderRecord(LogicalRecord):
    legacy_order_id: Optional[str] = None
    buyer_username: Optional[str] = None
    fulfillment_status: Optional[str] = None
    payment_status: Optional[str] = None
    created_at: Optional[str] = None
    total: Optional[Dict[str, Any]] = None
    line_items: List[LineItem] = field(default_factory=list)

    def unfulfilled_line_items(self) -> List[LineItem]:
        return [li for li in self.line_items if not li.is_fulfilled]

    def line_item(self, line_item_id: str) -> Optional[LineItem]:
        for li in self.line_items:
            if li.line_item_id == line_item_id:
                return li
        return None


@dataclass
class ReturnRecord(LogicalRecord):
    state: Optional[str] = None
    reason: Optional[str] = None
    buyer_username: Optional[str] = None
    order_id: Optional[str] = None
    created_at: Optional[str] = None
    estimated_refund: Optional[Dict[str, Any]] = None


@dataclass
class InquiryRecord(LogicalRecord):
    state: Optional[str] = None
    inquiry_type: Optional[str] = None
    buyer_username: Optional[str] = None
    legacy_item_id: Optional[str] = None
    created_at: Optional[str] = None
    claim_amount: Optional[Dict[str, Any]] = None


@dataclass
class CancellationRecord(LogicalRecord):
    state: Optional[str] = None
    legacy_order_id: Optional[str] = None
    reason: Optional[str] = None
    buyer_username: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class MessageRecord(LogicalRecord):
    legacy_item_id: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    question_type: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class InboxMessageRecord(LogicalRecord):
    """A message in the seller's own eBay inbox (My Messages)."""

    external_message_id: Optional[str] = None
    message_type: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    folder_id: Optional[int] = None
    read: bool = False
    replied: bool = False
    flagged: bool = False
    high_priority: bool = False
    legacy_item_id: Optional[str] = None
    item_title: Optional[str] = None
    received_at: Optional[str] = None
    expires_at: Optional[str] = None


T = TypeVar("T", bound=LogicalRecord)


@dataclass
class Page(Generic[T]):
    items: List[T]
    total: int
    has_more: bool
    limit: int
    offset: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
            "has_more": self.has_more,
            "limit": self.limit,
            "offset": self.offset,
        }


ActionResult = Literal["success", "partial", "failure"]


@dataclass
class ItemOutcome:
    item_id: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class FulfillmentAction:
    """One orchestrated business operation and how it ended."""

    target_record_id: str
    kind: str
    payload: Dict[str, Any] = field(default_factory=dict)
    result: ActionResult = "success"
    per_item_outcomes: List[ItemOutcome] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def aggregate_result(outcomes: List[ItemOutcome]) -> ActionResult:
    if not outcomes or all(o.success for o in outcomes):
        return "success"
    if any(o.success for o in outcomes):
        return "partial"
    return "failure"


@dataclass
class ItemMessages:
    item_id: str
    line_item_id: str
    item_title: Optional[str]
    messages: List[MessageRecord] = field(default_factory=list)


@dataclass
class OrderMessages:
    """Messages for every line item of an order that could be fetched.

    ``total_items`` counts the order's line items, so ``len(item_messages) <
    total_items`` means partial coverage; ``failed_items`` says why.
    """

    order_id: str
    buyer: Optional[str]
    total_items: int
    item_messages: List[ItemMessages] = field(default_factory=list)
    failed_items: List[ItemOutcome] = field(default_factory=list)

    @property
    def result(self) -> ActionResult:
        fetched = [ItemOutcome(item_id=entry.item_id, success=True) for entry in self.item_messages]
        return aggregate_result(fetched + self.failed_items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "buyer": self.buyer,
            "total_items": self.total_items,
            "result": self.result,
            "item_messages": [
                {
                    "item_id": entry.item_id,
                    "line_item_id": entry.line_item_id,
                    "item_title": entry.item_title,
                    "messages": [m.to_dict() for m in entry.messages],
                }
                for entry in self.item_messages
            ],
            "failed_items": [asdict(outcome) for outcome in self.failed_items],
        }
