from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


class EbayTokenResponse(BaseModel):
    """Body of a successful /identity/v1/oauth2/token response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int
    refresh_token_expires_in: Optional[int] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None


class ConnectAccountRequest(BaseModel):
    friendly_name: Optional[str] = None
    environment: Optional[str] = None
    scopes: Optional[List[str]] = None


class ShipOrderRequest(BaseModel):
    tracking_number: Optional[str] = None
    carrier_code: Optional[str] = None
    shipped_at: Optional[datetime] = None
    line_item_ids: Optional[List[str]] = None


class SendOrderMessageRequest(BaseModel):
    body: Optional[str] = None
    subject: Optional[str] = None
    question_type: Optional[str] = None
    email_copy_to_sender: bool = False


class ResolutionRequest(BaseModel):
    payload: Dict[str, Any] = Field(default_factory=dict)


class CancellationEligibilityRequest(BaseModel):
    legacy_order_id: str


class SendItemMessageRequest(BaseModel):
    item_id: Optional[str] = None
    recipient_id: Optional[str] = None
    body: Optional[str] = None
    subject: Optional[str] = None
    question_type: Optional[str] = None
    email_copy_to_sender: bool = False


class UpdateInboxMessageRequest(BaseModel):
    read: Optional[bool] = None
    flagged: Optional[bool] = None


class UpdateScopesRequest(BaseModel):
    scopes: List[str] = Field(min_length=1)
