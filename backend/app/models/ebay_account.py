from pydantic import BaseModel, Field
from typing import Optional, List, Set
from datetime import datetime

from app.models_sqlalchemy.models import AccountStatus


class ConnectedAccount(BaseModel):
    """One authorization grant to eBay, as read from the credential store."""

    id: str
    owner_user_id: str
    marketplace_user_id: Optional[str] = None
    marketplace_username: Optional[str] = None
    friendly_name: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    token_type: Optional[str] = None
    granted_scopes: Set[str] = Field(default_factory=set)
    user_selected_scopes: Set[str] = Field(default_factory=set)
    status: AccountStatus = AccountStatus.pending
    environment: str
    last_used_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


class ConnectedAccountResponse(BaseModel):
    """Public view of a connected account; never carries token values."""

    id: str
    owner_user_id: str
    marketplace_user_id: Optional[str]
    marketplace_username: Optional[str]
    friendly_name: Optional[str]
    environment: str
    status: AccountStatus
    granted_scopes: List[str]
    user_selected_scopes: List[str]
    access_token_expires_at: Optional[datetime]
    refresh_token_expires_at: Optional[datetime]
    has_refresh_token: bool
    last_used_at: Optional[datetime]
    last_error: Optional[str]

    @classmethod
    def from_account(cls, account: ConnectedAccount) -> "ConnectedAccountResponse":
        return cls(
            id=account.id,
            owner_user_id=account.owner_user_id,
            marketplace_user_id=account.marketplace_user_id,
            marketplace_username=account.marketplace_username,
            friendly_name=account.friendly_name,
            environment=account.environment,
            status=account.status,
            granted_scopes=sorted(account.granted_scopes),
            user_selected_scopes=sorted(account.user_selected_scopes),
            access_token_expires_at=account.access_token_expires_at,
            refresh_token_expires_at=account.refresh_token_expires_at,
            has_refresh_token=bool(account.refresh_token),
            last_used_at=account.last_used_at,
            last_error=account.last_error,
        )


class AuthorizationRequest(BaseModel):
    account_id: str
    state: str
    issued_at: datetime
    redirect_uri: Optional[str] = None
    scopes: List[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class AuthorizationStart(BaseModel):
    account_id: str
    authorization_url: str
    state: str
