from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, JSON, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
import enum

from . import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite).
JsonList = JSON().with_variant(JSONB(), "postgresql")


class AccountStatus(str, enum.Enum):
    pending = "pending"
    active = "active"
    expired = "expired"
    revoked = "revoked"
    error = "error"


class EbayConnectedAccount(Base):
    __tablename__ = "ebay_connected_accounts"

    id = Column(String(36), primary_key=True)
    owner_user_id = Column(String(36), nullable=False)
    marketplace_user_id = Column(Text, nullable=True)
    marketplace_username = Column(Text, nullable=True)
    friendly_name = Column(Text, nullable=True)
    environment = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=AccountStatus.pending.value)

    # Physical columns holding encrypted blobs when written via properties.
    _access_token = Column("access_token", Text, nullable=True)
    _refresh_token = Column("refresh_token", Text, nullable=True)
    token_type = Column(Text, nullable=True)
    access_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=True)
    granted_scopes = Column(JsonList, nullable=False, default=list)
    user_selected_scopes = Column(JsonList, nullable=False, default=list)

    last_used_at = Column(DateTime(timezone=True), nullable=True)
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "owner_user_id", "marketplace_user_id", "environment",
            name="uq_ebay_connected_accounts_owner_identity_env",
        ),
        Index("idx_ebay_connected_accounts_owner", "owner_user_id"),
        Index("idx_ebay_connected_accounts_status", "status"),
    )

    @property
    def access_token(self) -> str | None:
        from app.utils import crypto

        return crypto.decrypt_token(self._access_token)

    @access_token.setter
    def access_token(self, value: str | None) -> None:
        from app.utils import crypto

        self._access_token = crypto.encrypt_token(value) if value else None

    @property
    def refresh_token(self) -> str | None:
        from app.utils import crypto

        return crypto.decrypt_token(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value: str | None) -> None:
        from app.utils import crypto

        self._refresh_token = crypto.encrypt_token(value) if value else None


class EbayAuthorizationRequest(Base):
    """In-flight OAuth handshake; single use, purged once past its TTL."""

    __tablename__ = "ebay_authorization_requests"

    state = Column(String(128), primary_key=True)
    account_id = Column(String(36), ForeignKey("ebay_connected_accounts.id", ondelete="CASCADE"), nullable=False)
    redirect_uri = Column(Text, nullable=True)
    scopes = Column(JsonList, nullable=False, default=list)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_ebay_authorization_requests_account_id", "account_id"),
    )
