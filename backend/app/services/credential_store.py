"""Credential store: the only mutable shared state of the gateway.

The token lifecycle manager talks to the store through the narrow
:class:`CredentialStore` protocol. :class:`SqlAlchemyCredentialStore` is the
production implementation; every call runs in its own short session so no
lock or transaction is held across upstream network calls.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from app.models.ebay_account import AuthorizationRequest, ConnectedAccount
from app.models_sqlalchemy import SessionLocal
from app.models_sqlalchemy.models import (
    AccountStatus,
    EbayAuthorizationRequest,
    EbayConnectedAccount,
)
from app.utils.logger import logger


# Fields callers may write through upsert(). Token columns go through the
# encrypting properties on the model.
UPSERTABLE_FIELDS = frozenset({
    "owner_user_id",
    "marketplace_user_id",
    "marketplace_username",
    "friendly_name",
    "environment",
    "status",
    "access_token",
    "refresh_token",
    "token_type",
    "access_token_expires_at",
    "refresh_token_expires_at",
    "granted_scopes",
    "user_selected_scopes",
    "last_used_at",
    "last_refreshed_at",
    "last_error",
})

_DATETIME_FIELDS = ("access_token_expires_at", "refresh_token_expires_at", "last_used_at", "last_refreshed_at")


def _to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to timezone-aware UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; Postgres hands back aware ones.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class CredentialStore(Protocol):
    def get(self, account_id: str) -> Optional[ConnectedAccount]: ...

    def upsert(self, account_id: str, fields: Dict[str, Any]) -> ConnectedAccount: ...

    def find_by_owner_and_marketplace_id(
        self, owner_user_id: str, marketplace_user_id: str, environment: str
    ) -> Optional[ConnectedAccount]: ...

    def list_for_owner(self, owner_user_id: str) -> List[ConnectedAccount]: ...

    def save_authorization_request(self, request: AuthorizationRequest) -> None: ...

    def find_authorization_requests(self, account_id: str) -> List[AuthorizationRequest]: ...

    def consume_authorization_request(self, state: str) -> bool: ...

    def purge_expired_authorization_requests(self, cutoff: datetime) -> int: ...


class SqlAlchemyCredentialStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    @staticmethod
    def _to_account(row: EbayConnectedAccount) -> ConnectedAccount:
        return ConnectedAccount(
            id=row.id,
            owner_user_id=row.owner_user_id,
            marketplace_user_id=row.marketplace_user_id,
            marketplace_username=row.marketplace_username,
            friendly_name=row.friendly_name,
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            access_token_expires_at=_to_utc(row.access_token_expires_at),
            refresh_token_expires_at=_to_utc(row.refresh_token_expires_at),
            token_type=row.token_type,
            granted_scopes=set(row.granted_scopes or []),
            user_selected_scopes=set(row.user_selected_scopes or []),
            status=AccountStatus(row.status),
            environment=row.environment,
            last_used_at=_to_utc(row.last_used_at),
            last_refreshed_at=_to_utc(row.last_refreshed_at),
            last_error=row.last_error,
        )

    def get(self, account_id: str) -> Optional[ConnectedAccount]:
        with self._session_factory() as db:
            row = db.query(EbayConnectedAccount).filter(EbayConnectedAccount.id == account_id).first()
            return self._to_account(row) if row else None

    def upsert(self, account_id: str, fields: Dict[str, Any]) -> ConnectedAccount:
        """Atomically write ``fields`` onto the account, creating it if absent."""
        unknown = set(fields) - UPSERTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown credential fields: {sorted(unknown)}")

        with self._session_factory() as db:
            row = db.query(EbayConnectedAccount).filter(EbayConnectedAccount.id == account_id).first()
            created = row is None
            if created:
                row = EbayConnectedAccount(id=account_id)
                db.add(row)

            for key, value in fields.items():
                if key in ("granted_scopes", "user_selected_scopes"):
                    value = sorted(value or [])
                elif key == "status" and isinstance(value, AccountStatus):
                    value = value.value
                elif key in _DATETIME_FIELDS:
                    value = _to_utc(value)
                setattr(row, key, value)
            row.updated_at = datetime.now(timezone.utc)

            db.commit()
            db.refresh(row)
            logger.debug(
                "[credential_store] %s account_id=%s fields=%s",
                "created" if created else "updated",
                account_id,
                sorted(fields),
            )
            return self._to_account(row)

    def find_by_owner_and_marketplace_id(
        self, owner_user_id: str, marketplace_user_id: str, environment: str
    ) -> Optional[ConnectedAccount]:
        with self._session_factory() as db:
            row = (
                db.query(EbayConnectedAccount)
                .filter(
                    EbayConnectedAccount.owner_user_id == owner_user_id,
                    EbayConnectedAccount.marketplace_user_id == marketplace_user_id,
                    EbayConnectedAccount.environment == environment,
                )
                .first()
            )
            return self._to_account(row) if row else None

    def list_for_owner(self, owner_user_id: str) -> List[ConnectedAccount]:
        with self._session_factory() as db:
            rows: Iterable[EbayConnectedAccount] = (
                db.query(EbayConnectedAccount)
                .filter(EbayConnectedAccount.owner_user_id == owner_user_id)
                .order_by(EbayConnectedAccount.created_at.desc())
                .all()
            )
            return [self._to_account(row) for row in rows]

    # ------------------------------------------------------------------
    # Authorization requests (ephemeral, keyed by state)
    # ------------------------------------------------------------------

    def save_authorization_request(self, request: AuthorizationRequest) -> None:
        with self._session_factory() as db:
            db.add(
                EbayAuthorizationRequest(
                    state=request.state,
                    account_id=request.account_id,
                    redirect_uri=request.redirect_uri,
                    scopes=list(request.scopes),
                    issued_at=_to_utc(request.issued_at),
                )
            )
            db.commit()

    def find_authorization_requests(self, account_id: str) -> List[AuthorizationRequest]:
        with self._session_factory() as db:
            rows = (
                db.query(EbayAuthorizationRequest)
                .filter(EbayAuthorizationRequest.account_id == account_id)
                .order_by(EbayAuthorizationRequest.issued_at.desc())
                .all()
            )
            return [
                AuthorizationRequest(
                    account_id=row.account_id,
                    state=row.state,
                    issued_at=_to_utc(row.issued_at),
                    redirect_uri=row.redirect_uri,
                    scopes=list(row.scopes or []),
                )
                for row in rows
            ]

    def consume_authorization_request(self, state: str) -> bool:
        """Delete the request; ``True`` only for the caller that actually removed it."""
        with self._session_factory() as db:
            deleted = (
                db.query(EbayAuthorizationRequest)
                .filter(EbayAuthorizationRequest.state == state)
                .delete(synchronize_session=False)
            )
            db.commit()
            return deleted == 1

    def purge_expired_authorization_requests(self, cutoff: datetime) -> int:
        with self._session_factory() as db:
            deleted = (
                db.query(EbayAuthorizationRequest)
                .filter(EbayAuthorizationRequest.issued_at < _to_utc(cutoff))
                .delete(synchronize_session=False)
            )
            db.commit()
            if deleted:
                logger.info("[credential_store] purged %s expired authorization requests", deleted)
            return deleted


credential_store = SqlAlchemyCredentialStore()
