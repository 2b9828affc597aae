"""Token lifecycle for connected eBay accounts.

This module is the only path by which the rest of the gateway obtains eBay
credentials.

Responsibilities:
1. OAuth2 authorization-code flow: a CSRF ``state`` bound to the account,
   single use, expiring after ``EBAY_AUTH_STATE_TTL_SECONDS``.
2. Refresh-before-use: ``get_valid_token`` hands out the stored token while it
   is outside the refresh skew, otherwise refreshes and persists first.
3. Single-flight: concurrent callers for one account share one in-flight
   refresh. eBay may invalidate a token when another refresh races it.
4. Status transitions (pending -> active -> expired/revoked/error) are written
   to the credential store, which stays the source of truth. Nothing is
   cached in memory between calls.

Usage:
    from app.services.ebay_token_provider import token_manager

    token = await token_manager.get_valid_token(account_id)
    headers = {"Authorization": f"Bearer {token.value}"}
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional

from app.config import settings
from app.models.ebay import EbayTokenResponse
from app.models.ebay_account import AuthorizationRequest, AuthorizationStart, ConnectedAccount
from app.models_sqlalchemy.models import AccountStatus
from app.services.credential_store import CredentialStore, credential_store
from app.services.ebay_errors import (
    AccountNotAuthorized,
    AccountNotFound,
    EbayGatewayError,
    InvalidState,
    NoRefreshToken,
    RefreshFailed,
    RefreshTokenExpired,
    TransientError,
    UnauthorizedError,
    UpstreamRejected,
    ValidationError,
)
from app.services.ebay_oauth import EbayOAuthClient, ebay_oauth_client, order_scopes
from app.utils.logger import ebay_logger, logger


STATE_SEPARATOR = "_"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _compute_token_hash(token: str) -> str:
    """Short SHA-256 fingerprint so logs can tell tokens apart without exposing them."""
    if not token:
        return "empty"
    return hashlib.sha256(token.encode()).hexdigest()[:16]


@dataclass
class AccessToken:
    value: str = field(repr=False)
    account_id: str
    environment: str
    expires_at: datetime
    token_type: str = "Bearer"
    source: Literal["existing", "refreshed"] = "existing"
    scopes: List[str] = field(default_factory=list)

    @property
    def token_hash(self) -> str:
        return _compute_token_hash(self.value)

    def to_dict(self) -> Dict[str, Any]:
        # Never include the raw token
        return {
            "account_id": self.account_id,
            "environment": self.environment,
            "expires_at": self.expires_at.isoformat(),
            "token_type": self.token_type,
            "source": self.source,
            "scopes": self.scopes,
            "token_hash": self.token_hash,
        }


def account_id_from_state(state: Optional[str]) -> Optional[str]:
    account_id, sep, nonce = (state or "").partition(STATE_SEPARATOR)
    if not sep or not account_id or not nonce:
        return None
    return account_id


class TokenLifecycleManager:
    def __init__(
        self,
        store: CredentialStore = credential_store,
        oauth: EbayOAuthClient = ebay_oauth_client,
        *,
        refresh_skew_seconds: Optional[int] = None,
        state_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._oauth = oauth
        self._skew = timedelta(
            seconds=settings.EBAY_TOKEN_REFRESH_SKEW_SECONDS if refresh_skew_seconds is None else refresh_skew_seconds
        )
        self._state_ttl = timedelta(
            seconds=settings.EBAY_AUTH_STATE_TTL_SECONDS if state_ttl_seconds is None else state_ttl_seconds
        )
        self._clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_account(self, account_id: str) -> ConnectedAccount:
        account = self._store.get(account_id)
        if not account:
            raise AccountNotFound(f"eBay account {account_id} not found")
        return account

    def _is_fresh(self, account: ConnectedAccount, now: datetime) -> bool:
        return bool(
            account.status == AccountStatus.active
            and account.access_token
            and account.access_token_expires_at
            and now < account.access_token_expires_at - self._skew
        )

    @staticmethod
    def _ensure_usable(account: ConnectedAccount) -> None:
        if account.status == AccountStatus.active:
            return
        if account.status == AccountStatus.revoked:
            raise AccountNotAuthorized(f"eBay account {account.id} was disconnected")
        if account.status == AccountStatus.expired:
            raise AccountNotAuthorized(f"eBay account {account.id} must be re-authorized")
        raise AccountNotAuthorized(f"eBay account {account.id} has not completed authorization")

    @staticmethod
    def _to_access_token(account: ConnectedAccount, source: Literal["existing", "refreshed"]) -> AccessToken:
        return AccessToken(
            value=account.access_token or "",
            account_id=account.id,
            environment=account.environment,
            expires_at=account.access_token_expires_at,
            token_type=account.token_type or "Bearer",
            source=source,
            scopes=sorted(account.granted_scopes),
        )

    def _token_fields(self, token: EbayTokenResponse, now: datetime) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "access_token": token.access_token,
            "token_type": token.token_type or "Bearer",
            "access_token_expires_at": now + timedelta(seconds=token.expires_in),
            "last_refreshed_at": now,
            "last_used_at": now,
            "status": AccountStatus.active,
            "last_error": None,
        }
        # The refresh token is only replaced when eBay issues a new one.
        if token.refresh_token:
            ttl = token.refresh_token_expires_in or settings.EBAY_REFRESH_TOKEN_DEFAULT_TTL_SECONDS
            fields["refresh_token"] = token.refresh_token
            fields["refresh_token_expires_at"] = now + timedelta(seconds=ttl)
        if token.scope:
            fields["granted_scopes"] = set(token.scope.split())
        return fields

    def _expire(self, account_id: str, reason: str) -> None:
        self._store.upsert(
            account_id,
            {"status": AccountStatus.expired, "access_token": None, "last_error": reason[:2000]},
        )
        logger.warning("[token_provider] account expired account_id=%s reason=%s", account_id, reason)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def create_pending_account(
        self,
        owner_user_id: str,
        *,
        environment: Optional[str] = None,
        friendly_name: Optional[str] = None,
        user_selected_scopes: Optional[Iterable[str]] = None,
    ) -> ConnectedAccount:
        environment = environment or settings.EBAY_ENVIRONMENT
        if environment not in ("sandbox", "production"):
            raise ValidationError(f"Unknown eBay environment: {environment}")

        account_id = str(uuid.uuid4())
        account = self._store.upsert(
            account_id,
            {
                "owner_user_id": owner_user_id,
                "environment": environment,
                "friendly_name": friendly_name,
                "user_selected_scopes": set(user_selected_scopes or []),
                "granted_scopes": set(),
                "status": AccountStatus.pending,
            },
        )
        logger.info(
            "[token_provider] pending account created account_id=%s owner=%s environment=%s",
            account_id, owner_user_id, environment,
        )
        return account

    def begin_authorization(self, account_id: str, *, scopes: Optional[List[str]] = None) -> AuthorizationStart:
        account = self._require_account(account_id)
        now = self._clock()
        self._store.purge_expired_authorization_requests(now - self._state_ttl)

        requested = order_scopes(scopes or sorted(account.user_selected_scopes) or None)
        state = f"{account_id}{STATE_SEPARATOR}{secrets.token_hex(16)}"
        authorization_url = self._oauth.build_authorization_url(account.environment, state, requested)

        self._store.save_authorization_request(
            AuthorizationRequest(
                account_id=account_id,
                state=state,
                issued_at=now,
                redirect_uri=settings.ebay_runame(account.environment),
                scopes=requested,
            )
        )
        self._store.upsert(account_id, {"user_selected_scopes": set(requested)})

        ebay_logger.log_ebay_event(
            "authorization_started",
            f"Authorization URL generated ({account.environment})",
            request_data={"scopes": requested},
            status="success",
            account_id=account_id,
        )
        return AuthorizationStart(account_id=account_id, authorization_url=authorization_url, state=state)

    def _validate_state(self, state: Optional[str]) -> AuthorizationRequest:
        account_id = account_id_from_state(state)
        if not account_id:
            raise InvalidState("Malformed authorization state")

        match = None
        for request in self._store.find_authorization_requests(account_id):
            if hmac.compare_digest(request.state, state):
                match = request
                break
        if match is None:
            logger.warning("[token_provider] state mismatch account_id=%s", account_id)
            raise InvalidState("Authorization state does not match any pending request")

        if self._clock() - match.issued_at > self._state_ttl:
            self._store.consume_authorization_request(state)
            raise InvalidState("Authorization request expired; start again")

        if not self._store.consume_authorization_request(state):
            raise InvalidState("Authorization request was already used")
        return match

    async def complete_authorization(self, code: Optional[str], state: Optional[str]) -> ConnectedAccount:
        request = self._validate_state(state)
        if not code:
            raise ValidationError("Authorization code is required")

        account = self._require_account(request.account_id)
        environment = account.environment

        try:
            token = await self._oauth.exchange_code(code, environment, account_id=account.id)
        except TransientError:
            raise
        except EbayGatewayError as exc:
            if account.status != AccountStatus.active:
                self._store.upsert(account.id, {"status": AccountStatus.error, "last_error": exc.message[:2000]})
            if isinstance(exc, (UpstreamRejected, UnauthorizedError)):
                raise
            # Other token endpoint answers are failed exchanges, not missing records.
            raise UpstreamRejected(
                f"eBay did not exchange the authorization code: {exc.message}",
                upstream_code=str(exc.details.get("status_code") or exc.code),
                details=exc.details,
            ) from exc

        identity: Dict[str, Any] = {}
        try:
            identity = await self._oauth.get_user_identity(token.access_token, environment)
        except EbayGatewayError as exc:
            logger.warning(
                "[token_provider] identity lookup failed, continuing account_id=%s error=%s",
                account.id, exc.message,
            )

        fields = self._token_fields(token, self._clock())
        if "granted_scopes" not in fields:
            # eBay omitted the scope list: keep what we already know, never guess.
            fields["granted_scopes"] = set(account.granted_scopes)

        target_id = account.id
        marketplace_user_id = identity.get("userId")
        if marketplace_user_id:
            fields["marketplace_user_id"] = marketplace_user_id
            fields["marketplace_username"] = identity.get("username")
            existing = self._store.find_by_owner_and_marketplace_id(
                account.owner_user_id, marketplace_user_id, environment
            )
            if existing and existing.id != account.id:
                # Same seller connected twice: keep the original account, retire the placeholder.
                target_id = existing.id
                fields["user_selected_scopes"] = set(account.user_selected_scopes)
                self._store.upsert(
                    account.id,
                    {"status": AccountStatus.revoked, "access_token": None, "last_error": f"merged into {existing.id}"},
                )
                logger.info(
                    "[token_provider] re-authorization merged placeholder=%s into account_id=%s",
                    account.id, existing.id,
                )

        connected = self._store.upsert(target_id, fields)
        ebay_logger.log_ebay_event(
            "authorization_completed",
            f"Account connected as {connected.marketplace_username or 'unknown user'} ({environment})",
            response_data={"expires_at": connected.access_token_expires_at.isoformat()},
            status="success",
            account_id=target_id,
        )
        return connected

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    async def get_valid_token(self, account_id: str, *, force_refresh: bool = False) -> AccessToken:
        account = self._require_account(account_id)
        self._ensure_usable(account)

        now = self._clock()
        if not force_refresh and self._is_fresh(account, now):
            self._store.upsert(account_id, {"last_used_at": now})
            return self._to_access_token(account, "existing")

        return await self._refresh_single_flight(account_id, force_refresh)

    async def _refresh_single_flight(self, account_id: str, force_refresh: bool) -> AccessToken:
        task = self._inflight.get(account_id)
        if task is None:
            task = asyncio.ensure_future(self._refresh(account_id, force_refresh))
            self._inflight[account_id] = task
            task.add_done_callback(functools.partial(self._clear_inflight, account_id))
        else:
            logger.info("[token_provider] joining in-flight refresh account_id=%s", account_id)
        return await asyncio.shield(task)

    def _clear_inflight(self, account_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(account_id) is task:
            del self._inflight[account_id]

    async def _refresh(self, account_id: str, force_refresh: bool) -> AccessToken:
        # Re-read: another gateway instance may already have refreshed.
        account = self._require_account(account_id)
        self._ensure_usable(account)
        now = self._clock()
        if not force_refresh and self._is_fresh(account, now):
            return self._to_access_token(account, "existing")

        if not account.refresh_token:
            self._expire(account_id, "No refresh token stored")
            raise NoRefreshToken(f"eBay account {account_id} has no refresh token; re-authorize")
        if account.refresh_token_expires_at and now >= account.refresh_token_expires_at:
            self._expire(account_id, "Refresh token expired")
            raise RefreshTokenExpired(f"Refresh token for eBay account {account_id} expired; re-authorize")

        logger.info(
            "[token_provider] refreshing account_id=%s environment=%s forced=%s",
            account_id, account.environment, force_refresh,
        )
        try:
            token = await self._oauth.refresh(account.refresh_token, account.environment, account_id=account_id)
        except TransientError:
            # Timeouts and 5xx say nothing about the refresh token: keep it.
            raise
        except EbayGatewayError as exc:
            self._expire(account_id, f"Refresh rejected: {exc.message}")
            raise RefreshFailed(f"eBay refused to refresh the token: {exc.message}", details=exc.details) from exc

        if token.expires_in <= 0:
            self._expire(account_id, "Refresh returned an already-expired token")
            raise RefreshFailed("eBay returned an already-expired access token")

        refreshed = self._store.upsert(account_id, self._token_fields(token, self._clock()))
        result = self._to_access_token(refreshed, "refreshed")
        logger.info(
            "[token_provider] refresh ok account_id=%s expires_at=%s token_hash=%s",
            account_id, result.expires_at.isoformat(), result.token_hash,
        )
        return result

    def token_status(self, account_id: str) -> Dict[str, Any]:
        """Token metadata for display; never the token values."""
        account = self._require_account(account_id)
        now = self._clock()
        expires_in = None
        if account.access_token and account.access_token_expires_at:
            expires_in = int((account.access_token_expires_at - now).total_seconds())
        return {
            "account_id": account.id,
            "status": account.status.value,
            "environment": account.environment,
            "access_token_expires_at": account.access_token_expires_at,
            "expires_in_seconds": expires_in,
            "needs_refresh": not self._is_fresh(account, now),
            "has_refresh_token": bool(account.refresh_token),
            "refresh_token_expires_at": account.refresh_token_expires_at,
            "last_refreshed_at": account.last_refreshed_at,
            "last_error": account.last_error,
        }

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, account_id: str) -> ConnectedAccount:
        return self._require_account(account_id)

    def list_accounts(self, owner_user_id: str) -> List[ConnectedAccount]:
        return self._store.list_for_owner(owner_user_id)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def mark_expired(self, account_id: str, reason: str) -> None:
        self._expire(account_id, reason)

    def disconnect(self, account_id: str) -> ConnectedAccount:
        """Soft-invalidate: the row stays, the tokens go."""
        self._require_account(account_id)
        account = self._store.upsert(
            account_id,
            {"status": AccountStatus.revoked, "access_token": None, "refresh_token": None},
        )
        ebay_logger.log_ebay_event(
            "account_disconnected",
            "Account disconnected",
            status="success",
            account_id=account_id,
        )
        return account


token_manager = TokenLifecycleManager()
