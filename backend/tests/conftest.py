import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.models_sqlalchemy import Base
from app.models_sqlalchemy import models  # noqa: F401  (registers the tables)
from app.models_sqlalchemy.models import AccountStatus
from app.services.credential_store import SqlAlchemyCredentialStore
from app.services.ebay_http import EbayHttpTransport
from app.services.ebay_oauth import EbayOAuthClient
from app.services.ebay_token_provider import TokenLifecycleManager
from app.utils.logger import ebay_logger


TOKEN_PATH = "/identity/v1/oauth2/token"
IDENTITY_PATH = "/commerce/identity/v1/user/"
TRADING_PATH = "/ws/api.dll"
DEFAULT_GRANT = {
    "https://api.ebay.com/oauth/api_scope",
    "https://api.ebay.com/oauth/api_scope/sell.inventory",
    "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
    "https://api.ebay.com/oauth/api_scope/sell.account",
}


@pytest.fixture(autouse=True)
def _ebay_settings(monkeypatch):
    """Dummy sandbox credentials; no test talks to the real eBay."""
    monkeypatch.setattr(settings, "EBAY_ENVIRONMENT", "sandbox")
    monkeypatch.setattr(settings, "EBAY_SANDBOX_CLIENT_ID", "test-client-id")
    monkeypatch.setattr(settings, "EBAY_SANDBOX_CERT_ID", "test-cert-id")
    monkeypatch.setattr(settings, "EBAY_SANDBOX_RUNAME", "test-runame")
    monkeypatch.setattr(settings, "SECRET_KEY", "test-secret-key")
    monkeypatch.setattr(settings, "JWT_SECRET", None)
    ebay_logger.clear_logs()


class FakeClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], Any]]


class FakeEbay:
    """Scripted stand-in for every eBay host, routed by (method, path).

    Replies queued for a route are consumed in order; the last one repeats.
    A reply may be a response, an exception to raise (e.g. ``httpx.ReadTimeout``)
    or a callable (sync or async) taking the request.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, *replies: Reply) -> None:
        self.routes.setdefault((method.upper(), path), []).extend(replies)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def trading_calls(self, call_name: Optional[str] = None) -> List[httpx.Request]:
        calls = self.calls("POST", TRADING_PATH)
        if call_name:
            calls = [r for r in calls if r.headers.get("X-EBAY-API-CALL-NAME") == call_name]
        return calls

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if request.url.path == TRADING_PATH:
            call_name = request.headers.get("X-EBAY-API-CALL-NAME")
            queue = self.routes.get(("POST", f"{TRADING_PATH}#{call_name}"), queue)
        if not queue:
            return httpx.Response(404, json={"errors": [{"errorId": 0, "message": "no fake route"}]})

        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)
        result = reply(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def add_trading(self, call_name: str, *replies: Reply) -> None:
        self.routes.setdefault(("POST", f"{TRADING_PATH}#{call_name}"), []).extend(replies)


def token_reply(
    access_token: str = "v^1.1#access-new",
    *,
    expires_in: int = 7200,
    refresh_token: Optional[str] = None,
    refresh_token_expires_in: Optional[int] = None,
    scope: Optional[str] = None,
) -> httpx.Response:
    body: Dict[str, Any] = {"access_token": access_token, "expires_in": expires_in, "token_type": "User Access Token"}
    if refresh_token:
        body["refresh_token"] = refresh_token
    if refresh_token_expires_in:
        body["refresh_token_expires_in"] = refresh_token_expires_in
    if scope:
        body["scope"] = scope
    return httpx.Response(200, json=body)


def trading_reply(inner_xml: str, *, call_name: str = "GetItem", ack: str = "Success") -> httpx.Response:
    return httpx.Response(
        200,
        text=(
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<{call_name}Response xmlns="urn:ebay:apis:eBLBaseComponents">'
            "<Timestamp>2026-03-01T12:00:00.000Z</Timestamp>"
            f"<Ack>{ack}</Ack>"
            "<CorrelationID>corr-1</CorrelationID>"
            f"{inner_xml}"
            f"</{call_name}Response>"
        ),
        headers={"content-type": "text/xml"},
    )


def trading_error_reply(code: str, message: str, *, call_name: str = "GetItem") -> httpx.Response:
    return trading_reply(
        "<Errors>"
        f"<ShortMessage>{message}</ShortMessage>"
        f"<LongMessage>{message}</LongMessage>"
        f"<ErrorCode>{code}</ErrorCode>"
        "<SeverityCode>Error</SeverityCode>"
        "<ErrorClassification>RequestError</ErrorClassification>"
        "</Errors>",
        call_name=call_name,
        ack="Failure",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    """Credential store on a private in-memory SQLite database."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield SqlAlchemyCredentialStore(session_factory=sessionmaker(bind=engine, autoflush=False))
    engine.dispose()


@pytest.fixture
def fake_ebay() -> FakeEbay:
    return FakeEbay()


@pytest.fixture
def http(fake_ebay) -> EbayHttpTransport:
    return EbayHttpTransport(
        transport=httpx.MockTransport(fake_ebay.handler),
        max_attempts=3,
        backoff_seconds=0,
    )


@pytest.fixture
def tokens(store, http, clock) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        store,
        EbayOAuthClient(http),
        refresh_skew_seconds=300,
        state_ttl_seconds=600,
        clock=clock,
    )


@pytest.fixture
def make_account(store, clock):
    """Write a connected account straight into the store."""

    def _make(
        account_id: str = "acct-1",
        *,
        owner_user_id: str = "user-1",
        status: AccountStatus = AccountStatus.active,
        access_token: Optional[str] = "v^1.1#access-old",
        expires_in: int = 3600,
        refresh_token: Optional[str] = "v^1.1#refresh",
        refresh_expires_in: int = 86400 * 30,
        marketplace_user_id: Optional[str] = None,
        granted_scopes: Optional[set] = None,
    ):
        return store.upsert(
            account_id,
            {
                "owner_user_id": owner_user_id,
                "environment": "sandbox",
                "status": status,
                "access_token": access_token,
                "access_token_expires_at": clock() + timedelta(seconds=expires_in),
                "refresh_token": refresh_token,
                "refresh_token_expires_at": clock() + timedelta(seconds=refresh_expires_in),
                "token_type": "User Access Token",
                "granted_scopes": DEFAULT_GRANT if granted_scopes is None else granted_scopes,
                "marketplace_user_id": marketplace_user_id,
            },
        )

    return _make


def order_body(
    order_id: str = "12-34567-89012",
    *,
    buyer: str = "buyer_jane",
    status: str = "NOT_STARTED",
    line_items: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Sell Fulfillment ``getOrder`` payload trimmed to the fields we read."""
    if line_items is None:
        line_items = [
            {
                "lineItemId": "LI-1",
                "legacyItemId": "110000000001",
                "sku": "SKU-1",
                "title": "Brake pad set",
                "quantity": 1,
                "lineItemFulfillmentStatus": "NOT_STARTED",
            },
            {
                "lineItemId": "LI-2",
                "legacyItemId": "110000000002",
                "sku": "SKU-2",
                "title": "Rotor",
                "quantity": 2,
                "lineItemFulfillmentStatus": "NOT_STARTED",
            },
        ]
    return {
        "orderId": order_id,
        "legacyOrderId": "110000000001-1000000001",
        "creationDate": "2026-02-27T10:00:00.000Z",
        "orderFulfillmentStatus": status,
        "orderPaymentStatus": "PAID",
        "buyer": {"username": buyer} if buyer else {},
        "pricingSummary": {"total": {"value": "120.00", "currency": "USD"}},
        "lineItems": line_items,
    }
