import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.config import BASE_SCOPE
from app.models_sqlalchemy.models import AccountStatus
from app.services.ebay_errors import (
    AccountNotAuthorized,
    AccountNotFound,
    InvalidState,
    NoRefreshToken,
    RefreshFailed,
    RefreshTokenExpired,
    UpstreamRejected,
    UpstreamTimeout,
    ValidationError,
)

from conftest import IDENTITY_PATH, TOKEN_PATH, token_reply

SELL_SCOPE = "https://api.ebay.com/oauth/api_scope/sell.fulfillment"


def _identity(user_id="seller-1", username="seller_one"):
    return httpx.Response(200, json={"userId": user_id, "username": username})


def _start(tokens, owner="user-1", scopes=None):
    account = tokens.create_pending_account(owner, environment="sandbox", user_selected_scopes=scopes)
    return account, tokens.begin_authorization(account.id, scopes=scopes)


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


def test_begin_authorization_builds_consent_url_bound_to_account(tokens, store):
    account, start = _start(tokens, scopes=[SELL_SCOPE])

    query = parse_qs(urlparse(start.authorization_url).query)
    assert start.authorization_url.startswith("https://auth.sandbox.ebay.com/oauth2/authorize?")
    assert query["client_id"] == ["test-client-id"]
    assert query["redirect_uri"] == ["test-runame"]
    assert query["response_type"] == ["code"]
    assert query["state"] == [start.state]
    # The base scope always comes first; the Identity API needs it.
    assert query["scope"][0].split() == [BASE_SCOPE, SELL_SCOPE]

    assert start.state.startswith(f"{account.id}_")
    assert [r.state for r in store.find_authorization_requests(account.id)] == [start.state]
    assert store.get(account.id).status == AccountStatus.pending


@pytest.mark.asyncio
async def test_complete_authorization_activates_account(tokens, fake_ebay, clock):
    fake_ebay.add(
        "POST",
        TOKEN_PATH,
        token_reply(
            "v^1.1#access-1",
            expires_in=7200,
            refresh_token="v^1.1#refresh-1",
            refresh_token_expires_in=47304000,
            scope=f"{BASE_SCOPE} {SELL_SCOPE}",
        ),
    )
    fake_ebay.add("GET", IDENTITY_PATH, _identity())
    account, start = _start(tokens)

    connected = await tokens.complete_authorization("auth-code", start.state)

    assert connected.id == account.id
    assert connected.status == AccountStatus.active
    assert connected.access_token == "v^1.1#access-1"
    assert connected.refresh_token == "v^1.1#refresh-1"
    assert connected.access_token_expires_at == clock() + timedelta(seconds=7200)
    assert connected.refresh_token_expires_at == clock() + timedelta(seconds=47304000)
    assert connected.granted_scopes == {BASE_SCOPE, SELL_SCOPE}
    assert connected.marketplace_user_id == "seller-1"
    assert connected.marketplace_username == "seller_one"

    exchange = fake_ebay.calls("POST", TOKEN_PATH)[0]
    form = parse_qs(exchange.content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]
    assert exchange.headers["Authorization"].startswith("Basic ")


@pytest.mark.asyncio
async def test_state_is_single_use(tokens, fake_ebay):
    fake_ebay.add("POST", TOKEN_PATH, token_reply(refresh_token="v^1.1#refresh-1"))
    fake_ebay.add("GET", IDENTITY_PATH, _identity())
    _, start = _start(tokens)

    await tokens.complete_authorization("auth-code", start.state)
    with pytest.raises(InvalidState):
        await tokens.complete_authorization("auth-code", start.state)

    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("tamper", [
    lambda state: state[:-4] + "beef",
    lambda state: "not-a-state",
    lambda state: "",
    lambda state: None,
])
async def test_mismatched_state_never_calls_token_endpoint(tokens, store, fake_ebay, tamper):
    fake_ebay.add("POST", TOKEN_PATH, token_reply())
    account, start = _start(tokens)

    with pytest.raises(InvalidState):
        await tokens.complete_authorization("auth-code", tamper(start.state))

    assert fake_ebay.calls("POST", TOKEN_PATH) == []
    assert store.get(account.id).status == AccountStatus.pending


@pytest.mark.asyncio
async def test_expired_state_is_rejected(tokens, fake_ebay, clock):
    fake_ebay.add("POST", TOKEN_PATH, token_reply())
    _, start = _start(tokens)
    clock.advance(601)

    with pytest.raises(InvalidState):
        await tokens.complete_authorization("auth-code", start.state)
    assert fake_ebay.calls("POST", TOKEN_PATH) == []


@pytest.mark.asyncio
async def test_missing_code_is_a_validation_error(tokens, fake_ebay):
    _, start = _start(tokens)

    with pytest.raises(ValidationError):
        await tokens.complete_authorization("", start.state)
    assert fake_ebay.calls("POST", TOKEN_PATH) == []


@pytest.mark.asyncio
async def test_rejected_exchange_puts_account_in_error(tokens, store, fake_ebay):
    fake_ebay.add(
        "POST",
        TOKEN_PATH,
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "code expired"}),
    )
    account, start = _start(tokens)

    with pytest.raises(UpstreamRejected) as excinfo:
        await tokens.complete_authorization("stale-code", start.state)

    assert excinfo.value.upstream_code == "invalid_grant"
    saved = store.get(account.id)
    assert saved.status == AccountStatus.error
    assert "code expired" in saved.last_error


@pytest.mark.asyncio
async def test_exchange_answered_with_404_is_a_rejection(tokens, store, fake_ebay):
    fake_ebay.add("POST", TOKEN_PATH, httpx.Response(404, json={"errors": [{"errorId": 0}]}))
    account, start = _start(tokens)

    with pytest.raises(UpstreamRejected) as excinfo:
        await tokens.complete_authorization("auth-code", start.state)

    assert excinfo.value.upstream_code == "404"
    assert store.get(account.id).status == AccountStatus.error


@pytest.mark.asyncio
async def test_identity_lookup_failure_does_not_block_connection(tokens, fake_ebay):
    """Identity is best-effort: the grant itself already succeeded."""
    fake_ebay.add("POST", TOKEN_PATH, token_reply(refresh_token="v^1.1#refresh-1"))
    fake_ebay.add("GET", IDENTITY_PATH, httpx.Response(503, text="down"))
    _, start = _start(tokens)

    connected = await tokens.complete_authorization("auth-code", start.state)

    assert connected.status == AccountStatus.active
    assert connected.marketplace_user_id is None
    # Without a scope in the response, nothing is assumed to be granted.
    assert connected.granted_scopes == set()


@pytest.mark.asyncio
async def test_reauthorizing_same_seller_reuses_existing_account(tokens, store, fake_ebay, make_account):
    existing = make_account("acct-existing", status=AccountStatus.expired, marketplace_user_id="seller-1")
    fake_ebay.add("POST", TOKEN_PATH, token_reply("v^1.1#access-2", refresh_token="v^1.1#refresh-2"))
    fake_ebay.add("GET", IDENTITY_PATH, _identity("seller-1"))
    placeholder, start = _start(tokens)

    connected = await tokens.complete_authorization("auth-code", start.state)

    assert connected.id == existing.id
    assert connected.status == AccountStatus.active
    assert connected.access_token == "v^1.1#access-2"
    assert store.get(placeholder.id).status == AccountStatus.revoked
    assert [a.id for a in tokens.list_accounts("user-1") if a.status == AccountStatus.active] == [existing.id]


# ---------------------------------------------------------------------------
# Token access
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fresh_token_is_returned_without_refresh(tokens, fake_ebay, make_account):
    make_account(expires_in=3600)

    token = await tokens.get_valid_token("acct-1")

    assert token.value == "v^1.1#access-old"
    assert token.source == "existing"
    assert fake_ebay.requests == []
    assert "v^1.1#access-old" not in str(token.to_dict())


@pytest.mark.asyncio
async def test_token_inside_skew_is_refreshed_and_persisted(tokens, store, fake_ebay, make_account, clock):
    make_account(expires_in=200)
    fake_ebay.add("POST", TOKEN_PATH, token_reply("v^1.1#access-new", expires_in=7200))

    token = await tokens.get_valid_token("acct-1")

    assert token.value == "v^1.1#access-new"
    assert token.source == "refreshed"
    assert token.expires_at == clock() + timedelta(seconds=7200)
    saved = store.get("acct-1")
    assert saved.access_token == "v^1.1#access-new"
    assert saved.last_refreshed_at == clock()
    # eBay did not rotate the refresh token, so the stored one stays.
    assert saved.refresh_token == "v^1.1#refresh"

    form = parse_qs(fake_ebay.calls("POST", TOKEN_PATH)[0].content.decode())
    assert form == {"grant_type": ["refresh_token"], "refresh_token": ["v^1.1#refresh"]}


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_refresh(tokens, fake_ebay, make_account):
    make_account(expires_in=-10)

    async def slow_refresh(request):
        await asyncio.sleep(0.05)
        return token_reply("v^1.1#access-shared")

    fake_ebay.add("POST", TOKEN_PATH, slow_refresh)

    results = await asyncio.gather(*(tokens.get_valid_token("acct-1") for _ in range(5)))

    assert {t.value for t in results} == {"v^1.1#access-shared"}
    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 1


@pytest.mark.asyncio
async def test_force_refresh_ignores_remaining_lifetime(tokens, fake_ebay, make_account):
    make_account(expires_in=3600)
    fake_ebay.add("POST", TOKEN_PATH, token_reply("v^1.1#access-forced"))

    token = await tokens.get_valid_token("acct-1", force_refresh=True)

    assert token.value == "v^1.1#access-forced"
    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("remaining", [-3600, -1, 0, 1, 299, 300, 301, 3600])
async def test_returned_token_is_never_past_expiry(tokens, fake_ebay, make_account, clock, remaining):
    make_account(expires_in=remaining)
    fake_ebay.add("POST", TOKEN_PATH, token_reply(expires_in=7200))

    token = await tokens.get_valid_token("acct-1")

    assert token.expires_at > clock()


@pytest.mark.asyncio
async def test_missing_refresh_token_expires_account(tokens, store, fake_ebay, make_account):
    make_account(expires_in=-10, refresh_token=None)

    with pytest.raises(NoRefreshToken):
        await tokens.get_valid_token("acct-1")

    assert store.get("acct-1").status == AccountStatus.expired
    assert fake_ebay.requests == []


@pytest.mark.asyncio
async def test_expired_refresh_token_is_not_sent(tokens, store, fake_ebay, make_account):
    make_account(expires_in=-10, refresh_expires_in=-1)

    with pytest.raises(RefreshTokenExpired):
        await tokens.get_valid_token("acct-1")

    assert store.get("acct-1").status == AccountStatus.expired
    assert fake_ebay.requests == []


@pytest.mark.asyncio
async def test_rejected_refresh_expires_account(tokens, store, fake_ebay, make_account):
    make_account(expires_in=-10)
    fake_ebay.add(
        "POST",
        TOKEN_PATH,
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "refresh token revoked"}),
    )

    with pytest.raises(RefreshFailed):
        await tokens.get_valid_token("acct-1")

    saved = store.get("acct-1")
    assert saved.status == AccountStatus.expired
    assert saved.access_token is None
    with pytest.raises(AccountNotAuthorized):
        await tokens.get_valid_token("acct-1")


@pytest.mark.asyncio
async def test_refresh_answered_with_404_expires_account(tokens, store, fake_ebay, make_account):
    make_account(expires_in=-10)
    fake_ebay.add("POST", TOKEN_PATH, httpx.Response(404, json={"errors": [{"errorId": 0}]}))

    with pytest.raises(RefreshFailed):
        await tokens.get_valid_token("acct-1")

    saved = store.get("acct-1")
    assert saved.status == AccountStatus.expired
    assert saved.access_token is None


@pytest.mark.asyncio
async def test_expired_account_recovers_through_reauthorization(tokens, store, fake_ebay, make_account, clock):
    make_account(expires_in=-10, marketplace_user_id="seller-1")
    before = store.get("acct-1").access_token_expires_at
    fake_ebay.add(
        "POST",
        TOKEN_PATH,
        httpx.Response(400, json={"error": "invalid_grant", "error_description": "refresh token revoked"}),
        token_reply("v^1.1#access-2", refresh_token="v^1.1#refresh-2"),
    )
    fake_ebay.add("GET", IDENTITY_PATH, _identity("seller-1"))

    with pytest.raises(RefreshFailed):
        await tokens.get_valid_token("acct-1")
    assert store.get("acct-1").status == AccountStatus.expired

    clock.advance(60)
    start = tokens.begin_authorization("acct-1")
    connected = await tokens.complete_authorization("auth-code", start.state)

    assert connected.id == "acct-1"
    assert connected.status == AccountStatus.active
    assert connected.access_token_expires_at > before
    token = await tokens.get_valid_token("acct-1")
    assert token.value == "v^1.1#access-2"
    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 2


@pytest.mark.asyncio
async def test_refresh_timeout_leaves_credentials_untouched(tokens, store, fake_ebay, make_account):
    make_account(expires_in=-10)
    fake_ebay.add("POST", TOKEN_PATH, httpx.ReadTimeout("read timed out"))

    with pytest.raises(UpstreamTimeout):
        await tokens.get_valid_token("acct-1")

    saved = store.get("acct-1")
    assert saved.status == AccountStatus.active
    assert saved.refresh_token == "v^1.1#refresh"
    # POST to the token endpoint is not idempotent: no blind retry.
    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 1


@pytest.mark.asyncio
async def test_unusable_accounts_are_rejected(tokens, make_account):
    make_account("acct-pending", status=AccountStatus.pending)

    with pytest.raises(AccountNotAuthorized):
        await tokens.get_valid_token("acct-pending")
    with pytest.raises(AccountNotFound):
        await tokens.get_valid_token("missing")


@pytest.mark.asyncio
async def test_disconnect_clears_tokens(tokens, store, make_account):
    make_account()

    account = tokens.disconnect("acct-1")

    assert account.status == AccountStatus.revoked
    assert account.access_token is None
    assert account.refresh_token is None
    with pytest.raises(AccountNotAuthorized):
        await tokens.get_valid_token("acct-1")


def test_token_status_reports_metadata_only(tokens, make_account):
    make_account(expires_in=120)

    status = tokens.token_status("acct-1")

    assert status["status"] == "active"
    assert status["expires_in_seconds"] == 120
    assert status["needs_refresh"] is True
    assert status["has_refresh_token"] is True
    assert "v^1.1" not in str(status)
