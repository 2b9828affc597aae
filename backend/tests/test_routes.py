import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import BASE_SCOPE
from app.main import app
from app.models.user import User
from app.models_sqlalchemy.models import AccountStatus
from app.routers.dependencies import get_http_transport, get_token_manager
from app.services.auth import create_access_token, get_current_user

from conftest import TOKEN_PATH, order_body, token_reply, trading_reply

ORDER_PATH = "/sell/fulfillment/v1/order/12-34567-89012"


@pytest.fixture
def client(tokens, http):
    app.dependency_overrides[get_token_manager] = lambda: tokens
    app.dependency_overrides[get_http_transport] = lambda: http
    app.dependency_overrides[get_current_user] = lambda: User(id="user-1")
    # No context manager: startup (table creation on the default DB) is skipped.
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_connect_account_returns_consent_url(client, tokens):
    response = client.post("/ebay/accounts", json={"friendly_name": "Main store", "environment": "sandbox"})

    assert response.status_code == 200
    body = response.json()
    assert body["authorization_url"].startswith("https://auth.sandbox.ebay.com/oauth2/authorize?")
    assert body["state"].startswith(f"{body['account_id']}_")
    account = tokens.get_account(body["account_id"])
    assert account.owner_user_id == "user-1"
    assert account.status == AccountStatus.pending


def test_connect_account_rejects_unknown_environment(client):
    response = client.post("/ebay/accounts", json={"environment": "staging"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_list_accounts_is_scoped_and_hides_tokens(client, make_account):
    make_account("acct-1")
    make_account("acct-2", owner_user_id="user-2")

    response = client.get("/ebay/accounts")

    assert response.status_code == 200
    accounts = response.json()
    assert [a["id"] for a in accounts] == ["acct-1"]
    assert accounts[0]["has_refresh_token"] is True
    assert "v^1.1" not in response.text


def test_other_users_account_is_forbidden(client, make_account, fake_ebay):
    make_account("acct-2", owner_user_id="user-2")

    response = client.get("/ebay/acct-2/orders/12-34567-89012")

    assert response.status_code == 403
    assert fake_ebay.requests == []


def test_unknown_account_is_not_found(client):
    response = client.get("/ebay/missing/orders/12-34567-89012")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "account_not_found"


def test_get_order(client, make_account, fake_ebay):
    make_account()
    fake_ebay.add("GET", ORDER_PATH, httpx.Response(200, json=order_body()))

    response = client.get("/ebay/acct-1/orders/12-34567-89012")

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "12-34567-89012"
    assert body["source_api"] == "modern"
    assert "raw" not in body


def test_upstream_not_found_maps_to_404(client, make_account, fake_ebay):
    make_account()
    fake_ebay.add("GET", ORDER_PATH, httpx.Response(404, json={"errors": [{"errorId": 32100}]}))

    response = client.get("/ebay/acct-1/orders/12-34567-89012")

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


def test_ship_order_validation_error(client, make_account, fake_ebay):
    make_account()

    response = client.post("/ebay/acct-1/orders/12-34567-89012/ship", json={"carrier_code": "UPS"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "missing_tracking"
    assert fake_ebay.requests == []


def test_send_message_body_too_long(client, make_account, fake_ebay):
    make_account()

    response = client.post("/ebay/acct-1/orders/12-34567-89012/messages", json={"body": "x" * 2001})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "body_too_long"
    assert fake_ebay.requests == []


def test_check_item_accepts_item_id_alias(client, make_account, fake_ebay):
    make_account()
    fake_ebay.add_trading("GetItem", trading_reply("<Item><ItemID>110000000001</ItemID></Item>"))

    response = client.get("/ebay/acct-1/check-item", params={"itemId": "110000000001"})

    assert response.status_code == 200
    assert response.json()["exists"] is True
    assert response.json()["location"] == "trading_api"


def test_invalid_callback_state(client, make_account):
    make_account()

    response = client.get("/ebay/oauth/callback", params={"code": "c", "state": "acct-1_forged"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_state"


def test_callback_for_another_users_account_looks_like_a_bad_state(client, make_account, fake_ebay):
    make_account("acct-2", owner_user_id="user-2")

    response = client.get("/ebay/oauth/callback", params={"code": "c", "state": "acct-2_abcdef"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_state"
    assert fake_ebay.requests == []


def test_callback_for_unknown_account_does_not_reveal_it(client, fake_ebay):
    response = client.get("/ebay/oauth/callback", params={"code": "c", "state": "forged-acct_deadbeef"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_state"
    assert fake_ebay.requests == []


def test_token_status_and_disconnect(client, make_account):
    make_account()

    status = client.get("/ebay/accounts/acct-1/token-status").json()
    assert status["status"] == "active"
    assert status["has_refresh_token"] is True

    response = client.post("/ebay/accounts/acct-1/disconnect")
    assert response.status_code == 200
    assert response.json()["status"] == "revoked"
    assert response.json()["has_refresh_token"] is False


def test_connection_logs_only_show_own_accounts(client, tokens, make_account):
    make_account("acct-1")
    make_account("acct-2", owner_user_id="user-2")
    tokens.disconnect("acct-1")
    tokens.disconnect("acct-2")

    logs = client.get("/ebay/connection-logs").json()["logs"]

    assert {entry["account_id"] for entry in logs} == {"acct-1"}


def test_requests_need_a_valid_session_token(tokens, http, make_account):
    make_account()
    app.dependency_overrides[get_token_manager] = lambda: tokens
    app.dependency_overrides[get_http_transport] = lambda: http
    try:
        client = TestClient(app)
        assert client.get("/ebay/accounts").status_code in (401, 403)
        assert client.get("/ebay/accounts", headers={"Authorization": "Bearer garbage"}).status_code == 401

        jwt_token = create_access_token({"sub": "user-1"})
        response = client.get("/ebay/accounts", headers={"Authorization": f"Bearer {jwt_token}"})
        assert response.status_code == 200
        assert [a["id"] for a in response.json()] == ["acct-1"]
    finally:
        app.dependency_overrides.clear()


def test_manual_refresh(client, make_account, fake_ebay):
    make_account(expires_in=3600)
    fake_ebay.add("POST", TOKEN_PATH, token_reply("v^1.1#access-2"))

    response = client.post("/ebay/accounts/acct-1/refresh")

    assert response.status_code == 200
    body = response.json()
    assert body["token"]["source"] == "refreshed"
    assert body["token_status"]["status"] == "active"
    assert "v^1.1#access-2" not in response.text
    assert len(fake_ebay.calls("POST", TOKEN_PATH)) == 1


def test_manual_refresh_failure_is_unauthorized(client, make_account, fake_ebay):
    make_account()
    fake_ebay.add("POST", TOKEN_PATH, httpx.Response(400, json={"error": "invalid_grant"}))

    response = client.post("/ebay/accounts/acct-1/refresh")

    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "refresh_failed"


def test_scope_view(client, make_account):
    make_account(granted_scopes={BASE_SCOPE, f"{BASE_SCOPE}/sell.fulfillment.readonly"})

    body = client.get("/ebay/accounts/acct-1/scopes").json()

    assert body["grant_known"] is True
    assert body["permissions"]["view_orders"] is True
    assert body["permissions"]["manage_orders"] is False
    assert body["permissions"]["view_inventory"] is False


def test_scope_update_starts_consent(client, tokens, make_account):
    make_account()
    wanted = [f"{BASE_SCOPE}/sell.inventory", f"{BASE_SCOPE}/sell.fulfillment"]

    response = client.put("/ebay/accounts/acct-1/scopes", json={"scopes": wanted})

    assert response.status_code == 200
    assert response.json()["state"].startswith("acct-1_")
    assert tokens.get_account("acct-1").user_selected_scopes == {BASE_SCOPE, *wanted}
    # Existing credentials stay usable until the new consent completes.
    assert tokens.get_account("acct-1").status == AccountStatus.active


def test_scope_update_rejects_foreign_urls(client, make_account):
    make_account()

    response = client.put("/ebay/accounts/acct-1/scopes", json={"scopes": ["https://example.com/scope"]})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_missing_scope_is_forbidden(client, make_account, fake_ebay):
    make_account(granted_scopes={BASE_SCOPE})

    response = client.get("/ebay/acct-1/orders/12-34567-89012")

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["code"] == "missing_scopes"
    assert f"{BASE_SCOPE}/sell.fulfillment" in detail["required_any_of"]
    assert fake_ebay.requests == []


def test_inventory_listing_route(client, make_account, fake_ebay):
    make_account()
    fake_ebay.add(
        "GET",
        "/sell/inventory/v1/inventory_item",
        httpx.Response(200, json={"total": 1, "inventoryItems": [{"sku": "SKU-1"}]}),
    )

    response = client.get("/ebay/acct-1/inventory", params={"limit": 10})

    assert response.status_code == 200
    assert [item["sku"] for item in response.json()["items"]] == ["SKU-1"]


def test_inbox_routes(client, make_account, fake_ebay):
    make_account()
    message = (
        "<Messages><Message><MessageID>m-1</MessageID><Sender>buyer_one</Sender>"
        "<Subject>Hi</Subject><Read>false</Read></Message></Messages>"
    )
    fake_ebay.add_trading("GetMyMessages", trading_reply(message, call_name="GetMyMessages"))
    fake_ebay.add_trading("ReviseMyMessages", trading_reply("", call_name="ReviseMyMessages"))
    fake_ebay.add_trading("DeleteMyMessages", trading_reply("", call_name="DeleteMyMessages"))

    listed = client.get("/ebay/acct-1/messages")
    assert listed.status_code == 200
    assert [m["id"] for m in listed.json()["items"]] == ["m-1"]

    assert client.get("/ebay/acct-1/messages/m-1").json()["sender"] == "buyer_one"

    flagged = client.patch("/ebay/acct-1/messages/m-1", json={"flagged": True})
    assert flagged.status_code == 200
    assert flagged.json()["payload"] == {"read": None, "flagged": True}

    assert client.delete("/ebay/acct-1/messages/m-1").json()["result"] == "success"


def test_inbox_rejects_unaligned_offset(client, make_account, fake_ebay):
    make_account()

    response = client.get("/ebay/acct-1/messages", params={"limit": 25, "offset": 5})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_pagination"
    assert fake_ebay.requests == []


def test_send_item_message_route_needs_body(client, make_account, fake_ebay):
    make_account()

    response = client.post("/ebay/acct-1/messages", json={"item_id": "110000000001", "recipient_id": "buyer_one"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "missing_body"
