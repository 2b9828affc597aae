from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from app.models.ebay import ConnectAccountRequest, UpdateScopesRequest
from app.models.ebay_account import AuthorizationStart, ConnectedAccount, ConnectedAccountResponse
from app.models.user import User
from app.routers.dependencies import ensure_owner, get_owned_account, get_token_manager
from app.services.auth import get_current_user
from app.services.ebay_errors import AccountNotFound, InvalidState
from app.services.ebay_scopes import describe_scopes, validate_requested_scopes
from app.services.ebay_token_provider import TokenLifecycleManager, account_id_from_state
from app.utils.logger import ebay_logger, logger

router = APIRouter(prefix="/ebay", tags=["eBay Accounts"])


@router.post("/accounts", response_model=AuthorizationStart)
async def connect_account(
    request: ConnectAccountRequest,
    current_user: User = Depends(get_current_user),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Create a pending account and return the eBay consent URL for it."""
    account = tokens.create_pending_account(
        current_user.id,
        environment=request.environment,
        friendly_name=request.friendly_name,
        user_selected_scopes=request.scopes,
    )
    logger.info(f"Starting eBay authorization for user {current_user.id} account {account.id}")
    return tokens.begin_authorization(account.id, scopes=request.scopes)


@router.get("/accounts", response_model=List[ConnectedAccountResponse])
async def list_accounts(
    current_user: User = Depends(get_current_user),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return [ConnectedAccountResponse.from_account(a) for a in tokens.list_accounts(current_user.id)]


@router.post("/accounts/{account_id}/authorize", response_model=AuthorizationStart)
async def reauthorize_account(
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Start a fresh consent round for an existing (typically expired) account."""
    return tokens.begin_authorization(account.id)


@router.get("/oauth/callback", response_model=ConnectedAccountResponse)
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    account_id = account_id_from_state(state)
    if not account_id:
        raise InvalidState("Malformed authorization state")
    # Unknown and foreign accounts answer alike so the callback does not reveal which ids exist.
    try:
        account = tokens.get_account(account_id)
    except AccountNotFound:
        account = None
    if account is None or account.owner_user_id != current_user.id:
        logger.warning(f"Rejected OAuth callback for account {account_id} from user {current_user.id}")
        raise InvalidState("Authorization state does not match any pending request")

    account = await tokens.complete_authorization(code, state)
    return ConnectedAccountResponse.from_account(account)


@router.post("/accounts/{account_id}/disconnect", response_model=ConnectedAccountResponse)
async def disconnect_account(
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    logger.info(f"Disconnecting eBay account {account.id}")
    return ConnectedAccountResponse.from_account(tokens.disconnect(account.id))


@router.get("/accounts/{account_id}/token-status")
async def token_status(
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    return tokens.token_status(account.id)


@router.post("/accounts/{account_id}/refresh")
async def refresh_token(
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Force a token refresh now instead of waiting for the next expiry."""
    logger.info(f"Manual token refresh requested for eBay account {account.id}")
    token = await tokens.get_valid_token(account.id, force_refresh=True)
    return {"token": token.to_dict(), "token_status": tokens.token_status(account.id)}


@router.get("/accounts/{account_id}/scopes")
async def get_scopes(account: ConnectedAccount = Depends(get_owned_account)):
    return describe_scopes(account.granted_scopes, account.user_selected_scopes)


@router.put("/accounts/{account_id}/scopes", response_model=AuthorizationStart)
async def update_scopes(
    request: UpdateScopesRequest,
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """Record a new scope selection and start the consent round that grants it.

    The current tokens keep working until the callback completes.
    """
    scopes = validate_requested_scopes(request.scopes)
    logger.info(f"Scope change requested for eBay account {account.id}: {scopes}")
    return tokens.begin_authorization(account.id, scopes=scopes)


@router.get("/connection-logs")
async def connection_logs(
    account_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    current_user: User = Depends(get_current_user),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    if account_id:
        ensure_owner(tokens.get_account(account_id), current_user)
        logs = ebay_logger.get_logs(limit=limit, account_id=account_id)
    else:
        owned = {a.id for a in tokens.list_accounts(current_user.id)}
        logs = [entry for entry in ebay_logger.get_logs() if entry.get("account_id") in owned][-limit:]
    return {"logs": logs, "total": len(logs)}
