from fastapi import Depends, HTTPException, status

from app.models.ebay_account import ConnectedAccount
from app.models.user import User
from app.services.auth import get_current_user
from app.services.ebay_http import EbayHttpTransport
from app.services.ebay_token_provider import TokenLifecycleManager, token_manager
from app.services.fulfillment_orchestrator import OrderFulfillmentOrchestrator, create_order_orchestrator
from app.utils.logger import logger


def get_token_manager() -> TokenLifecycleManager:
    return token_manager


def get_http_transport() -> EbayHttpTransport:
    return EbayHttpTransport()


def ensure_owner(account: ConnectedAccount, current_user: User) -> None:
    if account.owner_user_id != current_user.id:
        logger.warning(f"User {current_user.id} attempted to access account {account.id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def get_owned_account(
    account_id: str,
    current_user: User = Depends(get_current_user),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
) -> ConnectedAccount:
    account = tokens.get_account(account_id)
    ensure_owner(account, current_user)
    return account


def get_orchestrator(
    account: ConnectedAccount = Depends(get_owned_account),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
    http: EbayHttpTransport = Depends(get_http_transport),
) -> OrderFulfillmentOrchestrator:
    return create_order_orchestrator(account.id, tokens=tokens, http=http)
