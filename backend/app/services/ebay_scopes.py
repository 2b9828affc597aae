"""OAuth scopes each gateway operation needs.

A requirement lists alternative scopes: a write scope also covers reads, so
``sell.fulfillment`` satisfies an operation that asks for
``sell.fulfillment.readonly``.

eBay's user token responses often leave out ``scope``. When nothing is known
about an account's grant, the check is skipped and eBay itself stays the
judge; a known grant that misses a requirement fails before any API call.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from app.config import BASE_SCOPE
from app.services.ebay_errors import MissingScopes, ValidationError
from app.utils.logger import logger


SELL_INVENTORY = f"{BASE_SCOPE}/sell.inventory"
SELL_INVENTORY_READONLY = f"{BASE_SCOPE}/sell.inventory.readonly"
SELL_FULFILLMENT = f"{BASE_SCOPE}/sell.fulfillment"
SELL_FULFILLMENT_READONLY = f"{BASE_SCOPE}/sell.fulfillment.readonly"
SELL_ACCOUNT = f"{BASE_SCOPE}/sell.account"
SELL_ACCOUNT_READONLY = f"{BASE_SCOPE}/sell.account.readonly"

VIEW_INVENTORY = "view_inventory"
MANAGE_INVENTORY = "manage_inventory"
VIEW_ORDERS = "view_orders"
MANAGE_ORDERS = "manage_orders"
VIEW_ACCOUNT = "view_account"
BASIC_ACCESS = "basic_access"

# Returns, inquiries, cancellations and buyer messaging ride on the
# fulfillment grant, like orders do.
OPERATION_SCOPES: Dict[str, Tuple[str, ...]] = {
    VIEW_INVENTORY: (SELL_INVENTORY_READONLY, SELL_INVENTORY),
    MANAGE_INVENTORY: (SELL_INVENTORY,),
    VIEW_ORDERS: (SELL_FULFILLMENT_READONLY, SELL_FULFILLMENT),
    MANAGE_ORDERS: (SELL_FULFILLMENT,),
    VIEW_ACCOUNT: (SELL_ACCOUNT_READONLY, SELL_ACCOUNT),
    BASIC_ACCESS: (BASE_SCOPE,),
}


def is_satisfied(granted: Iterable[str], operation: str) -> Optional[bool]:
    """True/False against a known grant, ``None`` when the grant is unknown."""
    granted = set(granted or ())
    if not granted:
        return None
    return any(scope in granted for scope in OPERATION_SCOPES[operation])


def check_scopes(granted: Iterable[str], operation: str, *, account_id: str, call: str) -> None:
    granted = sorted(set(granted or ()))
    if is_satisfied(granted, operation) is False:
        required = list(OPERATION_SCOPES[operation])
        logger.warning(
            "[scopes] missing scope account_id=%s call=%s operation=%s required_any_of=%s",
            account_id, call, operation, required,
        )
        raise MissingScopes(
            f"eBay account {account_id} has not granted the scopes {call} needs; re-authorize with one of: "
            + ", ".join(required),
            details={"operation": operation, "required_any_of": required, "granted": granted},
        )


def describe_scopes(granted: Iterable[str], user_selected: Iterable[str]) -> Dict[str, object]:
    granted_list: List[str] = sorted(set(granted or ()))
    return {
        "granted": granted_list,
        "user_selected": sorted(set(user_selected or ())),
        "grant_known": bool(granted_list),
        "permissions": {operation: is_satisfied(granted_list, operation) for operation in OPERATION_SCOPES},
    }


def validate_requested_scopes(scopes: Iterable[str]) -> List[str]:
    """Strip and deduplicate scopes a user asked for; reject anything that is not an eBay scope URL."""
    cleaned: List[str] = []
    for scope in scopes or ():
        scope = (scope or "").strip()
        if scope and scope not in cleaned:
            cleaned.append(scope)
    unknown = [s for s in cleaned if s != BASE_SCOPE and not s.startswith(f"{BASE_SCOPE}/")]
    if unknown or not cleaned:
        raise ValidationError(
            "Scopes must be eBay OAuth scope URLs: " + (", ".join(unknown) or "none given"),
            details={"invalid_scopes": unknown},
        )
    return cleaned
