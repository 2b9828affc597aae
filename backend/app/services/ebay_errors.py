"""Typed failures raised by the gateway.

Every error carries a stable ``code`` for programmatic handling and a human
``message``. Raw upstream payloads go into ``details`` and are for
diagnostics only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EbayGatewayError(Exception):
    code = "gateway_error"
    http_status = 500

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.__class__.__name__
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Caller input
# ---------------------------------------------------------------------------


class ValidationError(EbayGatewayError):
    code = "validation_error"
    http_status = 400


class MissingIdentifier(ValidationError):
    code = "missing_identifier"


class MissingTracking(ValidationError):
    code = "missing_tracking"


class MissingCarrier(ValidationError):
    code = "missing_carrier"


class MissingShipmentInfo(ValidationError):
    code = "missing_shipment_info"


class MissingBody(ValidationError):
    code = "missing_body"


class BodyTooLong(ValidationError):
    code = "body_too_long"


class InvalidAction(ValidationError):
    code = "invalid_action"


class LineItemNotInOrder(ValidationError):
    code = "line_item_not_in_order"


class NothingToShip(ValidationError):
    code = "nothing_to_ship"


class MissingRecipient(ValidationError):
    code = "missing_recipient"


class InvalidPagination(ValidationError):
    code = "invalid_pagination"


class MissingScopes(ValidationError):
    """The account's granted scopes do not cover the operation."""

    code = "missing_scopes"
    http_status = 403

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.details.get("operation")
        data["required_any_of"] = self.details.get("required_any_of", [])
        return data


# ---------------------------------------------------------------------------
# Absent records
# ---------------------------------------------------------------------------


class NotFoundError(EbayGatewayError):
    code = "not_found"
    http_status = 404


class OrderNotFound(NotFoundError):
    code = "order_not_found"


class ItemNotFound(NotFoundError):
    code = "item_not_found"


class BuyerNotFound(NotFoundError):
    code = "buyer_not_found"


class MessageNotFound(NotFoundError):
    code = "message_not_found"


class AccountNotFound(EbayGatewayError):
    # Not an upstream miss: must never drive API fallback.
    code = "account_not_found"
    http_status = 404


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class UnauthorizedError(EbayGatewayError):
    code = "unauthorized"
    http_status = 401


class NoRefreshToken(UnauthorizedError):
    code = "no_refresh_token"


class RefreshTokenExpired(UnauthorizedError):
    code = "refresh_token_expired"


class RefreshFailed(UnauthorizedError):
    code = "refresh_failed"


class AccountNotAuthorized(UnauthorizedError):
    code = "account_not_authorized"


class InvalidState(EbayGatewayError):
    code = "invalid_state"
    http_status = 400


# ---------------------------------------------------------------------------
# Upstream
# ---------------------------------------------------------------------------


class TransientError(EbayGatewayError):
    code = "upstream_unavailable"
    http_status = 502


class UpstreamTimeout(TransientError):
    code = "timeout"
    http_status = 504


class UpstreamRejected(EbayGatewayError):
    """Business-rule rejection reported by eBay, surfaced with eBay's own code."""

    code = "upstream_rejected"
    http_status = 422

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        upstream_code: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.upstream_code = upstream_code

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["upstream_code"] = self.upstream_code
        return out


class FulfillmentRejected(UpstreamRejected):
    code = "fulfillment_rejected"


class ConfigurationError(EbayGatewayError):
    code = "configuration_error"
    http_status = 500
