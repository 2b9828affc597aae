"""Client for eBay's OAuth endpoints (authorize URL, code exchange, refresh, identity)."""

from __future__ import annotations

import base64
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from app.config import BASE_SCOPE, settings
from app.models.ebay import EbayTokenResponse
from app.services.ebay_errors import (
    ConfigurationError,
    EbayGatewayError,
    UpstreamRejected,
)
from app.services.ebay_http import EbayHttpTransport, raise_for_rest_status, response_json
from app.utils.logger import ebay_logger, logger


TOKEN_PATH = "/identity/v1/oauth2/token"
AUTHORIZE_PATH = "/oauth2/authorize"
IDENTITY_PATH = "/commerce/identity/v1/user/"


def order_scopes(scopes: Optional[List[str]]) -> List[str]:
    """Deduplicate scopes and put the base scope first (the Identity API needs it)."""
    ordered: List[str] = [BASE_SCOPE]
    for scope in scopes or settings.default_scopes:
        scope = (scope or "").strip()
        if scope and scope not in ordered:
            ordered.append(scope)
    return ordered


class EbayOAuthClient:
    def __init__(self, http: Optional[EbayHttpTransport] = None):
        self.http = http or EbayHttpTransport()

    def _credentials(self, environment: str) -> Dict[str, str]:
        client_id = settings.ebay_client_id(environment)
        cert_id = settings.ebay_cert_id(environment)
        runame = settings.ebay_runame(environment)
        if not client_id or not cert_id or not runame:
            ebay_logger.log_ebay_event(
                "oauth_config_error",
                f"eBay {environment} credentials not configured",
                status="error",
                error="EBAY_CLIENT_ID, EBAY_CERT_ID or EBAY_RUNAME not set",
            )
            raise ConfigurationError(f"eBay {environment} credentials not configured")
        return {"client_id": client_id, "cert_id": cert_id, "runame": runame}

    def _token_headers(self, environment: str) -> Dict[str, str]:
        creds = self._credentials(environment)
        encoded = base64.b64encode(f"{creds['client_id']}:{creds['cert_id']}".encode()).decode()
        return {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {encoded}",
        }

    def build_authorization_url(self, environment: str, state: str, scopes: List[str]) -> str:
        creds = self._credentials(environment)
        params = {
            "client_id": creds["client_id"],
            "redirect_uri": creds["runame"],
            "response_type": "code",
            "scope": " ".join(scopes),
            "state": state,
            "prompt": "login",
        }
        return f"{settings.ebay_auth_base_url(environment)}{AUTHORIZE_PATH}?{urlencode(params)}"

    async def _token_request(
        self,
        environment: str,
        data: Dict[str, str],
        *,
        event: str,
        account_id: str,
    ) -> EbayTokenResponse:
        url = f"{settings.ebay_api_base_url(environment)}{TOKEN_PATH}"
        ebay_logger.log_ebay_event(
            f"{event}_request",
            f"POST {TOKEN_PATH} grant_type={data['grant_type']} ({environment})",
            request_data=dict(data),
            account_id=account_id,
        )
        try:
            response = await self.http.request(
                "POST",
                url,
                operation=event,
                headers=self._token_headers(environment),
                data=data,
                idempotent=False,
            )
            raise_for_rest_status(response, operation=event)
        except EbayGatewayError as exc:
            ebay_logger.log_ebay_event(
                f"{event}_failed",
                f"{event} failed",
                response_data=exc.details,
                status="error",
                error=exc.message,
                account_id=account_id,
            )
            raise

        body = response_json(response)
        try:
            token = EbayTokenResponse(**body)
        except PydanticValidationError as exc:
            raise UpstreamRejected(
                f"{event}: malformed token response",
                upstream_code="malformed_token_response",
                details={"errors": exc.errors()},
            )

        ebay_logger.log_ebay_event(
            f"{event}_success",
            f"{event} succeeded",
            response_data={
                "access_token": token.access_token,
                "token_type": token.token_type,
                "expires_in": token.expires_in,
                "has_refresh_token": token.refresh_token is not None,
            },
            status="success",
            account_id=account_id,
        )
        return token

    async def exchange_code(self, code: str, environment: str, *, account_id: str) -> EbayTokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._credentials(environment)["runame"],
        }
        return await self._token_request(environment, data, event="token_exchange", account_id=account_id)

    async def refresh(self, refresh_token: str, environment: str, *, account_id: str) -> EbayTokenResponse:
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        return await self._token_request(environment, data, event="token_refresh", account_id=account_id)

    async def get_user_identity(self, access_token: str, environment: str) -> Dict[str, Any]:
        """Return ``{"userId", "username"}`` from the Commerce Identity API."""
        url = f"{settings.ebay_identity_base_url(environment)}{IDENTITY_PATH}"
        response = await self.http.request(
            "GET",
            url,
            operation="get_user_identity",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        raise_for_rest_status(response, operation="get_user_identity")
        body = response_json(response)
        logger.info("[oauth] identity resolved username=%s", body.get("username"))
        return {"userId": body.get("userId"), "username": body.get("username")}


ebay_oauth_client = EbayOAuthClient()
