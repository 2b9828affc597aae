"""Shared upstream transport for every eBay API family.

- Each request carries a bounded ``httpx.Timeout``.
- Transient failures (5xx, timeouts, transport errors) get a small bounded
  retry with exponential backoff. Non-idempotent requests only retry when the
  connection was never established.
- Status codes are classified into the typed errors of
  :mod:`app.services.ebay_errors`.
- :class:`EbayApiFamily` runs a call with a token from the token lifecycle
  manager and forces exactly one refresh when eBay answers 401.
- When the account's grant is known and misses the scope a call needs, the
  call fails with ``MissingScopes`` before anything is sent.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from app.config import settings
from app.models.records import SourceApi
from app.services.ebay_errors import (
    NotFoundError,
    TransientError,
    UnauthorizedError,
    UpstreamRejected,
    UpstreamTimeout,
)
from app.services.ebay_scopes import check_scopes
from app.utils.logger import logger

if TYPE_CHECKING:
    from app.services.ebay_token_provider import AccessToken, TokenLifecycleManager


T = TypeVar("T")

CORRELATION_HEADERS = ("x-ebay-c-request-id", "rlogid", "x-ebay-correlation-id")


def mask_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    masked: Dict[str, Any] = {}
    for k, v in (headers or {}).items():
        lk = str(k).lower()
        if lk in {"authorization", "x-ebay-api-iaf-token"} or "token" in lk:
            masked[k] = "***"
        else:
            masked[k] = v
    return masked


def correlation_id(response: httpx.Response) -> Optional[str]:
    for name in CORRELATION_HEADERS:
        value = response.headers.get(name)
        if value:
            return value
    return None


def response_json(response: httpx.Response) -> Dict[str, Any]:
    """Body as a dict; empty or non-JSON bodies yield ``{}``."""
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}


def _first_error(body: Dict[str, Any]) -> Dict[str, Any]:
    # Sell APIs use "errors", Post-Order v2 uses "error".
    errors = body.get("errors") or body.get("error") or []
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0]
    return {}


def raise_for_rest_status(response: httpx.Response, *, operation: str) -> None:
    """Translate a non-2xx REST response into a typed gateway error."""
    if response.status_code < 400:
        return

    body = response_json(response)
    if isinstance(body.get("error"), str):
        # OAuth endpoints: {"error": "invalid_grant", "error_description": "..."}
        first = {"errorId": body["error"], "message": body.get("error_description")}
    else:
        first = _first_error(body)
    upstream_code = str(first.get("errorId")) if first.get("errorId") is not None else None
    message = first.get("longMessage") or first.get("message") or response.text[:500] or response.reason_phrase
    details = {
        "operation": operation,
        "status_code": response.status_code,
        "correlation_id": correlation_id(response),
        "body": body or response.text[:2000],
    }

    if response.status_code == 404:
        raise NotFoundError(f"{operation}: not found", details=details)
    if response.status_code == 401:
        raise UnauthorizedError(f"{operation}: eBay rejected the access token", details=details)
    if response.status_code >= 500:
        raise TransientError(f"{operation}: eBay returned {response.status_code}", details=details)
    raise UpstreamRejected(
        f"{operation}: {message}",
        upstream_code=upstream_code or str(response.status_code),
        details=details,
    )


class EbayHttpTransport:
    """Bounded-timeout HTTP calls with a small retry budget for transient failures."""

    def __init__(
        self,
        *,
        timeout: Optional[httpx.Timeout] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout or httpx.Timeout(
            settings.EBAY_HTTP_TIMEOUT_SECONDS,
            connect=settings.EBAY_HTTP_CONNECT_TIMEOUT_SECONDS,
        )
        self.max_attempts = max(1, max_attempts or settings.EBAY_HTTP_MAX_ATTEMPTS)
        self.backoff_seconds = settings.EBAY_HTTP_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        self._transport = transport

    async def request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        content: Optional[bytes] = None,
        idempotent: Optional[bool] = None,
    ) -> httpx.Response:
        if idempotent is None:
            idempotent = method.upper() in ("GET", "HEAD")

        attempt = 0
        while True:
            attempt += 1
            start = time.monotonic()
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.request(
                        method,
                        url,
                        headers=headers,
                        params=params,
                        json=json,
                        data=data,
                        content=content,
                    )
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                # Nothing reached eBay, so even non-idempotent calls may retry.
                failure: Exception = (
                    UpstreamTimeout(f"{operation}: connect timeout", details={"error": str(exc)})
                    if isinstance(exc, httpx.ConnectTimeout)
                    else TransientError(f"{operation}: connection failed: {exc}", details={"error": str(exc)})
                )
                retryable = True
            except httpx.TimeoutException as exc:
                failure = UpstreamTimeout(f"{operation}: request timed out", details={"error": str(exc)})
                retryable = idempotent
            except httpx.RequestError as exc:
                failure = TransientError(f"{operation}: HTTP request failed: {exc}", details={"error": str(exc)})
                retryable = idempotent
            else:
                duration_ms = int((time.monotonic() - start) * 1000)
                if response.status_code < 500:
                    logger.info(
                        "[ebay_http] %s %s -> %s (%sms) operation=%s",
                        method.upper(), url, response.status_code, duration_ms, operation,
                    )
                    return response
                failure = TransientError(
                    f"{operation}: eBay returned {response.status_code}",
                    details={
                        "status_code": response.status_code,
                        "correlation_id": correlation_id(response),
                        "body": response.text[:2000],
                    },
                )
                retryable = idempotent

            if not retryable or attempt >= self.max_attempts:
                logger.error(
                    "[ebay_http] %s %s failed operation=%s attempt=%s/%s error=%s",
                    method.upper(), url, operation, attempt, self.max_attempts, failure,
                )
                raise failure

            delay = self.backoff_seconds * (2 ** (attempt - 1))
            logger.warning(
                "[ebay_http] %s %s transient failure operation=%s attempt=%s/%s retry_in=%.2fs error=%s",
                method.upper(), url, operation, attempt, self.max_attempts, delay, failure,
            )
            await asyncio.sleep(delay)


class EbayApiFamily:
    """Base for one upstream API family bound to one connected account."""

    source_api: SourceApi

    def __init__(
        self,
        tokens: "TokenLifecycleManager",
        account_id: str,
        *,
        http: Optional[EbayHttpTransport] = None,
    ) -> None:
        self._tokens = tokens
        self.account_id = account_id
        self.http = http or EbayHttpTransport()

    async def _authorized(
        self,
        send: Callable[["AccessToken"], Awaitable[T]],
        *,
        operation: str,
        scope: Optional[str] = None,
    ) -> T:
        token = await self._tokens.get_valid_token(self.account_id)
        if scope:
            check_scopes(token.scopes, scope, account_id=self.account_id, call=operation)
        try:
            return await send(token)
        except UnauthorizedError:
            logger.warning(
                "[%s] 401 from eBay, forcing token refresh account_id=%s operation=%s",
                self.source_api.value, self.account_id, operation,
            )

        token = await self._tokens.get_valid_token(self.account_id, force_refresh=True)
        try:
            return await send(token)
        except UnauthorizedError as exc:
            await self._tokens.mark_expired(self.account_id, reason=f"{operation}: {exc.message}")
            raise
