from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote, urlencode

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from stockroom.services.exceptions import AuthRequired, UpstreamError, UpstreamTimeout
from stockroom.settings import Settings, settings

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = (
    "https://api.ebay.com/oauth/api_scope",
    "https://api.ebay.com/oauth/api_scope/sell.inventory",
    "https://api.ebay.com/oauth/api_scope/sell.marketing",
    "https://api.ebay.com/oauth/api_scope/sell.account",
)

SEARCH_PATH = "/buy/browse/v1/item_summary/search"
TOKEN_PATH = "/identity/v1/oauth2/token"


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_in: int


class EbayClient:
    """
    Thin async client for the two eBay calls we need: the OAuth code
    exchange and the Browse item-summary search.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        api_base_url: str = "https://api.ebay.com",
        auth_base_url: str = "https://auth.ebay.com",
        marketplace_id: str = "EBAY_US",
        scopes: tuple[str, ...] | list[str] = DEFAULT_SCOPES,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._api_base_url = api_base_url.rstrip("/")
        self._auth_base_url = auth_base_url.rstrip("/")
        self._marketplace_id = marketplace_id
        self._scopes = tuple(scopes)
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 10.0))
        self._transport = transport

    @classmethod
    def from_settings(cls, cfg: Settings = settings, transport: httpx.AsyncBaseTransport | None = None) -> "EbayClient":
        return cls(
            client_id=cfg.ebay_client_id,
            client_secret=cfg.ebay_client_secret,
            redirect_uri=cfg.get_redirect_uri(),
            api_base_url=cfg.ebay_api_base_url,
            auth_base_url=cfg.ebay_auth_base_url,
            marketplace_id=cfg.ebay_marketplace_id,
            scopes=cfg.ebay_scopes,
            timeout_seconds=cfg.marketplace_timeout_seconds,
            transport=transport,
        )

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self._api_base_url, timeout=self._timeout, transport=self._transport)

    def build_authorization_url(self, state: str | None = None) -> str:
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "redirect_uri": self._redirect_uri,
            "scope": " ".join(self._scopes),
        }
        if state:
            params["state"] = state
        return f"{self._auth_base_url}/oauth2/authorize?{urlencode(params, quote_via=quote)}"

    @staticmethod
    def _raise_for_status(resp: httpx.Response, operation: str) -> None:
        if resp.status_code < 400:
            return

        body = resp.text
        logger.error(f"eBay {operation} failed: {resp.status_code} {body[:500]}")
        if resp.status_code in (401, 403):
            raise AuthRequired(upstream_status=resp.status_code)
        raise UpstreamError(
            f"eBay API error: {resp.status_code} {resp.reason_phrase}",
            status=resp.status_code,
            body=body,
            subsystem="ebay",
            url=str(resp.request.url),
            recoverable=resp.status_code >= 500,
        )

    @retry(
        stop=stop_after_attempt(settings.ebay_token_retry_count),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            f"eBay token exchange transport error, retrying (attempt {retry_state.attempt_number})"
        ),
    )
    async def _post_token(self, code: str) -> httpx.Response:
        async with self._http() as client:
            return await client.post(
                TOKEN_PATH,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._redirect_uri,
                },
                auth=(self._client_id, self._client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

    async def exchange_code(self, code: str) -> TokenGrant:
        try:
            resp = await self._post_token(code)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout("eBay token exchange timed out", operation="ebay.token_exchange") from e
        except httpx.TransportError as e:
            raise UpstreamError(f"eBay token exchange failed: {e}", subsystem="ebay", url=TOKEN_PATH) from e

        self._raise_for_status(resp, "token exchange")

        data: dict[str, Any] = resp.json()
        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamError("eBay token response has no access_token", body=resp.text, subsystem="ebay")

        return TokenGrant(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or 0),
        )

    async def search_item_summaries(self, access_token: str, query: str, limit: int = 10) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "X-EBAY-C-MARKETPLACE-ID": self._marketplace_id,
            "Content-Type": "application/json",
        }
        try:
            async with self._http() as client:
                resp = await client.get(SEARCH_PATH, params={"q": query, "limit": limit}, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(
                "eBay search timed out",
                operation="ebay.item_summary_search",
                timeout_seconds=self._timeout.read,
            ) from e
        except httpx.TransportError as e:
            raise UpstreamError(f"eBay search failed: {e}", subsystem="ebay", url=SEARCH_PATH) from e

        self._raise_for_status(resp, "item summary search")

        data = resp.json()
        if not isinstance(data, dict):
            raise UpstreamError("Unexpected eBay search response", body=resp.text, subsystem="ebay")
        return data
