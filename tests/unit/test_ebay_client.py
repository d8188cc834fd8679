import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from tenacity import wait_none

from conftest import mock_transport
from stockroom.ebay_client import EbayClient
from stockroom.services.exceptions import AuthRequired, UpstreamError


def _client(handler=None, requests=None) -> EbayClient:
    transport = mock_transport(handler, requests) if handler else None
    return EbayClient(
        client_id="cid",
        client_secret="secret",
        redirect_uri="Stock_Room-RuName",
        transport=transport,
    )


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(EbayClient._post_token.retry, "wait", wait_none())


@pytest.mark.unit
def test_build_authorization_url():
    url = _client().build_authorization_url(state="abc")
    parsed = urlparse(url)
    params = parse_qs(parsed.query)

    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://auth.ebay.com/oauth2/authorize"
    assert params["client_id"] == ["cid"]
    assert params["response_type"] == ["code"]
    assert params["redirect_uri"] == ["Stock_Room-RuName"]
    assert params["state"] == ["abc"]
    assert params["scope"][0].split(" ") == [
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.marketing",
        "https://api.ebay.com/oauth/api_scope/sell.account",
    ]
    assert "+" not in parsed.query


@pytest.mark.unit
class TestExchangeCode:

    @pytest.mark.asyncio
    async def test_success(self):
        requests = []
        client = _client(
            lambda request: httpx.Response(
                200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 7200, "token_type": "User Access Token"}
            ),
            requests,
        )

        grant = await client.exchange_code("the-code")

        assert grant.access_token == "at"
        assert grant.refresh_token == "rt"
        assert grant.expires_in == 7200

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/identity/v1/oauth2/token"
        assert request.headers["Authorization"] == "Basic " + base64.b64encode(b"cid:secret").decode()
        form = parse_qs(request.content.decode())
        assert form == {
            "grant_type": ["authorization_code"],
            "code": ["the-code"],
            "redirect_uri": ["Stock_Room-RuName"],
        }

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self, no_retry_wait):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"access_token": "at", "expires_in": 60})

        grant = await _client(handler).exchange_code("c")

        assert len(calls) == 3
        assert grant.refresh_token is None

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, no_retry_wait):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("down", request=request)

        with pytest.raises(UpstreamError):
            await _client(handler).exchange_code("c")
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_http_errors_are_not_retried(self, no_retry_wait):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(UpstreamError) as excinfo:
            await _client(handler).exchange_code("expired")
        assert excinfo.value.status == 400
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        client = _client(lambda request: httpx.Response(200, json={"expires_in": 10}))

        with pytest.raises(UpstreamError):
            await client.exchange_code("c")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_401_is_auth_required():
    client = _client(lambda request: httpx.Response(401, json={"errors": []}))

    with pytest.raises(AuthRequired):
        await client.search_item_summaries("expired-token", "lamp")
