# tests/unit/services/marketplaces/test_token_exchange.py
import base64
import pytest
import httpx
from urllib.parse import urlsplit, parse_qs

from marketlink.core.exceptions import ExchangeError, NotSupportedError
from marketlink.schemas.marketplace import MarketplaceDefinition, OAuthConfig
from marketlink.services.marketplaces.token_exchange import (
    GenericOAuth2Adapter,
    ProviderAdapter,
    TokenExchangeClient,
    parse_expires_in,
)
from tests.mocks.mock_token_endpoint import EBAY_TOKEN_URL, FACEBOOK_TOKEN_URL

"""
1. Authorization URL
"""

@pytest.mark.asyncio
async def test_ebay_authorization_url_contains_oauth_params(registry, token_client):
    ebay = registry.get_definition("ebay")

    url = token_client.build_authorization_url(ebay, "STATE123")

    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://auth.ebay.com/oauth2/authorize"
    query = parse_qs(parts.query)
    assert query["client_id"] == ["test-ebay-client-id"]
    assert query["redirect_uri"] == ["Test_User-TestApp-PRD-ru"]
    assert query["response_type"] == ["code"]
    assert query["state"] == ["STATE123"]
    assert query["scope"] == [ebay.oauth.scope]


@pytest.mark.asyncio
async def test_authorization_url_appends_additional_params(registry, token_client):
    ebay = registry.get_definition("ebay")
    customised = ebay.model_copy(update={
        "oauth": ebay.oauth.model_copy(update={"additional_params": {"prompt": "login", "locale": "en-US"}})
    })

    query = parse_qs(urlsplit(token_client.build_authorization_url(customised, "S")).query)

    assert query["prompt"] == ["login"]
    assert query["locale"] == ["en-US"]


@pytest.mark.asyncio
async def test_unknown_slug_has_no_adapter(token_client):
    etsy = MarketplaceDefinition(
        id=9, slug="etsy", name="Etsy",
        oauth=OAuthConfig(authorize_url="https://etsy.example/a", token_url="https://etsy.example/t",
                          client_id="c", client_secret="s", redirect_uri="r", scope="x"),
        mobile_deep_link_template="app://x",
    )

    with pytest.raises(NotSupportedError):
        token_client.build_authorization_url(etsy, "S")


"""
2. Code exchange
"""

@pytest.mark.asyncio
async def test_ebay_code_exchange_uses_basic_auth(registry, token_client, token_endpoint):
    token_endpoint.queue_tokens(EBAY_TOKEN_URL, "A1", "R1", 7200)

    tokens = await token_client.exchange_authorization_code(registry.get_definition("ebay"), "C1")

    assert tokens.access_token == "A1"
    assert tokens.refresh_token == "R1"
    assert tokens.expires_in_seconds == 7200

    request = token_endpoint.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    expected = base64.b64encode(b"test-ebay-client-id:test-ebay-client-secret").decode()
    assert request.headers["authorization"] == f"Basic {expected}"
    form = token_endpoint.form(request)
    assert form == {
        "grant_type": "authorization_code",
        "code": "C1",
        "redirect_uri": "Test_User-TestApp-PRD-ru",
    }


@pytest.mark.asyncio
async def test_generic_code_exchange_sends_credentials_in_body(registry, token_client, token_endpoint):
    token_endpoint.queue_tokens(FACEBOOK_TOKEN_URL, "FB-A", None, 5183944)

    tokens = await token_client.exchange_authorization_code(registry.get_definition("facebook"), "FB-CODE")

    assert tokens.refresh_token is None
    request = token_endpoint.requests[0]
    assert "authorization" not in request.headers
    form = token_endpoint.form(request)
    assert form["client_id"] == "test-fb-client-id"
    assert form["client_secret"] == "test-fb-client-secret"
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "FB-CODE"
    assert form["redirect_uri"] == "https://api.example.test/api/marketplaces/oauth/callback/facebook"


"""
3. Refresh exchange
"""

@pytest.mark.asyncio
async def test_ebay_refresh_includes_scope(registry, token_client, token_endpoint):
    ebay = registry.get_definition("ebay")
    token_endpoint.queue_tokens(EBAY_TOKEN_URL, "A2", expires_in="7200")

    tokens = await token_client.exchange_refresh_token(ebay, "R1")

    assert tokens.access_token == "A2"
    assert tokens.expires_in_seconds == 7200
    form = token_endpoint.form(token_endpoint.requests[0])
    assert form == {"grant_type": "refresh_token", "refresh_token": "R1", "scope": ebay.oauth.scope}
    assert "redirect_uri" not in form


@pytest.mark.asyncio
async def test_generic_refresh_has_no_scope(registry, token_client, token_endpoint):
    token_endpoint.queue_tokens(FACEBOOK_TOKEN_URL, "FB-A2", "FB-R2")

    await token_client.exchange_refresh_token(registry.get_definition("facebook"), "FB-R1")

    form = token_endpoint.form(token_endpoint.requests[0])
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "FB-R1"
    assert "scope" not in form


@pytest.mark.asyncio
async def test_refresh_without_token_fails_without_request(registry, token_client, token_endpoint):
    with pytest.raises(ExchangeError):
        await token_client.exchange_refresh_token(registry.get_definition("ebay"), None)
    assert token_endpoint.requests == []


"""
4. Failures
"""

@pytest.mark.asyncio
async def test_non_2xx_raises_with_provider_error(registry, token_client, token_endpoint):
    token_endpoint.queue(EBAY_TOKEN_URL, 400, {
        "error": "invalid_grant",
        "error_description": "the provided authorization grant code is invalid or was issued to another client",
    })

    with pytest.raises(ExchangeError) as exc_info:
        await token_client.exchange_authorization_code(registry.get_definition("ebay"), "BAD")

    assert exc_info.value.status_code == 400
    assert "invalid_grant" in exc_info.value.provider_error
    assert "invalid_grant" in str(exc_info.value)
    assert len(token_endpoint.requests) == 1  # no retry


@pytest.mark.asyncio
async def test_provider_error_is_redacted_and_bounded(registry, token_client, token_endpoint):
    body = '{"error": "server_error", "refresh_token": "R-SECRET", "detail": "' + "x" * 2000 + '"}'
    token_endpoint.queue(EBAY_TOKEN_URL, 500, text=body)

    with pytest.raises(ExchangeError) as exc_info:
        await token_client.exchange_refresh_token(registry.get_definition("ebay"), "R-SECRET")

    message = str(exc_info.value)
    assert "R-SECRET" not in message
    assert "test-ebay-client-secret" not in message
    assert len(exc_info.value.provider_error) <= 503


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"access_token": "A", "expires_in": "soon"},
    {"access_token": "A"},
    {"access_token": "A", "expires_in": None},
    {"access_token": "A", "expires_in": 12.5},
    {"access_token": "A", "expires_in": True},
    {"expires_in": 7200},
    {"access_token": "", "expires_in": 7200},
    ["not", "an", "object"],
])
async def test_malformed_token_payload_raises(registry, token_client, token_endpoint, payload):
    token_endpoint.queue(EBAY_TOKEN_URL, 200, payload)

    with pytest.raises(ExchangeError):
        await token_client.exchange_authorization_code(registry.get_definition("ebay"), "C1")


@pytest.mark.asyncio
async def test_non_json_success_raises(registry, token_client, token_endpoint):
    token_endpoint.queue(EBAY_TOKEN_URL, 200, text="<html>maintenance</html>")

    with pytest.raises(ExchangeError):
        await token_client.exchange_authorization_code(registry.get_definition("ebay"), "C1")


@pytest.mark.asyncio
async def test_network_error_becomes_exchange_error(registry, token_client, token_endpoint):
    token_endpoint.should_fail_network = True

    with pytest.raises(ExchangeError):
        await token_client.exchange_authorization_code(registry.get_definition("ebay"), "C1")


@pytest.mark.asyncio
async def test_timeout_becomes_exchange_error(registry):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = TokenExchangeClient(http_client, timeout=0.1)
        with pytest.raises(ExchangeError) as exc_info:
            await client.exchange_refresh_token(registry.get_definition("ebay"), "R1")

    assert "timed out" in str(exc_info.value)


@pytest.mark.asyncio
async def test_adapter_map_can_be_replaced(token_endpoint):
    etsy = MarketplaceDefinition(
        id=9, slug="etsy", name="Etsy",
        oauth=OAuthConfig(authorize_url="https://etsy.example/a", token_url="https://etsy.example/t",
                          client_id="c", client_secret="s", redirect_uri="r", scope="x"),
        mobile_deep_link_template="app://x",
    )
    token_endpoint.queue_tokens("https://etsy.example/t", "E-A", "E-R", 3600)

    async with token_endpoint.client() as http_client:
        client = TokenExchangeClient(http_client, adapters={"etsy": GenericOAuth2Adapter()})
        tokens = await client.exchange_authorization_code(etsy, "E-C")

    assert tokens.access_token == "E-A"


def test_adapters_must_implement_both_token_requests():
    class CodeOnlyAdapter(ProviderAdapter):
        def code_request(self, definition, code):
            return {}, {"code": code}

    with pytest.raises(TypeError):
        ProviderAdapter()
    with pytest.raises(TypeError):
        CodeOnlyAdapter()


def test_parse_expires_in():
    assert parse_expires_in(7200) == 7200
    assert parse_expires_in(" 3600 ") == 3600
    for bad in ("abc", "", None, 1.5, False, -5, 0):
        with pytest.raises(ValueError):
            parse_expires_in(bad)
