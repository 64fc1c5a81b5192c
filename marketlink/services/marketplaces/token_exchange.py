"""
Authorization-code and refresh-token exchange against marketplace token endpoints.

Provider differences live in one ProviderAdapter per marketplace slug:
- eBay authenticates the client with an HTTP Basic header, uses the RuName
  as redirect_uri and wants the scope repeated on refresh
- Generic OAuth2 providers (Facebook) take client_id/client_secret in the
  form body

Calls are never retried here. Retrying, with backoff, is up to the caller.
"""

import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import urlencode

import httpx

from marketlink.core.exceptions import ExchangeError, NotSupportedError
from marketlink.core.utils import redact_secrets
from marketlink.schemas.marketplace import MarketplaceDefinition, TokenSet

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class ProviderAdapter(ABC):
    """Builds the provider-specific parts of the OAuth requests."""

    def authorization_params(self, definition: MarketplaceDefinition, state: str) -> Dict[str, str]:
        oauth = definition.oauth
        params = {
            "client_id": oauth.client_id,
            "redirect_uri": oauth.redirect_uri,
            "scope": oauth.scope,
            "response_type": "code",
            "state": state,
        }
        params.update(oauth.additional_params)
        return params

    @abstractmethod
    def code_request(self, definition: MarketplaceDefinition, code: str) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Headers and form body for the authorization-code grant."""

    @abstractmethod
    def refresh_request(self, definition: MarketplaceDefinition, refresh_token: str) -> Tuple[Dict[str, str], Dict[str, str]]:
        """Headers and form body for the refresh-token grant."""


class EbayAdapter(ProviderAdapter):

    @staticmethod
    def _headers(definition: MarketplaceDefinition) -> Dict[str, str]:
        credentials = f"{definition.oauth.client_id}:{definition.oauth.client_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()
        return {
            "Content-Type": FORM_CONTENT_TYPE,
            "Accept": "application/json",
            "Authorization": f"Basic {encoded_credentials}",
        }

    def code_request(self, definition, code):
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": definition.oauth.redirect_uri,
        }
        return self._headers(definition), data

    def refresh_request(self, definition, refresh_token):
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": definition.oauth.scope,
        }
        return self._headers(definition), data


class GenericOAuth2Adapter(ProviderAdapter):

    def code_request(self, definition, code):
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": definition.oauth.redirect_uri,
            "client_id": definition.oauth.client_id,
            "client_secret": definition.oauth.client_secret,
        }
        return {"Content-Type": FORM_CONTENT_TYPE, "Accept": "application/json"}, data

    def refresh_request(self, definition, refresh_token):
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": definition.oauth.client_id,
            "client_secret": definition.oauth.client_secret,
        }
        return {"Content-Type": FORM_CONTENT_TYPE, "Accept": "application/json"}, data


DEFAULT_ADAPTERS: Mapping[str, ProviderAdapter] = {
    "ebay": EbayAdapter(),
    "facebook": GenericOAuth2Adapter(),
}


def parse_expires_in(value: Any) -> int:
    """expires_in must be a whole number of seconds, as int or digit string"""
    if isinstance(value, bool):
        raise ValueError("boolean expires_in")
    if isinstance(value, int):
        seconds = value
    elif isinstance(value, str) and value.strip().isdigit():
        seconds = int(value.strip())
    else:
        raise ValueError(f"non-numeric expires_in: {type(value).__name__}")
    if seconds <= 0:
        raise ValueError("expires_in must be positive")
    return seconds


class TokenExchangeClient:

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        adapters: Optional[Mapping[str, ProviderAdapter]] = None,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.adapters: Dict[str, ProviderAdapter] = dict(DEFAULT_ADAPTERS if adapters is None else adapters)

    def adapter_for(self, definition: MarketplaceDefinition) -> ProviderAdapter:
        adapter = self.adapters.get(definition.slug)
        if adapter is None:
            raise NotSupportedError(f"No OAuth adapter registered for marketplace '{definition.slug}'")
        return adapter

    def build_authorization_url(self, definition: MarketplaceDefinition, state: str) -> str:
        params = self.adapter_for(definition).authorization_params(definition, state)
        return f"{definition.oauth.authorize_url}?{urlencode(params)}"

    async def exchange_authorization_code(self, definition: MarketplaceDefinition, code: str) -> TokenSet:
        if not code:
            raise ExchangeError("Authorization code is missing")
        headers, data = self.adapter_for(definition).code_request(definition, code)
        return await self._post_token_request(definition, headers, data, secrets=(code,))

    async def exchange_refresh_token(self, definition: MarketplaceDefinition, refresh_token: str) -> TokenSet:
        if not refresh_token:
            raise ExchangeError("No refresh token available")
        headers, data = self.adapter_for(definition).refresh_request(definition, refresh_token)
        return await self._post_token_request(definition, headers, data, secrets=(refresh_token,))

    async def _post_token_request(self, definition, headers, data, secrets=()) -> TokenSet:
        known_secrets = (definition.oauth.client_secret, *secrets)
        grant_type = data.get("grant_type")

        try:
            if self.http_client is not None:
                response = await self.http_client.post(
                    definition.oauth.token_url, headers=headers, data=data, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(definition.oauth.token_url, headers=headers, data=data)
        except httpx.TimeoutException as e:
            logger.error(f"Timed out calling {definition.slug} token endpoint ({grant_type})")
            raise ExchangeError(f"{definition.name} token endpoint timed out") from e
        except httpx.RequestError as e:
            detail = redact_secrets(str(e), known_secrets)
            logger.error(f"Network error calling {definition.slug} token endpoint ({grant_type}): {detail}")
            raise ExchangeError(f"Network error contacting {definition.name}: {detail}") from e

        if not response.is_success:
            provider_error = redact_secrets(response.text, known_secrets)
            logger.error(
                f"{definition.slug} token endpoint returned {response.status_code} ({grant_type}): {provider_error}"
            )
            raise ExchangeError(
                f"{definition.name} token request failed ({response.status_code}): {provider_error}",
                status_code=response.status_code,
                provider_error=provider_error,
            )

        return self._parse_token_response(definition, response, known_secrets)

    @staticmethod
    def _parse_token_response(definition, response: httpx.Response, known_secrets) -> TokenSet:
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise ExchangeError(
                f"{definition.name} returned a non-JSON token response",
                status_code=response.status_code,
                provider_error=redact_secrets(response.text, known_secrets),
            ) from e

        if not isinstance(payload, dict):
            raise ExchangeError(f"{definition.name} returned an unexpected token payload", status_code=response.status_code)

        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ExchangeError(f"{definition.name} token response has no access_token", status_code=response.status_code)

        try:
            expires_in = parse_expires_in(payload.get("expires_in"))
        except ValueError as e:
            raise ExchangeError(
                f"{definition.name} token response has an invalid expires_in: {e}",
                status_code=response.status_code,
            ) from e

        refresh_token = payload.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ExchangeError(f"{definition.name} token response has an invalid refresh_token", status_code=response.status_code)

        return TokenSet(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in_seconds=expires_in,
        )
