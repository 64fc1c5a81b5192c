"""
Catalogue of the marketplaces users can connect to.

Built once from settings at startup and only read afterwards, so it is
safe to share between concurrent requests without locking.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from marketlink.core.config import Settings
from marketlink.core.enums import MarketplaceSlug
from marketlink.core.exceptions import NotSupportedError
from marketlink.schemas.marketplace import MarketplaceDefinition, OAuthConfig

logger = logging.getLogger(__name__)

EBAY_AUTHORIZE_URL = "https://auth.ebay.com/oauth2/authorize"
EBAY_TOKEN_URL = "https://api.ebay.com/identity/v1/oauth2/token"
EBAY_SANDBOX_AUTHORIZE_URL = "https://auth.sandbox.ebay.com/oauth2/authorize"
EBAY_SANDBOX_TOKEN_URL = "https://api.sandbox.ebay.com/identity/v1/oauth2/token"

FACEBOOK_AUTHORIZE_URL = "https://www.facebook.com/{version}/dialog/oauth"
FACEBOOK_TOKEN_URL = "https://graph.facebook.com/{version}/oauth/access_token"

EBAY_ICON_URL = "https://d1yjjnpx0p53s8.cloudfront.net/styles/logo-thumbnail/s3/042013/ebay_logo.png"
FACEBOOK_ICON_URL = "https://cdn2.iconfinder.com/data/icons/social-media-2285/512/1_Facebook2_colored_svg-1024.png"

CALLBACK_PATH = "/api/marketplaces/oauth/callback/{slug}"


def callback_url(app_url: str, slug: str) -> str:
    return app_url.rstrip("/") + CALLBACK_PATH.format(slug=slug)


class MarketplaceRegistry:

    def __init__(self, definitions: Iterable[MarketplaceDefinition], fallback_redirect_url: str = ""):
        by_slug: Dict[str, MarketplaceDefinition] = {}
        by_id: Dict[int, MarketplaceDefinition] = {}
        for definition in definitions:
            if definition.slug in by_slug:
                raise ValueError(f"Duplicate marketplace slug: {definition.slug}")
            if definition.id in by_id:
                raise ValueError(f"Duplicate marketplace id: {definition.id}")
            by_slug[definition.slug] = definition
            by_id[definition.id] = definition

        self._by_slug = MappingProxyType(by_slug)
        self._by_id = MappingProxyType(by_id)
        self._ordered = tuple(by_slug.values())
        self.fallback_redirect_url = fallback_redirect_url

    @classmethod
    def from_settings(cls, settings: Settings) -> "MarketplaceRegistry":
        """Build the eBay and Facebook definitions from configuration"""
        if settings.EBAY_SANDBOX_MODE:
            ebay_authorize, ebay_token = EBAY_SANDBOX_AUTHORIZE_URL, EBAY_SANDBOX_TOKEN_URL
        else:
            ebay_authorize, ebay_token = EBAY_AUTHORIZE_URL, EBAY_TOKEN_URL

        ebay = MarketplaceDefinition(
            id=1,
            slug=MarketplaceSlug.EBAY.value,
            name="eBay",
            icon_url=EBAY_ICON_URL,
            is_supported=settings.EBAY_SUPPORTED,
            oauth=OAuthConfig(
                authorize_url=ebay_authorize,
                token_url=ebay_token,
                client_id=settings.EBAY_CLIENT_ID,
                client_secret=settings.EBAY_CLIENT_SECRET,
                redirect_uri=settings.EBAY_RU_NAME or callback_url(settings.APP_URL, "ebay"),
                scope=settings.EBAY_SCOPE,
            ),
            mobile_deep_link_template=settings.MOBILE_APP_SCHEME,
        )

        version = settings.FACEBOOK_GRAPH_VERSION
        facebook = MarketplaceDefinition(
            id=2,
            slug=MarketplaceSlug.FACEBOOK.value,
            name="Facebook",
            icon_url=FACEBOOK_ICON_URL,
            is_supported=settings.FACEBOOK_SUPPORTED,
            oauth=OAuthConfig(
                authorize_url=FACEBOOK_AUTHORIZE_URL.format(version=version),
                token_url=FACEBOOK_TOKEN_URL.format(version=version),
                client_id=settings.FACEBOOK_CLIENT_ID,
                client_secret=settings.FACEBOOK_CLIENT_SECRET,
                redirect_uri=callback_url(settings.APP_URL, "facebook"),
                scope=settings.FACEBOOK_SCOPE,
            ),
            mobile_deep_link_template=settings.MOBILE_APP_SCHEME,
        )

        for definition in (ebay, facebook):
            if definition.is_supported and not (definition.oauth.client_id and definition.oauth.client_secret):
                logger.warning(f"Marketplace '{definition.slug}' is supported but has no client credentials configured")

        return cls([ebay, facebook], fallback_redirect_url=settings.OAUTH_FALLBACK_REDIRECT_URL)

    def get_definition(self, slug: str) -> Optional[MarketplaceDefinition]:
        return self._by_slug.get(slug)

    def get_definition_by_id(self, marketplace_id: int) -> Optional[MarketplaceDefinition]:
        return self._by_id.get(marketplace_id)

    def get_all_definitions(self) -> List[MarketplaceDefinition]:
        return list(self._ordered)

    def get_supported_definitions(self) -> List[MarketplaceDefinition]:
        return [definition for definition in self._ordered if definition.is_supported]

    def is_supported(self, slug: str) -> bool:
        definition = self._by_slug.get(slug)
        return bool(definition and definition.is_supported)

    def require_supported(self, slug: str) -> MarketplaceDefinition:
        definition = self._by_slug.get(slug)
        if definition is None:
            raise NotSupportedError(f"Marketplace '{slug}' not found")
        if not definition.is_supported:
            raise NotSupportedError(f"Marketplace '{slug}' is not supported")
        return definition

    def require_supported_id(self, marketplace_id: int) -> MarketplaceDefinition:
        definition = self._by_id.get(marketplace_id)
        if definition is None:
            raise NotSupportedError(f"Marketplace {marketplace_id} not found")
        if not definition.is_supported:
            raise NotSupportedError(f"Marketplace '{definition.slug}' is not supported")
        return definition

    def build_deep_link(self, slug: str, **params: Optional[str]) -> str:
        """
        Render the redirect sent back to the mobile app after an OAuth attempt.

        Unknown slugs go to the fallback URL so the callback can always redirect.
        None-valued params are left out; values are URL-encoded once.
        """
        definition = self._by_slug.get(slug)
        if definition is not None:
            base = definition.mobile_deep_link_template.replace("{slug}", definition.slug)
        else:
            base = self.fallback_redirect_url

        scheme, netloc, path, query, fragment = urlsplit(base)
        query_items = parse_qsl(query, keep_blank_values=True)
        query_items.extend((key, value) for key, value in params.items() if value is not None)
        return urlunsplit((scheme, netloc, path, urlencode(query_items), fragment))
